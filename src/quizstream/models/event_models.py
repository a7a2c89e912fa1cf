"""
WebSocket event models for Quiz Stream.
Frames sent from the relay to connected clients during a generation session.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from quizstream.core.constants import (
    FINISH_REASON_STOP,
    MSG_TYPE_QUESTION,
    MSG_TYPE_QUIZ_END,
    MSG_TYPE_QUIZ_START,
    MSG_TYPE_STREAM_INTERRUPTED,
)


class QuizStartEvent(BaseModel):
    """Sent once before the first record of a session."""

    type: Literal["quiz_start"] = MSG_TYPE_QUIZ_START
    session_id: str
    topic: str

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


class QuestionEvent(BaseModel):
    """One parsed record. ``data`` is forwarded as parsed, without shape validation."""

    type: Literal["question"] = MSG_TYPE_QUESTION
    session_id: str
    index: int = Field(ge=0)
    data: Any

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


class QuizEndEvent(BaseModel):
    """Terminal frame for a session that was not ended by an error."""

    type: Literal["quiz_end"] = MSG_TYPE_QUIZ_END
    session_id: str
    count: int = Field(ge=0)
    finish_reason: Literal["stop", "interrupted"] = FINISH_REASON_STOP

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


class StreamInterruptedEvent(BaseModel):
    """Immediate acknowledgement of a client cancel request."""

    type: Literal["stream_interrupted"] = MSG_TYPE_STREAM_INTERRUPTED
    session_id: str

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


__all__ = [
    "QuestionEvent",
    "QuizEndEvent",
    "QuizStartEvent",
    "StreamInterruptedEvent",
]
