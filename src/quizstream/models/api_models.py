"""
Request and response models for the Quiz Stream API.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from quizstream.core.constants import MAX_QUESTION_COUNT

Difficulty = Literal["easy", "medium", "hard"]


class QuizRequest(BaseModel):
    """Generation request shared by the WebSocket and REST surfaces.

    The topic is passed to the prompt verbatim; only presence is checked here.
    """

    topic: str = Field(min_length=1)
    count: int | None = Field(default=None, ge=1, le=MAX_QUESTION_COUNT)
    difficulty: Difficulty | None = None


class GenerateMessage(QuizRequest):
    """Client frame asking the relay to start a generation session."""

    type: Literal["generate"] = "generate"


class QuizResponse(BaseModel):
    """Batch result of one generation session."""

    topic: str
    questions: list[Any]
    count: int
    parse_failures: int = 0


__all__ = ["Difficulty", "GenerateMessage", "QuizRequest", "QuizResponse"]
