from __future__ import annotations

import asyncio
import secrets
import time

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from quizstream.api.middleware.exception_handlers import ExternalServiceError
from quizstream.api.services.generation_service import GenerationService, describe_stream_error
from quizstream.api.websocket.errors import build_ws_error
from quizstream.api.websocket.manager import WebSocketManager
from quizstream.core.constants import (
    DEFAULT_QUESTION_COUNT,
    FINISH_REASON_ERROR,
    FINISH_REASON_INTERRUPTED,
    FINISH_REASON_STOP,
)
from quizstream.core.extractor import ExtractionStats, ParseFailure, StreamingRecordExtractor
from quizstream.core.prompts import build_quiz_prompt
from quizstream.models.error_models import ErrorCode
from quizstream.models.event_models import (
    QuestionEvent,
    QuizEndEvent,
    QuizStartEvent,
    StreamInterruptedEvent,
)
from quizstream.utils.logger import logger

if TYPE_CHECKING:
    from quizstream.api.websocket.task_manager import CancellationToken


@dataclass(slots=True)
class QuizRunResult:
    """Outcome of one generation session."""

    session_id: str
    finish_reason: str = FINISH_REASON_STOP
    records: list[Any] = field(default_factory=list)
    error_code: ErrorCode | None = None
    error_message: str | None = None
    stats: ExtractionStats = field(default_factory=ExtractionStats)
    failures: list[ParseFailure] = field(default_factory=list)

    @property
    def count(self) -> int:
        return self.stats.emitted


def new_session_id() -> str:
    return f"quiz_{secrets.token_hex(8)}"


class QuizService:
    """Runs quiz generation sessions and relays their records.

    Each request gets its own extraction session. Interrupts go through the
    session's CancellationToken; the extraction loop stops emitting as soon as
    it sees the token cancelled.
    """

    # Shared across instances, keyed by (session_id, connection_id)
    _cancellation_tokens: ClassVar[dict[tuple[str, str | None], CancellationToken]] = {}

    def __init__(
        self,
        generator: GenerationService,
        ws_manager: WebSocketManager,
        default_count: int = DEFAULT_QUESTION_COUNT,
    ):
        self.generator = generator
        self.ws_manager = ws_manager
        self.default_count = default_count

    async def generate(
        self,
        session_id: str,
        topic: str,
        count: int | None = None,
        difficulty: str | None = None,
        cancellation_token: CancellationToken | None = None,
        connection_id: str | None = None,
    ) -> QuizRunResult:
        """Generate a quiz and stream each question to the session's connections.

        Sends ``quiz_start``, one ``question`` per record, then ``quiz_end`` or a
        single ``error`` frame. An interrupted session ends with ``quiz_end``
        carrying ``finish_reason="interrupted"``.

        Args:
            session_id: The session identifier
            topic: Free-text quiz subject
            count: Number of questions (default: service default)
            difficulty: Optional difficulty level
            cancellation_token: Token for cooperative cancellation
            connection_id: Relay connection that owns the token
        """
        key = (session_id, connection_id)
        if cancellation_token is not None:
            self._cancellation_tokens[key] = cancellation_token

        extractor = StreamingRecordExtractor(session_id=session_id, cancellation_token=cancellation_token)
        result = QuizRunResult(session_id=session_id, stats=extractor.stats, failures=extractor.failures)
        prompt = build_quiz_prompt(topic, count or self.default_count, difficulty)

        async def on_record(record: Any) -> None:
            # stats.emitted is bumped after this callback returns
            event = QuestionEvent(session_id=session_id, index=extractor.stats.emitted, data=record)
            await self.ws_manager.send(session_id, event.to_dict())
            result.records.append(record)

        async def on_done() -> None:
            event = QuizEndEvent(session_id=session_id, count=extractor.stats.emitted)
            await self.ws_manager.send(session_id, event.to_dict())

        async def on_error(exc: Exception) -> None:
            code, message = describe_stream_error(exc)
            result.finish_reason = FINISH_REASON_ERROR
            result.error_code = code
            result.error_message = message
            await self.ws_manager.send(session_id, build_ws_error(code, message, session_id=session_id))

        await self.ws_manager.send(session_id, QuizStartEvent(session_id=session_id, topic=topic).to_dict())

        start = time.monotonic()
        try:
            await extractor.extract(self.generator.stream_fragments(prompt), on_record, on_done, on_error)
        except asyncio.CancelledError:
            logger.info(f"Quiz task was cancelled for session {session_id}")
            extractor.close()
            await self._send_interrupted_end(session_id, extractor.stats.emitted)
            raise
        finally:
            if self._cancellation_tokens.get(key) is cancellation_token:
                self._cancellation_tokens.pop(key, None)

        if extractor.closed:
            result.finish_reason = FINISH_REASON_INTERRUPTED
            await self._send_interrupted_end(session_id, extractor.stats.emitted)

        logger.log_generation(
            topic=topic,
            records=extractor.stats.emitted,
            parse_failures=extractor.stats.parse_failures,
            duration_ms=(time.monotonic() - start) * 1000,
            finish_reason=result.finish_reason,
            discarded_chars=extractor.stats.discarded_chars,
            session_id=session_id,
        )
        return result

    async def collect(
        self,
        topic: str,
        count: int | None = None,
        difficulty: str | None = None,
    ) -> QuizRunResult:
        """Run one session to completion and return every record at once.

        Raises:
            ExternalServiceError: If the generation stream fails
        """
        session_id = new_session_id()
        extractor = StreamingRecordExtractor(session_id=session_id)
        result = QuizRunResult(session_id=session_id, stats=extractor.stats, failures=extractor.failures)
        errors: list[Exception] = []
        prompt = build_quiz_prompt(topic, count or self.default_count, difficulty)

        start = time.monotonic()
        await extractor.extract(
            self.generator.stream_fragments(prompt),
            on_record=result.records.append,
            on_done=lambda: None,
            on_error=errors.append,
        )

        if errors:
            result.finish_reason = FINISH_REASON_ERROR

        logger.log_generation(
            topic=topic,
            records=extractor.stats.emitted,
            parse_failures=extractor.stats.parse_failures,
            duration_ms=(time.monotonic() - start) * 1000,
            finish_reason=result.finish_reason,
            discarded_chars=extractor.stats.discarded_chars,
            session_id=session_id,
        )

        if errors:
            code, message = describe_stream_error(errors[0])
            raise ExternalServiceError("generation", message, code=code, cause=errors[0])
        return result

    async def interrupt(self, session_id: str, connection_id: str | None = None) -> None:
        """Interrupt the generation that ``connection_id`` started on ``session_id``.

        Sends immediate feedback; the extraction loop sends ``quiz_end`` when it exits.
        """
        token = self._cancellation_tokens.get((session_id, connection_id))
        if token is not None:
            await token.cancel(reason="Client cancel")
            logger.info(f"Stopping quiz generation for {session_id} ({connection_id})")
        else:
            logger.warning(f"No running quiz generation for {session_id} ({connection_id})")

        await self.ws_manager.send(session_id, StreamInterruptedEvent(session_id=session_id).to_dict())

    async def _send_interrupted_end(self, session_id: str, count: int) -> None:
        event = QuizEndEvent(session_id=session_id, count=count, finish_reason=FINISH_REASON_INTERRUPTED)
        await self.ws_manager.send(session_id, event.to_dict())


__all__ = ["QuizRunResult", "QuizService", "new_session_id"]
