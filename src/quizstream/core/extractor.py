"""
Incremental NDJSON record extraction for streamed model output.

The generation service delivers text in arbitrarily sized fragments with no
relation to record boundaries: one JSON object may span several fragments and
one fragment may carry several objects. Records are framed by a newline. Each
complete line is parsed on its own, so a malformed line costs only that record.

Usage::

    extractor = StreamingRecordExtractor(session_id="quiz_123")
    await extractor.extract(
        generation.stream_fragments(prompt),
        on_record=send_question,
        on_done=send_done,
        on_error=send_error,
    )

Input:  '{"question": "2+2?", "opt', 'ions": ["3", "4"], "answer": "4"}\\n', ...
Output: one ``on_record`` call per complete line, then ``on_done`` or ``on_error``.
"""

from __future__ import annotations

import contextlib
import inspect
import json

from collections.abc import AsyncIterable, Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from quizstream.core.constants import PARSE_FAILURE_PREVIEW_LENGTH, RECORD_TERMINATOR
from quizstream.utils.logger import logger

if TYPE_CHECKING:
    from quizstream.api.websocket.task_manager import CancellationToken

RecordCallback = Callable[[Any], Awaitable[None] | None]
DoneCallback = Callable[[], Awaitable[None] | None]
ErrorCallback = Callable[[Exception], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class ParseFailure:
    """A line that was skipped because it is not valid JSON."""

    line_number: int
    preview: str
    error: str


@dataclass(slots=True)
class ExtractionStats:
    """Per-session counters, reported once the session ends."""

    fragments: int = 0
    lines: int = 0
    records: int = 0
    emitted: int = 0
    parse_failures: int = 0
    discarded_chars: int = 0


def _reject_constant(name: str) -> Any:
    # JSON.parse has no NaN or Infinity
    raise ValueError(f"{name} is not valid JSON")


async def _invoke(callback: Callable[..., Awaitable[None] | None], *args: Any) -> None:
    """Call a plain or async callback."""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class StreamingRecordExtractor:
    """One extraction session: buffer, split on newlines, parse, forward.

    A session is single-use. Create a new instance for every generation request.

    Args:
        session_id: Identifier used to correlate log lines
        cancellation_token: Optional token; once cancelled the session behaves as closed
    """

    def __init__(
        self,
        session_id: str | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> None:
        self.session_id = session_id
        self.failures: list[ParseFailure] = []
        self.stats = ExtractionStats()
        self._token = cancellation_token
        self._buffer = ""
        self._started = False
        self._closed = False

    @property
    def buffer(self) -> str:
        """Text received after the last consumed line terminator."""
        return self._buffer

    @property
    def closed(self) -> bool:
        """True once the caller tore the session down."""
        return self._closed or (self._token is not None and self._token.is_cancelled)

    def close(self) -> None:
        """Stop the session. No callback fires after this returns."""
        self._closed = True

    def feed(self, fragment: str) -> list[Any]:
        """Append one fragment and return the records completed by it, in order.

        Blank lines are dropped. Lines that fail to parse are recorded in
        ``failures`` and skipped.
        """
        self.stats.fragments += 1
        self._buffer += fragment

        records: list[Any] = []
        while True:
            line_end = self._buffer.find(RECORD_TERMINATOR)
            if line_end < 0:
                break

            # strip() also removes the "\r" of a CRLF terminator
            candidate = self._buffer[:line_end].strip()
            self._buffer = self._buffer[line_end + len(RECORD_TERMINATOR) :]
            self.stats.lines += 1

            if not candidate:
                continue

            try:
                records.append(json.loads(candidate, parse_constant=_reject_constant))
            except (ValueError, RecursionError) as e:
                self._record_failure(candidate, e)
                continue
            self.stats.records += 1

        return records

    async def extract(
        self,
        fragments: AsyncIterable[str],
        on_record: RecordCallback,
        on_done: DoneCallback,
        on_error: ErrorCallback,
    ) -> None:
        """Drive a fragment stream through the session.

        ``on_record`` fires once per parsed line in arrival order, followed by
        exactly one of ``on_done`` (stream exhausted) or ``on_error`` (the stream
        itself raised). Text after the last newline is discarded at the end of
        the stream. Nothing fires after ``close()`` or token cancellation.
        Task cancellation propagates without a terminal callback. Exceptions
        raised by the callbacks themselves propagate to the caller.

        Raises:
            RuntimeError: If the session was already used
        """
        if self._started:
            raise RuntimeError("Extraction session already used; create one per generation request")
        self._started = True

        iterator = aiter(fragments)
        try:
            while not self.closed:
                try:
                    fragment = await anext(iterator)
                except StopAsyncIteration:
                    break
                except Exception as exc:
                    if self.closed:
                        return
                    logger.warning(
                        f"Fragment stream failed after {self.stats.emitted} records: {type(exc).__name__}: {exc}",
                        session_id=self.session_id,
                    )
                    self._buffer = ""
                    await _invoke(on_error, exc)
                    return

                for record in self.feed(fragment):
                    if self.closed:
                        break
                    await _invoke(on_record, record)
                    self.stats.emitted += 1

            if self.closed:
                logger.info(
                    f"Extraction closed by caller after {self.stats.emitted} records",
                    session_id=self.session_id,
                )
                return

            self._discard_tail()
            await _invoke(on_done)
        finally:
            if self.closed:
                await self._release(iterator)

    def _record_failure(self, line: str, error: Exception) -> None:
        failure = ParseFailure(
            line_number=self.stats.lines,
            preview=line[:PARSE_FAILURE_PREVIEW_LENGTH],
            error=getattr(error, "msg", None) or str(error) or type(error).__name__,
        )
        self.failures.append(failure)
        self.stats.parse_failures += 1
        logger.warning(
            f"Skipping unparseable line {failure.line_number}: {failure.error} ({logger.preview(line)})",
            session_id=self.session_id,
        )

    def _discard_tail(self) -> None:
        # Known limitation: a last record without its newline is dropped, not parsed.
        tail = self._buffer.strip()
        if tail:
            self.stats.discarded_chars = len(tail)
            logger.warning(
                f"Discarding {len(tail)} chars of unterminated trailing output",
                session_id=self.session_id,
            )
        self._buffer = ""

    async def _release(self, iterator: Any) -> None:
        """Close an abandoned upstream generator so its connection is returned."""
        self._buffer = ""
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            with contextlib.suppress(Exception):
                await aclose()


__all__ = [
    "ExtractionStats",
    "ParseFailure",
    "StreamingRecordExtractor",
]
