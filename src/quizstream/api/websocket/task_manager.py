"""
Cooperative stop signal for one quiz generation.

The relay cancels the token when the client sends ``cancel`` or starts a new
quiz on the same connection. The extractor polls it between records.
"""

from __future__ import annotations

import asyncio


class CancellationToken:
    """One-shot stop flag for a generation session.

    Only the first ``cancel()`` counts; its reason is kept for logging.
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def cancel_reason(self) -> str | None:
        return self._reason

    async def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()


__all__ = ["CancellationToken"]
