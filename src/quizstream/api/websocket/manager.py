from __future__ import annotations

import asyncio
import contextlib
import time

from typing import Any

from fastapi import WebSocket

from quizstream.api.websocket.errors import WSCloseCode
from quizstream.core.constants import (
    MSG_TYPE_SERVER_SHUTDOWN,
    WS_IDLE_TIMEOUT_SECONDS,
    WS_MAX_CONNECTIONS,
    WS_MAX_CONNECTIONS_PER_SESSION,
)
from quizstream.utils.logger import logger


class WebSocketManager:
    """Registry of relay sockets grouped by quiz session id.

    A quiz session may be watched from more than one socket; ``send`` delivers
    each frame to every socket of the session. Sockets silent for longer than
    ``idle_timeout_seconds`` are closed by a background sweep.
    """

    def __init__(
        self,
        idle_timeout_seconds: float = WS_IDLE_TIMEOUT_SECONDS,
        max_connections: int = WS_MAX_CONNECTIONS,
        max_connections_per_session: int = WS_MAX_CONNECTIONS_PER_SESSION,
    ) -> None:
        self.sessions: dict[str, set[WebSocket]] = {}
        self.last_seen: dict[WebSocket, float] = {}
        self.idle_timeout = idle_timeout_seconds
        self.max_connections = max_connections
        self.max_connections_per_session = max_connections_per_session
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task[None] | None = None
        self._shutting_down = False

    def _rejection_reason(self, session_id: str) -> str | None:
        if self._shutting_down:
            return "server is shutting down"
        if self.connection_count >= self.max_connections:
            return f"server limit of {self.max_connections} connections reached"
        if len(self.sessions.get(session_id, ())) >= self.max_connections_per_session:
            return f"session limit of {self.max_connections_per_session} connections reached"
        return None

    async def connect(self, websocket: WebSocket, session_id: str) -> bool:
        """Accept ``websocket`` into ``session_id`` unless a limit forbids it.

        A refused socket is not accepted; closing it is left to the route.
        """
        async with self._lock:
            reason = self._rejection_reason(session_id)
            if reason is None:
                await websocket.accept()
                self.sessions.setdefault(session_id, set()).add(websocket)
                self.last_seen[websocket] = time.monotonic()

        if reason is not None:
            logger.warning(f"Refusing quiz connection for {session_id}: {reason}")
            return False

        logger.info(f"Quiz connection opened for {session_id} ({self.connection_count} open)")
        return True

    async def disconnect(self, websocket: WebSocket, session_id: str) -> None:
        """Drop ``websocket`` from the registry; unknown sockets are ignored."""
        async with self._lock:
            self.last_seen.pop(websocket, None)
            watchers = self.sessions.get(session_id)
            if watchers is None:
                return
            watchers.discard(websocket)
            if not watchers:
                del self.sessions[session_id]

    async def touch(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self.last_seen:
                self.last_seen[websocket] = time.monotonic()

    async def send(self, session_id: str, message: dict[str, Any]) -> None:
        """Deliver one frame to every socket watching ``session_id``.

        A socket whose send fails is treated as gone and unregistered.
        """
        for websocket in list(self.sessions.get(session_id, ())):
            try:
                await websocket.send_json(message)
            except Exception as e:  # noqa: PERF203
                logger.debug(f"Quiz socket for {session_id} went away mid-send: {e}")
                await self.disconnect(websocket, session_id)

    async def broadcast(self, message: dict[str, Any]) -> None:
        for session_id in list(self.sessions):
            await self.send(session_id, message)

    def _snapshot(self) -> list[tuple[WebSocket, str]]:
        return [(ws, session_id) for session_id, watchers in self.sessions.items() for ws in watchers]

    async def _close(self, websocket: WebSocket, session_id: str, code: int, reason: str) -> None:
        # The peer may already be gone; the socket is unregistered either way
        with contextlib.suppress(Exception):
            await websocket.close(code=code, reason=reason)
        await self.disconnect(websocket, session_id)

    async def start_idle_checker(self) -> None:
        if self._sweeper is not None:
            return
        self._sweeper = asyncio.create_task(self._idle_sweep_loop())
        logger.info(f"Idle sweep running; quiz sockets close after {self.idle_timeout}s of silence")

    async def stop_idle_checker(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _idle_sweep_loop(self) -> None:
        interval = min(60.0, self.idle_timeout / 2)
        while True:
            await asyncio.sleep(interval)
            await self._close_idle()

    async def _close_idle(self) -> None:
        deadline = time.monotonic() - self.idle_timeout
        async with self._lock:
            stale = [(ws, sid) for ws, sid in self._snapshot() if self.last_seen.get(ws, deadline) < deadline]

        for websocket, session_id in stale:
            logger.info(f"Closing silent quiz socket for {session_id}")
            await self._close(websocket, session_id, WSCloseCode.IDLE_TIMEOUT, "Idle timeout")

    async def graceful_shutdown(self, timeout: float = 10.0) -> None:
        """Refuse new sockets, tell clients the server is leaving, then close them all.

        Closing stops waiting after ``timeout`` seconds.
        """
        self._shutting_down = True
        await self.stop_idle_checker()
        await self.broadcast({"type": MSG_TYPE_SERVER_SHUTDOWN, "message": "Server is shutting down"})

        async with self._lock:
            open_sockets = self._snapshot()
        if not open_sockets:
            return

        closing = asyncio.gather(
            *(self._close(ws, sid, WSCloseCode.GOING_AWAY, "Server shutdown") for ws, sid in open_sockets)
        )
        try:
            await asyncio.wait_for(closing, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{len(open_sockets)} quiz sockets still closing after {timeout}s")
        else:
            logger.info(f"Closed {len(open_sockets)} quiz sockets for shutdown")

    @property
    def connection_count(self) -> int:
        return sum(map(len, self.sessions.values()))

    @property
    def session_count(self) -> int:
        return len(self.sessions)

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_connections": self.connection_count,
            "total_sessions": self.session_count,
            "max_connections": self.max_connections,
            "max_per_session": self.max_connections_per_session,
            "idle_timeout": self.idle_timeout,
            "shutting_down": self._shutting_down,
        }
