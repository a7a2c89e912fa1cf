"""
Per-request correlation for Quiz Stream.

Every HTTP request and every relay connection gets an id that is attached to
its log lines and error envelopes. HTTP ids start with ``req_``, WebSocket
connection ids with ``ws_``.
"""

from __future__ import annotations

import secrets
import time

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_PREFIX = "req_"
WEBSOCKET_ID_PREFIX = "ws_"

_current: ContextVar[RequestContext | None] = ContextVar("quizstream_request", default=None)


@dataclass
class RequestContext:
    """What a log line or error envelope needs to know about its caller."""

    request_id: str
    path: str = ""
    method: str = ""
    client_ip: str | None = None
    session_id: str | None = None
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000

    def to_log_context(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "request_id": self.request_id,
            "path": self.path,
            "method": self.method,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        # Optional fields only when known, so JSON log lines stay short
        fields.update({k: v for k, v in (("client_ip", self.client_ip), ("session_id", self.session_id)) if v})
        return fields


def generate_request_id(prefix: str = REQUEST_ID_PREFIX) -> str:
    """``prefix`` followed by 16 hex characters."""
    return prefix + secrets.token_hex(8)


def get_request_context() -> RequestContext | None:
    return _current.get()


def get_request_id() -> str | None:
    context = _current.get()
    return None if context is None else context.request_id


def set_request_context(context: RequestContext) -> None:
    _current.set(context)


def clear_request_context() -> None:
    _current.set(None)


def _client_ip(request: Request) -> str | None:
    # First hop of X-Forwarded-For wins over the socket peer
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    return request.client.host if request.client else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each HTTP request with an id and echo it back with the response time."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = RequestContext(
            request_id=request.headers.get("X-Request-ID") or generate_request_id(),
            path=request.url.path,
            method=request.method,
            client_ip=_client_ip(request),
        )
        token = _current.set(context)
        try:
            response = await call_next(request)
        finally:
            _current.reset(token)

        response.headers["X-Request-ID"] = context.request_id
        response.headers["X-Response-Time"] = f"{context.elapsed_ms:.2f}ms"
        return response


def create_websocket_context(session_id: str, client_ip: str | None = None) -> RequestContext:
    """Bind a context to the current relay connection for its whole lifetime."""
    context = RequestContext(
        request_id=generate_request_id(WEBSOCKET_ID_PREFIX),
        path=f"/ws/quiz/{session_id}",
        method="WEBSOCKET",
        client_ip=client_ip,
        session_id=session_id,
    )
    _current.set(context)
    return context


__all__ = [
    "REQUEST_ID_PREFIX",
    "WEBSOCKET_ID_PREFIX",
    "RequestContext",
    "RequestContextMiddleware",
    "clear_request_context",
    "create_websocket_context",
    "generate_request_id",
    "get_request_context",
    "get_request_id",
    "set_request_context",
]
