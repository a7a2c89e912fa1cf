"""
Error frames and close codes for the quiz relay.
"""

from __future__ import annotations

from typing import Any, TypeVar

from fastapi import WebSocket
from pydantic import BaseModel, ValidationError

from quizstream.api.middleware.request_context import get_request_id
from quizstream.models.error_models import ErrorCode, WebSocketError
from quizstream.utils.logger import logger

ModelT = TypeVar("ModelT", bound=BaseModel)


class WSCloseCode:
    """Close codes the relay uses (RFC 6455 plus the 4xxx private range)."""

    GOING_AWAY = 1001
    IDLE_TIMEOUT = 4000
    SERVICE_UNAVAILABLE = 4503


# Retrying the same generate request cannot help with these
_FATAL_CODES = frozenset({ErrorCode.EXTERNAL_AUTH_FAILED, ErrorCode.INTERNAL_ERROR})


def is_recoverable(code: ErrorCode) -> bool:
    return code not in _FATAL_CODES


def build_ws_error(
    code: ErrorCode,
    message: str,
    session_id: str | None = None,
    recoverable: bool | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Serialized ``error`` frame; ``recoverable`` is derived from ``code`` unless given."""
    if recoverable is None:
        recoverable = is_recoverable(code)
    frame = WebSocketError(
        code=code,
        message=message,
        request_id=get_request_id(),
        session_id=session_id,
        recoverable=recoverable,
        details=details,
    )
    return frame.to_dict()


async def send_ws_error(
    websocket: WebSocket,
    code: ErrorCode,
    message: str,
    session_id: str | None = None,
    recoverable: bool | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Send an ``error`` frame to a single socket.

    A socket that is already gone is logged and otherwise ignored.
    """
    frame = build_ws_error(code, message, session_id, recoverable, details)
    try:
        await websocket.send_json(frame)
    except Exception as e:
        logger.warning(f"Could not deliver {code.value} to quiz socket: {e}", session_id=session_id)


async def parse_ws_message(
    websocket: WebSocket,
    model: type[ModelT],
    data: dict[str, Any],
    session_id: str | None = None,
) -> ModelT | None:
    """Validate a client frame as ``model``.

    On failure the client gets a recoverable ``WS_6002`` frame listing the bad
    fields and None is returned.
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = [".".join(map(str, err["loc"])) for err in e.errors()]

    kind = data.get("type", "message")
    await send_ws_error(
        websocket,
        code=ErrorCode.WS_MESSAGE_INVALID,
        message=f"Invalid {kind} message: {', '.join(fields) or 'bad payload'}",
        session_id=session_id,
        recoverable=True,
        details={"fields": fields},
    )
    return None


__all__ = [
    "WSCloseCode",
    "build_ws_error",
    "is_recoverable",
    "parse_ws_message",
    "send_ws_error",
]
