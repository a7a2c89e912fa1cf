"""
Error codes and error envelopes for Quiz Stream.

HTTP routes answer with ``{"error": {...}}`` built from ``ErrorResponse``;
the relay sends ``WebSocketError`` frames of type ``error``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from quizstream.core.constants import MSG_TYPE_ERROR


def _now() -> str:
    return datetime.now(UTC).isoformat()


class ErrorCode(str, Enum):
    """Error codes; the prefix names the category (VAL, RES, WS, EXT, INT)."""

    VALIDATION_ERROR = "VAL_2001"

    RESOURCE_NOT_FOUND = "RES_3001"
    RESOURCE_CONFLICT = "RES_3003"

    WS_MESSAGE_INVALID = "WS_6002"
    WS_TIMEOUT = "WS_6004"

    # Generation backend
    EXTERNAL_SERVICE_ERROR = "EXT_7001"
    EXTERNAL_TIMEOUT = "EXT_7002"
    EXTERNAL_RATE_LIMITED = "EXT_7003"
    EXTERNAL_UNREACHABLE = "EXT_7004"
    EXTERNAL_AUTH_FAILED = "EXT_7005"
    OPENAI_ERROR = "EXT_7010"

    INTERNAL_ERROR = "INT_9001"
    INTERNAL_UNEXPECTED = "INT_9999"


_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.RESOURCE_CONFLICT: 409,
    **dict.fromkeys((ErrorCode.VALIDATION_ERROR, ErrorCode.WS_MESSAGE_INVALID), 422),
    ErrorCode.EXTERNAL_RATE_LIMITED: 429,
    **dict.fromkeys(
        (ErrorCode.EXTERNAL_SERVICE_ERROR, ErrorCode.EXTERNAL_AUTH_FAILED, ErrorCode.OPENAI_ERROR),
        502,
    ),
    ErrorCode.EXTERNAL_UNREACHABLE: 503,
    ErrorCode.EXTERNAL_TIMEOUT: 504,
}


def get_status_code(error_code: ErrorCode) -> int:
    """HTTP status for ``error_code``; anything unmapped is a 500."""
    return _HTTP_STATUS.get(error_code, 500)


class ErrorDetail(BaseModel):
    """One offending field, or one extra fact about the failure."""

    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """Body of every failed HTTP response, wrapped under ``error``.

    ``debug`` is never serialized unless ``to_dict(include_debug=True)``.
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    timestamp: str = Field(default_factory=_now)
    details: list[ErrorDetail] | None = None
    path: str | None = None
    debug: dict[str, Any] | None = Field(default=None, exclude=True)

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        body = self.model_dump(mode="json", exclude_none=True)
        if include_debug and self.debug:
            body["debug"] = self.debug
        return {"error": body}


class WebSocketError(BaseModel):
    """``error`` frame on the quiz relay.

    ``recoverable`` tells the client whether sending another request on the
    same socket is worthwhile.
    """

    type: str = MSG_TYPE_ERROR
    code: ErrorCode
    message: str
    request_id: str | None = None
    session_id: str | None = None
    timestamp: str = Field(default_factory=_now)
    recoverable: bool = True
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


__all__ = [
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "WebSocketError",
    "get_status_code",
]
