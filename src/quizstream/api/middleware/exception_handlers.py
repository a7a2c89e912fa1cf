"""
Exception handling for the Quiz Stream HTTP routes.

Every failure leaves the app as an ``{"error": {...}}`` envelope tagged with
the request id. 5xx responses are logged at ERROR with a traceback, 4xx at
WARNING. Debug details are attached only when ``settings.debug`` is on.
"""

from __future__ import annotations

import traceback

from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from openai import APIError as OpenAIAPIError
from pydantic import ValidationError

from quizstream.api.middleware.request_context import get_request_context, get_request_id
from quizstream.api.services.generation_service import describe_stream_error
from quizstream.core.constants import get_settings
from quizstream.models.error_models import ErrorCode, ErrorDetail, ErrorResponse, get_status_code
from quizstream.utils.logger import logger


class AppException(Exception):
    """An error that already knows its ``ErrorCode``.

    ``details`` become ``ErrorDetail`` entries of the envelope, one per key.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause


class ExternalServiceError(AppException):
    """The generation backend failed; ``service`` prefixes the message."""

    def __init__(
        self,
        service: str,
        message: str,
        code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        cause: Exception | None = None,
    ):
        super().__init__(code, f"{service}: {message}", details={"service": service}, cause=cause)


# HTTPException status -> envelope code; unlisted statuses become INTERNAL_ERROR
_HTTP_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    409: ErrorCode.RESOURCE_CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.EXTERNAL_RATE_LIMITED,
    502: ErrorCode.EXTERNAL_SERVICE_ERROR,
    503: ErrorCode.EXTERNAL_UNREACHABLE,
    504: ErrorCode.EXTERNAL_TIMEOUT,
}


def _error_json(
    request: Request,
    exc: Exception,
    code: ErrorCode,
    message: str,
    status_code: int | None = None,
    details: list[ErrorDetail] | None = None,
    debug: dict[str, Any] | None = None,
) -> JSONResponse:
    status_code = status_code or get_status_code(code)

    context = get_request_context()
    fields = context.to_log_context() if context else {}
    if status_code >= 500:
        logger.error(f"{code.value} on {request.url.path}: {exc}", exc_info=True, status_code=status_code, **fields)
    else:
        logger.warning(f"{code.value} on {request.url.path}: {exc}", status_code=status_code, **fields)

    include_debug = get_settings().debug
    body = ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=request.url.path,
        details=details,
        debug=debug if include_debug else None,
    )
    return JSONResponse(status_code=status_code, content=body.to_dict(include_debug=include_debug))


def _field_errors(errors: Any) -> list[ErrorDetail]:
    return [
        ErrorDetail(field=".".join(map(str, err["loc"])), message=err["msg"], code=err["type"]) for err in errors
    ]


async def _handle_app_error(request: Request, exc: AppException) -> JSONResponse:
    details = [ErrorDetail(field=key, message=str(value)) for key, value in (exc.details or {}).items()]
    return _error_json(
        request,
        exc,
        exc.code,
        exc.message,
        details=details or None,
        debug={"exception_type": type(exc).__name__, "cause": str(exc.cause) if exc.cause else None},
    )


async def _handle_http_error(request: Request, exc: HTTPException) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    return _error_json(request, exc, code, str(exc.detail), status_code=exc.status_code)


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_json(
        request, exc, ErrorCode.VALIDATION_ERROR, "Request validation failed", details=_field_errors(exc.errors())
    )


async def _handle_model_validation(request: Request, exc: ValidationError) -> JSONResponse:
    return _error_json(
        request, exc, ErrorCode.VALIDATION_ERROR, "Data validation failed", details=_field_errors(exc.errors())
    )


async def _handle_upstream_error(request: Request, exc: OpenAIAPIError) -> JSONResponse:
    """Upstream errors that escaped the generation service get the stream error mapping."""
    code, message = describe_stream_error(exc)
    debug = {"openai_error_type": type(exc).__name__, "openai_error_code": getattr(exc, "code", None)}
    return _error_json(request, exc, code, message, debug=debug)


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    # The client never sees the exception text outside debug mode
    debug = {
        "exception_type": type(exc).__name__,
        "exception_message": str(exc),
        "traceback": traceback.format_exc(),
    }
    return _error_json(request, exc, ErrorCode.INTERNAL_UNEXPECTED, "An unexpected error occurred", debug=debug)


def register_exception_handlers(app: FastAPI) -> None:
    handlers: list[tuple[type[Exception], Any]] = [
        (AppException, _handle_app_error),
        (HTTPException, _handle_http_error),
        (RequestValidationError, _handle_request_validation),
        (ValidationError, _handle_model_validation),
        (OpenAIAPIError, _handle_upstream_error),
        (Exception, _handle_unexpected),
    ]
    for exc_class, handler in handlers:
        app.add_exception_handler(exc_class, handler)


__all__ = [
    "AppException",
    "ExternalServiceError",
    "register_exception_handlers",
]
