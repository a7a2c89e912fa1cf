"""
Upstream client construction.

The generation backend is any OpenAI-compatible endpoint (Ollama by default).
With ``http_request_logging`` on, each upstream request and the status of its
response are logged through httpx event hooks. Streamed bodies are never read.
"""

from __future__ import annotations

import json

import httpx

from openai import AsyncOpenAI

from quizstream.core.constants import Settings
from quizstream.utils.logger import logger

CONNECT_TIMEOUT = 30.0
# Local models may sit silent for minutes before the first token
READ_TIMEOUT = 600.0

_SECRET_HEADERS = frozenset({"authorization", "api-key", "x-api-key"})


def _mask_headers(headers: httpx.Headers) -> dict[str, str]:
    masked = {}
    for name, value in headers.items():
        if name.lower() in _SECRET_HEADERS:
            value = f"***{value[-4:]}" if len(value) > 4 else "***"
        masked[name] = value
    return masked


async def log_upstream_request(request: httpx.Request) -> None:
    try:
        payload = json.loads(request.content) if request.content else {}
    except ValueError as e:
        payload = {"_error": f"Unreadable body: {e}"}

    logger.info(
        f"Upstream request: {request.method} {request.url}",
        http_request=True,
        headers=_mask_headers(request.headers),
        payload=payload,
    )


async def log_upstream_response(response: httpx.Response) -> None:
    request = response.request
    logger.info(
        f"Upstream response: {response.status_code} {request.method} {request.url}",
        http_response=True,
        status_code=response.status_code,
        content_type=response.headers.get("content-type"),
    )


def create_http_client(enable_logging: bool = False, read_timeout: float | None = None) -> httpx.AsyncClient:
    """httpx client tuned for long-lived completion streams.

    Args:
        enable_logging: Attach the upstream request/response log hooks
        read_timeout: Seconds allowed between streamed chunks (default: 600)
    """
    timeout = httpx.Timeout(CONNECT_TIMEOUT, read=READ_TIMEOUT if read_timeout is None else read_timeout)
    hooks = {"request": [log_upstream_request], "response": [log_upstream_response]} if enable_logging else None
    return httpx.AsyncClient(timeout=timeout, event_hooks=hooks)


def create_client_from_settings(settings: Settings) -> AsyncOpenAI:
    """AsyncOpenAI client for the configured provider."""
    return AsyncOpenAI(
        api_key=settings.api_key_str,
        base_url=settings.base_url_str,
        http_client=create_http_client(enable_logging=settings.http_request_logging),
    )
