"""
Streaming text generation against an OpenAI-compatible chat completions API.

Works with the hosted OpenAI API and with local servers that expose the same
interface (Ollama serves it under /v1).
"""

from __future__ import annotations

import contextlib

from collections.abc import AsyncIterator
from typing import Any

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    RateLimitError,
)

from quizstream.core.prompts import QUIZ_SYSTEM_PROMPT
from quizstream.models.error_models import ErrorCode
from quizstream.utils.logger import logger


class GenerationService:
    """Produces the raw text fragments of one model response.

    The client is injected so one connection pool serves every session.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        temperature: float | None = None,
        system_prompt: str = QUIZ_SYSTEM_PROMPT,
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.system_prompt = system_prompt

    def _build_request(self, prompt: str, system_prompt: str | None = None) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt or self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "stream": True,
        }
        if self.temperature is not None:
            request["temperature"] = self.temperature
        return request

    async def stream_fragments(self, prompt: str, system_prompt: str | None = None) -> AsyncIterator[str]:
        """Yield the non-empty content deltas of a streamed completion, in order.

        Upstream failures (connection refused, timeouts, HTTP errors) surface as
        exceptions from the iteration, including before the first fragment.
        """
        logger.debug(f"Requesting completion from model {self.model}")
        stream = await self.client.chat.completions.create(**self._build_request(prompt, system_prompt))
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        finally:
            # Release the HTTP response when the consumer stops early
            with contextlib.suppress(Exception):
                await stream.close()


def describe_stream_error(exc: BaseException) -> tuple[ErrorCode, str]:
    """Map an upstream failure to an error code and a client-safe message."""
    # APITimeoutError subclasses APIConnectionError
    if isinstance(exc, (APITimeoutError, TimeoutError)):
        return ErrorCode.EXTERNAL_TIMEOUT, "Generation service timed out"
    if isinstance(exc, APIConnectionError):
        return ErrorCode.EXTERNAL_UNREACHABLE, "Generation service unreachable"
    if isinstance(exc, RateLimitError):
        return ErrorCode.EXTERNAL_RATE_LIMITED, "Generation service rate limit exceeded"
    if isinstance(exc, AuthenticationError):
        return ErrorCode.EXTERNAL_AUTH_FAILED, "Generation service rejected the configured credentials"
    if isinstance(exc, APIStatusError):
        return ErrorCode.OPENAI_ERROR, f"Generation service error ({exc.status_code}): {exc.message}"
    if isinstance(exc, APIError):
        return ErrorCode.OPENAI_ERROR, f"Generation service error: {exc.message}"
    return ErrorCode.EXTERNAL_SERVICE_ERROR, f"Generation stream failed: {type(exc).__name__}"


__all__ = ["GenerationService", "describe_stream_error"]
