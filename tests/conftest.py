"""Shared test fixtures for the Quiz Stream test suite.

This module provides common fixtures used across all test modules,
including mocks for the upstream generation client.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Generator, Iterable
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

# ============================================================================
# EARLY INITIALIZATION: Runs before test collection
# ============================================================================


DEFAULT_SETTINGS: dict[str, Any] = {
    "api_provider": "ollama",
    "openai_api_key": None,
    "base_url_str": "http://localhost:11434/v1",
    "api_key_str": "ollama",
    "model": "llama3",
    "temperature": None,
    "default_question_count": 5,
    "debug": False,
    "http_request_logging": False,
    "enable_content_logging": False,
    "cors_origins": ["*"],
    "ws_idle_timeout": 600.0,
    "ws_max_connections": 100,
    "ws_max_connections_per_session": 3,
    "shutdown_timeout": 1.0,
}


def _build_mock_settings() -> MagicMock:
    mock_settings = MagicMock()
    for key, value in DEFAULT_SETTINGS.items():
        setattr(mock_settings, key, value)
    return mock_settings


def pytest_configure(config: pytest.Config) -> None:
    """Patch get_settings before any test modules are imported.

    Module-level imports happen during collection; patching here keeps a
    developer's .env from leaking into the suite.
    """
    mock_settings = _build_mock_settings()

    cfg: Any = config
    cfg._mock_settings = mock_settings

    patcher = patch("quizstream.core.constants.get_settings", return_value=mock_settings)
    patcher.start()
    cfg._settings_patcher = patcher


def pytest_unconfigure(config: pytest.Config) -> None:
    """Clean up settings mock after all tests complete."""
    patcher = getattr(config, "_settings_patcher", None)
    if patcher:
        patcher.stop()


@pytest.fixture
def mock_settings(pytestconfig: pytest.Config) -> Generator[MagicMock, None, None]:
    """The session-wide settings mock, restored to defaults after each test."""
    cfg: Any = pytestconfig
    settings: MagicMock = cfg._mock_settings
    yield settings
    for key, value in DEFAULT_SETTINGS.items():
        setattr(settings, key, value)


# ============================================================================
# Fragment streams and upstream fakes
# ============================================================================


async def fragments_from(parts: Iterable[str], fail_with: Exception | None = None) -> AsyncIterator[str]:
    """Async fragment stream yielding ``parts``, optionally failing afterwards."""
    for part in parts:
        yield part
    if fail_with is not None:
        raise fail_with


def make_chunk(content: str | None) -> SimpleNamespace:
    """Chat completion chunk shaped like the OpenAI SDK's."""
    if content is None:
        return SimpleNamespace(choices=[])
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class FakeCompletionStream:
    """Stands in for ``openai.AsyncStream``: async iterable of chunks with ``close()``."""

    def __init__(self, contents: Iterable[str | None], fail_with: Exception | None = None):
        self._contents = list(contents)
        self._fail_with = fail_with
        self.closed = False

    def __aiter__(self) -> AsyncIterator[SimpleNamespace]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[SimpleNamespace]:
        for content in self._contents:
            yield make_chunk(content)
        if self._fail_with is not None:
            raise self._fail_with

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def mock_openai_client() -> Mock:
    """Mock AsyncOpenAI client; set ``chat.completions.create.return_value`` per test."""
    client = Mock()
    client.chat.completions.create = AsyncMock()
    client.models.list = AsyncMock(return_value=[])
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_ws_manager() -> MagicMock:
    """WebSocket manager that records every frame sent."""
    manager = MagicMock()
    manager.sent = []

    async def _send(session_id: str, message: dict[str, Any]) -> None:
        manager.sent.append(message)

    manager.send = AsyncMock(side_effect=_send)
    manager.get_stats.return_value = {
        "total_connections": 1,
        "total_sessions": 1,
        "shutting_down": False,
    }
    return manager


@pytest.fixture
def make_fragments() -> Any:
    """Factory for async fragment streams: ``make_fragments(["a", "b"], fail_with=exc)``."""
    return fragments_from


@pytest.fixture
def completion_stream() -> type[FakeCompletionStream]:
    """Factory for fake streamed completions returned by ``chat.completions.create``."""
    return FakeCompletionStream
