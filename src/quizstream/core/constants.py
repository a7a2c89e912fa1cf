"""
Quiz Stream constants and environment settings.

Settings are read from the environment and ``.env`` once per process and
validated with pydantic-settings, so a bad configuration fails at startup.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Repository root of the src/ layout
PROJECT_ROOT = Path(__file__).resolve().parents[3]
LOG_DIR = PROJECT_ROOT / "logs"

# --- generation -------------------------------------------------------------

DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434/v1"
DEFAULT_MODEL = "llama3"
DEFAULT_QUESTION_COUNT = 5
MAX_QUESTION_COUNT = 50
DIFFICULTY_LEVELS = ("easy", "medium", "hard")

# --- record framing ---------------------------------------------------------

#: One record per line; a CR before it disappears when the line is stripped.
RECORD_TERMINATOR = "\n"
PARSE_FAILURE_PREVIEW_LENGTH = 80

# --- relay ------------------------------------------------------------------

WS_IDLE_TIMEOUT_SECONDS = 600.0
WS_MAX_CONNECTIONS = 100
WS_MAX_CONNECTIONS_PER_SESSION = 3
WS_KEEPALIVE_INTERVAL_SECONDS = 30.0
#: Time a replaced generation gets to finish on its own before it is cancelled.
WS_INTERRUPT_GRACE_SECONDS = 5.0

# Frames sent to the client
MSG_TYPE_QUIZ_START = "quiz_start"
MSG_TYPE_QUESTION = "question"
MSG_TYPE_QUIZ_END = "quiz_end"
MSG_TYPE_ERROR = "error"
MSG_TYPE_STREAM_INTERRUPTED = "stream_interrupted"
MSG_TYPE_PING = "ping"
MSG_TYPE_SERVER_SHUTDOWN = "server_shutdown"

# Frames sent by the client (ping goes both ways)
MSG_TYPE_GENERATE = "generate"
MSG_TYPE_CANCEL = "cancel"

FINISH_REASON_STOP = "stop"
FINISH_REASON_INTERRUPTED = "interrupted"
#: Only recorded in run results and logs; a failed run ends with an error frame.
FINISH_REASON_ERROR = "error"


class Settings(BaseSettings):
    """Runtime configuration.

    ``api_provider`` picks the upstream: a local Ollama server (default) or the
    OpenAI API, optionally at an OpenAI-compatible ``openai_base_url``.
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    api_provider: Literal["openai", "ollama"] = "ollama"
    openai_api_key: str | None = Field(default=None, min_length=10)
    openai_base_url: HttpUrl | None = None
    ollama_base_url: HttpUrl = HttpUrl(DEFAULT_OLLAMA_BASE_URL)

    model: str = DEFAULT_MODEL
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    default_question_count: int = Field(default=DEFAULT_QUESTION_COUNT, ge=1, le=MAX_QUESTION_COUNT)

    debug: bool = False
    http_request_logging: bool = False
    # Redacted topic previews in logs instead of [HIDDEN]
    enable_content_logging: bool = False

    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["*"]

    ws_idle_timeout: float = WS_IDLE_TIMEOUT_SECONDS
    ws_max_connections: int = WS_MAX_CONNECTIONS
    ws_max_connections_per_session: int = WS_MAX_CONNECTIONS_PER_SESSION
    shutdown_timeout: float = 10.0

    @field_validator("api_provider", mode="before")
    @classmethod
    def _lowercase_provider(cls, value: object) -> object:
        return value.lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _require_openai_key(self) -> Settings:
        if self.api_provider == "openai" and not self.openai_api_key:
            raise ValueError("openai_api_key is required when api_provider is 'openai'")
        return self

    @property
    def base_url_str(self) -> str | None:
        if self.api_provider == "ollama":
            return str(self.ollama_base_url)
        return str(self.openai_base_url) if self.openai_base_url else None

    @property
    def api_key_str(self) -> str:
        # Ollama ignores the key, but AsyncOpenAI refuses to start without one
        return (self.openai_api_key or "") if self.api_provider == "openai" else "ollama"


@lru_cache
def get_settings() -> Settings:
    """The process-wide settings, validated on first use."""
    return Settings()
