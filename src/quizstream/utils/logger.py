"""
Logging for Quiz Stream.

One stdlib logger feeds three sinks:

- stderr: colored one-line records for humans
- logs/quizstream.jsonl: INFO and up as JSON lines (python-json-logger)
- logs/errors.jsonl: ERROR and up as JSON lines

Keyword arguments given to ``QuizLogger`` methods become JSON fields, merged
with the current request context.
"""

from __future__ import annotations

import logging
import os
import re
import sys
import uuid

from logging.handlers import RotatingFileHandler
from typing import Any

from pythonjsonlogger import json as jsonlogger

from quizstream.api.middleware.request_context import get_request_context
from quizstream.core.constants import LOG_DIR, get_settings

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
PREVIEW_CHARS = 50

_REDACTIONS = [
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL]"),
    (re.compile(r"\b(?:\d{4}[- ]?){3}\d{4}\b"), "[CARD]"),
    (re.compile(r"\b(?:sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9]{20,}\b"), "[API_KEY]"),
    (re.compile(r"\b(?:password|secret|token)\s*[:=]\s*\S+", re.IGNORECASE), "[REDACTED]"),
]

RESET = "\x1b[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\x1b[38;20m",
    logging.INFO: "\x1b[32;20m",
    logging.WARNING: "\x1b[33;20m",
    logging.ERROR: "\x1b[31;20m",
    logging.CRITICAL: "\x1b[31;1m",
}


def _paint(text: str, level: int) -> str:
    color = LEVEL_COLORS.get(level)
    return f"{color}{text}{RESET}" if color else text


def _status_level(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    return logging.WARNING if status >= 400 else logging.INFO


class ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS [LEVEL] name - message``, level colored.

    uvicorn access lines are re-rendered with a bold method and a status code
    colored by class.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"{self.formatTime(record, '%H:%M:%S')} {_paint(f'[{record.levelname}]', record.levelno)} "
            f"{record.name} - {self._message(record)}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line

    def _message(self, record: logging.LogRecord) -> str:
        args = record.args
        if record.name != "uvicorn.access" or not isinstance(args, tuple) or len(args) != 5:
            return record.getMessage()
        client, method, path, http_version, status = args
        status_text = _paint(str(status), _status_level(int(status)))
        return f'{client} - "\x1b[1m{method}{RESET} {path} HTTP/{http_version}" {status_text}'


def configure_uvicorn_logging() -> None:
    """Route uvicorn's access and error logs through ``ConsoleFormatter``."""
    logging.getLogger("uvicorn").handlers = []
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    for name in ("uvicorn.access", "uvicorn.error"):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ConsoleFormatter())
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = [handler]
        uv_logger.setLevel(logging.INFO)
        uv_logger.propagate = False


def _json_file_handler(filename: str, level: int, fields: str, backups: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        LOG_DIR / filename, maxBytes=LOG_FILE_MAX_BYTES, backupCount=backups, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(jsonlogger.JsonFormatter(fields, timestamp=True))
    return handler


def setup_logging(name: str = "quizstream", debug: bool | None = None) -> logging.Logger:
    """(Re)build the console and JSON file handlers of logger ``name``.

    ``debug`` defaults to the DEBUG environment variable and only affects the
    console; the files never receive DEBUG records.
    """
    if debug is None:
        debug = os.getenv("DEBUG", "").lower() in {"1", "true", "yes"}

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if debug else logging.INFO)
    console.setFormatter(ConsoleFormatter())

    LOG_DIR.mkdir(exist_ok=True)
    log = logging.getLogger(name)
    log.setLevel(logging.DEBUG)
    log.handlers = [
        console,
        _json_file_handler(
            "quizstream.jsonl", logging.INFO, "%(levelname)s %(message)s %(session_id)s %(request_id)s", backups=5
        ),
        _json_file_handler("errors.jsonl", logging.ERROR, "%(levelname)s %(name)s %(message)s", backups=3),
    ]
    return log


class QuizLogger:
    """Project logger: keyword fields in, request-correlated JSON out."""

    def __init__(self, name: str = "quizstream"):
        self.logger = setup_logging(name)
        # Stands in for session_id on lines logged outside any session
        self.instance_id = uuid.uuid4().hex[:8]

    def _fields(self, fields: dict[str, Any]) -> dict[str, Any]:
        fields.setdefault("session_id", self.instance_id)
        context = get_request_context()
        if context is not None:
            fields.update(context.to_log_context())
            if context.session_id:
                fields["session_id"] = context.session_id
        return fields

    def debug(self, message: str, **fields: Any) -> None:
        self.logger.debug(message, extra=self._fields(fields))

    def info(self, message: str, **fields: Any) -> None:
        self.logger.info(message, extra=self._fields(fields))

    def warning(self, message: str, **fields: Any) -> None:
        self.logger.warning(message, extra=self._fields(fields))

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self.logger.error(message, extra=self._fields(fields), exc_info=exc_info)

    @staticmethod
    def content_logging_enabled() -> bool:
        try:
            return bool(get_settings().enable_content_logging)
        except ValueError:
            # Invalid settings are reported at startup; hide content until then
            return False

    def preview(self, text: str) -> str:
        """Redacted, truncated ``text``, or ``[HIDDEN]`` unless content logging is on."""
        if not self.content_logging_enabled():
            return "[HIDDEN]"
        snippet = text[:PREVIEW_CHARS].replace("\n", " ")
        for pattern, replacement in _REDACTIONS:
            snippet = pattern.sub(replacement, snippet)
        return snippet + "..." if len(text) > PREVIEW_CHARS else snippet

    def log_generation(
        self,
        topic: str,
        records: int,
        parse_failures: int,
        duration_ms: float | None = None,
        finish_reason: str = "stop",
        discarded_chars: int = 0,
        session_id: str | None = None,
    ) -> None:
        """One INFO line summarizing a finished generation run."""
        tags = [
            f"{parse_failures} skipped" if parse_failures else "",
            f"{discarded_chars} chars unterminated" if discarded_chars else "",
            f"{duration_ms:.0f}ms" if duration_ms is not None else "",
            finish_reason if finish_reason != "stop" else "",
        ]
        message = " ".join([f"Quiz: {self.preview(topic)} → {records} records", *(f"[{t}]" for t in tags if t)])

        fields: dict[str, Any] = {
            "generation": True,
            "records": records,
            "parse_failures": parse_failures,
            "finish_reason": finish_reason,
            "chars_topic": len(topic),
            "content_logging": self.content_logging_enabled(),
        }
        if discarded_chars:
            fields["discarded_chars"] = discarded_chars
        if duration_ms is not None:
            fields["ms"] = int(duration_ms)
        if session_id:
            fields["session_id"] = session_id
        self.logger.info(message, extra=self._fields(fields))


logger = QuizLogger()
