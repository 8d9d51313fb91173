"""
Structured Logging: JSON-Formatted with Context Fields

Provides:
- JSON-formatted log output
- Context propagation (e.g. the current sync cycle id) via contextvars
- Log level filtering

Components log through plain module loggers
(``logging.getLogger(__name__)``) and pass structured fields with
``extra={...}``; the formatter merges those with the active context.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional, TextIO, Union


class LogLevel(IntEnum):
    """Log level enumeration."""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


# Context variable for task-scoped fields
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

# Attributes every logging.LogRecord carries; anything else came from extra=
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename",
    "funcName", "levelname", "levelno", "lineno",
    "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info",
    "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message", "asctime",
})


@dataclass
class LogRecord:
    """Structured log record."""
    timestamp: str
    level: str
    message: str
    logger_name: str
    extra: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        data = {
            "@timestamp": self.timestamp,
            "level": self.level,
            "message": self.message,
            "logger": self.logger_name,
        }
        data.update(self.extra)
        return json.dumps(data, default=str)


class JsonFormatter(logging.Formatter):
    """JSON log formatter merging context fields and record extras."""

    def format(self, record: logging.LogRecord) -> str:
        extra = dict(_log_context.get())

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                extra[key] = value

        if record.exc_info:
            extra["exception"] = self.formatException(record.exc_info)

        log_record = LogRecord(
            timestamp=datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            level=record.levelname,
            message=record.getMessage(),
            logger_name=record.name,
            extra=extra,
        )
        return log_record.to_json()


class _LogContext:
    """Context manager adding fields to every log emitted inside it."""

    __slots__ = ("_fields", "_token")

    def __init__(self, fields: dict[str, Any]) -> None:
        self._fields = fields
        self._token = None

    def __enter__(self) -> _LogContext:
        self._token = _log_context.set({**_log_context.get(), **self._fields})
        return self

    def __exit__(self, *args: Any) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


def log_context(**fields: Any) -> _LogContext:
    """
    Tag all logs in the enclosed block.

    Usage:
        with log_context(sync_cycle=cycle_id):
            logger.info("Executing operation", extra={"operation_id": op.id})
    """
    return _LogContext(fields)


def current_log_context() -> dict[str, Any]:
    """Snapshot of the fields active in the current task."""
    return dict(_log_context.get())


def setup_logging(
    level: Union[LogLevel, str] = LogLevel.INFO,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure root logger for structured logging.

    Args:
        level: Minimum log level (enum member or name such as "DEBUG")
        json_output: Use JSON formatting
        stream: Output stream (default: stderr)
    """
    if isinstance(level, str):
        level = LogLevel[level.upper()]

    root = logging.getLogger()
    root.setLevel(level.value)
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level.value)

    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        ))

    root.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)
