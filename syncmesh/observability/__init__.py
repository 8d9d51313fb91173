"""Observability module: structured JSON logging with context propagation."""

from syncmesh.observability.logging import (
    LogLevel,
    JsonFormatter,
    log_context,
    current_log_context,
    setup_logging,
)

__all__ = [
    "LogLevel",
    "JsonFormatter",
    "log_context",
    "current_log_context",
    "setup_logging",
]
