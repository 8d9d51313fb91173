"""Reliability module: retry with exponential backoff for Result-returning calls."""

from syncmesh.reliability.retry import (
    RetryPolicy,
    RetryStats,
    retry_with_backoff,
    calculate_backoff,
)

__all__ = [
    "RetryPolicy",
    "RetryStats",
    "retry_with_backoff",
    "calculate_backoff",
]
