"""
Retry Policy: Exponential Backoff with Jitter

Retries async calls that report failure through a Result:
- Exponential backoff: base_delay_ms × 2^n, capped at max_delay_ms
- Optional full jitter: random(0, backoff)
- Only Err values are retried; exceptions propagate to the caller

Used by the replicator when SyncConfig.retry_enabled is set. When the
retries run out the result is Err(ReliabilityError.retry_exhausted) whose
message embeds the last error, so the operation log still records the
backend's own message. With max_retries=0, or when retry_if rejects the
error, the original Err is returned unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from syncmesh.core.types import Result, Err
from syncmesh.core.errors import ReliabilityError
from syncmesh.core.config import SyncConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")
E = TypeVar("E")


def _always(_: Any) -> bool:
    return True


@dataclass
class RetryPolicy:
    """Retry configuration."""

    max_retries: int = 3
    base_delay_ms: int = 100
    max_delay_ms: int = 10000
    exponential_base: float = 2.0
    jitter: bool = True
    # Decides whether an Err value is worth another attempt
    retry_if: Callable[[Any], bool] = _always

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("retry delays cannot be negative")

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """No retries (for non-idempotent operations)."""
        return cls(max_retries=0)

    @classmethod
    def from_sync_config(cls, config: SyncConfig) -> RetryPolicy:
        """Policy derived from the replicator settings."""
        return cls(
            max_retries=config.retry_attempts,
            base_delay_ms=config.retry_delay_ms,
            max_delay_ms=max(config.retry_delay_ms, 1) * 2 ** config.retry_attempts,
        )


@dataclass
class RetryStats:
    """Retry attempt statistics."""
    total_attempts: int = 0
    failed_attempts: int = 0
    total_delay_ms: float = 0.0
    last_error: Optional[str] = None


async def retry_with_backoff(
    func: Callable[[], Awaitable[Result[T, E]]],
    policy: Optional[RetryPolicy] = None,
    stats: Optional[RetryStats] = None,
) -> Result[T, Any]:
    """
    Call func until it returns Ok or the policy gives up.

    Args:
        func: Async callable returning a Result
        policy: Retry configuration (default if None)
        stats: Optional accumulator for attempt bookkeeping

    Returns:
        The first Ok; Err(ReliabilityError) once retries are exhausted;
        the original Err when the error is not retryable
    """
    if policy is None:
        policy = RetryPolicy.default()
    if stats is None:
        stats = RetryStats()

    attempt = 0
    while True:
        stats.total_attempts += 1
        result = await func()
        if result.is_ok():
            return result

        stats.failed_attempts += 1
        stats.last_error = str(result.error)

        if not policy.retry_if(result.error) or policy.max_retries == 0:
            return result
        if attempt >= policy.max_retries:
            logger.warning(
                "Retries exhausted",
                extra={"attempts": stats.total_attempts, "error": stats.last_error},
            )
            return Err(ReliabilityError.retry_exhausted(
                attempts=stats.total_attempts,
                last_error=stats.last_error,
            ))

        delay = calculate_backoff(
            attempt=attempt,
            base_delay_ms=policy.base_delay_ms,
            max_delay_ms=policy.max_delay_ms,
            exponential_base=policy.exponential_base,
            jitter=policy.jitter,
        )
        stats.total_delay_ms += delay
        logger.debug(
            "Retrying after failure",
            extra={"attempt": attempt + 2, "delay_ms": round(delay, 3)},
        )
        await asyncio.sleep(delay / 1000)
        attempt += 1


def calculate_backoff(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    exponential_base: float,
    jitter: bool,
) -> float:
    """
    Calculate backoff delay with optional jitter.

    Full jitter: random(0, min(cap, base * 2^attempt))
    """
    delay = min(max_delay_ms, base_delay_ms * (exponential_base ** attempt))
    if jitter:
        delay = random.uniform(0, delay)
    return delay
