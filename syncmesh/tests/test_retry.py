"""
Unit Tests: Retry with Backoff

Tests:
    - Success after transient failures
    - Exhaustion and non-retryable errors
    - Backoff bounds
"""

import pytest

from syncmesh.core.config import SyncConfig
from syncmesh.core.errors import ErrorCode, ReliabilityError
from syncmesh.core.types import Ok, Err
from syncmesh.reliability import (
    RetryPolicy,
    RetryStats,
    calculate_backoff,
    retry_with_backoff,
)


def _failing(times: int):
    """Callable returning Err `times` times, then Ok."""
    state = {"calls": 0}

    async def call():
        state["calls"] += 1
        if state["calls"] <= times:
            return Err(f"failure {state['calls']}")
        return Ok(state["calls"])

    return call, state


FAST = dict(base_delay_ms=1, max_delay_ms=2, jitter=False)


class TestRetryWithBackoff:

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self):
        call, state = _failing(2)
        stats = RetryStats()
        result = await retry_with_backoff(call, RetryPolicy(max_retries=3, **FAST), stats)

        assert result.unwrap() == 3
        assert stats.total_attempts == 3
        assert stats.failed_attempts == 2
        assert stats.total_delay_ms > 0

    @pytest.mark.asyncio
    async def test_exhaustion(self):
        call, state = _failing(10)
        result = await retry_with_backoff(call, RetryPolicy(max_retries=2, **FAST))

        assert state["calls"] == 3
        assert isinstance(result.error, ReliabilityError)
        assert result.error.code is ErrorCode.RELIABILITY_RETRY_EXHAUSTED
        assert "failure 3" in str(result.error)

    @pytest.mark.asyncio
    async def test_no_retry_returns_original_error(self):
        call, state = _failing(1)
        result = await retry_with_backoff(call, RetryPolicy.no_retry())
        assert result.error == "failure 1"
        assert state["calls"] == 1

    @pytest.mark.asyncio
    async def test_retry_if_filters_errors(self):
        call, state = _failing(5)
        policy = RetryPolicy(max_retries=5, retry_if=lambda error: error != "failure 2", **FAST)
        result = await retry_with_backoff(call, policy)
        assert result.error == "failure 2"
        assert state["calls"] == 2

    @pytest.mark.asyncio
    async def test_exceptions_propagate(self):
        async def explode():
            raise ValueError("not a Result")

        with pytest.raises(ValueError):
            await retry_with_backoff(explode, RetryPolicy(max_retries=3, **FAST))


class TestPolicy:

    def test_negative_values_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)
        with pytest.raises(ValueError):
            RetryPolicy(base_delay_ms=-5)

    def test_from_sync_config(self):
        policy = RetryPolicy.from_sync_config(SyncConfig(retry_attempts=4, retry_delay_ms=200))
        assert policy.max_retries == 4
        assert policy.base_delay_ms == 200
        assert policy.max_delay_ms == 200 * 2 ** 4

    def test_backoff_is_exponential_and_capped(self):
        delays = [calculate_backoff(n, 100, 500, 2.0, jitter=False) for n in range(5)]
        assert delays == [100, 200, 400, 500, 500]

    def test_jitter_stays_within_bound(self):
        for attempt in range(6):
            assert 0 <= calculate_backoff(attempt, 100, 1000, 2.0, jitter=True) <= 1000
