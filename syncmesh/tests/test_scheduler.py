"""
Unit Tests: Periodic Tasks

Tests:
    - Ticking and stopping
    - Failing callbacks keep the timer alive
    - stop() lets an in-flight run finish
"""

import asyncio

import pytest

from syncmesh.core.scheduler import PeriodicTask


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestPeriodicTask:

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            PeriodicTask("bad", 0, lambda: None)

    @pytest.mark.asyncio
    async def test_ticks_until_stopped(self):
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask("tick", 5, tick)
        task.start()
        assert task.is_running
        await _wait_for(lambda: len(calls) >= 3)

        task.stop()
        await task.wait_idle()
        assert not task.is_running
        seen = len(calls)
        await asyncio.sleep(0.03)
        assert len(calls) == seen

    @pytest.mark.asyncio
    async def test_failing_callback_keeps_ticking(self):
        calls = []

        async def flaky():
            calls.append(1)
            raise RuntimeError("tick failed")

        task = PeriodicTask("flaky", 5, flaky)
        task.start()
        await _wait_for(lambda: len(calls) >= 2)
        task.stop()
        await task.wait_idle()

    @pytest.mark.asyncio
    async def test_stop_does_not_cancel_in_flight_run(self):
        release = asyncio.Event()
        finished = []

        async def slow():
            await release.wait()
            finished.append(1)

        task = PeriodicTask("slow", 5, slow)
        task.start()
        await _wait_for(lambda: task.in_flight >= 1)

        task.stop()
        release.set()
        await task.wait_idle()

        assert finished
        assert task.in_flight == 0

    @pytest.mark.asyncio
    async def test_restart(self):
        async def noop():
            return None

        task = PeriodicTask("noop", 1000, noop)
        task.start()
        task.start()
        assert task.is_running
        task.stop()
        task.stop()
        assert not task.is_running
