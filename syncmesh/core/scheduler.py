"""
Periodic Background Tasks

Interval timer for the cache cleanup cycle and the sync cycle.

Semantics:
    - Each tick spawns the callback as its own task, so stopping the
      timer never cancels a cycle that is already running; the cycle is
      allowed to finish.
    - A callback that raises is logged; the timer keeps ticking.
    - Overlap protection is the callback's job (see SyncManager.sync).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Fixed-interval timer running an async callback.

    Usage:
        timer = PeriodicTask("sync", 5000, manager.sync)
        timer.start()
        ...
        timer.stop()
        await timer.wait_idle()
    """

    __slots__ = ("_name", "_interval_ms", "_callback", "_loop_task", "_in_flight")

    def __init__(
        self,
        name: str,
        interval_ms: int,
        callback: Callable[[], Awaitable[Any]],
    ) -> None:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be > 0, got {interval_ms}")
        self._name = name
        self._interval_ms = interval_ms
        self._callback = callback
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._in_flight: set[asyncio.Task[None]] = set()

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> int:
        """Number of callback runs that have not finished yet."""
        return len(self._in_flight)

    def start(self) -> None:
        """
        Start ticking. Restarts the timer if it is already running.

        Must be called from inside a running event loop.
        """
        self.stop()
        self._loop_task = asyncio.get_running_loop().create_task(
            self._tick_loop(), name=f"periodic:{self._name}"
        )
        logger.debug(
            "Periodic task started",
            extra={"task": self._name, "interval_ms": self._interval_ms},
        )

    def stop(self) -> None:
        """Clear the timer. Runs already in flight are left to finish."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            self._loop_task = None
            logger.debug("Periodic task stopped", extra={"task": self._name})

    async def wait_idle(self) -> None:
        """Wait until every in-flight run has finished."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_ms / 1000)
            run = asyncio.create_task(self._run_once())
            self._in_flight.add(run)
            run.add_done_callback(self._in_flight.discard)

    async def _run_once(self) -> None:
        try:
            await self._callback()
        except Exception:
            logger.exception("Periodic task run failed", extra={"task": self._name})
