"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest
import pytest_asyncio

from syncmesh.core.types import Result, Err
from syncmesh.core.errors import StorageError
from syncmesh.core.config import CacheConfig, SyncConfig
from syncmesh.adapters.memory import InMemoryAdapter
from syncmesh.cache.manager import CacheManager
from syncmesh.sync.manager import SyncManager
from syncmesh.unified.database import UnifiedDatabase


# =============================================================================
# TEST UTILITIES
# =============================================================================

def assert_ok(result: Result[Any, Any], message: str = "Expected Ok result") -> Any:
    """Assert that result is Ok and return its value."""
    assert result.is_ok(), f"{message}: {result}"
    return result.unwrap()


def assert_err(result: Result[Any, Any], message: str = "Expected Err result") -> Any:
    """Assert that result is Err and return the error."""
    assert result.is_err(), f"{message}: {result}"
    return result.error


class FakeClock:
    """
    Manually advanced monotonic clock for TTL tests.

    Time is kept in integer milliseconds and reported in seconds, like
    time.monotonic().
    """

    def __init__(self, start_ms: int = 1_000_000) -> None:
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms / 1000.0

    def advance_ms(self, ms: int) -> None:
        self.now_ms += ms


class FaultyAdapter(InMemoryAdapter):
    """
    In-memory adapter that fails selected writes.

    fail_ids: entity ids whose insert/update_by_id/delete_by_id return Err
    raise_ids: entity ids whose writes raise RuntimeError instead
    fail_next: number of upcoming write calls (any id) that return Err
    fail_collections: collections whose writes return Err
    """

    def __init__(self, name: str = "faulty") -> None:
        super().__init__(name)
        self.fail_ids: set[str] = set()
        self.raise_ids: set[str] = set()
        self.fail_next = 0
        self.fail_collections: set[str] = set()
        self.write_calls = 0

    def _fault(
        self, operation: str, collection: str, entity_id: Optional[str]
    ) -> Optional[Err[StorageError]]:
        self.write_calls += 1
        if entity_id in self.raise_ids:
            raise RuntimeError(f"boom on {entity_id}")
        if self.fail_next > 0:
            self.fail_next -= 1
            return Err(StorageError.io_failure(self.name, operation))
        if collection in self.fail_collections:
            return Err(StorageError.io_failure(self.name, operation))
        if entity_id in self.fail_ids:
            return Err(StorageError.io_failure(self.name, operation))
        return None

    async def insert(self, collection, entity):
        if (err := self._fault("insert", collection, entity.get("id"))) is not None:
            return err
        return await super().insert(collection, entity)

    async def update_by_id(self, collection, entity_id, patch):
        if (err := self._fault("update_by_id", collection, entity_id)) is not None:
            return err
        return await super().update_by_id(collection, entity_id, patch)

    async def delete_by_id(self, collection, entity_id):
        if (err := self._fault("delete_by_id", collection, entity_id)) is not None:
            return err
        return await super().delete_by_id(collection, entity_id)


class GatedAdapter(InMemoryAdapter):
    """In-memory adapter whose find() blocks until the gate is opened."""

    def __init__(self, name: str = "gated") -> None:
        super().__init__(name)
        self.gate = asyncio.Event()
        self.find_calls = 0

    async def find(self, collection, query=None, options=None):
        self.find_calls += 1
        await self.gate.wait()
        return await super().find(collection, query, options)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def primary() -> InMemoryAdapter:
    adapter = InMemoryAdapter("primary")
    assert_ok(await adapter.connect())
    return adapter


@pytest_asyncio.fixture
async def mirror_a() -> InMemoryAdapter:
    adapter = InMemoryAdapter("A")
    assert_ok(await adapter.connect())
    return adapter


@pytest_asyncio.fixture
async def mirror_b() -> InMemoryAdapter:
    adapter = InMemoryAdapter("B")
    assert_ok(await adapter.connect())
    return adapter


@pytest_asyncio.fixture
async def cache(primary, fake_clock):
    manager = CacheManager(
        primary,
        CacheConfig(default_ttl_ms=1000, max_size=5, prefetch_threshold=1.0),
        clock=fake_clock,
    )
    await manager.initialize()
    yield manager
    manager.dispose()
    await asyncio.sleep(0)


@pytest_asyncio.fixture
async def sync_manager(primary):
    manager = SyncManager(primary, SyncConfig(batch_size=100))
    assert_ok(await manager.initialize())
    yield manager
    await manager.dispose()


@pytest_asyncio.fixture
async def db(primary, mirror_a, mirror_b, fake_clock):
    database = UnifiedDatabase(
        primary,
        secondaries={"A": mirror_a, "B": mirror_b},
        clock=fake_clock,
    )
    assert_ok(await database.initialize())
    yield database
    await database.close()
    await asyncio.sleep(0)
