"""
Unified Database Test Suite: End-to-End Replication

Tests:
    - Primary -> two mirrors scenario (insert, sync, update, delete)
    - Fan-out of one operation per registered secondary
    - Cache-first reads and the use_cache / sync flags
    - Primary-path errors returned, secondary-path errors logged
    - Events and lifecycle

Run: python -m pytest syncmesh/tests/test_unified_database.py -v
"""

import pytest

from syncmesh.adapters import Filter
from syncmesh.adapters.memory import InMemoryAdapter
from syncmesh.core.config import CacheConfig, SyncConfig, SyncMeshConfig
from syncmesh.core.errors import ErrorCode, InternalError
from syncmesh.sync import SyncOperationType, SyncStatus
from syncmesh.unified import (
    UnifiedDatabase,
    ENTITY_INSERTED,
    ENTITIES_INSERTED,
    ENTITY_UPDATED,
    ENTITY_DELETED,
)
from syncmesh.tests.conftest import FaultyAdapter, assert_ok, assert_err


async def _operations(db, status=None):
    return assert_ok(await db.sync_manager.list_operations(status))


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_insert_replicates_to_both_mirrors(self, db, primary, mirror_a, mirror_b):
        stored = assert_ok(await db.insert("issues", {"id": "e1", "type": "issue", "name": "Bug"}))
        assert stored["created_at"] == stored["updated_at"]

        assert assert_ok(await primary.find_by_id("issues", "e1")) == stored
        assert "issues:e1" in db.cache.keys()

        pending = await _operations(db, SyncStatus.PENDING)
        assert sorted(op.target_adapter for op in pending) == ["A", "B"]
        assert all(op.type is SyncOperationType.CREATE for op in pending)
        assert all(op.source_adapter == "primary" for op in pending)

        assert await db.sync_now() is True

        assert len(await _operations(db, SyncStatus.COMPLETED)) == 2
        assert assert_ok(await mirror_a.find_by_id("issues", "e1")) == stored
        assert assert_ok(await mirror_b.find_by_id("issues", "e1")) == stored

    @pytest.mark.asyncio
    async def test_update_and_delete_propagate(self, db, mirror_a, mirror_b):
        assert_ok(await db.insert("issues", {"id": "e1", "name": "Bug"}))
        await db.sync_now()

        updated = assert_ok(await db.update("issues", "e1", {"name": "Bug (triaged)"}))
        assert updated["name"] == "Bug (triaged)"
        await db.sync_now()
        for mirror in (mirror_a, mirror_b):
            assert assert_ok(await mirror.find_by_id("issues", "e1"))["name"] == "Bug (triaged)"

        assert assert_ok(await db.delete("issues", "e1")) is True
        await db.sync_now()
        for mirror in (mirror_a, mirror_b):
            assert assert_ok(await mirror.find_by_id("issues", "e1")) is None

        assert await _operations(db, SyncStatus.FAILED) == []
        assert len(await _operations(db, SyncStatus.COMPLETED)) == 6

    @pytest.mark.asyncio
    async def test_fan_out_matches_registered_secondaries(self, primary):
        mirrors = {name: InMemoryAdapter(name) for name in ("A", "B", "C")}
        db = UnifiedDatabase(primary, secondaries=mirrors)
        assert_ok(await db.initialize())

        assert_ok(await db.insert_many("issues", [{"id": "e1"}, {"id": "e2"}]))
        assert len(await _operations(db)) == 6

        db.unregister_secondary("C")
        assert_ok(await db.delete("issues", "e1"))
        assert len(await _operations(db)) == 8
        await db.close()

    @pytest.mark.asyncio
    async def test_no_secondaries_means_no_operations(self, primary):
        db = UnifiedDatabase(primary)
        assert_ok(await db.initialize())
        assert_ok(await db.insert("issues", {"id": "e1"}))
        assert await _operations(db) == []
        await db.close()


class TestReads:

    @pytest.mark.asyncio
    async def test_find_by_id_is_cache_first(self, db, primary):
        assert_ok(await db.insert("issues", {"id": "e1", "name": "Bug"}))
        # Bypass the facade so only the cache still has the old value
        assert_ok(await primary.update_by_id("issues", "e1", {"name": "changed"}))

        assert assert_ok(await db.find_by_id("issues", "e1"))["name"] == "Bug"
        assert assert_ok(await db.find_by_id("issues", "e1", use_cache=False))["name"] == "changed"

    @pytest.mark.asyncio
    async def test_miss_populates_cache(self, db, primary):
        assert_ok(await primary.insert("issues", {"id": "e1"}))
        assert not db.cache.contains("issues", "e1")

        assert assert_ok(await db.find_by_id("issues", "e1")) == {"id": "e1"}
        assert db.cache.contains("issues", "e1")
        assert assert_ok(await db.find_by_id("issues", "missing")) is None

    @pytest.mark.asyncio
    async def test_find_one_by_id_uses_cache(self, db, primary):
        assert_ok(await db.insert("issues", {"id": "e1", "name": "Bug"}))
        assert_ok(await primary.update_by_id("issues", "e1", {"name": "changed"}))

        cached = assert_ok(await db.find_one("issues", Filter.by_id("e1")))
        assert cached["name"] == "Bug"

        queried = assert_ok(await db.find_one("issues", Filter.by_id("e1").eq("name", "changed")))
        assert queried["name"] == "changed"

    @pytest.mark.asyncio
    async def test_find_and_count_query_primary(self, db):
        assert_ok(await db.insert_many("issues", [
            {"id": "e1", "state": "open"},
            {"id": "e2", "state": "closed"},
        ]))
        found = assert_ok(await db.find("issues", Filter.where(state="open")))
        assert [e["id"] for e in found] == ["e1"]
        assert assert_ok(await db.count("issues")) == 2

    @pytest.mark.asyncio
    async def test_clear_cache_falls_back_to_primary(self, db, primary):
        assert_ok(await db.insert("issues", {"id": "e1", "name": "Bug"}))
        assert_ok(await primary.update_by_id("issues", "e1", {"name": "changed"}))

        db.clear_cache()

        assert db.cache.size == 0
        assert assert_ok(await db.find_by_id("issues", "e1"))["name"] == "changed"
        assert len(await _operations(db)) == 2

    @pytest.mark.asyncio
    async def test_clear_cache_before_initialize_raises(self, primary):
        with pytest.raises(InternalError):
            UnifiedDatabase(primary).clear_cache()


class TestWriteFlags:

    @pytest.mark.asyncio
    async def test_use_cache_false_skips_cache(self, db):
        assert_ok(await db.insert("issues", {"id": "e1"}, use_cache=False))
        assert not db.cache.contains("issues", "e1")

    @pytest.mark.asyncio
    async def test_sync_false_skips_fan_out(self, db):
        assert_ok(await db.insert("issues", {"id": "e1"}, sync=False))
        assert_ok(await db.update("issues", "e1", {"v": 2}, sync=False))
        assert_ok(await db.delete("issues", "e1", sync=False))
        assert await _operations(db) == []

    @pytest.mark.asyncio
    async def test_update_stamps_updated_at(self, db):
        stored = assert_ok(await db.insert("issues", {"id": "e1", "updated_at": "2000-01-01"}))
        assert stored["updated_at"] == "2000-01-01"

        updated = assert_ok(await db.update("issues", "e1", {"v": 1}))
        assert updated["updated_at"] > "2000-01-01"
        assert db.cache.get("issues", "e1") == updated

    @pytest.mark.asyncio
    async def test_update_missing_entity(self, db):
        assert assert_ok(await db.update("issues", "ghost", {"v": 1})) is None
        assert await _operations(db) == []

    @pytest.mark.asyncio
    async def test_delete_missing_entity(self, db):
        assert assert_ok(await db.delete("issues", "ghost")) is False
        assert await _operations(db) == []

    @pytest.mark.asyncio
    async def test_delete_invalidates_cache(self, db):
        assert_ok(await db.insert("issues", {"id": "e1"}))
        assert_ok(await db.delete("issues", "e1"))
        assert not db.cache.contains("issues", "e1")
        assert assert_ok(await db.find_by_id("issues", "e1")) is None


class TestErrors:

    @pytest.mark.asyncio
    async def test_primary_error_is_returned(self, mirror_a):
        primary = FaultyAdapter("primary")
        db = UnifiedDatabase(primary, secondaries={"A": mirror_a})
        assert_ok(await db.initialize())
        primary.fail_ids.add("e1")

        err = assert_err(await db.insert("issues", {"id": "e1"}))
        assert err.code is ErrorCode.STORAGE_IO_FAILURE
        assert not db.cache.contains("issues", "e1")
        assert await _operations(db) == []
        await db.close()

    @pytest.mark.asyncio
    async def test_duplicate_insert(self, db):
        assert_ok(await db.insert("issues", {"id": "e1"}))
        err = assert_err(await db.insert("issues", {"id": "e1"}))
        assert err.code is ErrorCode.STORAGE_DUPLICATE_KEY
        assert len(await _operations(db)) == 2

    @pytest.mark.asyncio
    async def test_enqueue_failure_does_not_fail_write(self, mirror_a):
        primary = FaultyAdapter("primary")
        db = UnifiedDatabase(primary, secondaries={"A": mirror_a})
        assert_ok(await db.initialize())
        primary.fail_collections.add(db.sync_manager.collection)

        stored = assert_ok(await db.insert("issues", {"id": "e1"}))
        assert stored["id"] == "e1"
        assert await _operations(db) == []
        await db.close()

    @pytest.mark.asyncio
    async def test_replication_failure_is_recorded_not_raised(self, db, mirror_b):
        await mirror_b.disconnect()
        assert_ok(await db.insert("issues", {"id": "e1"}))

        assert await db.sync_now() is True

        failed = await _operations(db, SyncStatus.FAILED)
        assert [op.target_adapter for op in failed] == ["B"]
        assert "STORAGE_NOT_CONNECTED" in failed[0].error

    @pytest.mark.asyncio
    async def test_sync_now_survives_a_raising_log(self, mirror_a):
        primary = FaultyAdapter("primary")
        db = UnifiedDatabase(primary, secondaries={"A": mirror_a})
        assert_ok(await db.initialize())
        assert_ok(await db.insert("issues", {"id": "e1"}))

        async def unavailable(collection, query=None, options=None):
            raise RuntimeError("log unavailable")

        primary.find = unavailable
        assert await db.sync_now() is False

        del primary.find
        assert await db.sync_now() is True
        assert len(await _operations(db, SyncStatus.COMPLETED)) == 1
        await db.close()

    @pytest.mark.asyncio
    async def test_use_before_initialize_raises(self, primary):
        db = UnifiedDatabase(primary)
        with pytest.raises(InternalError) as exc:
            await db.insert("issues", {"id": "e1"})
        assert exc.value.code is ErrorCode.INTERNAL_NOT_INITIALIZED

    def test_from_config_rejects_invalid(self):
        config = SyncMeshConfig(cache=CacheConfig(max_size=0))
        with pytest.raises(InternalError) as exc:
            UnifiedDatabase.from_config(InMemoryAdapter("primary"), config)
        assert exc.value.code is ErrorCode.INTERNAL_CONFIGURATION_ERROR


class TestEventsAndLifecycle:

    @pytest.mark.asyncio
    async def test_events(self, db):
        seen = []
        for event in (ENTITY_INSERTED, ENTITIES_INSERTED, ENTITY_UPDATED, ENTITY_DELETED):
            db.on(event, lambda payload, event=event: seen.append((event, payload["collection"])))

        assert_ok(await db.insert("issues", {"id": "e1"}))
        assert_ok(await db.insert_many("issues", [{"id": "e2"}]))
        assert_ok(await db.update("issues", "e1", {"v": 1}))
        assert_ok(await db.delete("issues", "e1"))

        assert seen == [
            (ENTITY_INSERTED, "issues"),
            (ENTITIES_INSERTED, "issues"),
            (ENTITY_UPDATED, "issues"),
            (ENTITY_DELETED, "issues"),
        ]

    @pytest.mark.asyncio
    async def test_delete_event_carries_removed_entity(self, db):
        payloads = []
        db.on(ENTITY_DELETED, payloads.append)
        stored = assert_ok(await db.insert("issues", {"id": "e1", "name": "Bug"}))
        assert_ok(await db.delete("issues", "e1"))
        assert payloads == [{"collection": "issues", "id": "e1", "entity": stored}]

    def test_unknown_event_rejected(self):
        db = UnifiedDatabase(InMemoryAdapter("primary"))
        with pytest.raises(ValueError):
            db.on("entity-renamed", lambda payload: None)

    @pytest.mark.asyncio
    async def test_initialize_connects_everything(self):
        primary = InMemoryAdapter("primary")
        mirror = InMemoryAdapter("A")
        db = UnifiedDatabase(
            primary,
            cache_config=CacheConfig(max_size=10),
            sync_config=SyncConfig(sync_interval_ms=50),
            secondaries={"A": mirror},
        )
        assert_ok(await db.initialize())

        assert primary.is_connected and mirror.is_connected
        assert db.is_initialized
        assert db.secondaries == ["A"]

        db.start()
        assert db.sync_manager.is_running
        db.stop()
        assert not db.sync_manager.is_running

        await db.close()
        assert not primary.is_connected and not mirror.is_connected
        assert not db.is_initialized

    @pytest.mark.asyncio
    async def test_register_secondary_after_initialize(self, db):
        late = InMemoryAdapter("C")
        assert_ok(await db.register_secondary("C", late))
        assert db.secondaries == ["A", "B", "C"]
        assert late.is_connected
