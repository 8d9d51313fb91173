"""
Unit Tests: In-Memory Adapter

Tests:
    - Connection gating
    - CRUD by id and by filter, copy isolation
    - insert_many all-or-nothing
    - update multi / upsert
    - Collection management

Run: python -m pytest syncmesh/tests/test_memory_adapter.py -v
"""

import pytest

from syncmesh.adapters import AdapterProtocol, Filter, QueryOptions, SortOrder, UpdateOptions
from syncmesh.adapters.memory import InMemoryAdapter
from syncmesh.core.errors import ErrorCode
from syncmesh.tests.conftest import assert_ok, assert_err


class TestConnection:

    @pytest.mark.asyncio
    async def test_disconnected_operations_return_err(self):
        """Every call on a disconnected adapter is Err(not_connected)."""
        adapter = InMemoryAdapter("cold")
        err = assert_err(await adapter.find_by_id("issues", "e1"))
        assert err.code is ErrorCode.STORAGE_NOT_CONNECTED
        err = assert_err(await adapter.insert("issues", {"id": "e1"}))
        assert err.code is ErrorCode.STORAGE_NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_connect_disconnect(self):
        adapter = InMemoryAdapter("a")
        assert_ok(await adapter.connect())
        assert adapter.is_connected
        assert_ok(await adapter.disconnect())
        assert not adapter.is_connected

    def test_satisfies_protocol(self):
        adapter = InMemoryAdapter("a")
        assert isinstance(adapter, AdapterProtocol)
        assert adapter.adapter_type == "memory"

    @pytest.mark.asyncio
    async def test_simulated_latency(self):
        adapter = InMemoryAdapter("slow", simulate_latency=True, latency_ms=1)
        assert_ok(await adapter.connect())
        assert_ok(await adapter.insert("issues", {"id": "e1"}))
        assert assert_ok(await adapter.count("issues")) == 1


class TestCrud:

    @pytest.mark.asyncio
    async def test_insert_and_find_by_id(self, primary):
        stored = assert_ok(await primary.insert("issues", {"id": "e1", "name": "Bug"}))
        assert stored == {"id": "e1", "name": "Bug"}
        assert assert_ok(await primary.find_by_id("issues", "e1")) == stored
        assert assert_ok(await primary.find_by_id("issues", "nope")) is None

    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, primary):
        stored = assert_ok(await primary.insert("issues", {"name": "Bug"}))
        assert stored["id"]

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, primary):
        assert_ok(await primary.insert("issues", {"id": "e1"}))
        err = assert_err(await primary.insert("issues", {"id": "e1"}))
        assert err.code is ErrorCode.STORAGE_DUPLICATE_KEY

    @pytest.mark.asyncio
    async def test_returned_copies_do_not_alias_store(self, primary):
        entity = {"id": "e1", "tags": ["a"]}
        assert_ok(await primary.insert("issues", entity))
        entity["tags"].append("mutated")

        read = assert_ok(await primary.find_by_id("issues", "e1"))
        read["tags"].append("also mutated")

        again = assert_ok(await primary.find_by_id("issues", "e1"))
        assert again["tags"] == ["a"]

    @pytest.mark.asyncio
    async def test_find_with_filter_and_options(self, primary):
        for i, state in enumerate(["open", "closed", "open", "open"]):
            assert_ok(await primary.insert("issues", {"id": f"e{i}", "state": state, "rank": -i}))

        found = assert_ok(await primary.find(
            "issues",
            Filter.where(state="open"),
            QueryOptions(limit=2, sort=(("rank", SortOrder.ASC),)),
        ))
        assert [r["id"] for r in found] == ["e3", "e2"]
        assert assert_ok(await primary.count("issues", Filter.where(state="open"))) == 3
        assert assert_ok(await primary.find("unknown")) == []

    @pytest.mark.asyncio
    async def test_find_one(self, primary):
        assert_ok(await primary.insert("issues", {"id": "e1", "state": "open"}))
        assert_ok(await primary.insert("issues", {"id": "e2", "state": "open"}))
        first = assert_ok(await primary.find_one("issues", Filter.where(state="open")))
        assert first["id"] == "e1"
        assert assert_ok(await primary.find_one("issues", Filter.where(state="closed"))) is None

    @pytest.mark.asyncio
    async def test_update_by_id_merges_shallowly(self, primary):
        assert_ok(await primary.insert("issues", {"id": "e1", "name": "Bug", "meta": {"a": 1}}))
        merged = assert_ok(await primary.update_by_id(
            "issues", "e1", {"id": "ignored", "meta": {"b": 2}}
        ))
        assert merged == {"id": "e1", "name": "Bug", "meta": {"b": 2}}
        assert assert_ok(await primary.update_by_id("issues", "nope", {"x": 1})) is None

    @pytest.mark.asyncio
    async def test_update_multi_and_upsert(self, primary):
        for i in range(3):
            assert_ok(await primary.insert("issues", {"id": f"e{i}", "state": "open"}))

        single = assert_ok(await primary.update(
            "issues", Filter.where(state="open"), {"state": "closed"}
        ))
        assert (single.matched, single.modified) == (1, 1)

        many = assert_ok(await primary.update(
            "issues", Filter.where(state="open"), {"state": "closed"},
            UpdateOptions(multi=True),
        ))
        assert (many.matched, many.modified) == (2, 2)

        upserted = assert_ok(await primary.update(
            "issues", Filter.by_id("e9").eq("state", "new"), {"name": "fresh"},
            UpdateOptions(upsert=True),
        ))
        assert upserted.upserted == {"id": "e9", "state": "new", "name": "fresh"}

    @pytest.mark.asyncio
    async def test_delete(self, primary):
        for i in range(3):
            assert_ok(await primary.insert("issues", {"id": f"e{i}", "n": i}))
        assert assert_ok(await primary.delete("issues", Filter.all().gte("n", 1))) == 2
        assert assert_ok(await primary.delete_by_id("issues", "e0")) is True
        assert assert_ok(await primary.delete_by_id("issues", "e0")) is False


class TestInsertMany:

    @pytest.mark.asyncio
    async def test_inserts_all(self, primary):
        stored = assert_ok(await primary.insert_many("issues", [{"id": "a"}, {"id": "b"}]))
        assert [e["id"] for e in stored] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_duplicate_rejects_whole_batch(self, primary):
        assert_ok(await primary.insert("issues", {"id": "b"}))
        err = assert_err(await primary.insert_many("issues", [{"id": "a"}, {"id": "b"}]))
        assert err.code is ErrorCode.STORAGE_DUPLICATE_KEY
        assert assert_ok(await primary.find_by_id("issues", "a")) is None

    @pytest.mark.asyncio
    async def test_duplicate_within_batch(self, primary):
        assert_err(await primary.insert_many("issues", [{"id": "a"}, {"id": "a"}]))
        assert assert_ok(await primary.count("issues")) == 0


class TestCollections:

    @pytest.mark.asyncio
    async def test_lifecycle(self, primary):
        assert assert_ok(await primary.collection_exists("issues")) is False
        assert assert_ok(await primary.create_collection("issues")) is True
        assert assert_ok(await primary.create_collection("issues")) is False
        assert_ok(await primary.insert("users", {"id": "u1"}))
        assert assert_ok(await primary.get_collection_names()) == ["issues", "users"]
        assert assert_ok(await primary.drop_collection("issues")) is True
        assert assert_ok(await primary.drop_collection("issues")) is False
