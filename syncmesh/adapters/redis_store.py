"""
Redis Adapter
=============

Redis/Valkey implementation of AdapterProtocol, intended as a secondary
mirror of the primary store.

Key Layout:
-----------
| Key                               | Type   | Contents                  |
|-----------------------------------|--------|---------------------------|
| {prefix}:{collection}:{id}        | string | JSON-encoded entity       |
| {prefix}:_index:{collection}      | set    | ids stored in collection  |
| {prefix}:_collections             | set    | collection names          |

Algorithmic Complexity:
-----------------------
| Operation      | Time     | Notes                                 |
|----------------|----------|---------------------------------------|
| find_by_id     | O(1)     | GET                                   |
| insert         | O(1)     | SISMEMBER + SET + SADD                |
| find / count   | O(N)     | SMEMBERS + MGET, filtered client-side |
| update / delete| O(N)     | as find, then per-record writes       |

Filters are evaluated client-side with the same Condition semantics the
in-memory adapter uses, so both backends answer identical queries the
same way. Without a sort, find() returns records ordered by id.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Sequence

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from syncmesh.core.types import (
    Result, Ok, Err, Entity, ID_FIELD,
    generate_id,
)
from syncmesh.core.errors import StorageError
from syncmesh.core.config import RedisConfig
from syncmesh.adapters.query import (
    Filter,
    QueryOptions,
    UpdateOptions,
    UpdateResult,
)

logger = logging.getLogger(__name__)

_BACKEND_ERRORS = (RedisError, OSError)


class RedisAdapter:
    """
    Redis store implementing AdapterProtocol.

    Example:
        >>> adapter = RedisAdapter(RedisConfig(host="redis.example.com"), name="B")
        >>> await adapter.connect()
        >>> await adapter.insert("issues", {"id": "e1", "title": "x"})
        >>> await adapter.disconnect()
    """

    __slots__ = ("_config", "_name", "_client", "_connected")

    def __init__(
        self,
        config: Optional[RedisConfig] = None,
        name: str = "redis",
        client: Optional[aioredis.Redis] = None,
    ) -> None:
        """
        Args:
            config: Connection settings; defaults to localhost.
            name: Adapter name recorded on sync operations.
            client: Pre-built client. When given, connect() uses it
                instead of opening a new connection pool.
        """
        self._config = config or RedisConfig()
        self._name = name
        self._client = client
        self._connected = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def adapter_type(self) -> str:
        return "redis"

    @property
    def is_connected(self) -> bool:
        return self._connected

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def connect(self) -> Result[None, StorageError]:
        """
        Open the connection pool and verify it with PING.

        Returns:
            Ok(None) on success, Err(connection_failed) otherwise.
        """
        try:
            if self._client is None:
                self._client = aioredis.Redis(**self._config.get_connection_kwargs())
            await self._client.ping()
        except _BACKEND_ERRORS as e:
            logger.warning(
                "Redis connection failed",
                extra={"adapter": self._name, "host": self._config.host, "error": str(e)},
            )
            return Err(StorageError.connection_failed(self._name, e))

        self._connected = True
        logger.info(
            "Redis adapter connected",
            extra={"adapter": self._name, "host": self._config.host, "port": self._config.port},
        )
        return Ok(None)

    async def disconnect(self) -> Result[None, StorageError]:
        """Close the pool. Safe to call multiple times."""
        self._connected = False
        if self._client is None:
            return Ok(None)
        try:
            await self._client.aclose()
        except _BACKEND_ERRORS as e:
            return Err(StorageError.io_failure(self._name, "disconnect", e))
        finally:
            self._client = None
        return Ok(None)

    # -------------------------------------------------------------------------
    # READS
    # -------------------------------------------------------------------------

    async def find(
        self,
        collection: str,
        query: Optional[Filter] = None,
        options: Optional[QueryOptions] = None,
    ) -> Result[list[Entity], StorageError]:
        if not self._connected:
            return Err(StorageError.not_connected(self._name))

        loaded = await self._load_matching(collection, query)
        if loaded.is_err():
            return loaded
        records = loaded.unwrap()
        if options is not None:
            records = options.apply(records)
        return Ok(records)

    async def find_one(
        self,
        collection: str,
        query: Optional[Filter] = None,
        options: Optional[QueryOptions] = None,
    ) -> Result[Optional[Entity], StorageError]:
        base = options or QueryOptions()
        limited = QueryOptions(limit=1, skip=base.skip, sort=base.sort)
        return (await self.find(collection, query, limited)).map(
            lambda records: records[0] if records else None
        )

    async def find_by_id(
        self,
        collection: str,
        entity_id: str,
    ) -> Result[Optional[Entity], StorageError]:
        if not self._connected:
            return Err(StorageError.not_connected(self._name))

        try:
            raw = await self._client.get(self._entity_key(collection, entity_id))
        except _BACKEND_ERRORS as e:
            return Err(StorageError.io_failure(self._name, "find_by_id", e))

        if raw is None:
            return Ok(None)
        return self._decode(collection, raw)

    async def count(
        self,
        collection: str,
        query: Optional[Filter] = None,
    ) -> Result[int, StorageError]:
        if not self._connected:
            return Err(StorageError.not_connected(self._name))

        if query is None or not query.conditions:
            try:
                return Ok(int(await self._client.scard(self._index_key(collection))))
            except _BACKEND_ERRORS as e:
                return Err(StorageError.io_failure(self._name, "count", e))
        return (await self._load_matching(collection, query)).map(len)

    # -------------------------------------------------------------------------
    # WRITES
    # -------------------------------------------------------------------------

    async def insert(
        self,
        collection: str,
        entity: Entity,
    ) -> Result[Entity, StorageError]:
        if not self._connected:
            return Err(StorageError.not_connected(self._name))

        stored = dict(entity)
        if not stored.get(ID_FIELD):
            stored[ID_FIELD] = generate_id()
        encoded = self._encode(collection, stored)
        if encoded.is_err():
            return encoded

        entity_id = stored[ID_FIELD]
        try:
            if await self._client.sismember(self._index_key(collection), entity_id):
                return Err(StorageError.duplicate_key(collection, entity_id))
            await self._client.set(self._entity_key(collection, entity_id), encoded.unwrap())
            await self._client.sadd(self._index_key(collection), entity_id)
            await self._client.sadd(self._collections_key(), collection)
        except _BACKEND_ERRORS as e:
            return Err(StorageError.io_failure(self._name, "insert", e))

        # Round-trip through JSON so the caller sees what a read returns
        return self._decode(collection, encoded.unwrap())

    async def insert_many(
        self,
        collection: str,
        entities: Sequence[Entity],
    ) -> Result[list[Entity], StorageError]:
        """Insert all entities with one MSET, rejecting any duplicate id up front."""
        if not self._connected:
            return Err(StorageError.not_connected(self._name))
        if not entities:
            return Ok([])

        prepared: list[Entity] = []
        payload: dict[str, str] = {}
        for entity in entities:
            stored = dict(entity)
            if not stored.get(ID_FIELD):
                stored[ID_FIELD] = generate_id()
            encoded = self._encode(collection, stored)
            if encoded.is_err():
                return encoded
            key = self._entity_key(collection, stored[ID_FIELD])
            if key in payload:
                return Err(StorageError.duplicate_key(collection, stored[ID_FIELD]))
            payload[key] = encoded.unwrap()
            prepared.append(stored)

        ids = [stored[ID_FIELD] for stored in prepared]
        try:
            existing = await self._client.smembers(self._index_key(collection))
            for entity_id in ids:
                if entity_id in existing:
                    return Err(StorageError.duplicate_key(collection, entity_id))
            await self._client.mset(payload)
            await self._client.sadd(self._index_key(collection), *ids)
            await self._client.sadd(self._collections_key(), collection)
        except _BACKEND_ERRORS as e:
            return Err(StorageError.io_failure(self._name, "insert_many", e))

        decoded: list[Entity] = []
        for raw in payload.values():
            result = self._decode(collection, raw)
            if result.is_err():
                return result
            decoded.append(result.unwrap())
        return Ok(decoded)

    async def update(
        self,
        collection: str,
        query: Filter,
        patch: Entity,
        options: Optional[UpdateOptions] = None,
    ) -> Result[UpdateResult, StorageError]:
        if not self._connected:
            return Err(StorageError.not_connected(self._name))
        options = options or UpdateOptions()

        loaded = await self._load_matching(collection, query)
        if loaded.is_err():
            return loaded
        matched = loaded.unwrap()
        if not options.multi:
            matched = matched[:1]

        changes = {key: value for key, value in patch.items() if key != ID_FIELD}

        if not matched and options.upsert:
            seed = {
                condition.field: condition.value
                for condition in query.conditions
                if condition.op.name == "EQ" and "." not in condition.field
            }
            return (await self.insert(collection, {**seed, **changes})).map(
                lambda created: UpdateResult(upserted=created)
            )

        modified = 0
        for record in matched:
            merged = {**record, **changes}
            if merged == record:
                continue
            written = await self._write(collection, merged, "update")
            if written.is_err():
                return written
            modified += 1
        return Ok(UpdateResult(matched=len(matched), modified=modified))

    async def update_by_id(
        self,
        collection: str,
        entity_id: str,
        patch: Entity,
    ) -> Result[Optional[Entity], StorageError]:
        current = await self.find_by_id(collection, entity_id)
        if current.is_err() or current.unwrap() is None:
            return current

        merged = {**current.unwrap(), **{k: v for k, v in patch.items() if k != ID_FIELD}}
        written = await self._write(collection, merged, "update_by_id")
        if written.is_err():
            return written
        return self._decode(collection, written.unwrap())

    async def delete(
        self,
        collection: str,
        query: Filter,
    ) -> Result[int, StorageError]:
        if not self._connected:
            return Err(StorageError.not_connected(self._name))

        loaded = await self._load_matching(collection, query)
        if loaded.is_err():
            return loaded
        ids = [record[ID_FIELD] for record in loaded.unwrap()]
        if not ids:
            return Ok(0)

        try:
            await self._client.delete(*(self._entity_key(collection, i) for i in ids))
            await self._client.srem(self._index_key(collection), *ids)
        except _BACKEND_ERRORS as e:
            return Err(StorageError.io_failure(self._name, "delete", e))
        return Ok(len(ids))

    async def delete_by_id(
        self,
        collection: str,
        entity_id: str,
    ) -> Result[bool, StorageError]:
        if not self._connected:
            return Err(StorageError.not_connected(self._name))

        try:
            removed = await self._client.delete(self._entity_key(collection, entity_id))
            await self._client.srem(self._index_key(collection), entity_id)
        except _BACKEND_ERRORS as e:
            return Err(StorageError.io_failure(self._name, "delete_by_id", e))
        return Ok(bool(removed))

    # -------------------------------------------------------------------------
    # COLLECTIONS
    # -------------------------------------------------------------------------

    async def collection_exists(self, collection: str) -> Result[bool, StorageError]:
        if not self._connected:
            return Err(StorageError.not_connected(self._name))
        try:
            return Ok(bool(await self._client.sismember(self._collections_key(), collection)))
        except _BACKEND_ERRORS as e:
            return Err(StorageError.io_failure(self._name, "collection_exists", e))

    async def create_collection(self, collection: str) -> Result[bool, StorageError]:
        if not self._connected:
            return Err(StorageError.not_connected(self._name))
        try:
            return Ok(bool(await self._client.sadd(self._collections_key(), collection)))
        except _BACKEND_ERRORS as e:
            return Err(StorageError.io_failure(self._name, "create_collection", e))

    async def drop_collection(self, collection: str) -> Result[bool, StorageError]:
        if not self._connected:
            return Err(StorageError.not_connected(self._name))
        try:
            ids = await self._client.smembers(self._index_key(collection))
            keys = [self._entity_key(collection, i) for i in ids]
            await self._client.delete(self._index_key(collection), *keys)
            removed = await self._client.srem(self._collections_key(), collection)
        except _BACKEND_ERRORS as e:
            return Err(StorageError.io_failure(self._name, "drop_collection", e))
        return Ok(bool(removed))

    async def get_collection_names(self) -> Result[list[str], StorageError]:
        if not self._connected:
            return Err(StorageError.not_connected(self._name))
        try:
            return Ok(sorted(await self._client.smembers(self._collections_key())))
        except _BACKEND_ERRORS as e:
            return Err(StorageError.io_failure(self._name, "get_collection_names", e))

    # -------------------------------------------------------------------------
    # INTERNALS
    # -------------------------------------------------------------------------

    def _entity_key(self, collection: str, entity_id: str) -> str:
        return f"{self._config.key_prefix}:{collection}:{entity_id}"

    def _index_key(self, collection: str) -> str:
        return f"{self._config.key_prefix}:_index:{collection}"

    def _collections_key(self) -> str:
        return f"{self._config.key_prefix}:_collections"

    def _encode(self, collection: str, entity: Entity) -> Result[str, StorageError]:
        try:
            return Ok(json.dumps(entity, separators=(",", ":")))
        except (TypeError, ValueError) as e:
            return Err(StorageError.serialization_failed(collection, e))

    def _decode(self, collection: str, raw: Any) -> Result[Entity, StorageError]:
        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as e:
            return Err(StorageError.serialization_failed(collection, e))
        if not isinstance(value, dict):
            return Err(StorageError.serialization_failed(
                collection, ValueError(f"expected object, got {type(value).__name__}")
            ))
        return Ok(value)

    async def _write(
        self,
        collection: str,
        entity: Entity,
        operation: str,
    ) -> Result[str, StorageError]:
        encoded = self._encode(collection, entity)
        if encoded.is_err():
            return encoded
        try:
            await self._client.set(self._entity_key(collection, entity[ID_FIELD]), encoded.unwrap())
        except _BACKEND_ERRORS as e:
            return Err(StorageError.io_failure(self._name, operation, e))
        return encoded

    async def _load_matching(
        self,
        collection: str,
        query: Optional[Filter],
    ) -> Result[list[Entity], StorageError]:
        """Fetch the collection (or the single pinned id) and filter client-side."""
        try:
            pinned = query.id_value() if query is not None else None
            if pinned is not None:
                ids = [pinned]
            else:
                ids = sorted(await self._client.smembers(self._index_key(collection)))
            if not ids:
                return Ok([])
            raws = await self._client.mget([self._entity_key(collection, i) for i in ids])
        except _BACKEND_ERRORS as e:
            return Err(StorageError.io_failure(self._name, "find", e))

        records: list[Entity] = []
        for raw in raws:
            if raw is None:
                continue
            decoded = self._decode(collection, raw)
            if decoded.is_err():
                return decoded
            record = decoded.unwrap()
            if query is None or query.matches(record):
                records.append(record)
        return Ok(records)
