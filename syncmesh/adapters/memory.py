"""
In-Memory Adapter: Development and Testing Backend

Production-shaped in-memory implementation of AdapterProtocol, usable as
the primary store (it hosts the operation log just as well as any other
backend) or as a secondary mirror.

Design Principles:
    - Full protocol compliance for seamless production swap
    - Safe under concurrent tasks via a single asyncio.Lock
    - Deep copies in and out, so callers never alias stored records
    - Insertion-ordered collections, stable sorting

Performance Characteristics:
    - find_by_id / insert / update_by_id / delete_by_id: O(1) average
    - find / update / delete with a Filter: O(N) scan of the collection
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence

from syncmesh.core.types import (
    Result, Ok, Err, Entity, ID_FIELD,
    copy_entity, generate_id,
)
from syncmesh.core.errors import StorageError
from syncmesh.adapters.query import (
    Filter,
    QueryOptions,
    UpdateOptions,
    UpdateResult,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================
DEFAULT_SIMULATED_LATENCY_MS: float = 0.05


class InMemoryAdapter:
    """
    In-memory store implementing AdapterProtocol.

    Thread Safety:
        All operations are protected by asyncio.Lock for
        concurrent access safety within async context.

    Example:
        adapter = InMemoryAdapter("primary")
        await adapter.connect()
        await adapter.insert("issues", {"id": "e1", "type": "issue"})
        result = await adapter.find_by_id("issues", "e1")
    """

    __slots__ = (
        "_name",
        "_collections",
        "_lock",
        "_connected",
        "_latency_ms",
    )

    def __init__(
        self,
        name: str = "memory",
        simulate_latency: bool = False,
        latency_ms: float = DEFAULT_SIMULATED_LATENCY_MS,
    ) -> None:
        """
        Initialize in-memory adapter.

        Args:
            name: Adapter name recorded on sync operations
            simulate_latency: If True, every call suspends for latency_ms
            latency_ms: Simulated per-call latency
        """
        self._name = name
        self._collections: dict[str, dict[str, Entity]] = {}
        self._lock = asyncio.Lock()
        self._connected = False
        self._latency_ms = latency_ms if simulate_latency else 0.0

    @property
    def name(self) -> str:
        return self._name

    @property
    def adapter_type(self) -> str:
        return "memory"

    @property
    def is_connected(self) -> bool:
        return self._connected

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> Result[None, StorageError]:
        self._connected = True
        logger.debug("In-memory adapter connected", extra={"adapter": self._name})
        return Ok(None)

    async def disconnect(self) -> Result[None, StorageError]:
        self._connected = False
        logger.debug("In-memory adapter disconnected", extra={"adapter": self._name})
        return Ok(None)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def find(
        self,
        collection: str,
        query: Optional[Filter] = None,
        options: Optional[QueryOptions] = None,
    ) -> Result[list[Entity], StorageError]:
        if (err := await self._enter()) is not None:
            return err

        async with self._lock:
            matched = self._match(collection, query)
            if options is not None:
                matched = options.apply(matched)
            return Ok([copy_entity(record) for record in matched])

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
        if (err := await self._enter()) is not None:
            return err

        async with self._lock:
            record = self._collections.get(collection, {}).get(entity_id)
            return Ok(copy_entity(record))

    async def count(
        self,
        collection: str,
        query: Optional[Filter] = None,
    ) -> Result[int, StorageError]:
        if (err := await self._enter()) is not None:
            return err

        async with self._lock:
            return Ok(len(self._match(collection, query)))

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert(
        self,
        collection: str,
        entity: Entity,
    ) -> Result[Entity, StorageError]:
        if (err := await self._enter()) is not None:
            return err

        async with self._lock:
            return self._insert_locked(collection, entity)

    async def insert_many(
        self,
        collection: str,
        entities: Sequence[Entity],
    ) -> Result[list[Entity], StorageError]:
        """
        Insert all entities or none.

        Duplicate ids (against the store or within the batch) reject
        the whole batch before anything is written.
        """
        if (err := await self._enter()) is not None:
            return err

        async with self._lock:
            existing = self._collections.get(collection, {})
            seen: set[str] = set()
            for entity in entities:
                entity_id = entity.get(ID_FIELD)
                if entity_id and (entity_id in existing or entity_id in seen):
                    return Err(StorageError.duplicate_key(collection, entity_id))
                if entity_id:
                    seen.add(entity_id)

            inserted: list[Entity] = []
            for entity in entities:
                inserted.append(self._insert_locked(collection, entity).unwrap())
            return Ok(inserted)

    async def update(
        self,
        collection: str,
        query: Filter,
        patch: Entity,
        options: Optional[UpdateOptions] = None,
    ) -> Result[UpdateResult, StorageError]:
        if (err := await self._enter()) is not None:
            return err

        async with self._lock:
            return Ok(self._update_locked(collection, query, patch, options or UpdateOptions()))

    async def update_by_id(
        self,
        collection: str,
        entity_id: str,
        patch: Entity,
    ) -> Result[Optional[Entity], StorageError]:
        if (err := await self._enter()) is not None:
            return err

        async with self._lock:
            outcome = self._update_locked(
                collection, Filter.by_id(entity_id), patch, UpdateOptions()
            )
            if outcome.matched == 0:
                return Ok(None)
            return Ok(copy_entity(self._collections[collection][entity_id]))

    async def delete(
        self,
        collection: str,
        query: Filter,
    ) -> Result[int, StorageError]:
        if (err := await self._enter()) is not None:
            return err

        async with self._lock:
            doomed = [record[ID_FIELD] for record in self._match(collection, query)]
            records = self._collections.get(collection, {})
            for entity_id in doomed:
                del records[entity_id]
            return Ok(len(doomed))

    async def delete_by_id(
        self,
        collection: str,
        entity_id: str,
    ) -> Result[bool, StorageError]:
        if (err := await self._enter()) is not None:
            return err

        async with self._lock:
            records = self._collections.get(collection, {})
            return Ok(records.pop(entity_id, None) is not None)

    # -------------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------------

    async def collection_exists(self, collection: str) -> Result[bool, StorageError]:
        if (err := await self._enter()) is not None:
            return err
        return Ok(collection in self._collections)

    async def create_collection(self, collection: str) -> Result[bool, StorageError]:
        if (err := await self._enter()) is not None:
            return err

        async with self._lock:
            if collection in self._collections:
                return Ok(False)
            self._collections[collection] = {}
            return Ok(True)

    async def drop_collection(self, collection: str) -> Result[bool, StorageError]:
        if (err := await self._enter()) is not None:
            return err

        async with self._lock:
            return Ok(self._collections.pop(collection, None) is not None)

    async def get_collection_names(self) -> Result[list[str], StorageError]:
        if (err := await self._enter()) is not None:
            return err
        return Ok(list(self._collections))

    # -------------------------------------------------------------------------
    # Internals (caller holds the lock)
    # -------------------------------------------------------------------------

    async def _enter(self) -> Optional[Err[StorageError]]:
        """Connectivity gate plus optional simulated latency."""
        if not self._connected:
            return Err(StorageError.not_connected(self._name))
        if self._latency_ms:
            await asyncio.sleep(self._latency_ms / 1000)
        return None

    def _match(self, collection: str, query: Optional[Filter]) -> list[Entity]:
        records = self._collections.get(collection, {})
        if query is None:
            return list(records.values())
        entity_id = query.id_value()
        if entity_id is not None:
            record = records.get(entity_id)
            return [record] if record is not None and query.matches(record) else []
        return [record for record in records.values() if query.matches(record)]

    def _insert_locked(self, collection: str, entity: Entity) -> Result[Entity, StorageError]:
        stored = copy_entity(entity)
        if not stored.get(ID_FIELD):
            stored[ID_FIELD] = generate_id()
        records = self._collections.setdefault(collection, {})
        if stored[ID_FIELD] in records:
            return Err(StorageError.duplicate_key(collection, stored[ID_FIELD]))
        records[stored[ID_FIELD]] = stored
        return Ok(copy_entity(stored))

    def _update_locked(
        self,
        collection: str,
        query: Filter,
        patch: Entity,
        options: UpdateOptions,
    ) -> UpdateResult:
        changes: dict[str, Any] = {
            key: value for key, value in copy_entity(patch).items() if key != ID_FIELD
        }
        matched = self._match(collection, query)
        if not options.multi:
            matched = matched[:1]

        if not matched and options.upsert:
            seed = {
                condition.field: condition.value
                for condition in query.conditions
                if condition.op.name == "EQ" and "." not in condition.field
            }
            created = self._insert_locked(collection, {**seed, **changes})
            if created.is_err():
                return UpdateResult()
            return UpdateResult(matched=0, modified=0, upserted=created.unwrap())

        modified = 0
        records = self._collections.get(collection, {})
        for record in matched:
            merged = {**record, **changes}
            if merged != record:
                records[record[ID_FIELD]] = merged
                modified += 1
        return UpdateResult(matched=len(matched), modified=modified)
