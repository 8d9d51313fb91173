"""
Unified Database: Single CRUD Facade over Primary, Cache and Replicator

High-level entry point the application talks to:
- Writes go to the primary adapter synchronously
- The cache is refreshed (or invalidated) in the same call
- One sync operation per registered secondary is appended to the log
  before the call returns; applying it happens later in a sync cycle

Error Policy:
    Primary-path failures (the primary read or write) are returned to the
    caller as Err. Secondary-path failures (enqueueing a sync operation,
    replicating, caching) are logged and never fail the caller's request.

Usage:
    db = UnifiedDatabase(primary, secondaries={"A": mirror_a, "B": mirror_b})
    (await db.initialize()).unwrap()

    created = (await db.insert("issues", {"type": "issue", "name": "Bug"})).unwrap()
    await db.sync_now()
    await db.close()
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping, Optional, Sequence

from syncmesh.core.types import (
    Result, Ok, Err, Entity, ID_FIELD, UPDATED_AT_FIELD,
    prepare_entity, utc_now_iso,
)
from syncmesh.core.errors import SyncMeshError, StorageError, InternalError
from syncmesh.core.config import CacheConfig, SyncConfig, SyncMeshConfig
from syncmesh.adapters.protocols import AdapterProtocol
from syncmesh.adapters.query import Filter, QueryOptions
from syncmesh.cache.manager import CacheManager
from syncmesh.sync.manager import SyncManager

logger = logging.getLogger(__name__)


# =============================================================================
# EVENTS
# =============================================================================
ENTITY_INSERTED = "entity-inserted"
ENTITIES_INSERTED = "entities-inserted"
ENTITY_UPDATED = "entity-updated"
ENTITY_DELETED = "entity-deleted"

EVENTS = frozenset({ENTITY_INSERTED, ENTITIES_INSERTED, ENTITY_UPDATED, ENTITY_DELETED})

EventCallback = Callable[[dict[str, Any]], None]


class UnifiedDatabase:
    """
    CRUD facade composing the primary adapter, CacheManager and SyncManager.

    Every read and write accepts ``use_cache`` (default True); every write
    accepts ``sync`` (default True) to skip fan-out for that call.
    """

    __slots__ = (
        "_primary", "_cache", "_sync", "_pending_secondaries",
        "_listeners", "_initialized",
    )

    def __init__(
        self,
        primary: AdapterProtocol,
        cache_config: Optional[CacheConfig] = None,
        sync_config: Optional[SyncConfig] = None,
        secondaries: Optional[Mapping[str, AdapterProtocol]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            primary: Authoritative store; also hosts the operation log.
            cache_config: Read cache settings.
            sync_config: Replicator settings.
            secondaries: Mirrors connected and registered by initialize().
            clock: Monotonic seconds source for cache TTLs.
        """
        self._primary = primary
        self._cache = CacheManager(primary, cache_config, clock=clock)
        self._sync = SyncManager(primary, sync_config)
        self._pending_secondaries: dict[str, AdapterProtocol] = dict(secondaries or {})
        self._listeners: dict[str, list[EventCallback]] = {event: [] for event in EVENTS}
        self._initialized = False

    @classmethod
    def from_config(
        cls,
        primary: AdapterProtocol,
        config: SyncMeshConfig,
        secondaries: Optional[Mapping[str, AdapterProtocol]] = None,
    ) -> UnifiedDatabase:
        """
        Build from a root configuration.

        Raises:
            InternalError: If the configuration does not validate.
        """
        checked = config.validate()
        if checked.is_err():
            raise InternalError.invalid_configuration(checked.error)
        return cls(primary, config.cache, config.sync, secondaries)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def primary(self) -> AdapterProtocol:
        return self._primary

    @property
    def cache(self) -> CacheManager:
        return self._cache

    @property
    def sync_manager(self) -> SyncManager:
        return self._sync

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> Result[None, SyncMeshError]:
        """
        Connect the primary, start both managers, connect and register
        the configured secondaries.
        """
        if not self._primary.is_connected:
            connected = await self._primary.connect()
            if connected.is_err():
                return connected

        initialized = await self._sync.initialize()
        if initialized.is_err():
            return initialized
        await self._cache.initialize()

        for name, adapter in list(self._pending_secondaries.items()):
            registered = await self.register_secondary(name, adapter)
            if registered.is_err():
                return registered
        self._pending_secondaries.clear()

        self._initialized = True
        logger.info(
            "Unified database initialized",
            extra={"primary": self._primary.name, "secondaries": self.secondaries},
        )
        return Ok(None)

    async def register_secondary(
        self,
        name: str,
        adapter: AdapterProtocol,
    ) -> Result[None, StorageError]:
        """Connect (if needed) and register a replication target."""
        if not adapter.is_connected:
            connected = await adapter.connect()
            if connected.is_err():
                logger.error(
                    "Failed to connect secondary adapter",
                    extra={"adapter": name, "error": str(connected.error)},
                )
                return connected
        self._sync.register_adapter(name, adapter)
        return Ok(None)

    def unregister_secondary(self, name: str) -> bool:
        """Stop fanning out to name. Its pending operations will fail on replay."""
        return self._sync.unregister_adapter(name)

    @property
    def secondaries(self) -> list[str]:
        return self._sync.registered_adapters

    def start(self) -> None:
        """Start the periodic sync cycle."""
        self._ensure_initialized()
        self._sync.start_sync()

    def stop(self) -> None:
        self._sync.stop_sync()

    def clear_cache(self) -> None:
        """Drop every cached entity; the primary and the log are untouched."""
        self._ensure_initialized()
        self._cache.clear()

    async def sync_now(self) -> bool:
        """Run one sync cycle immediately."""
        self._ensure_initialized()
        return await self._sync.sync()

    async def close(self) -> None:
        """Stop timers, let an in-flight cycle finish, disconnect every adapter."""
        await self._sync.dispose()
        self._cache.dispose()

        for name in self._sync.registered_adapters:
            adapter = self._sync.get_adapter(name)
            self._sync.unregister_adapter(name)
            if adapter is None:
                continue
            disconnected = await adapter.disconnect()
            if disconnected.is_err():
                logger.warning(
                    "Failed to disconnect secondary adapter",
                    extra={"adapter": name, "error": str(disconnected.error)},
                )

        disconnected = await self._primary.disconnect()
        if disconnected.is_err():
            logger.warning(
                "Failed to disconnect primary adapter",
                extra={"error": str(disconnected.error)},
            )
        self._initialized = False
        logger.info("Unified database closed")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def find(
        self,
        collection: str,
        query: Optional[Filter] = None,
        options: Optional[QueryOptions] = None,
    ) -> Result[list[Entity], StorageError]:
        """Query the primary directly; query results are not cached."""
        self._ensure_initialized()
        return await self._primary.find(collection, query, options)

    async def find_one(
        self,
        collection: str,
        query: Optional[Filter] = None,
        options: Optional[QueryOptions] = None,
        use_cache: bool = True,
    ) -> Result[Optional[Entity], StorageError]:
        """
        Cache-first when the filter pins an id and nothing else; otherwise
        the primary is queried and a hit is cached.
        """
        self._ensure_initialized()
        entity_id = query.id_value() if query is not None else None
        if use_cache and entity_id is not None and len(query.conditions) == 1:
            cached = self._cache.get(collection, entity_id)
            if cached is not None:
                return Ok(cached)

        found = await self._primary.find_one(collection, query, options)
        if found.is_ok() and found.unwrap() is not None and use_cache:
            entity = found.unwrap()
            self._cache.set(collection, entity[ID_FIELD], entity)
        return found

    async def find_by_id(
        self,
        collection: str,
        entity_id: str,
        use_cache: bool = True,
    ) -> Result[Optional[Entity], StorageError]:
        self._ensure_initialized()
        if use_cache:
            cached = self._cache.get(collection, entity_id)
            if cached is not None:
                return Ok(cached)

        found = await self._primary.find_by_id(collection, entity_id)
        if found.is_ok() and found.unwrap() is not None and use_cache:
            self._cache.set(collection, entity_id, found.unwrap())
        return found

    async def count(
        self,
        collection: str,
        query: Optional[Filter] = None,
    ) -> Result[int, StorageError]:
        self._ensure_initialized()
        return await self._primary.count(collection, query)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert(
        self,
        collection: str,
        entity: Entity,
        use_cache: bool = True,
        sync: bool = True,
    ) -> Result[Entity, StorageError]:
        """Insert into the primary and return its canonical copy."""
        self._ensure_initialized()
        inserted = await self._primary.insert(collection, prepare_entity(entity))
        if inserted.is_err():
            return inserted
        stored = inserted.unwrap()

        if use_cache:
            self._cache.set(collection, stored[ID_FIELD], stored)
        if sync:
            for target in self._sync.registered_adapters:
                enqueued = await self._sync.create_entity(
                    self._primary.name, target, collection, stored
                )
                self._log_enqueue_failure(enqueued, target, collection, stored[ID_FIELD])

        self._emit(ENTITY_INSERTED, {"collection": collection, "entity": stored})
        return inserted

    async def insert_many(
        self,
        collection: str,
        entities: Sequence[Entity],
        use_cache: bool = True,
        sync: bool = True,
    ) -> Result[list[Entity], StorageError]:
        self._ensure_initialized()
        now = utc_now_iso()
        inserted = await self._primary.insert_many(
            collection, [prepare_entity(entity, now) for entity in entities]
        )
        if inserted.is_err():
            return inserted
        stored = inserted.unwrap()

        if use_cache:
            for entity in stored:
                self._cache.set(collection, entity[ID_FIELD], entity)
        if sync:
            for target in self._sync.registered_adapters:
                for entity in stored:
                    enqueued = await self._sync.create_entity(
                        self._primary.name, target, collection, entity
                    )
                    self._log_enqueue_failure(enqueued, target, collection, entity[ID_FIELD])

        self._emit(ENTITIES_INSERTED, {"collection": collection, "entities": stored})
        return inserted

    async def update(
        self,
        collection: str,
        entity_id: str,
        patch: Entity,
        use_cache: bool = True,
        sync: bool = True,
    ) -> Result[Optional[Entity], StorageError]:
        """
        Stamp updated_at, write through the primary and re-read the
        canonical entity. Ok(None) when the entity does not exist.
        """
        self._ensure_initialized()
        stamped = {**patch, UPDATED_AT_FIELD: utc_now_iso()}
        written = await self._primary.update_by_id(collection, entity_id, stamped)
        if written.is_err():
            return written

        reread = await self._primary.find_by_id(collection, entity_id)
        if reread.is_err():
            return reread
        entity = reread.unwrap()
        if entity is None:
            if use_cache:
                self._cache.remove(collection, entity_id)
            return reread

        if use_cache:
            self._cache.set(collection, entity_id, entity)
        if sync:
            for target in self._sync.registered_adapters:
                enqueued = await self._sync.update_entity(
                    self._primary.name, target, collection, entity
                )
                self._log_enqueue_failure(enqueued, target, collection, entity_id)

        self._emit(ENTITY_UPDATED, {"collection": collection, "entity": entity})
        return reread

    async def delete(
        self,
        collection: str,
        entity_id: str,
        use_cache: bool = True,
        sync: bool = True,
    ) -> Result[bool, StorageError]:
        """Delete from the primary. Ok(False) when nothing was there to delete."""
        self._ensure_initialized()
        existing = await self._primary.find_by_id(collection, entity_id)
        if existing.is_err():
            return existing
        entity = existing.unwrap()
        if entity is None:
            return Ok(False)

        deleted = await self._primary.delete_by_id(collection, entity_id)
        if deleted.is_err() or not deleted.unwrap():
            return deleted

        if use_cache:
            self._cache.remove(collection, entity_id)
        if sync:
            for target in self._sync.registered_adapters:
                enqueued = await self._sync.delete_entity(
                    self._primary.name, target, collection, entity_id
                )
                self._log_enqueue_failure(enqueued, target, collection, entity_id)

        self._emit(
            ENTITY_DELETED,
            {"collection": collection, "id": entity_id, "entity": entity},
        )
        return deleted

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def on(self, event: str, callback: EventCallback) -> None:
        """Subscribe callback(payload) to one of EVENTS."""
        if event not in self._listeners:
            raise ValueError(f"Unknown event {event!r}; expected one of {sorted(EVENTS)}")
        self._listeners[event].append(callback)

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        for callback in self._listeners[event]:
            try:
                callback(payload)
            except Exception:
                logger.exception("Event listener failed", extra={"event": event})

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise InternalError.not_initialized("Unified database")

    def _log_enqueue_failure(
        self,
        enqueued: Result[str, StorageError],
        target: str,
        collection: str,
        entity_id: str,
    ) -> None:
        if enqueued.is_err():
            logger.error(
                "Failed to enqueue sync operation",
                extra={
                    "target": target,
                    "collection": collection,
                    "entity_id": entity_id,
                    "error": str(enqueued.error),
                },
            )
