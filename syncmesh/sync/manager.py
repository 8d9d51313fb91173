"""
Sync Manager: Durable Operation Log and Replicator

Keeps registered secondary adapters eventually consistent with the
primary:

- Every mutation is appended to the log collection on the primary as a
  pending SyncOperation (create_sync_operation and its wrappers)
- A periodic cycle (sync) replays up to batch_size pending operations in
  created_at order against their target adapters
- Each operation is marked executing, then completed or failed; failure
  of one operation never aborts the rest of the cycle
- An operation whose final status could not be written stays executing
  and is replayed by the next cycle

Replay is idempotent: create falls back to update when the entity is
already at the target, update falls back to insert when it is missing,
and delete of an absent entity succeeds.

Concurrency:
    Cycles never overlap. The _is_syncing latch is tested and set with no
    suspension point in between, and released in a finally block so a
    crashing cycle cannot wedge the replicator.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence

from syncmesh.core.types import (
    Result, Ok, Err, Entity, ID_FIELD,
    MonotonicClock, generate_id,
)
from syncmesh.core.errors import (
    SyncMeshError,
    StorageError,
    SyncError,
    InternalError,
)
from syncmesh.core.config import SyncConfig
from syncmesh.core.scheduler import PeriodicTask
from syncmesh.adapters.protocols import AdapterProtocol
from syncmesh.adapters.query import Filter, QueryOptions, SortOrder
from syncmesh.observability.logging import log_context
from syncmesh.reliability.retry import RetryPolicy, retry_with_backoff
from syncmesh.sync.operations import (
    SyncOperation,
    SyncOperationType,
    SyncStatus,
    SyncStats,
)

logger = logging.getLogger(__name__)

OperationCallback = Callable[[str, SyncOperation], None]

EVENT_CREATED = "created"
EVENT_COMPLETED = "completed"
EVENT_FAILED = "failed"


class SyncManager:
    """
    Operation log plus periodic replicator.

    Usage:
        manager = SyncManager(primary, SyncConfig(sync_interval_ms=1000))
        (await manager.initialize()).unwrap()
        manager.register_adapter("mirror", mirror)

        await manager.create_entity(primary.name, "mirror", "issues", entity)
        await manager.sync()          # or manager.start_sync()

    Args:
        primary: Adapter hosting the operation log.
        config: Replicator settings.
    """

    __slots__ = (
        "_primary", "_config", "_adapters", "_timer",
        "_initialized", "_is_syncing", "_clock", "_stats",
        "_listeners", "_retry_policy",
    )

    def __init__(
        self,
        primary: AdapterProtocol,
        config: Optional[SyncConfig] = None,
    ) -> None:
        self._primary = primary
        self._config = config or SyncConfig()
        self._adapters: dict[str, AdapterProtocol] = {}
        self._timer: Optional[PeriodicTask] = None
        self._initialized = False
        self._is_syncing = False
        self._clock = MonotonicClock()
        self._stats = SyncStats()
        self._listeners: list[OperationCallback] = []
        self._retry_policy: Optional[RetryPolicy] = (
            RetryPolicy.from_sync_config(self._config)
            if self._config.retry_enabled else None
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def is_running(self) -> bool:
        return self._timer is not None and self._timer.is_running

    @property
    def collection(self) -> str:
        """Name of the log collection on the primary."""
        return self._config.sync_operations_collection

    async def initialize(self) -> Result[None, StorageError]:
        """Create the log collection on the primary if it is missing."""
        exists = await self._primary.collection_exists(self.collection)
        if exists.is_err():
            logger.error(
                "Failed to initialize sync manager",
                extra={"error": str(exists.error)},
            )
            return exists
        if not exists.unwrap():
            created = await self._primary.create_collection(self.collection)
            if created.is_err():
                return created

        self._initialized = True
        logger.info(
            "Sync manager initialized",
            extra={"collection": self.collection, "retry_enabled": self._config.retry_enabled},
        )
        return Ok(None)

    async def dispose(self) -> None:
        """Stop the timer and wait for an in-flight cycle to finish."""
        self.stop_sync()
        await self.wait_idle()
        self._initialized = False

    async def wait_idle(self) -> None:
        """Wait until timer-spawned cycles have finished."""
        if self._timer is not None:
            await self._timer.wait_idle()

    # -------------------------------------------------------------------------
    # Adapter registry
    # -------------------------------------------------------------------------

    def register_adapter(self, name: str, adapter: AdapterProtocol) -> None:
        """
        Register a replication target under name.

        Raises:
            SyncError: If the adapter is not connected.
        """
        if not adapter.is_connected:
            raise SyncError.adapter_not_connected(name)
        self._adapters[name] = adapter
        logger.info("Registered adapter", extra={"adapter": name})

    def unregister_adapter(self, name: str) -> bool:
        removed = self._adapters.pop(name, None) is not None
        if removed:
            logger.info("Unregistered adapter", extra={"adapter": name})
        return removed

    @property
    def registered_adapters(self) -> list[str]:
        """Target names in registration order."""
        return list(self._adapters)

    def get_adapter(self, name: str) -> Optional[AdapterProtocol]:
        return self._adapters.get(name)

    # -------------------------------------------------------------------------
    # Operation log
    # -------------------------------------------------------------------------

    async def create_sync_operation(
        self,
        type: SyncOperationType,
        source_adapter: str,
        target_adapter: str,
        collection: str,
        entity_id: Optional[str] = None,
        data: Optional[Entity] = None,
        batch_operations: Optional[Sequence[SyncOperation]] = None,
    ) -> Result[str, StorageError]:
        """
        Append a pending operation to the log.

        Returns:
            Ok(operation id), or the primary's Err if the append failed.

        Raises:
            SyncError: If the manager is not initialized or the operation
                lacks a field its type requires.
        """
        self._ensure_initialized()
        operation = SyncOperation(
            type=SyncOperationType(type),
            collection=collection,
            id=generate_id(),
            source_adapter=source_adapter,
            target_adapter=target_adapter,
            entity_id=entity_id,
            data=data,
            batch_operations=list(batch_operations or ()),
            created_at=self._clock.next().nanos,
        )
        checked = operation.validate()
        if checked.is_err():
            raise checked.error

        inserted = await self._primary.insert(self.collection, operation.to_record())
        if inserted.is_err():
            logger.error(
                "Failed to create sync operation",
                extra={"operation_type": operation.type.value, "error": str(inserted.error)},
            )
            return inserted

        logger.debug(
            "Sync operation created",
            extra={
                "operation_id": operation.id,
                "operation_type": operation.type.value,
                "target": target_adapter,
                "collection": collection,
            },
        )
        self._emit(EVENT_CREATED, operation)
        return Ok(operation.id)

    async def create_entity(
        self,
        source_adapter: str,
        target_adapter: str,
        collection: str,
        entity: Entity,
    ) -> Result[str, StorageError]:
        return await self.create_sync_operation(
            SyncOperationType.CREATE, source_adapter, target_adapter,
            collection, entity.get(ID_FIELD), entity,
        )

    async def update_entity(
        self,
        source_adapter: str,
        target_adapter: str,
        collection: str,
        entity: Entity,
    ) -> Result[str, StorageError]:
        return await self.create_sync_operation(
            SyncOperationType.UPDATE, source_adapter, target_adapter,
            collection, entity.get(ID_FIELD), entity,
        )

    async def delete_entity(
        self,
        source_adapter: str,
        target_adapter: str,
        collection: str,
        entity_id: str,
    ) -> Result[str, StorageError]:
        return await self.create_sync_operation(
            SyncOperationType.DELETE, source_adapter, target_adapter,
            collection, entity_id,
        )

    async def batch_operations(
        self,
        source_adapter: str,
        target_adapter: str,
        collection: str,
        operations: Sequence[SyncOperation],
    ) -> Result[str, StorageError]:
        return await self.create_sync_operation(
            SyncOperationType.BATCH, source_adapter, target_adapter,
            collection, batch_operations=operations,
        )

    async def get_operation(self, operation_id: str) -> Result[Optional[SyncOperation], SyncMeshError]:
        found = await self._primary.find_by_id(self.collection, operation_id)
        if found.is_err():
            return found
        record = found.unwrap()
        if record is None:
            return Ok(None)
        return SyncOperation.from_record(record)

    async def list_operations(
        self,
        status: Optional[SyncStatus] = None,
        limit: Optional[int] = None,
    ) -> Result[list[SyncOperation], SyncMeshError]:
        """Log entries in created_at order, optionally filtered by status."""
        query = Filter.where(status=SyncStatus(status).value) if status is not None else None
        found = await self._primary.find(
            self.collection,
            query,
            QueryOptions(limit=limit, sort=(("created_at", SortOrder.ASC),)),
        )
        if found.is_err():
            return found

        operations: list[SyncOperation] = []
        for record in found.unwrap():
            parsed = SyncOperation.from_record(record)
            if parsed.is_err():
                return parsed
            operations.append(parsed.unwrap())
        return Ok(operations)

    # -------------------------------------------------------------------------
    # Replicator
    # -------------------------------------------------------------------------

    def start_sync(self) -> None:
        """Start (or restart) the periodic sync timer."""
        self._ensure_initialized()
        self.stop_sync()
        self._timer = PeriodicTask("sync", self._config.sync_interval_ms, self.sync)
        self._timer.start()
        logger.info("Sync started", extra={"interval_ms": self._config.sync_interval_ms})

    def stop_sync(self) -> None:
        """Clear the timer. A cycle already in flight is allowed to finish."""
        if self._timer is not None and self._timer.is_running:
            self._timer.stop()
            logger.info("Sync stopped")

    async def sync(self) -> bool:
        """
        Run one sync cycle.

        Returns:
            True if the pending batch was fetched and processed (individual
            operations may still have failed). False if a cycle was already
            in flight, in which case no work is done, if the pending
            operations could not be read, or if the log store raised.
            Never raises for storage failures.
        """
        self._ensure_initialized()
        if self._is_syncing:
            self._stats.skipped_cycles += 1
            logger.debug("Sync cycle already in flight, skipping")
            return False

        self._is_syncing = True
        try:
            with log_context(sync_cycle=generate_id()):
                return await self._run_cycle()
        except Exception:
            logger.exception("Sync cycle failed")
            return False
        finally:
            self._is_syncing = False

    async def _run_cycle(self) -> bool:
        pending = await self._primary.find(
            self.collection,
            # Cycles never overlap, so an executing record here was orphaned
            # by an interrupted cycle; replay is idempotent
            Filter.all().in_(
                "status", (SyncStatus.PENDING.value, SyncStatus.EXECUTING.value)
            ),
            QueryOptions(
                limit=self._config.batch_size,
                sort=(("created_at", SortOrder.ASC),),
            ),
        )
        if pending.is_err():
            logger.error(
                "Failed to get pending sync operations",
                extra={"error": str(pending.error)},
            )
            return False

        records = pending.unwrap()
        self._stats.cycles += 1
        if not records:
            return True

        logger.debug("Sync cycle started", extra={"pending": len(records)})
        for record in records:
            await self._process(record)
        logger.debug("Sync cycle finished", extra={"processed": len(records)})
        return True

    async def _process(self, record: Entity) -> None:
        parsed = SyncOperation.from_record(record)
        if parsed.is_err():
            operation_id = record.get(ID_FIELD)
            logger.error(
                "Malformed sync operation",
                extra={"operation_id": operation_id, "error": str(parsed.error)},
            )
            if operation_id:
                self._stats.failed += 1
                await self._mark(operation_id, SyncStatus.FAILED, str(parsed.error))
            return

        operation = parsed.unwrap()
        marked = await self._mark(operation.id, SyncStatus.EXECUTING)
        if marked.is_err():
            # Left pending; the next cycle picks it up again
            return
        operation.status = SyncStatus.EXECUTING

        target = self._adapters.get(operation.target_adapter)
        if target is None:
            outcome: Result[None, SyncMeshError] = Err(
                SyncError.adapter_not_registered(operation.target_adapter)
            )
        elif self._retry_policy is not None:
            outcome = await retry_with_backoff(
                lambda: self._execute_guarded(target, operation),
                self._retry_policy,
            )
        else:
            outcome = await self._execute_guarded(target, operation)

        if outcome.is_ok():
            operation.status = SyncStatus.COMPLETED
            operation.error = None
        else:
            operation.status = SyncStatus.FAILED
            operation.error = str(outcome.error)

        recorded = await self._mark(operation.id, operation.status, operation.error)
        if recorded.is_err():
            # Stays executing; the next cycle replays it
            return
        operation.executed_at = recorded.unwrap()

        if operation.status is SyncStatus.COMPLETED:
            self._stats.completed += 1
            logger.debug(
                "Sync operation completed",
                extra={"operation_id": operation.id, "target": operation.target_adapter},
            )
            self._emit(EVENT_COMPLETED, operation)
        else:
            self._stats.failed += 1
            logger.warning(
                "Sync operation failed",
                extra={
                    "operation_id": operation.id,
                    "target": operation.target_adapter,
                    "error": operation.error,
                },
            )
            self._emit(EVENT_FAILED, operation)

    async def _mark(
        self,
        operation_id: str,
        status: SyncStatus,
        error: Optional[str] = None,
    ) -> Result[Optional[int], SyncMeshError]:
        """Write a status transition to the log; returns executed_at when terminal."""
        executed_at = (
            self._clock.next().nanos
            if status in (SyncStatus.COMPLETED, SyncStatus.FAILED) else None
        )
        try:
            updated = await self._primary.update_by_id(
                self.collection,
                operation_id,
                {"status": status.value, "executed_at": executed_at, "error": error},
            )
        except Exception as e:
            updated = Err(InternalError.unexpected(f"{self._primary.name}.update_by_id", e))
        if updated.is_ok() and updated.unwrap() is None:
            updated = Err(StorageError.not_found(self.collection, operation_id))
        if updated.is_err():
            logger.error(
                "Failed to update sync operation status",
                extra={
                    "operation_id": operation_id,
                    "status": status.value,
                    "error": str(updated.error),
                },
            )
            return updated
        return Ok(executed_at)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def _execute_guarded(
        self,
        target: AdapterProtocol,
        operation: SyncOperation,
    ) -> Result[None, SyncMeshError]:
        """Execute, converting an adapter that raises into an Err."""
        try:
            return await self._execute(target, operation)
        except Exception as e:
            logger.exception(
                "Adapter raised during sync operation",
                extra={"operation_id": operation.id, "target": operation.target_adapter},
            )
            return Err(InternalError.unexpected(f"{target.name}.{operation.type.value}", e))

    async def _execute(
        self,
        target: AdapterProtocol,
        operation: SyncOperation,
    ) -> Result[None, SyncMeshError]:
        if operation.type is SyncOperationType.CREATE:
            return await self._apply_upsert(target, operation, prefer_insert=True)
        if operation.type is SyncOperationType.UPDATE:
            return await self._apply_upsert(target, operation, prefer_insert=False)
        if operation.type is SyncOperationType.DELETE:
            return (await target.delete_by_id(operation.collection, operation.entity_id)).map(
                lambda _: None
            )
        if operation.type is SyncOperationType.BATCH:
            return await self._apply_batch(target, operation)
        return Err(SyncError.unknown_operation(str(operation.type)))

    async def _apply_upsert(
        self,
        target: AdapterProtocol,
        operation: SyncOperation,
        prefer_insert: bool,
    ) -> Result[None, SyncMeshError]:
        """
        Insert when the entity is missing at the target, otherwise update by id.

        prefer_insert only changes the log message; create and update
        converge on the same behaviour.
        """
        entity_id = operation.entity_id
        payload = {**(operation.data or {}), ID_FIELD: entity_id}

        existing = await target.find_by_id(operation.collection, entity_id)
        if existing.is_err():
            return existing

        if existing.unwrap() is None:
            if not prefer_insert:
                logger.debug(
                    "Update target missing, inserting",
                    extra={"operation_id": operation.id, "entity_id": entity_id},
                )
            return (await target.insert(operation.collection, payload)).map(lambda _: None)

        if prefer_insert:
            logger.debug(
                "Create target exists, updating",
                extra={"operation_id": operation.id, "entity_id": entity_id},
            )
        updated = await target.update_by_id(operation.collection, entity_id, payload)
        if updated.is_err():
            return updated
        if updated.unwrap() is None:
            # Deleted between the lookup and the update
            return (await target.insert(operation.collection, payload)).map(lambda _: None)
        return Ok(None)

    async def _apply_batch(
        self,
        target: AdapterProtocol,
        operation: SyncOperation,
    ) -> Result[None, SyncMeshError]:
        """Apply sub-operations in order; stop at the first failure, no rollback."""
        for index, sub in enumerate(operation.batch_operations):
            if sub.type is SyncOperationType.BATCH:
                result: Result[None, SyncMeshError] = Err(SyncError.invalid_operation(
                    sub.id, "nested batch operations are not supported"
                ))
            else:
                result = await self._execute(target, sub)
            if result.is_err():
                return Err(SyncError.batch_aborted(operation.id, index, result.error))
        return Ok(None)

    # -------------------------------------------------------------------------
    # Introspection and events
    # -------------------------------------------------------------------------

    @property
    def stats(self) -> SyncStats:
        """Snapshot of the replicator counters."""
        return SyncStats(
            cycles=self._stats.cycles,
            skipped_cycles=self._stats.skipped_cycles,
            completed=self._stats.completed,
            failed=self._stats.failed,
        )

    def on_operation(self, callback: OperationCallback) -> None:
        """Register callback(event, operation) for created/completed/failed."""
        self._listeners.append(callback)

    def _emit(self, event: str, operation: SyncOperation) -> None:
        for callback in self._listeners:
            try:
                callback(event, operation)
            except Exception:
                logger.exception(
                    "Sync operation listener failed",
                    extra={"event": event, "operation_id": operation.id},
                )

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise SyncError.not_initialized()

    def describe(self) -> dict[str, Any]:
        """Summary used by the demo and for diagnostics."""
        return {
            "collection": self.collection,
            "adapters": self.registered_adapters,
            "running": self.is_running,
            "syncing": self._is_syncing,
            "stats": {
                "cycles": self._stats.cycles,
                "skipped_cycles": self._stats.skipped_cycles,
                "completed": self._stats.completed,
                "failed": self._stats.failed,
            },
        }
