"""Sync module: durable operation log and periodic replicator."""

from syncmesh.sync.operations import (
    SyncOperation,
    SyncOperationType,
    SyncStatus,
    SyncStats,
)
from syncmesh.sync.manager import (
    SyncManager,
    EVENT_CREATED,
    EVENT_COMPLETED,
    EVENT_FAILED,
)

__all__ = [
    "SyncOperation",
    "SyncOperationType",
    "SyncStatus",
    "SyncStats",
    "SyncManager",
    "EVENT_CREATED",
    "EVENT_COMPLETED",
    "EVENT_FAILED",
]
