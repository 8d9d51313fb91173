"""
Sync Operation Model

A SyncOperation is one replication intent: "apply this change to that
target adapter". Operations are persisted as plain records in the log
collection of the primary adapter and move through

    pending -> executing -> completed | failed

``failed`` is terminal. Records use snake_case field names; enum fields
are stored by value and ``created_at`` / ``executed_at`` are integer
nanoseconds, so the log sorts correctly on any backend.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from syncmesh.core.types import Result, Ok, Err, Entity, ID_FIELD, copy_entity, generate_id
from syncmesh.core.errors import SyncError


class SyncOperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    BATCH = "batch"


class SyncStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


_TERMINAL = frozenset({SyncStatus.COMPLETED, SyncStatus.FAILED})


@dataclass
class SyncOperation:
    """
    Replication intent.

    Sub-operations of a batch are SyncOperations too; they inherit the
    parent's target when executed and never appear in the log on their own.
    """

    type: SyncOperationType
    collection: str
    id: str = field(default_factory=generate_id)
    source_adapter: str = ""
    target_adapter: str = ""
    entity_id: Optional[str] = None
    data: Optional[Entity] = None
    batch_operations: list[SyncOperation] = field(default_factory=list)
    created_at: int = 0
    executed_at: Optional[int] = None
    status: SyncStatus = SyncStatus.PENDING
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    def validate(self) -> Result[None, SyncError]:
        """Check that the fields this operation's type needs are present."""
        if self.type in (SyncOperationType.CREATE, SyncOperationType.UPDATE):
            if not self.entity_id:
                return Err(SyncError.invalid_operation(self.id, "entity_id is required"))
            if self.data is None:
                return Err(SyncError.invalid_operation(self.id, "data is required"))
        elif self.type is SyncOperationType.DELETE:
            if not self.entity_id:
                return Err(SyncError.invalid_operation(self.id, "entity_id is required"))
        else:
            for sub in self.batch_operations:
                if sub.type is SyncOperationType.BATCH:
                    return Err(SyncError.invalid_operation(
                        self.id, "nested batch operations are not supported"
                    ))
                checked = sub.validate()
                if checked.is_err():
                    return checked
        return Ok(None)

    def to_record(self) -> Entity:
        """Log record for this operation (deep copies of payloads)."""
        return {
            ID_FIELD: self.id,
            "type": self.type.value,
            "source_adapter": self.source_adapter,
            "target_adapter": self.target_adapter,
            "collection": self.collection,
            "entity_id": self.entity_id,
            "data": copy_entity(self.data),
            "batch_operations": [sub.to_record() for sub in self.batch_operations],
            "created_at": self.created_at,
            "executed_at": self.executed_at,
            "status": self.status.value,
            "error": self.error,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Result[SyncOperation, SyncError]:
        """Rebuild an operation from its log record."""
        operation_id = str(record.get(ID_FIELD, "<missing id>"))
        try:
            op_type = SyncOperationType(record["type"])
        except KeyError:
            return Err(SyncError.invalid_operation(operation_id, "type is missing"))
        except ValueError:
            return Err(SyncError.unknown_operation(str(record["type"])))

        try:
            status = SyncStatus(record.get("status", SyncStatus.PENDING.value))
        except ValueError:
            return Err(SyncError.invalid_operation(
                operation_id, f"unknown status {record.get('status')!r}"
            ))

        if ID_FIELD not in record or "collection" not in record:
            return Err(SyncError.invalid_operation(operation_id, "id and collection are required"))

        subs: list[SyncOperation] = []
        for raw in record.get("batch_operations") or []:
            if not isinstance(raw, dict):
                return Err(SyncError.invalid_operation(operation_id, "malformed sub-operation"))
            parsed = cls.from_record(raw)
            if parsed.is_err():
                return parsed
            subs.append(parsed.unwrap())

        return Ok(cls(
            id=record[ID_FIELD],
            type=op_type,
            source_adapter=record.get("source_adapter", ""),
            target_adapter=record.get("target_adapter", ""),
            collection=record["collection"],
            entity_id=record.get("entity_id"),
            data=copy_entity(record.get("data")),
            batch_operations=subs,
            created_at=int(record.get("created_at") or 0),
            executed_at=record.get("executed_at"),
            status=status,
            error=record.get("error"),
        ))


@dataclass
class SyncStats:
    """Replicator counters, owned by one SyncManager."""
    cycles: int = 0
    skipped_cycles: int = 0
    completed: int = 0
    failed: int = 0
