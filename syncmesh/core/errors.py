"""
Error Hierarchy for the Sync Mesh

Design Principles:
- Expected failures travel as Err values, not exceptions
- Misuse (uninitialized manager, disconnected adapter on registration)
  raises, so programming errors fail fast
- Carry full error context for debugging and for the operation log

Each error type includes:
- Unique error code for programmatic handling
- Human-readable message for logging
- Optional cause for root cause analysis
- Timestamp for correlation with log records

Usage:
    result = await adapter.find_by_id("issues", "e1")
    match result:
        case Ok(entity):
            process(entity)
        case Err(StorageError() as error) if error.code is ErrorCode.STORAGE_NOT_CONNECTED:
            reconnect()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from syncmesh.core.types import Timestamp


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Storage (adapter) errors
    - 2xxx: Synchronization errors
    - 3xxx: Cache errors
    - 6xxx: Reliability errors
    - 9xxx: Internal/configuration errors
    """

    # Storage errors (1xxx)
    STORAGE_CONNECTION_FAILED = 1001
    STORAGE_NOT_CONNECTED = 1002
    STORAGE_DUPLICATE_KEY = 1003
    STORAGE_NOT_FOUND = 1004
    STORAGE_SERIALIZATION_FAILED = 1005
    STORAGE_IO_FAILURE = 1006

    # Sync errors (2xxx)
    SYNC_NOT_INITIALIZED = 2001
    SYNC_ADAPTER_NOT_CONNECTED = 2002
    SYNC_ADAPTER_NOT_REGISTERED = 2003
    SYNC_UNKNOWN_OPERATION = 2004
    SYNC_BATCH_ABORTED = 2005
    SYNC_INVALID_OPERATION = 2006

    # Cache errors (3xxx)
    CACHE_NOT_INITIALIZED = 3001
    CACHE_ADAPTER_NOT_CONNECTED = 3002

    # Reliability errors (6xxx)
    RELIABILITY_RETRY_EXHAUSTED = 6001

    # Internal errors (9xxx)
    INTERNAL_ERROR = 9001
    INTERNAL_CONFIGURATION_ERROR = 9002
    INTERNAL_NOT_INITIALIZED = 9003


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class SyncMeshError(Exception):
    """
    Base class for all sync mesh errors.

    Usable both as an exception (raised on misuse) and as the payload of
    an Err result (returned on expected failure).
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[Exception] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp_nanos": self.timestamp.nanos,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# STORAGE ERRORS (ADAPTERS)
# =============================================================================
@dataclass
class StorageError(SyncMeshError):
    """
    Errors surfaced by adapters.

    Covers connectivity, key conflicts, serialization and backend I/O.
    """

    @classmethod
    def connection_failed(
        cls,
        adapter: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        """Adapter could not reach its backend."""
        return cls(
            code=ErrorCode.STORAGE_CONNECTION_FAILED,
            message=f"Adapter '{adapter}' failed to connect: {cause}",
            cause=cause,
            context={"adapter": adapter},
        )

    @classmethod
    def not_connected(cls, adapter: str) -> StorageError:
        """Operation attempted on a disconnected adapter."""
        return cls(
            code=ErrorCode.STORAGE_NOT_CONNECTED,
            message=f"Adapter '{adapter}' is not connected",
            context={"adapter": adapter},
        )

    @classmethod
    def duplicate_key(cls, collection: str, entity_id: str) -> StorageError:
        """Insert of an id that already exists."""
        return cls(
            code=ErrorCode.STORAGE_DUPLICATE_KEY,
            message=f"Entity '{entity_id}' already exists in '{collection}'",
            context={"collection": collection, "entity_id": entity_id},
        )

    @classmethod
    def not_found(cls, collection: str, entity_id: str) -> StorageError:
        """Entity required by the operation does not exist."""
        return cls(
            code=ErrorCode.STORAGE_NOT_FOUND,
            message=f"Entity '{entity_id}' not found in '{collection}'",
            context={"collection": collection, "entity_id": entity_id},
        )

    @classmethod
    def serialization_failed(
        cls,
        collection: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        """Entity could not be encoded or decoded."""
        return cls(
            code=ErrorCode.STORAGE_SERIALIZATION_FAILED,
            message=f"Serialization failed for '{collection}': {cause}",
            cause=cause,
            context={"collection": collection},
        )

    @classmethod
    def io_failure(
        cls,
        adapter: str,
        operation: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        """Backend raised during an operation."""
        return cls(
            code=ErrorCode.STORAGE_IO_FAILURE,
            message=f"Adapter '{adapter}' failed during {operation}: {cause}",
            cause=cause,
            context={"adapter": adapter, "operation": operation},
        )


# =============================================================================
# SYNC ERRORS (OPERATION LOG AND REPLICATION)
# =============================================================================
@dataclass
class SyncError(SyncMeshError):
    """Errors from the operation log and the replicator."""

    @classmethod
    def not_initialized(cls) -> SyncError:
        return cls(
            code=ErrorCode.SYNC_NOT_INITIALIZED,
            message="Sync manager not initialized",
        )

    @classmethod
    def adapter_not_connected(cls, name: str) -> SyncError:
        """Registration of an adapter that has not connected yet."""
        return cls(
            code=ErrorCode.SYNC_ADAPTER_NOT_CONNECTED,
            message=f"Adapter {name} is not connected",
            context={"adapter": name},
        )

    @classmethod
    def adapter_not_registered(cls, name: str) -> SyncError:
        """Operation targets an adapter the manager does not know."""
        return cls(
            code=ErrorCode.SYNC_ADAPTER_NOT_REGISTERED,
            message=f"Target adapter not found: {name}",
            context={"adapter": name},
        )

    @classmethod
    def unknown_operation(cls, operation_type: str) -> SyncError:
        return cls(
            code=ErrorCode.SYNC_UNKNOWN_OPERATION,
            message=f"Unknown operation type: {operation_type}",
            context={"operation_type": operation_type},
        )

    @classmethod
    def invalid_operation(cls, operation_id: str, reason: str) -> SyncError:
        """Operation record is missing a field its type requires."""
        return cls(
            code=ErrorCode.SYNC_INVALID_OPERATION,
            message=f"Invalid sync operation {operation_id}: {reason}",
            context={"operation_id": operation_id, "reason": reason},
        )

    @classmethod
    def batch_aborted(
        cls,
        operation_id: str,
        index: int,
        cause: SyncMeshError,
    ) -> SyncError:
        """Batch stopped at its first failing sub-operation."""
        return cls(
            code=ErrorCode.SYNC_BATCH_ABORTED,
            message=(
                f"Batch {operation_id} aborted at sub-operation {index}: {cause}"
            ),
            cause=cause,
            context={"operation_id": operation_id, "failed_index": index},
        )


# =============================================================================
# CACHE ERRORS
# =============================================================================
@dataclass
class CacheError(SyncMeshError):
    """Errors from the cache manager lifecycle."""

    @classmethod
    def not_initialized(cls) -> CacheError:
        return cls(
            code=ErrorCode.CACHE_NOT_INITIALIZED,
            message="Cache manager not initialized",
        )

    @classmethod
    def adapter_not_connected(cls, name: str) -> CacheError:
        return cls(
            code=ErrorCode.CACHE_ADAPTER_NOT_CONNECTED,
            message=f"Adapter {name} is not connected",
            context={"adapter": name},
        )


# =============================================================================
# RELIABILITY ERRORS
# =============================================================================
@dataclass
class ReliabilityError(SyncMeshError):
    """Errors from the retry subsystem."""

    @classmethod
    def retry_exhausted(
        cls,
        attempts: int,
        last_error: str,
    ) -> ReliabilityError:
        """All retry attempts exhausted."""
        return cls(
            code=ErrorCode.RELIABILITY_RETRY_EXHAUSTED,
            message=f"Retry exhausted after {attempts} attempts: {last_error}",
            context={"attempts": attempts, "last_error": last_error},
        )


# =============================================================================
# INTERNAL ERRORS
# =============================================================================
@dataclass
class InternalError(SyncMeshError):
    """Unexpected exceptions converted at a component boundary."""

    @classmethod
    def unexpected(cls, where: str, cause: Exception) -> InternalError:
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Unexpected error in {where}: {cause!r}",
            cause=cause,
            context={"where": where},
        )

    @classmethod
    def invalid_configuration(cls, reason: str) -> InternalError:
        return cls(
            code=ErrorCode.INTERNAL_CONFIGURATION_ERROR,
            message=f"Invalid configuration: {reason}",
            context={"reason": reason},
        )

    @classmethod
    def not_initialized(cls, component: str) -> InternalError:
        """Component used before initialize()."""
        return cls(
            code=ErrorCode.INTERNAL_NOT_INITIALIZED,
            message=f"{component} not initialized",
            context={"component": component},
        )
