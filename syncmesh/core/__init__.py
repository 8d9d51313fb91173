"""
Core module: Type definitions, error hierarchy, configuration and timers.

This module provides the foundational abstractions for the sync mesh:
- Result/Either monads for zero-exception control flow
- Error hierarchy with codes for programmatic handling
- Configuration management with validation
- Periodic background tasks
"""

from syncmesh.core.types import (
    Result,
    Ok,
    Err,
    Entity,
    Timestamp,
    MonotonicClock,
    generate_id,
    utc_now_iso,
    copy_entity,
    prepare_entity,
)
from syncmesh.core.errors import (
    ErrorCode,
    SyncMeshError,
    StorageError,
    SyncError,
    CacheError,
    ReliabilityError,
    InternalError,
)
from syncmesh.core.config import (
    CacheConfig,
    SyncConfig,
    RedisConfig,
    ObservabilityConfig,
    SyncMeshConfig,
)
from syncmesh.core.scheduler import PeriodicTask

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Entity",
    "Timestamp",
    "MonotonicClock",
    "generate_id",
    "utc_now_iso",
    "copy_entity",
    "prepare_entity",
    "ErrorCode",
    "SyncMeshError",
    "StorageError",
    "SyncError",
    "CacheError",
    "ReliabilityError",
    "InternalError",
    "CacheConfig",
    "SyncConfig",
    "RedisConfig",
    "ObservabilityConfig",
    "SyncMeshConfig",
    "PeriodicTask",
]
