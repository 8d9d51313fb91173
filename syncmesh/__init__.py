"""
SyncMesh: Cross-Store Synchronization and Caching Engine

Keeps one authoritative primary store and any number of secondary stores
approximately consistent:
- Adapters: uniform async CRUD contract (in-memory, Redis)
- CacheManager: bounded TTL/LRU read cache with best-effort prefetch
- SyncManager: durable operation log on the primary plus a periodic,
  non-overlapping replicator
- UnifiedDatabase: the CRUD facade the application talks to

Consistency Model:
- Primary writes are synchronous and authoritative
- Secondaries converge asynchronously, last write wins
- Replication failures are recorded on the operation log, never raised
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from syncmesh.core.types import Result, Ok, Err, Entity, Timestamp
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
from syncmesh.adapters import (
    AdapterProtocol,
    Filter,
    QueryOptions,
    SortOrder,
    UpdateOptions,
    UpdateResult,
    InMemoryAdapter,
    RedisAdapter,
)
from syncmesh.cache import CacheManager, CacheEntry, CacheStats
from syncmesh.sync import (
    SyncManager,
    SyncOperation,
    SyncOperationType,
    SyncStatus,
    SyncStats,
)
from syncmesh.unified import UnifiedDatabase

__all__ = [
    "__version__",
    # Core
    "Result",
    "Ok",
    "Err",
    "Entity",
    "Timestamp",
    # Errors
    "ErrorCode",
    "SyncMeshError",
    "StorageError",
    "SyncError",
    "CacheError",
    "ReliabilityError",
    "InternalError",
    # Config
    "CacheConfig",
    "SyncConfig",
    "RedisConfig",
    "ObservabilityConfig",
    "SyncMeshConfig",
    # Adapters
    "AdapterProtocol",
    "Filter",
    "QueryOptions",
    "SortOrder",
    "UpdateOptions",
    "UpdateResult",
    "InMemoryAdapter",
    "RedisAdapter",
    # Engine
    "CacheManager",
    "CacheEntry",
    "CacheStats",
    "SyncManager",
    "SyncOperation",
    "SyncOperationType",
    "SyncStatus",
    "SyncStats",
    "UnifiedDatabase",
]
