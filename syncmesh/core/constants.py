"""
System-Wide Constants for the Sync Mesh

All configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
MS: Final[int] = 1
SECOND_MS: Final[int] = 1000
MINUTE_MS: Final[int] = 60 * SECOND_MS

NS_PER_MS: Final[int] = 1_000_000

# =============================================================================
# CACHE
# =============================================================================
CACHE_DEFAULT_TTL_MS: Final[int] = MINUTE_MS
CACHE_MAX_SIZE: Final[int] = 1000
CACHE_CLEANUP_INTERVAL_MS: Final[int] = 30 * SECOND_MS
CACHE_PREFETCH_ENABLED: Final[bool] = True
CACHE_PREFETCH_THRESHOLD: Final[float] = 0.8
CACHE_PREFETCH_BATCH_SIZE: Final[int] = 10

# =============================================================================
# SYNC
# =============================================================================
SYNC_OPERATIONS_COLLECTION: Final[str] = "_sync_operations"
SYNC_INTERVAL_MS: Final[int] = 5 * SECOND_MS
SYNC_BATCH_SIZE: Final[int] = 100
SYNC_RETRY_ATTEMPTS: Final[int] = 3
SYNC_RETRY_DELAY_MS: Final[int] = SECOND_MS

# =============================================================================
# REDIS ADAPTER
# =============================================================================
REDIS_DEFAULT_PORT: Final[int] = 6379
REDIS_KEY_PREFIX: Final[str] = "syncmesh"
REDIS_SOCKET_TIMEOUT_MS: Final[int] = 5 * SECOND_MS
