"""Cache module: bounded TTL/LRU read cache with best-effort prefetch."""

from syncmesh.cache.manager import (
    CacheEntry,
    CacheStats,
    CacheManager,
    cache_key,
    EVICTED_EXPIRED,
    EVICTED_LRU,
)

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CacheManager",
    "cache_key",
    "EVICTED_EXPIRED",
    "EVICTED_LRU",
]
