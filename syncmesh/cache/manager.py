"""
Cache Manager: Bounded Read-Through Cache

Provides the advisory cache in front of the primary adapter:
- TTL-based expiration (visible only while now < expires_at)
- LRU eviction when the entry count exceeds max_size
- Best-effort prefetch of recently missed keys
- Eviction callbacks

Data Model:
    Key: {collection}:{id}
    Entry: data (deep copy), expires_at, last_accessed_at, access_count

Design:
    All map mutations are synchronous, so on a single event loop no
    other task can observe a half-applied set() or eviction pass. The
    cleanup cycle is the only place that suspends (prefetch fills), and
    every failure inside it is logged, never raised to callers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from syncmesh.core.types import Entity, copy_entity
from syncmesh.core.errors import CacheError
from syncmesh.core.config import CacheConfig
from syncmesh.core.scheduler import PeriodicTask
from syncmesh.adapters.protocols import AdapterProtocol

logger = logging.getLogger(__name__)


EVICTED_EXPIRED = "expired"
EVICTED_LRU = "lru"

EvictionCallback = Callable[[str, "CacheEntry", str], None]


def cache_key(collection: str, entity_id: str) -> str:
    """Cache key for an entity."""
    return f"{collection}:{entity_id}"


# =============================================================================
# CACHE ENTRY AND STATISTICS
# =============================================================================
@dataclass(slots=True)
class CacheEntry:
    """Cached copy of an entity. Times are clock milliseconds."""
    data: Entity
    expires_at: float
    last_accessed_at: float
    access_count: int = 0

    def is_expired(self, now_ms: float) -> bool:
        return self.expires_at <= now_ms


@dataclass
class CacheStats:
    """Cache performance statistics."""
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    prefetches: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


# =============================================================================
# CACHE MANAGER
# =============================================================================
class CacheManager:
    """
    TTL + LRU cache keyed by (collection, id).

    Usage:
        cache = CacheManager(adapter, CacheConfig(max_size=500))
        await cache.initialize()

        cache.set("issues", "e1", entity)
        hit = cache.get("issues", "e1")      # deep copy or None

        cache.dispose()

    Args:
        adapter: Store used for prefetch fills.
        config: Cache settings.
        clock: Monotonic time source in seconds (injectable for tests).
    """

    __slots__ = (
        "_adapter", "_config", "_clock",
        "_entries", "_prefetch_queue", "_stats",
        "_eviction_callbacks", "_cleanup_task", "_initialized",
    )

    def __init__(
        self,
        adapter: AdapterProtocol,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._adapter = adapter
        self._config = config or CacheConfig()
        self._clock = clock
        # Insertion order doubles as the LRU tie-break order
        self._entries: dict[str, CacheEntry] = {}
        # Ordered set of (collection, id) pairs
        self._prefetch_queue: dict[tuple[str, str], None] = {}
        self._stats = CacheStats()
        self._eviction_callbacks: list[EvictionCallback] = []
        self._cleanup_task: Optional[PeriodicTask] = None
        self._initialized = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def config(self) -> CacheConfig:
        return self._config

    async def initialize(self) -> None:
        """
        Start the cleanup cycle.

        Raises:
            CacheError: If the prefetch adapter is not connected.
        """
        if not self._adapter.is_connected:
            raise CacheError.adapter_not_connected(self._adapter.name)

        self._cleanup_task = PeriodicTask(
            "cache-cleanup", self._config.cleanup_interval_ms, self.run_cleanup
        )
        self._cleanup_task.start()
        self._initialized = True
        logger.info(
            "Cache manager initialized",
            extra={
                "max_size": self._config.max_size,
                "default_ttl_ms": self._config.default_ttl_ms,
            },
        )

    def dispose(self) -> None:
        """Stop the cleanup cycle, drop all entries and reset statistics."""
        if self._cleanup_task is not None:
            self._cleanup_task.stop()
            self._cleanup_task = None
        self._entries.clear()
        self._prefetch_queue.clear()
        self._stats = CacheStats()
        self._initialized = False
        logger.info("Cache manager disposed")

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def get(self, collection: str, entity_id: str) -> Optional[Entity]:
        """
        Return a copy of the cached entity, or None.

        A miss (absent or expired) is counted and queues the key for
        prefetch; a hit refreshes recency.
        """
        self._ensure_initialized()
        key = cache_key(collection, entity_id)
        now = self._now_ms()
        entry = self._entries.get(key)

        if entry is not None and entry.is_expired(now):
            self._drop(key, EVICTED_EXPIRED)
            entry = None

        if entry is None:
            self._stats.misses += 1
            if self._config.prefetch_enabled:
                self._prefetch_queue[(collection, entity_id)] = None
            return None

        entry.last_accessed_at = now
        entry.access_count += 1
        self._stats.hits += 1
        return copy_entity(entry.data)

    def set(
        self,
        collection: str,
        entity_id: str,
        entity: Entity,
        ttl_ms: Optional[int] = None,
    ) -> None:
        """
        Insert or replace an entry.

        Eviction runs before returning if the cache grew past max_size.
        """
        self._ensure_initialized()
        if ttl_ms is not None and ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be > 0, got {ttl_ms}")
        self._store(collection, entity_id, entity, ttl_ms)

        if len(self._entries) > self._config.max_size:
            self._evict(self._now_ms())

    def remove(self, collection: str, entity_id: str) -> bool:
        """Invalidate one entry. Returns True if it was cached."""
        self._ensure_initialized()
        self._prefetch_queue.pop((collection, entity_id), None)
        return self._entries.pop(cache_key(collection, entity_id), None) is not None

    def clear(self) -> None:
        """Invalidate every entry. Statistics are kept."""
        self._ensure_initialized()
        self._entries.clear()
        self._prefetch_queue.clear()
        logger.debug("Cache cleared")

    def contains(self, collection: str, entity_id: str) -> bool:
        """Whether an unexpired entry exists. Does not touch stats or recency."""
        entry = self._entries.get(cache_key(collection, entity_id))
        return entry is not None and not entry.is_expired(self._now_ms())

    def keys(self) -> list[str]:
        """Keys currently held, in insertion order (expired ones included)."""
        return list(self._entries)

    def peek(self, collection: str, entity_id: str) -> Optional[CacheEntry]:
        """Raw entry lookup for inspection; no expiry check, no stats."""
        return self._entries.get(cache_key(collection, entity_id))

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def prefetch_queue_size(self) -> int:
        return len(self._prefetch_queue)

    @property
    def stats(self) -> CacheStats:
        """Snapshot of the counters."""
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            evictions=self._stats.evictions,
            prefetches=self._stats.prefetches,
        )

    def get_statistics(self) -> dict[str, Any]:
        self._ensure_initialized()
        return {
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "evictions": self._stats.evictions,
            "prefetches": self._stats.prefetches,
            "size": len(self._entries),
            "max_size": self._config.max_size,
            "hit_rate": self._stats.hit_rate,
            "prefetch_queue_size": len(self._prefetch_queue),
        }

    def on_eviction(self, callback: EvictionCallback) -> None:
        """Register callback(key, entry, reason) for TTL and LRU evictions."""
        self._eviction_callbacks.append(callback)

    # -------------------------------------------------------------------------
    # Cleanup cycle
    # -------------------------------------------------------------------------

    async def run_cleanup(self) -> None:
        """
        One cleanup cycle: expire, enforce max_size, drain the prefetch queue.

        Never raises; the cache is advisory.
        """
        if not self._initialized:
            return
        try:
            evicted = self._evict(self._now_ms())
            if evicted:
                logger.debug("Cache cleanup evicted entries", extra={"evicted": evicted})
            await self._process_prefetch_queue()
        except Exception:
            logger.exception("Cache cleanup failed")

    async def _process_prefetch_queue(self) -> None:
        if not self._config.prefetch_enabled or not self._prefetch_queue:
            return

        pending = list(self._prefetch_queue)
        self._prefetch_queue.clear()
        batch_size = self._config.prefetch_batch_size

        for start in range(0, len(pending), batch_size):
            if not self._initialized:
                return
            batch = [
                (collection, entity_id)
                for collection, entity_id in pending[start:start + batch_size]
                if cache_key(collection, entity_id) not in self._entries
            ]
            if not batch:
                continue

            results = await asyncio.gather(
                *(self._adapter.find_by_id(c, i) for c, i in batch),
                return_exceptions=True,
            )
            # dispose() may have run while the fetches were in flight
            if not self._initialized:
                return

            for (collection, entity_id), result in zip(batch, results):
                key = cache_key(collection, entity_id)
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    logger.warning(
                        "Prefetch failed", extra={"key": key, "error": repr(result)}
                    )
                    continue
                if result.is_err():
                    logger.warning(
                        "Prefetch failed", extra={"key": key, "error": str(result.error)}
                    )
                    continue
                entity = result.unwrap()
                if entity is None or key in self._entries:
                    continue
                self._store(collection, entity_id, entity, None)
                self._stats.prefetches += 1
                if len(self._entries) > self._config.max_size:
                    self._evict(self._now_ms())

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise CacheError.not_initialized()

    def _store(
        self,
        collection: str,
        entity_id: str,
        entity: Entity,
        ttl_ms: Optional[int],
    ) -> None:
        now = self._now_ms()
        key = cache_key(collection, entity_id)
        ttl = ttl_ms if ttl_ms is not None else self._config.default_ttl_ms
        # Re-insert so a rewritten key moves to the end of iteration order
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(
            data=copy_entity(entity),
            expires_at=now + ttl,
            last_accessed_at=now,
        )
        self._prefetch_queue.pop((collection, entity_id), None)

    def _evict(self, now: float) -> int:
        """Drop expired entries, then least recently accessed ones above max_size."""
        evicted = 0
        for key in [k for k, e in self._entries.items() if e.is_expired(now)]:
            self._drop(key, EVICTED_EXPIRED)
            evicted += 1

        overflow = len(self._entries) - self._config.max_size
        if overflow > 0:
            # sorted() is stable: equal timestamps keep insertion order
            oldest = sorted(self._entries.items(), key=lambda kv: kv[1].last_accessed_at)
            for key, _ in oldest[:overflow]:
                self._drop(key, EVICTED_LRU)
                evicted += 1
        return evicted

    def _drop(self, key: str, reason: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        self._stats.evictions += 1
        for callback in self._eviction_callbacks:
            try:
                callback(key, entry, reason)
            except Exception:
                logger.exception("Eviction callback failed", extra={"key": key})
