"""
Configuration Management for the Sync Mesh

Provides validated configuration with sensible defaults.
Supports environment variable overrides (prefix SYNCMESH_).

Design:
- Immutable after construction
- Fail-fast on invalid configuration
- Type-safe with dataclasses
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Optional

from syncmesh.core.types import Result, Ok, Err
from syncmesh.core import constants as C


@dataclass(frozen=True)
class CacheConfig:
    """Read-through cache configuration."""

    default_ttl_ms: int = C.CACHE_DEFAULT_TTL_MS
    max_size: int = C.CACHE_MAX_SIZE
    cleanup_interval_ms: int = C.CACHE_CLEANUP_INTERVAL_MS
    prefetch_enabled: bool = C.CACHE_PREFETCH_ENABLED
    # Accepted and validated; prefetch fills do not consult it and rely on
    # the same LRU pass as set() when they push the cache past max_size.
    prefetch_threshold: float = C.CACHE_PREFETCH_THRESHOLD
    prefetch_batch_size: int = C.CACHE_PREFETCH_BATCH_SIZE


@dataclass(frozen=True)
class SyncConfig:
    """Operation log and replicator configuration."""

    sync_operations_collection: str = C.SYNC_OPERATIONS_COLLECTION
    sync_interval_ms: int = C.SYNC_INTERVAL_MS
    batch_size: int = C.SYNC_BATCH_SIZE
    retry_attempts: int = C.SYNC_RETRY_ATTEMPTS
    retry_delay_ms: int = C.SYNC_RETRY_DELAY_MS
    # Off by default: a failed operation stays failed and is only logged.
    retry_enabled: bool = False


@dataclass(frozen=True)
class RedisConfig:
    """Redis secondary adapter connection configuration."""

    host: str = "localhost"
    port: int = C.REDIS_DEFAULT_PORT
    db: int = 0
    password: Optional[str] = None
    key_prefix: str = C.REDIS_KEY_PREFIX
    socket_timeout_ms: int = C.REDIS_SOCKET_TIMEOUT_MS
    ssl: bool = False

    def __post_init__(self) -> None:
        if not (1 <= self.port <= 65535):
            raise ValueError(f"port must be in [1, 65535], got {self.port}")
        if not (0 <= self.db <= 15):
            raise ValueError(f"db must be in [0, 15], got {self.db}")
        if self.socket_timeout_ms <= 0:
            raise ValueError(
                f"socket_timeout_ms must be > 0, got {self.socket_timeout_ms}"
            )
        if not self.key_prefix or ":" in self.key_prefix:
            raise ValueError(f"invalid key_prefix {self.key_prefix!r}")

    def get_connection_kwargs(self) -> dict[str, Any]:
        """Generate kwargs for redis.asyncio.Redis()."""
        kwargs: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "db": self.db,
            "socket_connect_timeout": self.socket_timeout_ms / 1000.0,
            "socket_timeout": self.socket_timeout_ms / 1000.0,
            "decode_responses": True,
            "ssl": self.ssl,
        }
        if self.password:
            kwargs["password"] = self.password
        return kwargs


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration."""

    log_level: str = "INFO"
    log_json: bool = True


@dataclass(frozen=True)
class SyncMeshConfig:
    """Root configuration for the sync mesh."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> Result[SyncMeshConfig, str]:
        """
        Load configuration from environment variables.

        Environment variables are prefixed with SYNCMESH_.
        Example: SYNCMESH_CACHE_MAX_SIZE, SYNCMESH_SYNC_INTERVAL_MS
        """

        def _get(key: str, default: str) -> str:
            return os.getenv(f"SYNCMESH_{key}", default)

        def _get_bool(key: str, default: bool) -> bool:
            value = _get(key, "").lower()
            if value in ("true", "1", "yes"):
                return True
            if value in ("false", "0", "no"):
                return False
            return default

        try:
            cache = CacheConfig(
                default_ttl_ms=int(_get("CACHE_DEFAULT_TTL_MS", str(C.CACHE_DEFAULT_TTL_MS))),
                max_size=int(_get("CACHE_MAX_SIZE", str(C.CACHE_MAX_SIZE))),
                cleanup_interval_ms=int(
                    _get("CACHE_CLEANUP_INTERVAL_MS", str(C.CACHE_CLEANUP_INTERVAL_MS))
                ),
                prefetch_enabled=_get_bool("CACHE_PREFETCH_ENABLED", C.CACHE_PREFETCH_ENABLED),
                prefetch_threshold=float(
                    _get("CACHE_PREFETCH_THRESHOLD", str(C.CACHE_PREFETCH_THRESHOLD))
                ),
            )

            sync = SyncConfig(
                sync_operations_collection=_get(
                    "SYNC_OPERATIONS_COLLECTION", C.SYNC_OPERATIONS_COLLECTION
                ),
                sync_interval_ms=int(_get("SYNC_INTERVAL_MS", str(C.SYNC_INTERVAL_MS))),
                batch_size=int(_get("SYNC_BATCH_SIZE", str(C.SYNC_BATCH_SIZE))),
                retry_attempts=int(_get("SYNC_RETRY_ATTEMPTS", str(C.SYNC_RETRY_ATTEMPTS))),
                retry_delay_ms=int(_get("SYNC_RETRY_DELAY_MS", str(C.SYNC_RETRY_DELAY_MS))),
                retry_enabled=_get_bool("SYNC_RETRY_ENABLED", False),
            )

            redis = RedisConfig(
                host=_get("REDIS_HOST", "localhost"),
                port=int(_get("REDIS_PORT", str(C.REDIS_DEFAULT_PORT))),
                db=int(_get("REDIS_DB", "0")),
                password=_get("REDIS_PASSWORD", "") or None,
                key_prefix=_get("REDIS_KEY_PREFIX", C.REDIS_KEY_PREFIX),
            )

            observability = ObservabilityConfig(
                log_level=_get("LOG_LEVEL", "INFO").upper(),
                log_json=_get_bool("LOG_JSON", True),
            )

            return Ok(cls(cache=cache, sync=sync, redis=redis, observability=observability))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate configuration invariants."""
        if self.cache.max_size < 1:
            return Err("Cache max_size must be >= 1")
        if self.cache.default_ttl_ms <= 0:
            return Err("Cache default_ttl_ms must be > 0")
        if self.cache.cleanup_interval_ms <= 0:
            return Err("Cache cleanup_interval_ms must be > 0")
        if not 0.0 < self.cache.prefetch_threshold <= 1.0:
            return Err("Cache prefetch_threshold must be in (0, 1]")
        if self.cache.prefetch_batch_size < 1:
            return Err("Cache prefetch_batch_size must be >= 1")
        if not self.sync.sync_operations_collection:
            return Err("Sync operations collection name cannot be empty")
        if self.sync.sync_interval_ms <= 0:
            return Err("Sync interval must be > 0")
        if self.sync.batch_size < 1:
            return Err("Sync batch_size must be >= 1")
        if self.sync.retry_attempts < 0 or self.sync.retry_delay_ms < 0:
            return Err("Sync retry settings cannot be negative")
        if self.observability.log_level not in (
            "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"
        ):
            return Err(f"Unknown log level {self.observability.log_level}")
        return Ok(None)
