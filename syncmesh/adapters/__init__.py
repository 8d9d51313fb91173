"""
Adapters module: uniform store abstraction and concrete backends.

- AdapterProtocol: the async CRUD contract every store implements
- Filter / QueryOptions: typed query model shared by all backends
- InMemoryAdapter: lock-protected in-process store
- RedisAdapter: Redis/Valkey store for secondary mirrors
"""

from syncmesh.adapters.protocols import AdapterProtocol
from syncmesh.adapters.query import (
    Condition,
    Filter,
    FilterOp,
    QueryOptions,
    SortOrder,
    UpdateOptions,
    UpdateResult,
)
from syncmesh.adapters.memory import InMemoryAdapter
from syncmesh.adapters.redis_store import RedisAdapter

__all__ = [
    "AdapterProtocol",
    "Condition",
    "Filter",
    "FilterOp",
    "QueryOptions",
    "SortOrder",
    "UpdateOptions",
    "UpdateResult",
    "InMemoryAdapter",
    "RedisAdapter",
]
