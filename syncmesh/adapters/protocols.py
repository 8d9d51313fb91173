"""
Adapter Protocol: Uniform Store Abstraction

Structural subtyping protocol (PEP 544) every backing store implements,
whether it acts as the primary or as a secondary:

- Connection lifecycle: connect / disconnect / is_connected
- Reads: find / find_one / find_by_id / count
- Writes: insert / insert_many / update / update_by_id / delete / delete_by_id
- Collections: collection_exists / create_collection / drop_collection /
  get_collection_names

Design Principles:
    - Zero-exception control flow via Result[T, StorageError]
    - Errors are surfaced, never swallowed; the sync engine relies on
      them to drive its failure bookkeeping
    - Async-first for non-blocking I/O
    - Entities cross the boundary as copies
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Optional, Protocol, Sequence, runtime_checkable

from syncmesh.core.types import Result, Entity
from syncmesh.core.errors import StorageError
from syncmesh.adapters.query import (
    Filter,
    QueryOptions,
    UpdateOptions,
    UpdateResult,
)


@runtime_checkable
class AdapterProtocol(Protocol):
    """
    Uniform async CRUD contract.

    Contract details relied upon by the engine:
        - Every operation on a disconnected adapter returns
          Err(StorageError.not_connected)
        - find on a missing collection returns Ok([])
        - insert of an existing id returns Err(StorageError.duplicate_key)
        - update_by_id returns Ok(None) when nothing matched
        - delete_by_id returns Ok(False) when nothing matched
    """

    @property
    def name(self) -> str:
        """Adapter name, recorded as source/target on operations."""
        ...

    @property
    def adapter_type(self) -> str:
        """Backend kind, e.g. "memory" or "redis"."""
        ...

    @property
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def connect(self) -> Result[None, StorageError]:
        ...

    @abstractmethod
    async def disconnect(self) -> Result[None, StorageError]:
        ...

    @abstractmethod
    async def find(
        self,
        collection: str,
        query: Optional[Filter] = None,
        options: Optional[QueryOptions] = None,
    ) -> Result[list[Entity], StorageError]:
        """
        Find entities matching query.

        Complexity: O(N) for scan-based backends
        """
        ...

    @abstractmethod
    async def find_one(
        self,
        collection: str,
        query: Optional[Filter] = None,
        options: Optional[QueryOptions] = None,
    ) -> Result[Optional[Entity], StorageError]:
        ...

    @abstractmethod
    async def find_by_id(
        self,
        collection: str,
        entity_id: str,
    ) -> Result[Optional[Entity], StorageError]:
        """Complexity: O(1) for key-value backends"""
        ...

    @abstractmethod
    async def insert(
        self,
        collection: str,
        entity: Entity,
    ) -> Result[Entity, StorageError]:
        """Insert entity and return the stored (canonical) copy."""
        ...

    @abstractmethod
    async def insert_many(
        self,
        collection: str,
        entities: Sequence[Entity],
    ) -> Result[list[Entity], StorageError]:
        ...

    @abstractmethod
    async def update(
        self,
        collection: str,
        query: Filter,
        patch: Entity,
        options: Optional[UpdateOptions] = None,
    ) -> Result[UpdateResult, StorageError]:
        """Shallow-merge patch into matching entities."""
        ...

    @abstractmethod
    async def update_by_id(
        self,
        collection: str,
        entity_id: str,
        patch: Entity,
    ) -> Result[Optional[Entity], StorageError]:
        ...

    @abstractmethod
    async def delete(
        self,
        collection: str,
        query: Filter,
    ) -> Result[int, StorageError]:
        """Delete matching entities, returning the count removed."""
        ...

    @abstractmethod
    async def delete_by_id(
        self,
        collection: str,
        entity_id: str,
    ) -> Result[bool, StorageError]:
        ...

    @abstractmethod
    async def count(
        self,
        collection: str,
        query: Optional[Filter] = None,
    ) -> Result[int, StorageError]:
        ...

    @abstractmethod
    async def collection_exists(self, collection: str) -> Result[bool, StorageError]:
        ...

    @abstractmethod
    async def create_collection(self, collection: str) -> Result[bool, StorageError]:
        """Returns Ok(False) if the collection already existed."""
        ...

    @abstractmethod
    async def drop_collection(self, collection: str) -> Result[bool, StorageError]:
        """Returns Ok(False) if the collection did not exist."""
        ...

    @abstractmethod
    async def get_collection_names(self) -> Result[list[str], StorageError]:
        ...
