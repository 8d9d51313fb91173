"""
Core Type Definitions for the Sync Mesh

Implements Result/Either monads for zero-exception control flow, the
nanosecond Timestamp used to order the operation log, and the helpers
that stamp and copy entities.

Design Principles:
- Never use null for absence (use Optional or Result)
- I/O-facing APIs return Result instead of raising
- Entities are plain dicts (open attribute bag); copies cross every
  ownership boundary so the cache and secondaries never alias the primary
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import (
    Any,
    Callable,
    ClassVar,
    Generic,
    Literal,
    Optional,
    TypeVar,
    Union,
)
from uuid import uuid4

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD: ZERO-EXCEPTION CONTROL FLOW
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable container for a successful computation result.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """Extract value. Safe to call after is_ok() check."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return value, ignoring default."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply transformation to success value."""
        return Ok(fn(self.value))

    def flat_map(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Monadic bind for chaining fallible operations."""
        return fn(self.value)

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Carries the error value (usually a SyncMeshError) for the caller
    to inspect, log or record.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Return default value on error."""
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        """No-op on error variant - propagates error unchanged."""
        return self

    def flat_map(self, fn: Callable[[Any], Result[U, E]]) -> Err[E]:
        """Propagate error through monadic chain."""
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIMESTAMP WITH NANOSECOND PRECISION
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """
    High-precision timestamp for event ordering.

    Stores nanoseconds since Unix epoch. The operation log persists the
    raw integer so records sort correctly in any backend.
    """

    nanos: int

    NANOS_PER_SECOND: ClassVar[int] = 1_000_000_000
    NANOS_PER_MILLI: ClassVar[int] = 1_000_000

    @classmethod
    def now(cls) -> Timestamp:
        return cls(nanos=time.time_ns())

    @classmethod
    def from_millis(cls, millis: int) -> Timestamp:
        return cls(nanos=millis * cls.NANOS_PER_MILLI)

    @property
    def seconds(self) -> float:
        return self.nanos / self.NANOS_PER_SECOND

    @property
    def millis(self) -> int:
        return self.nanos // self.NANOS_PER_MILLI

    def to_datetime(self) -> datetime:
        """Convert to an aware UTC datetime (microsecond precision)."""
        return datetime.fromtimestamp(self.seconds, tz=timezone.utc)

    def __sub__(self, other: Timestamp) -> int:
        """Subtract timestamps, returning difference in nanos."""
        return self.nanos - other.nanos

    def __add__(self, nanos: int) -> Timestamp:
        result = self.nanos + nanos
        if result < 0:
            raise OverflowError("Timestamp underflow")
        return Timestamp(nanos=result)

    def __repr__(self) -> str:
        return f"Timestamp({self.nanos}ns)"


class MonotonicClock:
    """
    Strictly increasing wall-clock source.

    Two calls never return the same value, even when the platform clock
    is coarse, so operations created back to back keep their creation
    order after a sort on created_at.
    """

    __slots__ = ("_last",)

    def __init__(self) -> None:
        self._last = 0

    def next(self) -> Timestamp:
        nanos = max(time.time_ns(), self._last + 1)
        self._last = nanos
        return Timestamp(nanos=nanos)


# =============================================================================
# ENTITY HELPERS
# =============================================================================
# An entity is any dict with a string "id"; "type", "created_at" and
# "updated_at" are reserved, everything else is the open attribute bag.
Entity = dict[str, Any]

ID_FIELD = "id"
TYPE_FIELD = "type"
CREATED_AT_FIELD = "created_at"
UPDATED_AT_FIELD = "updated_at"


def generate_id() -> str:
    """Globally unique entity identifier."""
    return uuid4().hex


def utc_now_iso() -> str:
    """
    Fixed-width ISO-8601 UTC timestamp.

    Always carries microseconds so lexical and chronological order agree.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def copy_entity(entity: Optional[Entity]) -> Optional[Entity]:
    """Deep copy so callers never share mutable state with a store."""
    if entity is None:
        return None
    return copy.deepcopy(entity)


def prepare_entity(entity: Entity, now: Optional[str] = None) -> Entity:
    """
    Return a copy of entity with id and timestamps filled in.

    Existing values are kept; only missing ones are assigned.
    """
    prepared = copy.deepcopy(entity)
    stamp = now or utc_now_iso()
    if not prepared.get(ID_FIELD):
        prepared[ID_FIELD] = generate_id()
    if not prepared.get(CREATED_AT_FIELD):
        prepared[CREATED_AT_FIELD] = stamp
    if not prepared.get(UPDATED_AT_FIELD):
        prepared[UPDATED_AT_FIELD] = stamp
    return prepared
