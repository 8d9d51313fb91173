"""
Typed Query Model

Filters are typed predicate values instead of open-ended dictionaries,
so every adapter evaluates the same, enumerable set of operators:

- Equality:        EQ, NE
- Range:           GT, GTE, LT, LTE
- Set membership:  IN, NIN
- Presence:        EXISTS

A Filter is a conjunction of Conditions. An empty Filter matches every
record. Field names may be dotted paths into nested dicts ("meta.owner").

Usage:
    f = Filter.where(type="issue").gte("priority", 2).in_("state", ["open", "triage"])
    options = QueryOptions(limit=10, sort=(("created_at", SortOrder.ASC),))
    result = await adapter.find("issues", f, options)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from syncmesh.core.types import Entity, ID_FIELD

_MISSING = object()


class FilterOp(Enum):
    """Supported comparison operators."""
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NIN = "nin"
    EXISTS = "exists"


class SortOrder(Enum):
    ASC = 1
    DESC = -1


def resolve_field(record: Entity, path: str) -> Any:
    """Look up a dotted field path; returns _MISSING when absent."""
    current: Any = record
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


@dataclass(frozen=True, slots=True)
class Condition:
    """Single predicate on one field."""
    field: str
    op: FilterOp
    value: Any = None

    def __post_init__(self) -> None:
        if self.op in (FilterOp.IN, FilterOp.NIN):
            if isinstance(self.value, (str, bytes)) or not isinstance(self.value, Iterable):
                raise TypeError(f"{self.op.name} requires a collection of values")
            object.__setattr__(self, "value", tuple(self.value))

    def matches(self, record: Entity) -> bool:
        actual = resolve_field(record, self.field)

        if self.op is FilterOp.EXISTS:
            return (actual is not _MISSING) == bool(self.value)
        if self.op is FilterOp.EQ:
            return actual is not _MISSING and actual == self.value
        if self.op is FilterOp.NE:
            return actual is _MISSING or actual != self.value
        if self.op is FilterOp.IN:
            return actual is not _MISSING and actual in self.value
        if self.op is FilterOp.NIN:
            return actual is _MISSING or actual not in self.value

        # Range operators never match missing or null fields
        if actual is _MISSING or actual is None:
            return False
        try:
            if self.op is FilterOp.GT:
                return actual > self.value
            if self.op is FilterOp.GTE:
                return actual >= self.value
            if self.op is FilterOp.LT:
                return actual < self.value
            if self.op is FilterOp.LTE:
                return actual <= self.value
        except TypeError:
            return False
        raise ValueError(f"Unsupported operator: {self.op}")


@dataclass(frozen=True, slots=True)
class Filter:
    """
    Conjunction of conditions.

    Filters are immutable; every builder method returns a new Filter.
    """
    conditions: tuple[Condition, ...] = ()

    @classmethod
    def all(cls) -> Filter:
        """Filter matching every record."""
        return cls()

    @classmethod
    def by_id(cls, entity_id: str) -> Filter:
        return cls((Condition(ID_FIELD, FilterOp.EQ, entity_id),))

    @classmethod
    def where(cls, **equalities: Any) -> Filter:
        """Equality filter from keyword arguments."""
        return cls(tuple(
            Condition(name, FilterOp.EQ, value)
            for name, value in equalities.items()
        ))

    def and_(self, *conditions: Condition) -> Filter:
        return Filter(self.conditions + tuple(conditions))

    def eq(self, name: str, value: Any) -> Filter:
        return self.and_(Condition(name, FilterOp.EQ, value))

    def ne(self, name: str, value: Any) -> Filter:
        return self.and_(Condition(name, FilterOp.NE, value))

    def gt(self, name: str, value: Any) -> Filter:
        return self.and_(Condition(name, FilterOp.GT, value))

    def gte(self, name: str, value: Any) -> Filter:
        return self.and_(Condition(name, FilterOp.GTE, value))

    def lt(self, name: str, value: Any) -> Filter:
        return self.and_(Condition(name, FilterOp.LT, value))

    def lte(self, name: str, value: Any) -> Filter:
        return self.and_(Condition(name, FilterOp.LTE, value))

    def in_(self, name: str, values: Iterable[Any]) -> Filter:
        return self.and_(Condition(name, FilterOp.IN, values))

    def not_in(self, name: str, values: Iterable[Any]) -> Filter:
        return self.and_(Condition(name, FilterOp.NIN, values))

    def exists(self, name: str, present: bool = True) -> Filter:
        return self.and_(Condition(name, FilterOp.EXISTS, present))

    def matches(self, record: Entity) -> bool:
        return all(condition.matches(record) for condition in self.conditions)

    def id_value(self) -> Optional[str]:
        """The id this filter pins down by equality, if any."""
        for condition in self.conditions:
            if condition.field == ID_FIELD and condition.op is FilterOp.EQ:
                return condition.value
        return None


@dataclass(frozen=True, slots=True)
class QueryOptions:
    """Pagination and ordering for find()."""
    limit: Optional[int] = None
    skip: int = 0
    sort: tuple[tuple[str, SortOrder], ...] = ()

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be >= 0, got {self.limit}")
        if self.skip < 0:
            raise ValueError(f"skip must be >= 0, got {self.skip}")

    def apply(self, records: Sequence[Entity]) -> list[Entity]:
        """
        Sort, skip and limit records.

        Sorting is stable: records with equal sort keys keep their input
        order. Missing and null values sort before everything else.
        """
        ordered = list(records)
        for name, order in reversed(self.sort):
            ordered.sort(
                key=lambda r, n=name: _sort_key(resolve_field(r, n)),
                reverse=order is SortOrder.DESC,
            )
        end = None if self.limit is None else self.skip + self.limit
        return ordered[self.skip:end]


def _sort_key(value: Any) -> tuple[int, Any]:
    if value is _MISSING or value is None:
        return (0, 0)
    return (1, value)


@dataclass(frozen=True, slots=True)
class UpdateOptions:
    """Options for update()."""
    multi: bool = False
    upsert: bool = False


@dataclass(frozen=True, slots=True)
class UpdateResult:
    """Outcome of update()."""
    matched: int = 0
    modified: int = 0
    upserted: Optional[Entity] = field(default=None, compare=False)
