"""Unified module: the CRUD facade tying primary, cache and replicator together."""

from syncmesh.unified.database import (
    UnifiedDatabase,
    ENTITY_INSERTED,
    ENTITIES_INSERTED,
    ENTITY_UPDATED,
    ENTITY_DELETED,
    EVENTS,
)

__all__ = [
    "UnifiedDatabase",
    "ENTITY_INSERTED",
    "ENTITIES_INSERTED",
    "ENTITY_UPDATED",
    "ENTITY_DELETED",
    "EVENTS",
]
