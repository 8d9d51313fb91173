#!/usr/bin/env python3
"""
SyncMesh local demo

Runs the primary -> two mirrors scenario against in-memory adapters:
insert, inspect the log, run one sync cycle, update, delete.

Usage:
    python -m syncmesh

    # Or with custom config
    SYNCMESH_LOG_LEVEL=DEBUG SYNCMESH_LOG_JSON=false python -m syncmesh
"""

from __future__ import annotations

import asyncio
import sys

from syncmesh.core.config import SyncMeshConfig
from syncmesh.adapters import InMemoryAdapter
from syncmesh.observability.logging import setup_logging
from syncmesh.sync import SyncStatus
from syncmesh.unified import UnifiedDatabase, ENTITY_INSERTED


async def demo_local_mode() -> None:
    """Replicate one entity from the primary to mirrors A and B."""
    print("\n" + "=" * 60)
    print("SyncMesh - Local Demo")
    print("=" * 60 + "\n")

    config_result = SyncMeshConfig.from_env()
    if config_result.is_err():
        print(f"Configuration error: {config_result.error}")
        sys.exit(1)
    config = config_result.unwrap()

    validation = config.validate()
    if validation.is_err():
        print(f"Validation error: {validation.error}")
        sys.exit(1)

    setup_logging(config.observability.log_level, json_output=config.observability.log_json)
    print("✓ Configuration loaded and validated")

    primary = InMemoryAdapter("primary")
    db = UnifiedDatabase.from_config(
        primary,
        config,
        secondaries={"A": InMemoryAdapter("A"), "B": InMemoryAdapter("B")},
    )
    db.on(ENTITY_INSERTED, lambda event: print(f"  event: inserted {event['entity']['id']}"))

    init_result = await db.initialize()
    if init_result.is_err():
        print(f"Initialization error: {init_result.error}")
        sys.exit(1)
    print(f"✓ Initialized with secondaries {db.secondaries}")

    print("\n--- Demo Operations ---\n")

    # 1. Insert
    inserted = await db.insert("issues", {"id": "e1", "type": "issue", "name": "Bug"})
    if inserted.is_err():
        print(f"   Error: {inserted.error}")
        sys.exit(1)
    print(f"1. Inserted e1 (cached: {db.cache.contains('issues', 'e1')})")

    # 2. Log before sync
    pending = (await db.sync_manager.list_operations(SyncStatus.PENDING)).unwrap()
    print(f"2. Pending operations: {[(op.type.value, op.target_adapter) for op in pending]}")

    # 3. One cycle
    ok = await db.sync_now()
    completed = (await db.sync_manager.list_operations(SyncStatus.COMPLETED)).unwrap()
    print(f"3. Sync cycle ok={ok}, completed={len(completed)}")
    for name in db.secondaries:
        mirror = db.sync_manager.get_adapter(name)
        copy = (await mirror.find_by_id("issues", "e1")).unwrap()
        print(f"   {name}: {copy['name'] if copy else 'missing'}")

    # 4. Update and delete
    await db.update("issues", "e1", {"name": "Bug (triaged)"})
    await db.delete("issues", "e1")
    await db.sync_now()
    remaining = (await db.sync_manager.get_adapter("A").count("issues")).unwrap()
    print(f"4. After update + delete + sync, A holds {remaining} issues")

    # 5. Stats
    print("\n5. Stats:")
    print(f"   cache: {db.cache.get_statistics()}")
    print(f"   sync:  {db.sync_manager.describe()['stats']}")

    await db.close()

    print("\n✓ Demo complete")
    print("=" * 60 + "\n")


async def main() -> None:
    """Main entry point."""
    try:
        await demo_local_mode()
    except KeyboardInterrupt:
        print("\nInterrupted")


def run() -> None:
    """Synchronous entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
