#!/usr/bin/env python3
"""
Demo: Evolvable Roadmap Columns + Batched Cell Editing

Walks through the two halves of the roadmap store:

  Columns:  add a custom column, see every open view refresh, try to delete
            a system column, delete the custom column again.
  Editing:  a burst of cell edits on one row becomes a single update;
            completing an initiative drops its priority rank in that same
            update; a failed save rolls every edited cell back.

Usage:
    python demo_roadmap.py
"""

import asyncio
import tempfile

from catalog.gateway import SchemaGateway
from catalog.operations import ColumnOperations
from catalog.registry import ColumnRegistry
from catalog.service import ColumnMutationService
from catalog.view import ColumnView
from editing.coordinator import BatchedEditCoordinator
from editing.records import RoadmapRecords
from store.client import RecordStore, StoreError
from store.config import configure_logging
from store.notifications import Notifier
from store.schema import provision_user
from store.server import RoadmapServer
from store.subscriptions import EventBus


class FlakyStore:
    """Wraps a RecordStore and fails the next N updates."""

    def __init__(self, store):
        self._store = store
        self.fail_next = 0
        self.updates = []

    def update(self, row_id, fields):
        self.updates.append((row_id, dict(fields)))
        if self.fail_next:
            self.fail_next -= 1
            raise StoreError("connection_error", "simulated network drop")
        return self._store.update(row_id, fields)

    def get(self, row_id):
        return self._store.get(row_id)


async def edit_session(store, records, notifier):
    flaky = FlakyStore(store)
    coordinator = BatchedEditCoordinator(flaky, records.cache, notifier, debounce=0.3)
    row = records.cache.rows()[0]
    row_id = row["id"]

    # ── Demo 3: burst of edits → one update ──────────────────────────
    print("\n── Demo 3: Three edits within one debounce window ──────────")
    coordinator.enter_edit_mode()
    await coordinator.record_edit(row_id, "notes", "kick-off booked")
    await coordinator.record_edit(row_id, "team", "Payments")
    await coordinator.record_edit(row_id, "engineer_assigned", "")
    print(f"  pending: {coordinator.pending(row_id)}")
    await coordinator.wait_idle()
    print(f"  update calls: {len(flaky.updates)} → {flaky.updates[-1][1]}")

    # ── Demo 4: terminal status nulls rank in the same update ────────
    print("\n── Demo 4: Complete an initiative ──────────────────────────")
    await coordinator.record_edit(row_id, "status", "Completed", immediate=True)
    print(f"  update sent: {flaky.updates[-1][1]}")

    # ── Demo 5: failed save rolls back every field ───────────────────
    print("\n── Demo 5: Failed save ─────────────────────────────────────")
    before = records.cache.get(row_id)
    flaky.fail_next = 1
    await coordinator.record_edit(row_id, "notes", "this will not stick")
    await coordinator.record_edit(row_id, "team", "Nobody")
    outcomes = await coordinator.exit_edit_mode()
    after = records.cache.get(row_id)
    print(f"  outcome ok={outcomes[0].ok}")
    print(f"  notes: {before['notes']!r} → {after['notes']!r}")
    print(f"  team:  {before['team']!r} → {after['team']!r}")
    print(f"  saving cells left: {len(coordinator.saving)}")


def main():
    configure_logging(level="WARNING")

    print("=" * 70)
    print("  Roadmap Store Demo")
    print("=" * 70)

    tmp_dir = tempfile.mkdtemp(prefix="demo_roadmap_")
    server = RoadmapServer(data_dir=tmp_dir, admin_password="admin_pw")
    server.start()

    admin_conn = server.admin_conn()
    provision_user(admin_conn, "planner", "planner_pw")

    ci = server.conn_info()
    store = RecordStore(user="planner", password="planner_pw", **ci)
    bus = EventBus()
    notifier = Notifier()
    notifier.subscribe(lambda n: print(f"  [{n.level.upper()}] {n.message}"))

    registry = ColumnRegistry(store.conn, bus)
    service = ColumnMutationService(registry, SchemaGateway(admin_conn))
    ops = ColumnOperations(service, notifier)

    grid = ColumnView(registry, bus, notifier).open()
    manager = ColumnView(registry, bus, notifier).open()

    # ── Demo 1: add a column, both views refresh ─────────────────────
    print("\n── Demo 1: Add column risk_level ───────────────────────────")
    result = ops.add_column("risk_level", "Risk Level", "text")
    print(f"  grid sees {len(grid.columns)} columns, manager sees {len(manager.columns)}")
    print(f"  new column order: {result.value.order}")
    ops.add_column("risk_level", "Risk Level", "text")

    # ── Demo 2: system columns are protected ─────────────────────────
    print("\n── Demo 2: Delete columns ──────────────────────────────────")
    ops.delete_column(registry.get("status").id)
    ops.delete_column(result.value.id)
    report = service.check_consistency()
    print(f"  catalog and table consistent: {report.consistent}")

    records = RoadmapRecords(store, notifier=notifier)
    records.create(initiative="Checkout v2", team="Core", notes="draft")
    records.create(initiative="Refunds", status="Backlog")
    records.load()

    asyncio.run(edit_session(store, records, notifier))

    # ── Summary ──────────────────────────────────────────────────────
    print("\n" + "=" * 70)
    print("  Summary")
    print("=" * 70)
    print("""
  Columns:  catalog row + physical field change together;
            a failed second step undoes the first.

  Views:    every catalog write is published on the bus;
            open views refetch without knowing about each other.

  Edits:    per-row buffer, one update per debounce window;
            failures restore the pre-edit snapshot.
""")

    grid.close()
    manager.close()
    store.close()
    admin_conn.close()
    server.stop()


if __name__ == "__main__":
    main()
