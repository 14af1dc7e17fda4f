"""
Tests for RoadmapRecords — loading with rank repair, creating with
defaults, and manual reordering against the real record table.

Run with: pytest tests/test_records.py -v
"""

import pytest

from editing.cache import RecordCache
from editing.records import RoadmapRecords
from store.client import StoreError
from store.notifications import Notifier


@pytest.fixture()
def records(clean_db, alice_store):
    return RoadmapRecords(alice_store, RecordCache(), Notifier())


def _seed(store):
    return [
        store.insert({"initiative": "Checkout v2", "status": "Active", "sort_order": 2}),
        store.insert({"initiative": "Refunds", "status": "Active", "sort_order": 0}),
        store.insert({"initiative": "Ledger", "status": "Completed", "sort_order": 1,
                      "priority_rank": 4}),
        store.insert({"initiative": "Payouts", "status": "Backlog", "sort_order": 3}),
    ]


class TestLoad:
    def test_ranks_repaired_and_written(self, records, alice_store):
        checkout, refunds, ledger, payouts = _seed(alice_store)
        rows = records.load()
        ranks = {r["initiative"]: r["priority_rank"] for r in rows}
        assert ranks == {"Refunds": 1, "Checkout v2": 2, "Ledger": None, "Payouts": 3}
        assert alice_store.get(ledger["id"])["priority_rank"] is None
        assert alice_store.get(payouts["id"])["priority_rank"] == 3
        assert len(records.cache) == 4

    def test_second_pass_changes_nothing(self, records, alice_store):
        _seed(alice_store)
        records.load()
        assert records.normalize_ranks() == []

    def test_status_filter(self, records, alice_store):
        _seed(alice_store)
        rows = records.load(status="Active")
        assert [r["initiative"] for r in rows] == ["Refunds", "Checkout v2"]

    def test_search(self, records, alice_store):
        _seed(alice_store)
        alice_store.insert({"initiative": "Tax", "notes": "blocked on refunds API"})
        rows = records.load(search="refunds")
        assert sorted(r["initiative"] for r in rows) == ["Refunds", "Tax"]


class TestCreate:
    def test_defaults(self, records):
        row = records.create()
        assert row["product"] == "Order Management"
        assert row["status"] == "Active"
        assert row["priority"] == "Build Now"
        assert row["quarter_due"] == "Q1 2026"
        assert row["initiative"] == "New Initiative"
        assert row["sort_order"] == 0
        assert row["priority_rank"] == 1
        assert row["id"] in records.cache
        assert records.notifier.recent[-1].message == "Initiative created"

    def test_rank_appends_within_status(self, records, alice_store):
        alice_store.insert({"status": "Active", "priority_rank": 5})
        alice_store.insert({"status": "Backlog", "priority_rank": 9})
        row = records.create(initiative="Checkout v3")
        assert row["initiative"] == "Checkout v3"
        assert row["priority_rank"] == 6

    def test_terminal_status_unranked(self, records):
        row = records.create(status="Completed")
        assert row["priority_rank"] is None


class TestReorderAndDelete:
    def test_reorder_writes_positions_and_dense_ranks(self, records, alice_store):
        checkout, refunds, ledger, payouts = _seed(alice_store)
        records.load()
        order = [payouts["id"], ledger["id"], checkout["id"], refunds["id"]]
        records.reorder(order)
        stored = {r["id"]: r for r in alice_store.select()}
        assert [stored[i]["sort_order"] for i in order] == [0, 1, 2, 3]
        assert [stored[i]["priority_rank"] for i in order] == [1, None, 2, 3]
        assert records.cache.get(payouts["id"])["priority_rank"] == 1

    def test_reorder_same_order_twice_is_noop(self, records, alice_store):
        seeded = _seed(alice_store)
        records.load()
        ids = [r["id"] for r in seeded]
        records.reorder(ids)
        assert records.reorder(ids) == []

    def test_reorder_requires_loaded_rows(self, records):
        with pytest.raises(KeyError):
            records.reorder([123456])

    def test_delete(self, records, alice_store):
        row = records.create()
        assert records.delete(row["id"]) is True
        assert row["id"] not in records.cache
        assert alice_store.get(row["id"]) is None


class TestFetchFailure:
    def test_failed_load_keeps_cache(self, records, alice_store):
        _seed(alice_store)
        loaded = records.load()
        alice_store.close()
        rows = records.load()
        assert rows == loaded
        assert records.notifier.recent[-1].message == "Failed to fetch initiatives"


class FailingUpdates:
    """Delegates to a RecordStore but fails the Nth update call."""

    def __init__(self, store):
        self._store = store
        self.fail_on = None
        self.updates = 0

    def update(self, row_id, fields):
        self.updates += 1
        if self.updates == self.fail_on:
            raise StoreError("connection_error", "server closed the connection")
        return self._store.update(row_id, fields)

    def __getattr__(self, name):
        return getattr(self._store, name)


class TestReorderFailure:
    def test_failed_write_reloads_view(self, clean_db, alice_store):
        checkout, refunds, ledger, payouts = _seed(alice_store)
        flaky = FailingUpdates(alice_store)
        records = RoadmapRecords(flaky, RecordCache(), Notifier())
        records.load(status="Active")
        flaky.fail_on = flaky.updates + 2
        # Written elsewhere after the view was loaded
        alice_store.update(checkout["id"], {"notes": "from another session"})

        with pytest.raises(StoreError):
            records.reorder([checkout["id"], refunds["id"]])

        assert records.notifier.recent[-1].message == "Failed to save order changes"
        assert records.cache.get(checkout["id"])["notes"] == "from another session"
        for row in alice_store.select({"status": "Active"}):
            assert records.cache.get(row["id"]) == row
        assert ledger["id"] not in records.cache
        assert payouts["id"] not in records.cache
