"""
Tests for the "columns changed" channel: the in-process EventBus and the
LISTEN/NOTIFY bridge that re-publishes changes made by other connections.

Run with: pytest tests/test_subscriptions.py -v
"""

import time

import pytest

from catalog.models import DataType
from catalog.registry import ColumnRegistry
from store.subscriptions import (
    COLUMNS_CHANNEL, ColumnChange, ColumnChangeListener, EventBus,
)


# ── EventBus (no DB needed) ──────────────────────────────────────────────────

class TestEventBus:
    def test_channel_listener_receives(self):
        bus = EventBus()
        got = []
        bus.on(COLUMNS_CHANNEL, got.append)
        event = ColumnChange(op="INSERT", field_key="risk_level")
        bus.emit(event)
        assert got == [event]

    def test_other_channel_ignored(self):
        bus = EventBus()
        got = []
        bus.on("records", got.append)
        bus.emit(ColumnChange(op="INSERT"))
        assert got == []

    def test_on_all_receives_every_channel(self):
        bus = EventBus()
        got = []
        bus.on_all(got.append)
        bus.emit(ColumnChange(op="INSERT"))
        bus.emit(ColumnChange(op="DELETE", channel="elsewhere"))
        assert [e.op for e in got] == ["INSERT", "DELETE"]
        bus.off_all(got.append)
        bus.emit(ColumnChange(op="UPDATE"))
        assert len(got) == 2

    def test_subscription_close(self):
        bus = EventBus()
        got = []
        sub = bus.on(COLUMNS_CHANNEL, got.append)
        assert bus.listener_count(COLUMNS_CHANNEL) == 1
        sub.close()
        sub.close()
        assert bus.listener_count(COLUMNS_CHANNEL) == 0
        bus.emit(ColumnChange(op="INSERT"))
        assert got == []

    def test_subscription_context_manager(self):
        bus = EventBus()
        with bus.on(COLUMNS_CHANNEL, lambda e: None):
            assert bus.listener_count(COLUMNS_CHANNEL) == 1
        assert bus.listener_count(COLUMNS_CHANNEL) == 0

    def test_failing_listener_does_not_starve_others(self):
        bus = EventBus()
        got = []

        def boom(event):
            raise RuntimeError("bad reader")

        bus.on(COLUMNS_CHANNEL, boom)
        bus.on(COLUMNS_CHANNEL, got.append)
        bus.emit(ColumnChange(op="UPDATE"))
        assert len(got) == 1


# ── LISTEN / NOTIFY bridge ───────────────────────────────────────────────────

def _wait_for(events, op, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if any(e.op == op for e in events):
            return True
        time.sleep(0.05)
    return any(e.op == op for e in events)


class TestColumnChangeListener:
    def test_remote_change_published(self, clean_db, conn_info, alice_conn, _provision_users):
        bus = EventBus()
        remote = []

        def on_change(event):
            if event.origin == "remote":
                remote.append(event)

        bus.on(COLUMNS_CHANNEL, on_change)
        with ColumnChangeListener(bus, user="bob", password="bob_pw", **conn_info):
            # Writer has no bus: the only way the listener hears of it is NOTIFY
            ColumnRegistry(alice_conn).create("risk_level", DataType.TEXT)
            assert _wait_for(remote, "INSERT")

        insert = [e for e in remote if e.op == "INSERT"][0]
        assert insert.field_key == "risk_level"
        assert insert.column_id

    def test_own_backend_ignored(self, clean_db, conn_info, alice_conn, _provision_users):
        bus = EventBus()
        remote = []

        def on_change(event):
            remote.append(event)

        bus.on(COLUMNS_CHANNEL, on_change)
        listener = ColumnChangeListener(
            bus, user="bob", password="bob_pw",
            ignore_pids=[alice_conn.get_backend_pid()], **conn_info,
        )
        with listener:
            ColumnRegistry(alice_conn).create("risk_level", DataType.TEXT)
            assert not _wait_for(remote, "INSERT", timeout=1.0)
        assert remote == []
