"""
Tests for ColumnView — a catalog reader kept in sync by the columns channel.

Run with: pytest tests/test_column_view.py -v
"""

from catalog.models import ColumnDefinition, DataType
from catalog.registry import ColumnRegistry
from catalog.view import ColumnView
from store.client import StoreError
from store.notifications import Notifier
from store.subscriptions import COLUMNS_CHANNEL, ColumnChange, EventBus


def _col(key, order, visible=True, system=False):
    return ColumnDefinition(id=f"id-{key}", field_key=key, data_type=DataType.TEXT,
                            display_name=key.title(), visible=visible, order=order,
                            is_system_defined=system)


class FakeRegistry:
    def __init__(self, columns):
        self.columns = list(columns)
        self.fail = False
        self.calls = 0

    def list(self):
        self.calls += 1
        if self.fail:
            raise StoreError("connection_error", "server closed the connection")
        return list(self.columns)


class TestColumnView:
    def test_open_fetches_and_subscribes(self):
        bus = EventBus()
        registry = FakeRegistry([_col("status", 1, system=True)])
        view = ColumnView(registry, bus).open()
        assert view.is_open
        assert [c.field_key for c in view.columns] == ["status"]
        assert bus.listener_count(COLUMNS_CHANNEL) == 1

    def test_change_event_triggers_refetch(self):
        bus = EventBus()
        registry = FakeRegistry([_col("status", 1, system=True)])
        with ColumnView(registry, bus) as view:
            registry.columns.append(_col("risk_level", 2))
            bus.emit(ColumnChange(op="INSERT", field_key="risk_level"))
            assert [c.field_key for c in view.columns] == ["status", "risk_level"]
            assert view.refresh_count == 2

    def test_close_unsubscribes(self):
        bus = EventBus()
        registry = FakeRegistry([])
        view = ColumnView(registry, bus).open()
        view.close()
        bus.emit(ColumnChange(op="INSERT"))
        assert registry.calls == 1
        assert not view.is_open
        assert bus.listener_count(COLUMNS_CHANNEL) == 0

    def test_failed_fetch_keeps_previous_list(self):
        bus = EventBus()
        notifier = Notifier()
        registry = FakeRegistry([_col("status", 1, system=True)])
        view = ColumnView(registry, bus, notifier).open()
        registry.fail = True
        bus.emit(ColumnChange(op="UPDATE"))
        assert [c.field_key for c in view.columns] == ["status"]
        assert notifier.recent[-1].message == "Failed to fetch column configuration"
        assert notifier.recent[-1].level == "error"

    def test_derived_lists(self):
        registry = FakeRegistry([
            _col("status", 2, system=True),
            _col("notes", 1, system=True, visible=False),
            _col("risk_level", 3),
            _col("budget", 0),
        ])
        view = ColumnView(registry, EventBus()).open()
        assert [c.field_key for c in view.visible_columns] == ["budget", "status", "risk_level"]
        assert [c.field_key for c in view.system_columns] == ["status", "notes"]
        assert [c.field_key for c in view.custom_columns] == ["risk_level", "budget"]


class TestViewsStayConsistent:
    def test_two_views_see_registry_writes(self, clean_db, alice_conn):
        bus = EventBus()
        registry = ColumnRegistry(alice_conn, bus)
        with ColumnView(registry, bus) as grid, ColumnView(registry, bus) as manager:
            registry.create("risk_level", DataType.TEXT)
            assert "risk_level" in [c.field_key for c in grid.columns]
            assert grid.columns == manager.columns
