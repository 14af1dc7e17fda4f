"""
Tests for the Column Registry — persistent column catalog.

Covers:
- Seeded system columns and lookup (get, get_by_id, NotFound)
- Append ordering (max + 1, first order 1 on an empty catalog)
- Uniqueness (DuplicateKey)
- Mutability rules (InvalidMutation)
- System column protection (Forbidden)
- Change events published on the bus

Run with: pytest tests/test_registry.py -v
"""

import pytest
from psycopg2 import sql

from catalog.errors import DuplicateKey, Forbidden, InvalidMutation, NotFound
from catalog.models import DataType
from catalog.registry import ColumnRegistry
from store.config import COLUMN_TABLE
from store.schema import SYSTEM_COLUMNS
from store.subscriptions import COLUMNS_CHANNEL


@pytest.fixture()
def events(bus):
    received = []
    bus.on(COLUMNS_CHANNEL, received.append)
    return received


@pytest.fixture()
def registry(clean_db, alice_conn, bus):
    return ColumnRegistry(alice_conn, bus)


# ── Lookup ───────────────────────────────────────────────────────────────────

class TestLookup:
    def test_system_columns_seeded(self, registry):
        cols = registry.list()
        assert [c.field_key for c in cols] == [key for key, _, _ in SYSTEM_COLUMNS]
        assert all(c.is_system_defined for c in cols)
        assert [c.order for c in cols] == list(range(1, len(SYSTEM_COLUMNS) + 1))

    def test_risk_level_not_seeded(self, registry):
        with pytest.raises(NotFound):
            registry.get("risk_level")

    def test_get_by_field_key(self, registry):
        col = registry.get("status")
        assert col.display_name == "Status"
        assert col.data_type is DataType.TEXT

    def test_get_by_id(self, registry):
        col = registry.get("start_date")
        assert registry.get_by_id(col.id) == col

    def test_get_by_unknown_id(self, registry):
        with pytest.raises(NotFound):
            registry.get_by_id("00000000-0000-0000-0000-000000000000")


# ── Create ───────────────────────────────────────────────────────────────────

class TestCreate:
    def test_appends_at_max_plus_one(self, registry):
        before = max(c.order for c in registry.list())
        col = registry.create("risk_level", DataType.TEXT, display_name="Risk Level")
        assert col.order == before + 1
        assert col.display_name == "Risk Level"
        assert not col.is_system_defined
        assert col in registry.list()

    def test_display_name_defaults_to_field_key(self, registry):
        col = registry.create("budget", "numeric")
        assert col.display_name == "budget"
        assert col.data_type is DataType.NUMERIC

    def test_first_order_on_empty_catalog_is_one(self, registry, admin_conn):
        with admin_conn.cursor() as cur:
            cur.execute(sql.SQL("TRUNCATE {}").format(sql.Identifier(COLUMN_TABLE)))
        col = registry.create("risk_level", DataType.TEXT)
        assert col.order == 1

    def test_duplicate_key(self, registry):
        before = registry.list()
        with pytest.raises(DuplicateKey) as exc_info:
            registry.create("status", DataType.TEXT)
        assert exc_info.value.user_message == "Column name already exists"
        assert registry.list() == before

    def test_create_publishes_insert(self, registry, events):
        col = registry.create("risk_level", DataType.TEXT)
        assert len(events) == 1
        assert events[0].op == "INSERT"
        assert events[0].column_id == col.id
        assert events[0].field_key == "risk_level"
        assert events[0].origin == "local"


# ── Update ───────────────────────────────────────────────────────────────────

class TestUpdate:
    def test_rename_and_hide(self, registry):
        col = registry.get("notes")
        updated = registry.update(col.id, display_name="Remarks", visible=False)
        assert updated.display_name == "Remarks"
        assert updated.visible is False
        assert updated.field_key == "notes"
        assert registry.get("notes") == updated

    def test_immutable_attributes_rejected(self, registry):
        col = registry.get("notes")
        with pytest.raises(InvalidMutation) as exc_info:
            registry.update(col.id, field_key="remarks", data_type="integer")
        assert exc_info.value.attributes == ("data_type", "field_key")
        assert registry.get("notes") == col

    def test_update_unknown_id(self, registry):
        with pytest.raises(NotFound):
            registry.update("00000000-0000-0000-0000-000000000000", visible=False)

    def test_update_publishes(self, registry, events):
        col = registry.get("team")
        registry.update(col.id, visible=False)
        assert [e.op for e in events] == ["UPDATE"]

    def test_set_orders_publishes_once(self, registry, events):
        a = registry.get("team")
        b = registry.get("notes")
        cols = registry.set_orders({a.id: 0, b.id: 1})
        orders = {c.field_key: c.order for c in cols}
        assert orders["team"] == 0
        assert orders["notes"] == 1
        assert [e.op for e in events] == ["REORDER"]

    def test_set_orders_unknown_id_rolls_back(self, registry):
        a = registry.get("team")
        with pytest.raises(NotFound):
            registry.set_orders({a.id: 0, "00000000-0000-0000-0000-000000000000": 1})
        assert registry.get("team").order == a.order


# ── Delete ───────────────────────────────────────────────────────────────────

class TestDelete:
    def test_delete_custom(self, registry, events):
        col = registry.create("risk_level", DataType.TEXT)
        registry.delete(col.id)
        with pytest.raises(NotFound):
            registry.get("risk_level")
        assert [e.op for e in events] == ["INSERT", "DELETE"]

    def test_delete_system_forbidden(self, registry):
        col = registry.get("status")
        with pytest.raises(Forbidden) as exc_info:
            registry.delete(col.id)
        assert exc_info.value.user_message == "Cannot delete system columns"
        assert registry.get("status") == col
