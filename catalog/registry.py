"""
Column Registry — persistent column catalog.

Source of truth for which fields the roadmap table exposes and how they
render. Backed by the column_config table; every mutation publishes a
ColumnChange on the "columns" channel so open views can refetch.

Rules enforced here:
  - field_key is unique (DuplicateKey)
  - new columns are appended: order = current max + 1
  - only display_name, visible and order are mutable (InvalidMutation)
  - system-defined columns are never deleted (Forbidden)
"""

from typing import Dict, List

import psycopg2
import psycopg2.errors
import psycopg2.extras
import structlog
from psycopg2 import sql

from catalog.errors import DuplicateKey, Forbidden, InvalidMutation, NotFound
from catalog.models import ColumnDefinition, DataType
from store.client import translate_error
from store.config import COLUMN_TABLE
from store.subscriptions import ColumnChange


logger = structlog.get_logger(__name__)

# ColumnDefinition attribute → column_config column
_DB_COLUMNS = {
    "id": "id",
    "field_key": "column_name",
    "display_name": "display_name",
    "data_type": "data_type",
    "visible": "is_visible",
    "order": "sort_order",
    "is_system_defined": "is_system_column",
    "is_required": "is_required",
    "created_at": "created_at",
    "updated_at": "updated_at",
}


class ColumnRegistry:
    """
    Catalog of ColumnDefinitions stored in column_config.

    Usage:
        registry = ColumnRegistry(conn, bus)
        col = registry.create("risk_level", DataType.TEXT, display_name="Risk Level")
        registry.update(col.id, visible=False)
        registry.list()
    """

    def __init__(self, conn, bus=None, table=COLUMN_TABLE):
        self.conn = conn
        self.conn.autocommit = True
        self.bus = bus
        self.table = table

    # ── Lookup ───────────────────────────────────────────────────────

    def list(self) -> List[ColumnDefinition]:
        """All definitions ordered by display order."""
        return self._select(sql.SQL("ORDER BY sort_order ASC, column_name ASC"))

    def get(self, field_key) -> ColumnDefinition:
        """Definition by field key. Raises NotFound."""
        found = self._select(sql.SQL("WHERE column_name = %s"), (field_key,))
        if not found:
            raise NotFound(f"column '{field_key}'")
        return found[0]

    def get_by_id(self, column_id) -> ColumnDefinition:
        """Definition by id. Raises NotFound."""
        found = self._select(sql.SQL("WHERE id::text = %s"), (str(column_id),))
        if not found:
            raise NotFound(f"column id {column_id}")
        return found[0]

    # ── Mutations ────────────────────────────────────────────────────

    def create(self, field_key, data_type, display_name=None, visible=True,
               required=False, system=False) -> ColumnDefinition:
        """Append a new definition at order = max + 1.

        Raises DuplicateKey if field_key is already defined.
        """
        data_type = DataType(data_type)
        query = sql.SQL("""
            INSERT INTO {table}
                (column_name, display_name, data_type, is_visible,
                 sort_order, is_system_column, is_required)
            SELECT %s, %s, %s, %s, COALESCE(MAX(sort_order), 0) + 1, %s, %s
            FROM {table}
            RETURNING {columns}
        """).format(table=sql.Identifier(self.table), columns=self._columns_sql())
        params = (field_key, display_name or field_key, data_type.value,
                  visible, system, required)
        try:
            rows = self._execute(query, params)
        except psycopg2.errors.UniqueViolation:
            raise DuplicateKey(field_key) from None
        col = self._row_to_definition(rows[0])
        logger.info("column_defined", field_key=field_key, order=col.order,
                    data_type=data_type.value)
        self._publish("INSERT", col)
        return col

    def update(self, column_id, **changes) -> ColumnDefinition:
        """Change display_name, visible and/or order of one definition.

        Raises InvalidMutation for any other attribute, NotFound if absent.
        """
        rejected = sorted(k for k in changes if k not in ColumnDefinition.MUTABLE)
        if rejected:
            raise InvalidMutation(
                f"Cannot change {', '.join(rejected)} of column {column_id}: "
                f"only {', '.join(ColumnDefinition.MUTABLE)} are mutable",
                attributes=rejected,
            )
        if not changes:
            return self.get_by_id(column_id)

        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(_DB_COLUMNS[k])) for k in changes
        )
        query = sql.SQL("""
            UPDATE {table}
            SET {assignments}, updated_at = now()
            WHERE id::text = %s
            RETURNING {columns}
        """).format(table=sql.Identifier(self.table), assignments=assignments,
                    columns=self._columns_sql())
        rows = self._execute(query, list(changes.values()) + [str(column_id)])
        if not rows:
            raise NotFound(f"column id {column_id}")
        col = self._row_to_definition(rows[0])
        self._publish("UPDATE", col)
        return col

    def set_orders(self, assignments: Dict[str, int]) -> List[ColumnDefinition]:
        """Write several orders in one transaction; publishes one change."""
        if not assignments:
            return self.list()
        query = sql.SQL("""
            UPDATE {table} SET sort_order = %s, updated_at = now()
            WHERE id::text = %s
        """).format(table=sql.Identifier(self.table))
        self.conn.autocommit = False
        try:
            with self.conn.cursor() as cur:
                for column_id, order in assignments.items():
                    cur.execute(query, (order, str(column_id)))
                    if cur.rowcount == 0:
                        raise NotFound(f"column id {column_id}")
            self.conn.commit()
        except psycopg2.Error as exc:
            self.conn.rollback()
            raise translate_error(exc) from exc
        except Exception:
            self.conn.rollback()
            raise
        finally:
            self.conn.autocommit = True
        logger.info("columns_reordered", count=len(assignments))
        self._publish("REORDER", None)
        return self.list()

    def delete(self, column_id) -> ColumnDefinition:
        """Remove a custom definition. Raises Forbidden for system columns."""
        col = self.get_by_id(column_id)
        if col.is_system_defined:
            raise Forbidden(col.field_key)
        query = sql.SQL("""
            DELETE FROM {table}
            WHERE id::text = %s AND NOT is_system_column
            RETURNING {columns}
        """).format(table=sql.Identifier(self.table), columns=self._columns_sql())
        rows = self._execute(query, (str(column_id),))
        if not rows:
            raise NotFound(f"column id {column_id}")
        logger.info("column_undefined", field_key=col.field_key)
        self._publish("DELETE", col)
        return col

    # ── Internal helpers ─────────────────────────────────────────────

    def _columns_sql(self):
        return sql.SQL(", ").join(sql.Identifier(c) for c in _DB_COLUMNS.values())

    def _select(self, tail, params=()):
        query = sql.SQL("SELECT {columns} FROM {table} ").format(
            columns=self._columns_sql(), table=sql.Identifier(self.table)) + tail
        return [self._row_to_definition(r) for r in self._execute(query, params)]

    def _execute(self, query, params=()):
        """Run a statement returning rows. UniqueViolation passes through untranslated."""
        try:
            with self.conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                return cur.fetchall()
        except psycopg2.errors.UniqueViolation:
            raise
        except psycopg2.Error as exc:
            raise translate_error(exc) from exc

    @staticmethod
    def _row_to_definition(row) -> ColumnDefinition:
        return ColumnDefinition(
            id=str(row["id"]),
            field_key=row["column_name"],
            display_name=row["display_name"],
            data_type=DataType(row["data_type"]),
            visible=row["is_visible"],
            order=row["sort_order"],
            is_system_defined=row["is_system_column"],
            is_required=row["is_required"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _publish(self, op, col):
        if self.bus is None:
            return
        self.bus.emit(ColumnChange(
            op=op,
            column_id=col.id if col else None,
            field_key=col.field_key if col else None,
        ))
