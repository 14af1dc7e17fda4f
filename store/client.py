"""
RecordStore — CRUD over the roadmap record table.

Rows are plain dicts keyed by field key. The set of fields is whatever the
table physically holds right now, so identifiers are always composed with
psycopg2.sql and never trusted as SQL text.

Every psycopg2 failure leaves this module as a StoreError whose ``kind``
is the PostgreSQL condition name (unique_violation, undefined_column, ...).
"""

import psycopg2
import psycopg2.errorcodes
import psycopg2.extras
import structlog
from psycopg2 import sql

from store.config import RECORD_TABLE


logger = structlog.get_logger(__name__)

DEFAULT_ORDER = [("sort_order", "asc"), ("id", "asc")]


class StoreError(Exception):
    """A record-store failure with a machine-readable kind."""

    def __init__(self, kind, message, pgcode=None):
        self.kind = kind
        self.message = message
        self.pgcode = pgcode
        super().__init__(f"{kind}: {message}")


def translate_error(exc):
    """Map a psycopg2 error to a StoreError (kind = condition name)."""
    pgcode = getattr(exc, "pgcode", None)
    if pgcode:
        try:
            kind = psycopg2.errorcodes.lookup(pgcode).lower()
        except KeyError:
            kind = "database_error"
    elif isinstance(exc, psycopg2.OperationalError):
        kind = "connection_error"
    else:
        kind = "database_error"
    message = getattr(getattr(exc, "diag", None), "message_primary", None) or str(exc).strip()
    return StoreError(kind, message, pgcode=pgcode)


class RecordStore:
    """
    Connects to the roadmap store as a specific user.

    Usage:
        store = RecordStore(user="alice", password="secret", host="/tmp/pg", port=5432)
        row = store.insert({"initiative": "Checkout v2", "status": "Active"})
        store.update(row["id"], {"notes": "kick-off booked"})
        store.close()
    """

    def __init__(self, user, password, host="localhost", port=5432,
                 dbname="postgres", table=RECORD_TABLE):
        self.user = user
        self.table = table
        try:
            self.conn = psycopg2.connect(
                host=host,
                port=port,
                dbname=dbname,
                user=user,
                password=password,
            )
        except psycopg2.Error as exc:
            raise translate_error(exc) from exc
        self.conn.autocommit = True

    # ── Read operations ──────────────────────────────────────────────

    def select(self, filters=None, order=None, search=None, search_fields=()):
        """
        Return rows matching every equality filter.

        filters: {"status": "Active"} → WHERE "status" = 'Active'
        order: [(field, "asc"|"desc"), ...]; nulls always sort last.
        search: case-insensitive substring matched against search_fields (OR).
        """
        clauses = []
        params = []
        for key, value in (filters or {}).items():
            if value is None:
                clauses.append(sql.SQL("{} IS NULL").format(sql.Identifier(key)))
            else:
                clauses.append(sql.SQL("{} = %s").format(sql.Identifier(key)))
                params.append(value)

        if search and search_fields:
            clauses.append(sql.SQL("({})").format(sql.SQL(" OR ").join(
                sql.SQL("{}::text ILIKE %s").format(sql.Identifier(f))
                for f in search_fields
            )))
            params.extend([f"%{search}%"] * len(search_fields))

        query = sql.SQL("SELECT * FROM {}").format(sql.Identifier(self.table))
        if clauses:
            query += sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses)
        query += sql.SQL(" ORDER BY ") + sql.SQL(", ").join(
            self._order_term(field, direction)
            for field, direction in (order or DEFAULT_ORDER)
        )
        return self._fetchall(query, params)

    def get(self, row_id):
        """Return one row, or None if it does not exist."""
        rows = self._fetchall(
            sql.SQL("SELECT * FROM {} WHERE id = %s").format(sql.Identifier(self.table)),
            (row_id,),
        )
        return rows[0] if rows else None

    # ── Write operations ─────────────────────────────────────────────

    def insert(self, row):
        """Insert a row; returns it as stored (with its generated id)."""
        fields = [k for k in row if k != "id"]
        if fields:
            query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
                sql.Identifier(self.table),
                sql.SQL(", ").join(sql.Identifier(f) for f in fields),
                sql.SQL(", ").join(sql.Placeholder() * len(fields)),
            )
        else:
            query = sql.SQL("INSERT INTO {} DEFAULT VALUES RETURNING *").format(
                sql.Identifier(self.table))
        rows = self._fetchall(query, [row[f] for f in fields])
        logger.debug("record_inserted", table=self.table, id=rows[0]["id"])
        return rows[0]

    def update(self, row_id, fields):
        """
        Overwrite only the given fields of one row, in one statement.
        Returns the updated row; raises StoreError(kind="not_found") if absent.
        """
        if not fields:
            row = self.get(row_id)
            if row is None:
                raise StoreError("not_found", f"Record {row_id} does not exist")
            return row
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(k)) for k in fields
        )
        query = sql.SQL("UPDATE {} SET {} WHERE id = %s RETURNING *").format(
            sql.Identifier(self.table), assignments)
        rows = self._fetchall(query, list(fields.values()) + [row_id])
        if not rows:
            raise StoreError("not_found", f"Record {row_id} does not exist")
        logger.debug("record_updated", table=self.table, id=row_id, fields=sorted(fields))
        return rows[0]

    def delete(self, row_id):
        """Delete one row. Returns True if a row was removed."""
        query = sql.SQL("DELETE FROM {} WHERE id = %s RETURNING id").format(
            sql.Identifier(self.table))
        return bool(self._fetchall(query, (row_id,)))

    # ── Internal helpers ─────────────────────────────────────────────

    @staticmethod
    def _order_term(field, direction):
        direction = direction.lower()
        if direction not in ("asc", "desc"):
            raise ValueError(f"Invalid sort direction: {direction!r}")
        return sql.SQL("{} {} NULLS LAST").format(
            sql.Identifier(field), sql.SQL(direction.upper()))

    def _fetchall(self, query, params=()):
        try:
            with self.conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                return [dict(r) for r in cur.fetchall()]
        except psycopg2.Error as exc:
            raise translate_error(exc) from exc

    def close(self):
        """Close the database connection."""
        if self.conn and not self.conn.closed:
            self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
