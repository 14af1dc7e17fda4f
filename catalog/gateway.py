"""
Schema Mutation Gateway — the only path that alters roadmap_fields.

Calls the privileged add_column_to_roadmap / drop_column_from_roadmap
procedures over an app_admin connection (EXECUTE is revoked from PUBLIC,
so end-user connections cannot reach them). Store errors are translated
into catalog error kinds.
"""

from typing import Dict

import psycopg2
import structlog
from psycopg2 import sql

from catalog.errors import Forbidden, InvalidName, NotFound, SchemaConflict
from catalog.models import DataType
from store.client import translate_error
from store.config import RECORD_TABLE


logger = structlog.get_logger(__name__)


class SchemaGateway:
    """Adds and removes physical fields of the record table."""

    def __init__(self, admin_conn, table=RECORD_TABLE):
        self.conn = admin_conn
        self.conn.autocommit = True
        self.table = table

    def add_physical_field(self, field_key, data_type):
        """Add a column of the given type. SchemaConflict if it already exists."""
        data_type = DataType(data_type)
        self._call("add_column_to_roadmap", field_key, data_type.sql_type)
        logger.info("physical_field_added", table=self.table,
                    field_key=field_key, sql_type=data_type.sql_type)

    def remove_physical_field(self, field_key):
        """Drop a column and all its data. NotFound if absent."""
        self._call("drop_column_from_roadmap", field_key)
        logger.warning("physical_field_removed", table=self.table, field_key=field_key)

    def physical_fields(self) -> Dict[str, str]:
        """Current fields of the record table → SQL type."""
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT column_name, data_type
                FROM information_schema.columns
                WHERE table_schema = current_schema() AND table_name = %s
                ORDER BY ordinal_position
                """,
                (self.table,),
            )
            return {name: sql_type for name, sql_type in cur.fetchall()}

    def has_physical_field(self, field_key) -> bool:
        return field_key in self.physical_fields()

    # ── Internal ─────────────────────────────────────────────────────

    def _call(self, procedure, field_key, *args):
        query = sql.SQL("SELECT {}({})").format(
            sql.Identifier(procedure),
            sql.SQL(", ").join(sql.Placeholder() * (1 + len(args))),
        )
        try:
            with self.conn.cursor() as cur:
                cur.execute(query, (field_key,) + args)
        except psycopg2.Error as exc:
            err = translate_error(exc)
            logger.warning("schema_mutation_failed", procedure=procedure,
                           field_key=field_key, kind=err.kind, error=err.message)
            if err.kind == "duplicate_column":
                raise SchemaConflict(field_key, "field already exists physically") from exc
            if err.kind == "undefined_column":
                raise NotFound(f"physical field '{field_key}'") from exc
            if err.kind == "insufficient_privilege":
                raise Forbidden(field_key, f"{procedure} refused: {err.message}") from exc
            if err.kind == "invalid_name":
                raise InvalidName(field_key) from exc
            raise err from exc
