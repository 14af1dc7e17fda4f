"""
Column metadata types.

ColumnDefinition is the in-memory shape of one row of column_config:
  A. Identity (id, field_key — immutable once created)
  B. Storage type (data_type — immutable, no migrations)
  C. Display (display_name, visible, order — mutable)
  D. Governance (is_system_defined, is_required — advisory)
"""

import re
import dataclasses
from datetime import datetime
from enum import Enum
from typing import Optional


FIELD_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")
MAX_FIELD_KEY_LENGTH = 63  # PostgreSQL identifier limit


class DataType(str, Enum):
    """Storage types a user-defined column may take."""
    TEXT = "text"
    INTEGER = "integer"
    NUMERIC = "numeric"
    DATE = "date"
    BOOLEAN = "boolean"

    @property
    def sql_type(self) -> str:
        return _SQL_TYPES[self]


_SQL_TYPES = {
    DataType.TEXT: "text",
    DataType.INTEGER: "integer",
    DataType.NUMERIC: "numeric",
    DataType.DATE: "date",
    DataType.BOOLEAN: "boolean",
}


def is_valid_field_key(field_key) -> bool:
    return (
        isinstance(field_key, str)
        and len(field_key) <= MAX_FIELD_KEY_LENGTH
        and FIELD_KEY_PATTERN.match(field_key) is not None
    )


@dataclasses.dataclass(frozen=True)
class ColumnDefinition:
    """One field exposed in the roadmap table."""

    # ── A. Identity ───────────────────────────────────────────────
    id: str
    field_key: str

    # ── B. Storage ────────────────────────────────────────────────
    data_type: DataType

    # ── C. Display ────────────────────────────────────────────────
    display_name: str
    visible: bool = True
    order: int = 0

    # ── D. Governance ─────────────────────────────────────────────
    is_system_defined: bool = False
    is_required: bool = False

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Attributes update() may touch; everything else is fixed at creation
    MUTABLE = ("display_name", "visible", "order")
    IMMUTABLE = ("id", "field_key", "data_type", "is_system_defined",
                 "is_required", "created_at", "updated_at")
