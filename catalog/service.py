"""
Column Mutation Service — user-facing column operations.

Orchestrates the ColumnRegistry (metadata) and the SchemaGateway (physical
table). The two stores are not covered by one transaction, so the two-step
operations compensate instead:

  add:    define → add physical field → on failure undefine, re-raise
  delete: undefine → drop physical field → on failure PartialFailure

Validation (InvalidName, Forbidden) always runs before anything is written.
"""

from dataclasses import dataclass, field
from typing import List

import structlog

from catalog.errors import (
    CatalogError, Forbidden, InvalidMutation, InvalidName, NotFound, PartialFailure,
)
from catalog.models import ColumnDefinition, DataType, is_valid_field_key
from store.client import StoreError
from store.schema import INTERNAL_FIELDS


logger = structlog.get_logger(__name__)


@dataclass
class ConsistencyReport:
    """Disagreements between the catalog and the physical table."""
    orphaned_definitions: List[str] = field(default_factory=list)
    untracked_fields: List[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.orphaned_definitions and not self.untracked_fields


class ColumnMutationService:

    def __init__(self, registry, gateway):
        self.registry = registry
        self.gateway = gateway

    def list_columns(self) -> List[ColumnDefinition]:
        return self.registry.list()

    def add_column(self, field_key, display_name, data_type,
                   required=False, visible=True) -> ColumnDefinition:
        if not is_valid_field_key(field_key):
            raise InvalidName(field_key)
        try:
            data_type = DataType(data_type)
        except ValueError:
            raise InvalidMutation(
                f"Unsupported data type {data_type!r} for column '{field_key}'",
                attributes=["data_type"],
            ) from None
        display_name = (display_name or "").strip() or field_key

        col = self.registry.create(
            field_key, data_type, display_name=display_name,
            visible=visible, required=required,
        )
        try:
            self.gateway.add_physical_field(field_key, data_type)
        except (CatalogError, StoreError) as exc:
            logger.warning("add_column_compensating", field_key=field_key, error=str(exc))
            try:
                self.registry.delete(col.id)
            except (CatalogError, StoreError) as comp_exc:
                logger.error("add_column_compensation_failed", field_key=field_key,
                             error=str(comp_exc))
                raise PartialFailure("add", field_key, exc,
                                     compensation_error=comp_exc) from exc
            raise
        logger.info("column_added", field_key=field_key, order=col.order)
        return col

    def rename_column(self, column_id, display_name) -> ColumnDefinition:
        display_name = (display_name or "").strip()
        if not display_name:
            raise InvalidMutation("Display name cannot be empty", attributes=["display_name"])
        return self.registry.update(column_id, display_name=display_name)

    def set_visibility(self, column_id, visible) -> ColumnDefinition:
        return self.registry.update(column_id, visible=bool(visible))

    def reorder_columns(self, ordered_ids) -> List[ColumnDefinition]:
        """
        Apply a new order for one group of columns.

        Each group (system, custom) is emitted as its ids in input order
        followed by its remaining members in their prior relative order;
        the system group always comes first so the groups never interleave.
        Orders are dense, 0..N-1. Only changed orders are written.
        """
        current = self.registry.list()
        by_id = {c.id: c for c in current}
        requested = list(dict.fromkeys(str(i) for i in ordered_ids))
        unknown = [i for i in requested if i not in by_id]
        if unknown:
            raise NotFound(f"column ids {unknown}")
        if not requested:
            return current

        final = []
        for system in (True, False):
            moved = [by_id[i] for i in requested if by_id[i].is_system_defined == system]
            moved_ids = {c.id for c in moved}
            rest = [c for c in current
                    if c.is_system_defined == system and c.id not in moved_ids]
            final.extend(moved + rest)

        changes = {c.id: index for index, c in enumerate(final) if c.order != index}
        if not changes:
            return current
        logger.info("reorder_columns", moved=len(requested), changed=len(changes))
        return self.registry.set_orders(changes)

    def delete_column(self, column_id) -> ColumnDefinition:
        col = self.registry.get_by_id(column_id)
        if col.is_system_defined:
            raise Forbidden(col.field_key)

        self.registry.delete(col.id)
        try:
            self.gateway.remove_physical_field(col.field_key)
        except (CatalogError, StoreError) as exc:
            logger.error("delete_column_partial_failure", field_key=col.field_key,
                         error=str(exc))
            raise PartialFailure(
                "delete", col.field_key, exc,
                user_message="Column removed from config but failed to drop from table",
            ) from exc
        logger.info("column_deleted", field_key=col.field_key)
        return col

    def check_consistency(self) -> ConsistencyReport:
        """Compare catalog keys with the physical fields of the record table."""
        defined = {c.field_key for c in self.registry.list()}
        physical = set(self.gateway.physical_fields()) - set(INTERNAL_FIELDS)
        return ConsistencyReport(
            orphaned_definitions=sorted(defined - physical),
            untracked_fields=sorted(physical - defined),
        )
