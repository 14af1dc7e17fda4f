"""
Column operations as the UI sees them.

Each call returns an OperationResult instead of raising, and posts a
transient notice describing the outcome.
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from catalog.errors import CatalogError
from store.client import StoreError


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OperationResult:
    ok: bool
    message: str
    value: Any = None
    error_kind: Optional[str] = None


class ColumnOperations:
    """Façade over ColumnMutationService for UI collaborators."""

    def __init__(self, service, notifier=None):
        self.service = service
        self.notifier = notifier

    def list_columns(self):
        return self._run(self.service.list_columns, None,
                         failure="Failed to fetch column configuration")

    def add_column(self, field_key, display_name, data_type,
                   required=False, visible=True):
        return self._run(
            lambda: self.service.add_column(field_key, display_name, data_type,
                                            required=required, visible=visible),
            "Column added successfully",
            failure="Failed to add column",
        )

    def rename_column(self, column_id, display_name):
        return self._run(lambda: self.service.rename_column(column_id, display_name),
                         "Column renamed", failure="Failed to update column")

    def set_visibility(self, column_id, visible):
        message = "Column shown" if visible else "Column hidden"
        return self._run(lambda: self.service.set_visibility(column_id, visible),
                         message, failure="Failed to update column")

    def reorder_columns(self, ordered_ids):
        return self._run(lambda: self.service.reorder_columns(ordered_ids),
                         "Column order saved", failure="Failed to reorder columns")

    def delete_column(self, column_id):
        return self._run(lambda: self.service.delete_column(column_id),
                         "Column deleted successfully", failure="Failed to delete column")

    def _run(self, action, success, failure):
        try:
            value = action()
        except CatalogError as exc:
            logger.warning("column_operation_failed", kind=exc.kind, error=exc.message)
            return self._fail(exc.user_message, exc.kind)
        except StoreError as exc:
            logger.error("column_operation_failed", kind=exc.kind, error=exc.message)
            return self._fail(f"{failure}: {exc.message}", exc.kind)
        if success and self.notifier is not None:
            self.notifier.success(success)
        return OperationResult(ok=True, message=success or "", value=value)

    def _fail(self, message, kind):
        if self.notifier is not None:
            self.notifier.error(message)
        return OperationResult(ok=False, message=message, error_kind=kind)
