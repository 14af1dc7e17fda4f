"""
ColumnView — a reader of the column catalog that stays in sync.

open() subscribes to the "columns" channel and fetches; every published
ColumnChange triggers a refetch; close() unsubscribes. Several views over
the same bus stay consistent without referencing each other.
"""

from typing import List

import structlog

from catalog.models import ColumnDefinition
from store.client import StoreError
from store.subscriptions import COLUMNS_CHANNEL


logger = structlog.get_logger(__name__)


class ColumnView:

    def __init__(self, registry, bus, notifier=None):
        self.registry = registry
        self.bus = bus
        self.notifier = notifier
        self._columns: List[ColumnDefinition] = []
        self._subscription = None
        self.refresh_count = 0

    def open(self):
        if self._subscription is None:
            self._subscription = self.bus.on(COLUMNS_CHANNEL, self._on_change)
        self.refresh()
        return self

    def close(self):
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    @property
    def is_open(self):
        return self._subscription is not None

    def refresh(self):
        """Refetch; on failure keep the previous list."""
        try:
            self._columns = self.registry.list()
        except StoreError as exc:
            logger.error("column_fetch_failed", error=exc.message)
            if self.notifier is not None:
                self.notifier.error("Failed to fetch column configuration")
            return
        self.refresh_count += 1

    def _on_change(self, event):
        logger.debug("columns_changed", op=event.op, field_key=event.field_key,
                     origin=event.origin)
        self.refresh()

    # ── Derived lists ────────────────────────────────────────────────

    @property
    def columns(self) -> List[ColumnDefinition]:
        return list(self._columns)

    @property
    def visible_columns(self) -> List[ColumnDefinition]:
        return sorted((c for c in self._columns if c.visible), key=lambda c: c.order)

    @property
    def system_columns(self) -> List[ColumnDefinition]:
        return [c for c in self._columns if c.is_system_defined]

    @property
    def custom_columns(self) -> List[ColumnDefinition]:
        return [c for c in self._columns if not c.is_system_defined]

    def __enter__(self):
        return self.open()

    def __exit__(self, *args):
        self.close()
