"""
RoadmapRecords — loading, creating, deleting and reordering records while
keeping priority ranks valid. Only changed rows are written back.
"""

from typing import List

import structlog

from editing.cache import RecordCache
from editing.ranking import (
    apply_rank_deltas, assign_priority_ranks, next_priority_rank, rerank,
)
from store.client import StoreError
from store.config import TERMINAL_STATUS


logger = structlog.get_logger(__name__)

NEW_RECORD_DEFAULTS = {
    "product": "Order Management",
    "status": "Active",
    "priority": "Build Now",
    "quarter_due": "Q1 2026",
    "initiative": "New Initiative",
    "sort_order": 0,
}

SEARCH_FIELDS = (
    "initiative", "objective", "notes", "requested_by", "engineer_assigned",
    "dependencies", "tags_labels", "epic_theme", "customer_impact", "team",
)


class RoadmapRecords:

    def __init__(self, store, cache=None, notifier=None,
                 terminal_status=TERMINAL_STATUS):
        self.store = store
        self.cache = cache if cache is not None else RecordCache()
        self.notifier = notifier
        self.terminal_status = terminal_status
        self._view = {}

    def load(self, status=None, product=None, search=None) -> List[dict]:
        """Fetch the view's records, repair ranks, and fill the cache.

        A failed fetch keeps the previously cached rows.
        """
        self._view = {"status": status, "product": product, "search": search}
        filters = {}
        if status is not None:
            filters["status"] = status
        if product is not None:
            filters["product"] = product
        try:
            rows = self.store.select(filters, None, search=search,
                                     search_fields=SEARCH_FIELDS if search else ())
            deltas = assign_priority_ranks(rows, self.terminal_status)
            for delta in deltas:
                self.store.update(delta.row_id, {"priority_rank": delta.priority_rank})
        except StoreError as exc:
            logger.error("records_fetch_failed", kind=exc.kind, error=exc.message)
            if self.notifier is not None:
                self.notifier.error("Failed to fetch initiatives")
            return self.cache.rows()
        if deltas:
            logger.info("priority_ranks_repaired", count=len(deltas))

        ranked = apply_rank_deltas(rows, deltas)
        self.cache.load(ranked)
        return ranked

    def create(self, **fields) -> dict:
        """Insert a record with defaults, ranked last within its status."""
        row = dict(NEW_RECORD_DEFAULTS)
        row.update({k: v for k, v in fields.items() if v is not None and k != "id"})
        peers = self.store.select({"status": row["status"]}, None)
        row["priority_rank"] = next_priority_rank(peers, row["status"],
                                                  self.terminal_status)
        created = self.store.insert(row)
        self.cache.insert(created)
        logger.info("record_created", id=created["id"], status=created.get("status"))
        if self.notifier is not None:
            self.notifier.success("Initiative created")
        return created

    def delete(self, row_id) -> bool:
        removed = self.store.delete(row_id)
        self.cache.discard(row_id)
        if removed and self.notifier is not None:
            self.notifier.success("Initiative deleted")
        return removed

    def reorder(self, ordered_ids) -> list:
        """
        Apply a manual order: sort_order = position, dense ranks over the
        non-terminal records. Writes only the rows that changed.

        A failed write leaves earlier rows written, so the view is reloaded
        from the store before the error is re-raised.
        """
        missing = [i for i in ordered_ids if i not in self.cache]
        if missing:
            raise KeyError(f"Records not loaded: {missing}")
        ordered = [self.cache.get(i) for i in ordered_ids]
        deltas = rerank(ordered, self.terminal_status)
        for delta in deltas:
            changes = {"sort_order": delta.sort_order, "priority_rank": delta.priority_rank}
            self.cache.apply(delta.row_id, changes)
            try:
                self.store.update(delta.row_id, changes)
            except StoreError as exc:
                logger.error("records_reorder_failed", row_id=delta.row_id,
                             kind=exc.kind, error=exc.message)
                if self.notifier is not None:
                    self.notifier.error("Failed to save order changes")
                self.load(**self._view)
                raise
        logger.info("records_reordered", changed=len(deltas))
        return deltas

    def normalize_ranks(self) -> list:
        """Re-run the rank assigner over the cached view. Returns deltas written."""
        deltas = assign_priority_ranks(self.cache.rows(), self.terminal_status)
        for delta in deltas:
            self.store.update(delta.row_id, {"priority_rank": delta.priority_rank})
            self.cache.apply(delta.row_id, {"priority_rank": delta.priority_rank})
        return deltas
