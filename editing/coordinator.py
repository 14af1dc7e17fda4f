"""
Batched Edit Coordinator.

Per row:  Idle → Buffering (debounce timer armed) → Flushing → Idle
                                                  ↘ RolledBack → Idle

Cell edits are applied to the RecordCache at once (optimistic) and buffered
per row. When the row's debounce timer fires, or an edit asks for an
immediate save, the whole buffer goes out as one multi-field update. A
failed update restores every field of that buffer to the value it had
before its first buffered edit, then refetches the row. Batching only
happens in edit mode; outside it each edit is saved on its own at once.

All state lives on the event loop thread. The synchronous store update
runs in a worker thread; the buffer is snapshotted and cleared before the
call is issued, so edits arriving meanwhile start a fresh buffer.

Known limitation: an immediate flush can race a debounced flush already in
flight for the same row. Each update only writes its own fields, so only
two concurrent writes of the same field can lose one of them.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

import structlog

from store.config import EDIT_DEBOUNCE_SECONDS, TERMINAL_STATUS


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FlushOutcome:
    """Result of sending one row's buffered changes."""
    row_id: object
    changes: Dict[str, object] = field(default_factory=dict)
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BatchedEditCoordinator:
    """
    Buffers cell edits per row and saves each row at most once per
    debounce window.

    Usage (inside a running event loop):
        coordinator = BatchedEditCoordinator(store, cache, notifier)
        coordinator.enter_edit_mode()
        await coordinator.record_edit(42, "notes", "kick-off booked")
        await coordinator.record_edit(42, "team", "Payments")
        ...
        outcomes = await coordinator.exit_edit_mode()
    """

    def __init__(self, store, cache, notifier=None, debounce=None,
                 terminal_status=TERMINAL_STATUS, status_field="status",
                 rank_field="priority_rank"):
        self._store = store
        self._cache = cache
        self._notifier = notifier
        self.debounce = EDIT_DEBOUNCE_SECONDS if debounce is None else debounce
        self.terminal_status = terminal_status
        self.status_field = status_field
        self.rank_field = rank_field

        self._pending: Dict[object, Dict[str, object]] = {}
        self._snapshots: Dict[object, Dict[str, object]] = {}
        self._timers: Dict[object, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._saving: Set[Tuple[object, str]] = set()
        self._edit_mode = False

    # ── Observable state ─────────────────────────────────────────────

    @property
    def edit_mode(self) -> bool:
        return self._edit_mode

    @property
    def saving(self) -> frozenset:
        """(row_id, field_key) cells currently shown as saving."""
        return frozenset(self._saving)

    def is_saving(self, row_id, field_key) -> bool:
        return (row_id, field_key) in self._saving

    def pending(self, row_id) -> Dict[str, object]:
        return dict(self._pending.get(row_id, {}))

    @property
    def pending_rows(self) -> List[object]:
        return list(self._pending)

    # ── Edits ────────────────────────────────────────────────────────

    def enter_edit_mode(self):
        self._edit_mode = True

    async def record_edit(self, row_id, field_key, value, immediate=False):
        """
        Apply one cell edit optimistically and buffer it for the row.

        Only edits made in edit mode are batched. Outside edit mode every
        edit is saved at once, as if ``immediate`` were set, so nothing is
        left buffered after exit_edit_mode() has settled.

        Returns the FlushOutcome when the edit was saved at once, otherwise
        None (the debounced flush reports through the notifier).
        """
        if value == "":
            value = None
        changes = {field_key: value}
        if field_key == self.status_field and value == self.terminal_status:
            # Shown unranked now; the null itself is decided at flush time
            changes[self.rank_field] = None

        prior = self._cache.apply(row_id, changes)
        snapshot = self._snapshots.setdefault(row_id, {})
        for key, old in prior.items():
            snapshot.setdefault(key, old)
        buffer = self._pending.setdefault(row_id, {})
        buffer[field_key] = value
        if (field_key == self.status_field and value != self.terminal_status
                and self.rank_field not in buffer and self.rank_field in snapshot):
            self._cache.restore(row_id, {self.rank_field: snapshot[self.rank_field]})
        self._saving.add((row_id, field_key))

        self._cancel_timer(row_id)
        if immediate or not self._edit_mode:
            return await self.flush(row_id)
        loop = asyncio.get_running_loop()
        self._timers[row_id] = loop.call_later(self.debounce, self._on_timer, row_id)
        return None

    async def flush(self, row_id) -> Optional[FlushOutcome]:
        """Send the row's buffer as one update. None if nothing is buffered."""
        self._cancel_timer(row_id)
        changes = self._pending.pop(row_id, None)
        snapshot = self._snapshots.pop(row_id, {})
        if not changes:
            return None

        cells = {(row_id, key) for key in changes}
        self._saving.update(cells)
        if changes.get(self.status_field) == self.terminal_status:
            # Ranking ends with the terminal status, in the same write
            changes[self.rank_field] = None
        logger.debug("flush_started", row_id=row_id, fields=sorted(changes))

        error = None
        try:
            await asyncio.to_thread(self._store.update, row_id, dict(changes))
        except Exception as exc:
            error = exc
        finally:
            self._release(row_id, cells)

        if error is None:
            logger.info("flush_succeeded", row_id=row_id, fields=sorted(changes))
            return FlushOutcome(row_id, changes)

        logger.warning("flush_failed", row_id=row_id, fields=sorted(changes),
                       error=str(error))
        self._roll_back(row_id, snapshot)
        if self._notifier is not None:
            message = getattr(error, "message", None) or str(error)
            self._notifier.error(f"Failed to save changes: {message}")
        await self._refetch(row_id)
        return FlushOutcome(row_id, changes, error=error)

    async def flush_all(self) -> List[FlushOutcome]:
        """Flush every buffered row concurrently and wait for all flushes."""
        for row_id in list(self._timers):
            self._cancel_timer(row_id)
        rows = list(self._pending)
        outcomes = list(await asyncio.gather(*(self.flush(r) for r in rows)))
        outcomes += await self.wait_idle()
        return [o for o in outcomes if o is not None]

    async def exit_edit_mode(self) -> List[FlushOutcome]:
        """Leave edit mode only after every buffered edit has settled."""
        outcomes = await self.flush_all()
        self._saving.clear()
        self._edit_mode = False
        failed = [o.row_id for o in outcomes if not o.ok]
        logger.info("edit_mode_exited", flushed=len(outcomes), failed=failed)
        return outcomes

    async def wait_idle(self) -> List[FlushOutcome]:
        """Wait until no timer is armed and no flush is in flight."""
        outcomes = []
        while self._timers or self._tasks:
            if not self._tasks:
                await asyncio.sleep(min(self.debounce, 0.05))
                continue
            tasks = list(self._tasks)
            results = await asyncio.gather(*tasks, return_exceptions=True)
            self._tasks.difference_update(tasks)
            for result in results:
                if isinstance(result, FlushOutcome):
                    outcomes.append(result)
                elif isinstance(result, BaseException):
                    logger.error("flush_task_crashed", error=repr(result))
        return outcomes

    # ── Internal ─────────────────────────────────────────────────────

    def _on_timer(self, row_id):
        self._timers.pop(row_id, None)
        task = asyncio.get_running_loop().create_task(self.flush(row_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_timer(self, row_id):
        timer = self._timers.pop(row_id, None)
        if timer is not None:
            timer.cancel()

    def _buffered_fields(self, row_id) -> Set[str]:
        """Fields the row's next flush will write, the derived rank included."""
        buffer = self._pending.get(row_id, {})
        fields = set(buffer)
        if buffer.get(self.status_field) == self.terminal_status:
            fields.add(self.rank_field)
        return fields

    def _release(self, row_id, cells):
        """Clear saving markers, except for fields re-edited since the snapshot."""
        still_pending = self._pending.get(row_id, {})
        self._saving.difference_update(
            cell for cell in cells if cell[1] not in still_pending
        )

    def _roll_back(self, row_id, snapshot):
        """Restore last known-good values of a failed buffer.

        A field edited again since the failed flush keeps its newer value;
        the newer buffer inherits the known-good value for its own rollback.
        """
        newer = self._buffered_fields(row_id)
        restore = {}
        for key, value in snapshot.items():
            if key in newer:
                self._snapshots.setdefault(row_id, {})[key] = value
            else:
                restore[key] = value
        self._cache.restore(row_id, restore)

    async def _refetch(self, row_id):
        try:
            fresh = await asyncio.to_thread(self._store.get, row_id)
        except Exception as exc:
            logger.warning("refetch_failed", row_id=row_id, error=str(exc))
            return
        if fresh is None:
            logger.info("row_vanished", row_id=row_id)
            self._cache.discard(row_id)
            return
        if row_id not in self._cache:
            return
        busy = self._buffered_fields(row_id)
        busy.update(key for rid, key in self._saving if rid == row_id)
        self._cache.merge(row_id, fresh, skip=busy)
