"""
Priority Rank Assigner.

Pure functions over a fully-loaded record set (dicts with id, status,
sort_order, priority_rank). They compute deltas; callers write them.

Invariant restored by every pass:
  - terminal-status records have priority_rank = None
  - every other record has a rank; missing ranks are filled with the
    record's 1-based position among non-terminal records, ordered by
    sort_order (nulls last) then id
"""

from dataclasses import dataclass
from typing import Optional

from store.config import TERMINAL_STATUS


@dataclass(frozen=True)
class RankDelta:
    row_id: object
    priority_rank: Optional[int]


@dataclass(frozen=True)
class OrderDelta:
    row_id: object
    sort_order: int
    priority_rank: Optional[int]


def manual_order_key(record):
    """sort_order ascending with nulls last, then id."""
    sort_order = record.get("sort_order")
    return (sort_order is None, sort_order if sort_order is not None else 0, record["id"])


def is_terminal(record, terminal_status=TERMINAL_STATUS):
    return record.get("status") == terminal_status


def assign_priority_ranks(records, terminal_status=TERMINAL_STATUS):
    """Deltas that restore the rank invariant. Empty when already satisfied."""
    deltas = []
    active = sorted(
        (r for r in records if not is_terminal(r, terminal_status)),
        key=manual_order_key,
    )
    for record in records:
        if is_terminal(record, terminal_status) and record.get("priority_rank") is not None:
            deltas.append(RankDelta(record["id"], None))
    for position, record in enumerate(active, start=1):
        if record.get("priority_rank") is None:
            deltas.append(RankDelta(record["id"], position))
    return deltas


def apply_rank_deltas(records, deltas):
    """Copies of records with the deltas applied (input order kept)."""
    by_id = {d.row_id: d for d in deltas}
    ranked = []
    for record in records:
        record = dict(record)
        if record["id"] in by_id:
            record["priority_rank"] = by_id[record["id"]].priority_rank
        ranked.append(record)
    return ranked


def rerank(ordered_records, terminal_status=TERMINAL_STATUS):
    """
    Explicit reorder: sort_order = position in ordered_records, ranks dense
    1..N over the non-terminal records in that order, None for terminal.
    Returns deltas only for records whose stored values differ.
    """
    deltas = []
    rank = 0
    for index, record in enumerate(ordered_records):
        if is_terminal(record, terminal_status):
            new_rank = None
        else:
            rank += 1
            new_rank = rank
        if record.get("sort_order") != index or record.get("priority_rank") != new_rank:
            deltas.append(OrderDelta(record["id"], index, new_rank))
    return deltas


def next_priority_rank(records, status, terminal_status=TERMINAL_STATUS):
    """Rank for a new record appended to ``status``; None for the terminal status."""
    if status == terminal_status:
        return None
    ranks = [
        r["priority_rank"] for r in records
        if r.get("status") == status and r.get("priority_rank") is not None
    ]
    return max(ranks) + 1 if ranks else 1
