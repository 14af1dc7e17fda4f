"""
Record editing: optimistic cache, batched per-row saves and priority ranks.
"""

from editing.cache import RecordCache
from editing.coordinator import BatchedEditCoordinator, FlushOutcome
from editing.ranking import (
    OrderDelta, RankDelta, assign_priority_ranks, next_priority_rank, rerank,
)
from editing.records import RoadmapRecords
