"""
Roadmap record store backed by PostgreSQL, with a runtime-evolvable
record table and a column catalog kept beside it.
"""

from store.client import RecordStore, StoreError
from store.server import RoadmapServer
from store.subscriptions import EventBus, ColumnChange
