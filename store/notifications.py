"""
Transient user notifications.

Column operations and the edit coordinator report outcomes here instead of
raising into the UI. A UI collaborator subscribes a sink and renders each
Notice as a toast; nothing here is fatal.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog


logger = structlog.get_logger(__name__)

SUCCESS = "success"
WARNING = "warning"
ERROR = "error"


@dataclass(frozen=True)
class Notice:
    level: str
    message: str
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """Fan-out of short human-readable notices to subscribed sinks."""

    def __init__(self, keep=50):
        self._sinks = []
        self._recent = deque(maxlen=keep)

    def subscribe(self, sink):
        self._sinks.append(sink)

    def unsubscribe(self, sink):
        if sink in self._sinks:
            self._sinks.remove(sink)

    @property
    def recent(self):
        """Most recent notices, oldest first."""
        return list(self._recent)

    def success(self, message):
        self._publish(Notice(SUCCESS, message))

    def warning(self, message):
        self._publish(Notice(WARNING, message))

    def error(self, message):
        self._publish(Notice(ERROR, message))

    def _publish(self, notice):
        self._recent.append(notice)
        log = logger.warning if notice.level == ERROR else logger.info
        log("notice", notice_level=notice.level, text=notice.message)
        for sink in list(self._sinks):
            try:
                sink(notice)
            except Exception:
                logger.exception("notice_sink_failed", text=notice.message)
