"""
"Columns changed" notification channel.

In-process:  EventBus — synchronous callbacks right after a catalog write.
Cross-process: ColumnChangeListener — LISTENs on the column_config NOTIFY
               channel and re-publishes other backends' changes on the bus.

Readers subscribe for the lifetime of a view and close the returned
Subscription when the view goes away.
"""

import json
import select
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional

import psycopg2
import structlog
from psycopg2 import sql

from store.schema import NOTIFY_CHANNEL


logger = structlog.get_logger(__name__)

COLUMNS_CHANNEL = "columns"
ALL_CHANNELS = "*"


@dataclass(frozen=True)
class ColumnChange:
    """Notification payload for a column catalog change."""
    op: str                       # INSERT / UPDATE / DELETE / REORDER
    column_id: Optional[str] = None
    field_key: Optional[str] = None
    origin: str = "local"         # local / remote
    channel: str = COLUMNS_CHANNEL


class Subscription:
    """Handle for one listener; close() unsubscribes. Usable as a context manager."""

    def __init__(self, bus, channel, callback):
        self._bus = bus
        self.channel = channel
        self.callback = callback
        self.active = True

    def close(self):
        if self.active:
            self._bus.off(self.channel, self.callback)
            self.active = False

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class EventBus:
    """
    Channel-keyed pub/sub. Safe to emit from the listener thread while the
    main thread subscribes.
    """

    def __init__(self):
        self._listeners = defaultdict(list)     # channel → [callback]
        self._lock = threading.RLock()

    def on(self, channel, callback) -> Subscription:
        with self._lock:
            self._listeners[channel].append(callback)
        return Subscription(self, channel, callback)

    def on_all(self, callback) -> Subscription:
        return self.on(ALL_CHANNELS, callback)

    def off(self, channel, callback):
        with self._lock:
            try:
                self._listeners[channel].remove(callback)
            except ValueError:
                pass

    def off_all(self, callback):
        self.off(ALL_CHANNELS, callback)

    def listener_count(self, channel) -> int:
        with self._lock:
            return len(self._listeners.get(channel, ()))

    def emit(self, event):
        with self._lock:
            targets = self._listeners[ALL_CHANNELS] + self._listeners[event.channel]
        for callback in targets:
            try:
                callback(event)
            except Exception:
                logger.exception("listener_failed", channel=event.channel, op=event.op)


class ColumnChangeListener:
    """
    Daemon thread holding a LISTEN connection.

    Changes written through this process's own registry connections are
    already on the bus; pass their backend pids as ``ignore_pids`` so they
    are not delivered twice.
    """

    POLL_SECONDS = 0.5

    def __init__(self, event_bus, host, port, dbname, user, password,
                 ignore_pids=()):
        self.event_bus = event_bus
        self.ignore_pids = set(ignore_pids)
        self._dsn = {"host": host, "port": port, "dbname": dbname,
                     "user": user, "password": password}
        self._conn = None
        self._worker = None
        self._running = threading.Event()

    @property
    def running(self):
        return self._running.is_set()

    def start(self):
        conn = psycopg2.connect(**self._dsn)
        conn.autocommit = True
        with conn.cursor() as cur:
            cur.execute(sql.SQL("LISTEN {}").format(sql.Identifier(NOTIFY_CHANNEL)))
        self._conn = conn
        self._running.set()
        self._worker = threading.Thread(
            target=self._run, name="column-change-listener", daemon=True)
        self._worker.start()
        logger.info("column_listener_started", channel=NOTIFY_CHANNEL,
                    backend_pid=conn.get_backend_pid())
        return self

    def stop(self):
        self._running.clear()
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.join(timeout=self.POLL_SECONDS * 4)
        conn, self._conn = self._conn, None
        if conn is not None and not conn.closed:
            conn.close()

    def _run(self):
        conn = self._conn
        while self._running.is_set() and not conn.closed:
            try:
                readable, _, _ = select.select([conn], [], [], self.POLL_SECONDS)
                if not readable:
                    continue
                conn.poll()
            except (psycopg2.Error, OSError, ValueError) as exc:
                logger.error("column_listener_lost", error=str(exc))
                break
            received = list(conn.notifies)
            del conn.notifies[:]
            for notify in received:
                event = self._to_event(notify.payload)
                if event is not None:
                    self.event_bus.emit(event)

    def _to_event(self, payload):
        try:
            data = json.loads(payload)
            if data.get("backend_pid") in self.ignore_pids:
                return None
            return ColumnChange(
                op=data["op"],
                column_id=str(data["id"]),
                field_key=data["column_name"],
                origin="remote",
            )
        except (ValueError, KeyError, TypeError):
            logger.warning("malformed_notification", payload=payload)
            return None

    def __enter__(self):
        return self.start()

    def __exit__(self, *args):
        self.stop()
