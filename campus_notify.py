"""Notification sink and push fan-out.

``notify`` and friends only mutate the aggregate: each user has a newest-first
list of notifications that polling clients read. ``Announcer`` pushes small
change events to connected stream listeners; it is best-effort and never
raises into the caller.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from datetime import datetime
from typing import Iterable, List, Optional

from campus_models import Aggregate, Notification, timestamp

logger = logging.getLogger(__name__)


def notify(
    agg: Aggregate,
    reg_number: str,
    msg: str,
    now: datetime,
    type: Optional[str] = None,
    **metadata: object,
) -> Notification:
    """Prepend a notification to a user's list."""
    note = Notification(msg=msg, time=timestamp(now), read=False, type=type, metadata=dict(metadata))
    agg.notifications.setdefault(reg_number, []).insert(0, note)
    return note


def notify_many(
    agg: Aggregate,
    reg_numbers: Iterable[str],
    msg: str,
    now: datetime,
    type: Optional[str] = None,
    **metadata: object,
) -> int:
    count = 0
    for reg in reg_numbers:
        notify(agg, reg, msg, now, type, **metadata)
        count += 1
    return count


def notifications_for(agg: Aggregate, reg_number: str) -> List[Notification]:
    return list(agg.notifications.get(reg_number, []))


def mark_all_read(agg: Aggregate, reg_number: str) -> int:
    items = agg.notifications.get(reg_number, [])
    for n in items:
        n.read = True
    return len(items)


class _Listener:
    def __init__(self, reg_number: Optional[str], maxsize: int) -> None:
        self.reg_number = reg_number
        self.queue: "queue.Queue[str]" = queue.Queue(maxsize=maxsize)


class Announcer:
    """
    Manages stream listeners and message broadcasting.
    Uses thread-safe queues for listeners.
    """

    def __init__(self, maxsize: int = 10) -> None:
        self.maxsize = maxsize
        self._listeners: List[_Listener] = []
        self._lock = threading.Lock()

    def listen(self, reg_number: Optional[str] = None) -> "queue.Queue[str]":
        """Add a listener, optionally scoped to one user, and return its queue."""
        listener = _Listener(reg_number, self.maxsize)
        with self._lock:
            self._listeners.append(listener)
            total = len(self._listeners)
        logger.info("Stream listener added. Total listeners: %d", total)
        return listener.queue

    def unlisten(self, q: "queue.Queue[str]") -> None:
        with self._lock:
            self._listeners = [l for l in self._listeners if l.queue is not q]

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def publish(self, event_name: str, payload: Optional[dict] = None, target: Optional[str] = None) -> None:
        """Send a message to every listener, or only to ``target``'s listeners.

        Listeners whose queues are full are assumed disconnected and dropped.
        """
        try:
            msg = format_sse(payload or {}, event=event_name)
        except (TypeError, ValueError) as e:
            logger.error("Error formatting stream data for %s: %s", event_name, e)
            return
        with self._lock:
            for listener in list(self._listeners):
                if target and listener.reg_number != target:
                    continue
                try:
                    listener.queue.put_nowait(msg)
                except queue.Full:
                    self._listeners.remove(listener)
                    logger.info("Stream listener removed (queue full). Total listeners: %d", len(self._listeners))
        logger.debug("Published %s to %d listeners", event_name, len(self._listeners))


def format_sse(data: dict, event: Optional[str] = None) -> str:
    """Format data as a server-sent event message."""
    msg = f"data: {json.dumps(data)}\n\n"
    if event is not None:
        msg = f"event: {event}\n{msg}"
    return msg
