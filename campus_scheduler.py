"""Time-driven notifications.

A background ticker scans every event against the wall clock and fires
one-shot notifications:

- "now live" to all users when an event starts, and a "could not be
  confirmed" notice to anyone still on its waitlist
- reminders to booked users 60, 45, 25 and 10 minutes before the start
- a feedback request to booked users once the event has been over for a minute

Each firing records its kind in ``Event.notified`` so it never repeats. A tick
saves the aggregate once, and only if something fired.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from campus_models import (
    FEEDBACK,
    LIVE,
    REMINDER_MINUTES,
    WAITLIST_EXPIRED,
    Aggregate,
    reminder_kind,
)
from campus_notify import notify_many
from campus_store import AggregateGateway

logger = logging.getLogger(__name__)

WAITLIST_NOTICE_WINDOW = timedelta(minutes=5)
FEEDBACK_DELAY = timedelta(minutes=1)


def live_and_reminder_pass(agg: Aggregate, now: datetime) -> bool:
    """Fire live, waitlist-expired and reminder notifications. Returns True if any fired."""
    changed = False
    all_users = [u.reg_number for u in agg.users]
    for event in agg.events:
        start, end = event.start, event.end

        if start <= now < end and LIVE not in event.notified:
            notify_many(agg, all_users, f"Event Live: '{event.title}' is now live!", now)
            event.notified.add(LIVE)
            changed = True
            logger.info("Event %s is live; notified %d users", event.id, len(all_users))

        if (
            timedelta(0) <= now - start <= WAITLIST_NOTICE_WINDOW
            and event.waitlist
            and WAITLIST_EXPIRED not in event.notified
        ):
            notify_many(
                agg,
                [w.reg_number for w in event.waitlist],
                f"Sorry, your ticket for \"{event.title}\" could not be confirmed as the event has started.",
                now,
            )
            event.notified.add(WAITLIST_EXPIRED)
            changed = True

        until_start = start - now
        for minutes in REMINDER_MINUTES:
            kind = reminder_kind(minutes)
            if timedelta(0) < until_start <= timedelta(minutes=minutes) and kind not in event.notified:
                notify_many(
                    agg,
                    [b.reg_number for b in event.bookings],
                    f"Reminder: '{event.title}' starts in about {minutes} minutes!",
                    now,
                )
                event.notified.add(kind)
                changed = True
    return changed


def feedback_pass(agg: Aggregate, now: datetime) -> bool:
    """Ask booked users for feedback once an event has been over for a minute."""
    changed = False
    for event in agg.events:
        if not event.bookings or FEEDBACK in event.notified:
            continue
        if now - event.end < FEEDBACK_DELAY:
            continue
        sent = notify_many(
            agg,
            [b.reg_number for b in event.bookings],
            f"\"{event.title}\" has completed! Please share your feedback.",
            now,
            type="feedback",
            event_id=event.id,
            event_title=event.title,
        )
        event.notified.add(FEEDBACK)
        changed = True
        logger.info("Sent feedback requests to %d booked users for event %s", sent, event.id)
    return changed


class NotificationScheduler:
    """Runs both passes on a single background thread, so ticks never overlap."""

    def __init__(
        self,
        gateway: AggregateGateway,
        interval: float = 60.0,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.gateway = gateway
        self.interval = interval
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self) -> bool:
        """Run one scan. Failures are logged and retried on the next tick."""
        try:
            with self.gateway.lock:
                agg = self.gateway.load()
                now = self.clock()
                live = live_and_reminder_pass(agg, now)
                feedback = feedback_pass(agg, now)
                if live or feedback:
                    self.gateway.save(agg)
                return live or feedback
        except Exception:
            logger.exception("Notification tick failed")
            return False

    def _run(self) -> None:
        logger.info("Notification scheduler started (every %ss)", self.interval)
        while True:
            self.tick()
            if self._stop.wait(self.interval):
                break
        logger.info("Notification scheduler stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="notification-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
