"""
Campus Event Coordination

Implements:
- Accounts with organizer approval
- Event management with venue/resource/time conflict detection
- Bookings with dense seat numbering, FIFO waitlist and volunteer roles
- Per-user notifications, push fan-out, chat and feedback
- Time-triggered live / reminder / feedback notifications

``CampusSystem`` is the facade the server talks to. Every mutating call runs
one load-mutate-save transaction against the aggregate store and publishes a
push event after the save succeeds.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import campus_accounts as accounts
import campus_engine as engine
import campus_events as lifecycle
import campus_social as social
from campus_errors import DomainError
from campus_events import EventDetails
from campus_media import InMemoryObjectStorage, ObjectStorage, StagedStorage
from campus_models import (
    ORGANIZER,
    STUDENT,
    Aggregate,
    Booking,
    Event,
    Feedback,
    Media,
    Message,
    Notification,
    User,
    Volunteer,
    VolunteerRequest,
    WaitlistEntry,
)
from campus_notify import Announcer, mark_all_read, notifications_for
from campus_scheduler import NotificationScheduler
from campus_store import AggregateGateway

logger = logging.getLogger(__name__)


class CampusSystem:
    """Main facade over the aggregate store.

    Responsibilities:
    - Run each operation as one serialized load-mutate-save cycle
    - Publish change events to stream listeners after a successful save
    - Hand out a scheduler bound to the same store and clock
    """

    def __init__(
        self,
        gateway: Optional[AggregateGateway] = None,
        storage: Optional[ObjectStorage] = None,
        announcer: Optional[Announcer] = None,
        default_admin: Optional[Dict[str, str]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        # Pluggable storage: defaults to in-memory store
        self.gateway = gateway or AggregateGateway()
        self.storage: ObjectStorage = storage or InMemoryObjectStorage()
        self.announcer = announcer or Announcer()
        self.default_admin = default_admin or {"username": "admin", "password": "admin123"}
        self.clock = clock

    def _publish(self, event_name: str, payload: dict, target: Optional[str] = None) -> None:
        try:
            self.announcer.publish(event_name, payload, target)
        except Exception as e:
            logger.warning("Push %s failed: %s", event_name, e)

    @contextmanager
    def _media_transaction(self) -> Iterator[Tuple[Aggregate, StagedStorage]]:
        """A transaction whose file changes follow the outcome of the save."""
        staged = StagedStorage(self.storage)
        try:
            with self.gateway.transaction() as agg:
                yield agg, staged
        except Exception as e:
            if isinstance(e, DomainError) and e.commit:
                staged.commit()
            else:
                staged.rollback()
            raise
        staged.commit()

    def make_scheduler(self, interval: float = 60.0) -> NotificationScheduler:
        return NotificationScheduler(self.gateway, interval=interval, clock=self.clock)

    # -------- Accounts --------

    def signup(self, **form) -> User:
        with self.gateway.transaction() as agg:
            return accounts.signup(agg, self.clock(), **form)

    def login(self, reg_number: str, password: str) -> User:
        with self.gateway.transaction() as agg:
            return accounts.login(agg, reg_number, password, self.clock())

    def reset_password(self, reg_number: str, role: str, new_password: str) -> None:
        with self.gateway.transaction() as agg:
            accounts.reset_password(agg, reg_number, role, new_password, self.clock())

    def get_profile(self, reg_number: str) -> dict:
        return self.gateway.load().get_user(reg_number).profile()

    def update_profile(self, reg_number: str, **changes) -> User:
        with self.gateway.transaction() as agg:
            user = accounts.update_profile(agg, reg_number, **changes)
            accounts.touch_last_seen(agg, reg_number, self.clock())
            return user

    def delete_account(self, reg_number: str, password: str) -> None:
        with self._media_transaction() as (agg, staged):
            accounts.delete_account(agg, reg_number, password, staged)
        self._publish("events_changed", {"reason": "account_deleted"})

    # -------- Admin --------

    def admin_login(self, username: str, password: str) -> None:
        accounts.admin_login(self.gateway.load(), username, password, self.default_admin)

    def admin_who(self) -> str:
        return accounts.admin_username(self.gateway.load(), self.default_admin)

    def change_admin_credentials(self, username: str, password: str) -> None:
        with self.gateway.transaction() as agg:
            accounts.change_admin_credentials(agg, username, password)

    def list_users(self, role: Optional[str] = STUDENT) -> List[dict]:
        return accounts.list_users(self.gateway.load(), role)

    def list_organizers(self) -> List[dict]:
        return self.list_users(ORGANIZER)

    def pending_organizers(self) -> List[dict]:
        return accounts.pending_organizers(self.gateway.load())

    def verify_organizer(self, reg_number: str, decision: str, reason: Optional[str] = None) -> str:
        with self.gateway.transaction() as agg:
            return accounts.verify_organizer(agg, reg_number, decision, reason, self.clock())

    def remove_organizer(self, reg_number: str) -> None:
        with self.gateway.transaction() as agg:
            accounts.remove_organizer(agg, reg_number, self.clock())

    def admin_delete_user(self, reg_number: str) -> None:
        with self._media_transaction() as (agg, staged):
            accounts.admin_delete_user(agg, reg_number, staged)
        self._publish("events_changed", {"reason": "user_deleted"})

    def admin_stats(self) -> Dict[str, int]:
        return accounts.admin_stats(self.gateway.load(), self.clock())

    def admin_delete_event(self, event_id: int, reason: Optional[str] = None) -> Event:
        with self._media_transaction() as (agg, staged):
            event = lifecycle.admin_delete_event(agg, event_id, reason, self.clock(), staged)
        self._publish("events_changed", {"reason": "deleted", "event_id": event_id})
        return event

    def admin_media(self, event_id: int) -> List[Media]:
        return self.gateway.load().media_for(event_id)

    def admin_delete_media(self, media_id: int) -> Media:
        with self._media_transaction() as (agg, staged):
            media = lifecycle.admin_delete_media(agg, media_id, self.clock(), staged)
        self._publish("media_changed", {"reason": "deleted", "event_id": media.event_id})
        return media

    # -------- Notifications --------

    def notifications(self, reg_number: str) -> List[Notification]:
        """A user's notifications, newest first. Polling also marks the user as seen."""
        with self.gateway.lock:
            agg = self.gateway.load()
            if accounts.touch_last_seen(agg, reg_number, self.clock()):
                self.gateway.save(agg)
            return notifications_for(agg, reg_number)

    def mark_notifications_read(self, reg_number: str) -> int:
        with self.gateway.transaction() as agg:
            return mark_all_read(agg, reg_number)

    # -------- Events --------

    def create_event(self, details: EventDetails, creator_reg: str) -> Event:
        with self.gateway.transaction() as agg:
            now = self.clock()
            event = lifecycle.create_event(agg, details, creator_reg, now)
            accounts.touch_last_seen(agg, creator_reg, now)
        self._publish("events_changed", {"reason": "created", "event_id": event.id})
        return event

    def edit_event(self, event_id: int, details: EventDetails, reg_number: str) -> Event:
        with self.gateway.transaction() as agg:
            now = self.clock()
            event = lifecycle.edit_event(agg, event_id, details, reg_number, now)
            accounts.touch_last_seen(agg, reg_number, now)
        self._publish("events_changed", {"reason": "updated", "event_id": event.id})
        self._publish("event_updated", {"reason": "details_updated", "event_id": event.id})
        return event

    def delete_event(self, event_id: int, reg_number: str) -> Event:
        with self._media_transaction() as (agg, staged):
            now = self.clock()
            event = lifecycle.delete_event(agg, event_id, reg_number, now, staged)
            accounts.touch_last_seen(agg, reg_number, now)
        self._publish("events_changed", {"reason": "deleted", "event_id": event_id})
        return event

    def list_events(self) -> List[dict]:
        return lifecycle.list_events(self.gateway.load())

    def get_event(self, event_id: int) -> Event:
        return self.gateway.load().get_event(event_id)

    def event_summary(self, event_id: int) -> Dict[str, object]:
        return lifecycle.event_summary(self.gateway.load(), event_id)

    def upload_media(self, event_id: int, reg_number: str, filename: str, content_type: str, data: bytes) -> Media:
        with self._media_transaction() as (agg, staged):
            now = self.clock()
            media = lifecycle.attach_media(agg, event_id, reg_number, filename, content_type, data, now, staged)
            accounts.touch_last_seen(agg, reg_number, now)
        self._publish("events_changed", {"reason": "media_uploaded", "event_id": event_id})
        self._publish("media_changed", {"reason": "uploaded", "event_id": event_id})
        return media

    def delete_media(self, media_id: int, reg_number: str) -> Media:
        with self._media_transaction() as (agg, staged):
            media = lifecycle.delete_media(agg, media_id, reg_number, staged)
        self._publish("events_changed", {"reason": "media_deleted", "event_id": media.event_id})
        self._publish("media_changed", {"reason": "deleted", "event_id": media.event_id})
        return media

    def open_file(self, external_id: str) -> Tuple[bytes, str]:
        return self.storage.open(external_id)

    # -------- Bookings and waitlist --------

    def book(self, event_id: int, reg_number: str, via: str = "app") -> Booking:
        with self.gateway.transaction() as agg:
            now = self.clock()
            booking = engine.book(agg, event_id, reg_number, now, via)
            accounts.touch_last_seen(agg, reg_number, now)
        self._publish("events_changed", {"reason": "ticket_booked", "event_id": event_id})
        self._publish("tickets_changed", {"reason": "booked", "event_id": event_id}, reg_number)
        return booking

    def cancel_booking(self, event_id: int, reg_number: str) -> Optional[Booking]:
        with self.gateway.transaction() as agg:
            now = self.clock()
            promoted = engine.cancel_booking(agg, event_id, reg_number, now)
            accounts.touch_last_seen(agg, reg_number, now)
        self._publish("events_changed", {"reason": "ticket_cancelled", "event_id": event_id})
        self._publish("tickets_changed", {"reason": "cancelled", "event_id": event_id}, reg_number)
        if promoted:
            self._publish("tickets_changed", {"reason": "promoted", "event_id": event_id}, promoted.reg_number)
        return promoted

    def organizer_cancel(self, event_id: int, organizer_reg: str, target_reg: str) -> Optional[Booking]:
        with self.gateway.transaction() as agg:
            promoted = engine.organizer_cancel(agg, event_id, organizer_reg, target_reg, self.clock())
        self._publish("events_changed", {"reason": "ticket_cancelled_by_organizer", "event_id": event_id})
        self._publish("tickets_changed", {"reason": "cancelled_by_organizer", "event_id": event_id}, target_reg)
        self._publish("ticket_cancelled", {"reason": "organizer_cancelled", "event_id": event_id}, target_reg)
        if promoted:
            self._publish("tickets_changed", {"reason": "promoted", "event_id": event_id}, promoted.reg_number)
        return promoted

    def tickets(self, reg_number: str) -> List[dict]:
        return engine.tickets_for(self.gateway.load(), reg_number)

    def join_waitlist(self, event_id: int, reg_number: str) -> WaitlistEntry:
        with self.gateway.transaction() as agg:
            now = self.clock()
            entry = engine.join_waitlist(agg, event_id, reg_number, now)
            accounts.touch_last_seen(agg, reg_number, now)
        self._publish("events_changed", {"reason": "waitlist_joined", "event_id": event_id})
        self._publish("tickets_changed", {"reason": "waitlist_joined", "event_id": event_id}, reg_number)
        return entry

    def leave_waitlist(self, event_id: int, reg_number: str) -> None:
        with self.gateway.transaction() as agg:
            now = self.clock()
            engine.leave_waitlist(agg, event_id, reg_number, now)
            accounts.touch_last_seen(agg, reg_number, now)
        self._publish("events_changed", {"reason": "waitlist_left", "event_id": event_id})
        self._publish("tickets_changed", {"reason": "waitlist_left", "event_id": event_id}, reg_number)

    def waitlist(self, event_id: int, organizer_reg: str) -> List[dict]:
        return engine.waitlist_view(self.gateway.load(), event_id, organizer_reg)

    # -------- Volunteers --------

    def volunteers(self, event_id: int, organizer_reg: str) -> List[dict]:
        return engine.volunteers_view(self.gateway.load(), event_id, organizer_reg)

    def add_volunteer(self, event_id: int, organizer_reg: str, reg_number: str, role: str) -> VolunteerRequest:
        with self.gateway.transaction() as agg:
            request = engine.add_volunteer(agg, event_id, organizer_reg, reg_number, role, self.clock())
        self._publish("events_changed", {"reason": "volunteer_invited", "event_id": event_id})
        return request

    def respond_volunteer(self, event_id: int, reg_number: str, decision: str) -> Optional[Volunteer]:
        with self.gateway.transaction() as agg:
            now = self.clock()
            volunteer = engine.respond_volunteer(agg, event_id, reg_number, decision, now)
            accounts.touch_last_seen(agg, reg_number, now)
        reason = "volunteer_accepted" if volunteer else "volunteer_rejected"
        self._publish("events_changed", {"reason": reason, "event_id": event_id})
        return volunteer

    def remove_volunteer(self, event_id: int, organizer_reg: str, reg_number: str) -> Volunteer:
        with self.gateway.transaction() as agg:
            removed = engine.remove_volunteer(agg, event_id, organizer_reg, reg_number, self.clock())
        self._publish("events_changed", {"reason": "volunteer_removed", "event_id": event_id})
        return removed

    def leave_volunteer(self, event_id: int, reg_number: str) -> Volunteer:
        with self.gateway.transaction() as agg:
            removed = engine.leave_volunteer(agg, event_id, reg_number, self.clock())
        self._publish("events_changed", {"reason": "volunteer_left", "event_id": event_id})
        return removed

    # -------- Chat --------

    def send_message(self, event_id: int, from_reg: str, to_reg: str, text: str) -> Message:
        with self.gateway.transaction() as agg:
            message = social.send_message(agg, event_id, from_reg, to_reg, text, self.clock())
        self._publish("chat_message", {"event_id": event_id, "from_reg": from_reg}, to_reg)
        return message

    def send_media_message(
        self,
        event_id: int,
        from_reg: str,
        to_reg: str,
        filename: str,
        content_type: str,
        data: bytes,
    ) -> Message:
        with self._media_transaction() as (agg, staged):
            message = social.send_media_message(
                agg, event_id, from_reg, to_reg, filename, content_type, data, self.clock(), staged
            )
        self._publish("chat_message", {"event_id": event_id, "from_reg": from_reg}, to_reg)
        return message

    def thread(self, event_id: int, reg_a: str, reg_b: str) -> List[Message]:
        return social.thread(self.gateway.load(), event_id, reg_a, reg_b)

    def conversations(self, event_id: int, organizer_reg: str) -> List[dict]:
        return social.conversations(self.gateway.load(), event_id, organizer_reg)

    def delete_message(self, message_id: int, reg_number: str) -> Message:
        with self._media_transaction() as (agg, staged):
            return social.delete_message(agg, message_id, reg_number, staged)

    # -------- Feedback --------

    def submit_feedback(self, event_id: int, reg_number: str, seat_capacity_rating: Optional[int], review: str) -> Feedback:
        with self.gateway.transaction() as agg:
            return social.submit_feedback(agg, event_id, reg_number, seat_capacity_rating, review, self.clock())

    def feedback_for_event(self, event_id: int, organizer_reg: str) -> List[dict]:
        return social.feedback_for_event(self.gateway.load(), event_id, organizer_reg)

    def feedback_of(self, event_id: int, reg_number: str, organizer_reg: str) -> dict:
        return social.feedback_of(self.gateway.load(), event_id, reg_number, organizer_reg)

    def feedback_status(self, event_id: int, reg_number: str) -> Dict[str, object]:
        found = social.find_feedback(self.gateway.load(), event_id, reg_number)
        return {"submitted": found is not None, "feedback": asdict(found) if found else None}
