"""Event lifecycle: create, edit and delete events, and manage their media.

Scheduling rules:
- Two events at the same venue may not overlap in ``[start, start + duration)``.
- Two events sharing any resource may not overlap either.
- Events are only created or moved into the future, and cannot be edited or
  deleted once they have started.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from datetime import date, time, datetime, timedelta
from typing import Dict, List, Optional

from campus_engine import promote_from_waitlist
from campus_errors import Conflict, Forbidden, NotFound, PersistenceError, DomainError, ValidationFailed
from campus_media import ObjectStorage, resource_kind
from campus_models import (
    ORGANIZER,
    PHOTO,
    REQUEST_PENDING,
    VIDEO,
    Aggregate,
    Event,
    Media,
    new_id,
    timestamp,
)
from campus_notify import notify, notify_many

logger = logging.getLogger(__name__)

MAX_MEDIA_BYTES = 30 * 1024 * 1024


@dataclass
class EventDetails:
    """Editable fields of an event, as submitted by its organizer."""

    title: str
    date: date
    start_time: time
    duration: int
    venue: str
    capacity: int
    category: str
    resources: Optional[List[str]] = None

    @property
    def start(self) -> datetime:
        return datetime.combine(self.date, self.start_time)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration)

    def clean_resources(self) -> List[str]:
        return [r.strip() for r in (self.resources or []) if isinstance(r, str) and r.strip()]


# -------- Conflict detection --------


def find_venue_conflicts(agg: Aggregate, venue: str, start: datetime, end: datetime, exclude: Optional[int] = None) -> List[int]:
    """IDs of events at ``venue`` whose window overlaps ``[start, end)``."""
    return [
        e.id
        for e in agg.events
        if e.id != exclude and e.venue == venue and e.overlaps(start, end)
    ]


def find_resource_conflict(
    agg: Aggregate,
    resources: List[str],
    start: datetime,
    end: datetime,
    exclude: Optional[int] = None,
) -> Optional[str]:
    """First requested resource already held by an overlapping event."""
    if not resources:
        return None
    for e in agg.events:
        if e.id == exclude or not e.overlaps(start, end):
            continue
        for r in resources:
            if r in e.resources:
                return r
    return None


def _check_schedule(agg: Aggregate, details: EventDetails, now: datetime, exclude: Optional[int] = None) -> None:
    if details.start <= now:
        raise ValidationFailed("Event date and time must be in the future.")
    if find_venue_conflicts(agg, details.venue, details.start, details.end, exclude):
        raise Conflict("Slot is booked! This venue is already booked for that time and date.")
    clash = find_resource_conflict(agg, details.clean_resources(), details.start, details.end, exclude)
    if clash:
        raise Conflict(f"Resource conflict: '{clash}' is already booked for another event in this time window.")


def _check_fields(details: EventDetails) -> None:
    if not (details.title and details.venue and details.category) or details.duration <= 0:
        raise ValidationFailed("All fields are required to create an event.")
    if details.capacity <= 0:
        raise ValidationFailed("Capacity must be a positive number.")


# -------- Lifecycle --------


def create_event(agg: Aggregate, details: EventDetails, creator_reg: str, now: datetime) -> Event:
    """Register a new event and announce it to every user."""
    _check_fields(details)
    creator = agg.get_user(creator_reg)
    if creator.role != ORGANIZER:
        raise Forbidden("Only organizers can create events.")
    _check_schedule(agg, details, now)

    event = Event(
        id=new_id((e.id for e in agg.events), now),
        title=details.title,
        date=details.date,
        start_time=details.start_time,
        duration=details.duration,
        venue=details.venue,
        capacity=details.capacity,
        category=details.category,
        creator_reg_number=creator_reg,
        resources=details.clean_resources(),
    )
    agg.events.append(event)
    notify_many(
        agg,
        [u.reg_number for u in agg.users],
        f"New Event: {event.title} on {event.date.isoformat()}",
        now,
    )
    logger.info("Created event %s '%s' at %s", event.id, event.title, event.venue)
    return event


def edit_event(agg: Aggregate, event_id: int, details: EventDetails, reg_number: str, now: datetime) -> Event:
    """Apply an organizer's edit.

    Capacity may not drop below the seats already taken. Raising it books
    waitlisted users into the new seats in FIFO order.
    """
    event = agg.get_event(event_id)
    if event.creator_reg_number != reg_number:
        raise Forbidden("You can only edit your own events.")
    if event.has_started(now):
        raise Forbidden("Cannot edit an event that is live or has passed.")
    if details.capacity <= 0:
        raise ValidationFailed("Capacity must be a positive number.")
    if details.capacity < event.taken:
        raise ValidationFailed(f"{event.taken} seats are booked, please set capacity more than booked tickets.")
    _check_fields(details)
    if details.resources is None:
        details.resources = list(event.resources)
    _check_schedule(agg, details, now, exclude=event.id)

    old_capacity = event.capacity
    event.title = details.title
    event.date = details.date
    event.start_time = details.start_time
    event.duration = details.duration
    event.venue = details.venue
    event.capacity = details.capacity
    event.category = details.category
    event.resources = details.clean_resources()

    if event.capacity > old_capacity and event.waitlist:
        count = min(event.capacity - old_capacity, event.capacity - event.taken, len(event.waitlist))
        logger.info("Capacity of event %s raised %d -> %d; auto-booking %d", event.id, old_capacity, event.capacity, count)
        promote_from_waitlist(agg, event, count, now, reason="Great news! Capacity increased")

    notify_many(
        agg,
        [b.reg_number for b in event.bookings],
        f"Event Updated: Details for '{event.title}' have changed.",
        now,
    )
    return event


def purge_event_media(agg: Aggregate, event_id: int, storage: ObjectStorage) -> int:
    doomed = agg.media_for(event_id)
    for m in doomed:
        _delete_object(storage, m)
    agg.media = [m for m in agg.media if m.event_id != event_id]
    return len(doomed)


def _delete_object(storage: ObjectStorage, media: Media) -> None:
    try:
        storage.delete(media.external_id, "image" if media.type == PHOTO else "video")
    except Exception as e:
        logger.error("Failed to delete media file %s: %s", media.external_id, e)


def delete_event(agg: Aggregate, event_id: int, reg_number: str, now: datetime, storage: ObjectStorage) -> Event:
    """Delete an event, its media, and tell every booked user it was cancelled."""
    event = agg.get_event(event_id)
    if event.creator_reg_number != reg_number:
        raise Forbidden("You can only delete your own events.")
    if event.has_started(now):
        raise Forbidden("Cannot delete an event that is live or has passed.")

    removed = purge_event_media(agg, event.id, storage)
    notify_many(
        agg,
        [b.reg_number for b in event.bookings],
        f"Event Cancelled: '{event.title}' has been cancelled.",
        now,
    )
    agg.events.remove(event)
    logger.info("Deleted event %s and %d media items", event.id, removed)
    return event


def admin_delete_event(
    agg: Aggregate,
    event_id: int,
    reason: Optional[str],
    now: datetime,
    storage: ObjectStorage,
) -> Event:
    event = agg.get_event(event_id)
    purge_event_media(agg, event.id, storage)
    suffix = f" Reason: {reason}" if reason else ""
    notify(agg, event.creator_reg_number, f"Your event '{event.title}' was deleted by admin.{suffix}", now)
    agg.events.remove(event)
    return event


# -------- Media --------


def attach_media(
    agg: Aggregate,
    event_id: int,
    reg_number: str,
    filename: str,
    content_type: str,
    data: bytes,
    now: datetime,
    storage: ObjectStorage,
) -> Media:
    """Upload a photo or video for an event. Upload failures fail the request."""
    if not data:
        raise ValidationFailed("No file uploaded.")
    event = agg.get_event(event_id)
    if event.creator_reg_number != reg_number:
        raise Forbidden("You are not authorized to upload media for this event.")
    if not (content_type.startswith("image/") or content_type.startswith("video/")):
        raise ValidationFailed("Only image and video files are allowed")
    if len(data) > MAX_MEDIA_BYTES:
        raise ValidationFailed("File too large (max 30MB).")

    try:
        stored = storage.upload(data, content_type, f"campus-events/{event.id}", filename)
    except DomainError:
        raise
    except Exception as e:
        raise PersistenceError(f"Upload failed: {e}") from e

    media = Media(
        id=new_id((m.id for m in agg.media), now),
        event_id=event.id,
        name=filename,
        url=stored.url,
        external_id=stored.external_id,
        type=PHOTO if resource_kind(content_type) == "image" else VIDEO,
        size=len(data),
        uploaded_by=reg_number,
        uploaded_at=timestamp(now),
    )
    agg.media.append(media)
    logger.info("Stored %s '%s' (%d bytes) for event %s", media.type, filename, media.size, event.id)
    return media


def _find_media(agg: Aggregate, media_id: int) -> Media:
    media = next((m for m in agg.media if m.id == media_id), None)
    if media is None:
        raise NotFound("Media not found.")
    return media


def delete_media(agg: Aggregate, media_id: int, reg_number: str, storage: ObjectStorage) -> Media:
    media = _find_media(agg, media_id)
    event = agg.find_event(media.event_id)
    if event is not None and event.creator_reg_number != reg_number:
        raise Forbidden("You are not authorized to delete this media.")
    _delete_object(storage, media)
    agg.media.remove(media)
    return media


def admin_delete_media(agg: Aggregate, media_id: int, now: datetime, storage: ObjectStorage) -> Media:
    media = _find_media(agg, media_id)
    _delete_object(storage, media)
    agg.media.remove(media)
    event = agg.find_event(media.event_id)
    if event is not None:
        notify(agg, event.creator_reg_number, f"Admin deleted a media item from '{event.title}'.", now)
    return media


# -------- Reporting --------


def list_events(agg: Aggregate) -> List[Dict[str, object]]:
    """Events with creator details and media attached."""
    out = []
    for event in agg.events:
        creator = agg.find_user(event.creator_reg_number)
        doc = event.to_doc()
        doc["creator_name"] = creator.full_name if creator else "Unknown Organizer"
        doc["creator_gender"] = creator.gender if creator else "Other"
        doc["media"] = [asdict(m) for m in agg.media_for(event.id)]
        out.append(doc)
    return out


def event_summary(agg: Aggregate, event_id: int) -> Dict[str, object]:
    """Seat, waitlist and volunteer counts for one event."""
    ev = agg.get_event(event_id)
    return {
        "event_id": ev.id,
        "title": ev.title,
        "venue": ev.venue,
        "capacity": ev.capacity,
        "taken": ev.taken,
        "available": ev.capacity - ev.taken,
        "waitlisted": len(ev.waitlist),
        "volunteers": len(ev.volunteers),
        "pending_volunteers": sum(1 for r in ev.volunteer_requests if r.status == REQUEST_PENDING),
    }
