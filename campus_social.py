"""Per-event chat between attendees and organizers, and post-event feedback."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Dict, List, Optional

from campus_errors import Conflict, DomainError, Forbidden, NotFound, PersistenceError, ValidationFailed
from campus_media import ObjectStorage, resource_kind
from campus_models import PHOTO, VIDEO, Aggregate, Event, Feedback, Message, new_id, timestamp
from campus_notify import notify

logger = logging.getLogger(__name__)

MAX_CHAT_MEDIA_BYTES = 10 * 1024 * 1024
SEAT_CAPACITY_RATINGS = (2, 3)


# -------- Chat --------


def _may_chat(event: Event, from_reg: str, to_reg: str) -> bool:
    """Organizer, booked users and volunteers of the event may chat."""
    parties = (from_reg, to_reg)
    if event.creator_reg_number in parties:
        return True
    if any(b.reg_number in parties for b in event.bookings):
        return True
    return any(v.reg_number in parties for v in event.volunteers)


def _chat_event(agg: Aggregate, event_id: int, from_reg: str, to_reg: str) -> Event:
    event = agg.find_event(event_id)
    if event is None:
        raise NotFound("Event not found.")
    if not _may_chat(event, from_reg, to_reg):
        raise Forbidden("Only organizer and booked users/volunteers can chat for this event.")
    return event


def _notify_chat(agg: Aggregate, event: Event, message: Message, incoming: str, outgoing: str, now: datetime) -> None:
    meta = {"event_id": event.id, "from_reg": message.from_reg, "to_reg": message.to_reg}
    notify(agg, message.to_reg, incoming, now, type="chat", **meta)
    notify(agg, message.from_reg, outgoing, now, type="chat", **meta)


def send_message(agg: Aggregate, event_id: int, from_reg: str, to_reg: str, text: str, now: datetime) -> Message:
    if not event_id or not from_reg or not to_reg or not (text or "").strip():
        raise ValidationFailed("Missing required fields.")
    event = _chat_event(agg, event_id, from_reg, to_reg)
    message = Message(
        id=new_id((m.id for m in agg.messages), now),
        event_id=event.id,
        from_reg=from_reg,
        to_reg=to_reg,
        text=text.strip(),
        time=timestamp(now),
    )
    agg.messages.append(message)
    _notify_chat(
        agg,
        event,
        message,
        f"New message on '{event.title}'",
        f"Message sent for '{event.title}'",
        now,
    )
    return message


def send_media_message(
    agg: Aggregate,
    event_id: int,
    from_reg: str,
    to_reg: str,
    filename: str,
    content_type: str,
    data: bytes,
    now: datetime,
    storage: ObjectStorage,
) -> Message:
    """Attach an image or video (10 MB max) to an event chat."""
    if not data:
        raise ValidationFailed("No file uploaded.")
    if not (content_type.startswith("image/") or content_type.startswith("video/")):
        raise ValidationFailed("Only image and video files are allowed")
    if len(data) > MAX_CHAT_MEDIA_BYTES:
        raise ValidationFailed("File too large (max 10MB).")
    event = _chat_event(agg, event_id, from_reg, to_reg)
    try:
        stored = storage.upload(data, content_type, f"campus-chat/{event.id}", filename)
    except DomainError:
        raise
    except Exception as e:
        raise PersistenceError(f"Failed to save file: {e}") from e

    media_type = PHOTO if resource_kind(content_type) == "image" else VIDEO
    message = Message(
        id=new_id((m.id for m in agg.messages), now),
        event_id=event.id,
        from_reg=from_reg,
        to_reg=to_reg,
        time=timestamp(now),
        type="media",
        media_type=media_type,
        url=stored.url,
        external_id=stored.external_id,
    )
    agg.messages.append(message)
    label = "Image" if media_type == PHOTO else "Video"
    _notify_chat(
        agg,
        event,
        message,
        f"New {media_type} in '{event.title}' chat",
        f"{label} sent for '{event.title}'",
        now,
    )
    return message


def thread(agg: Aggregate, event_id: int, reg_a: str, reg_b: str) -> List[Message]:
    """Messages between two users on one event, oldest first."""
    agg.get_event(event_id)
    pair = {reg_a, reg_b}
    found = [
        m
        for m in agg.messages
        if m.event_id == event_id and {m.from_reg, m.to_reg} == pair
    ]
    return sorted(found, key=lambda m: m.time)


def conversations(agg: Aggregate, event_id: int, organizer_reg: str) -> List[Dict[str, object]]:
    """Everyone the organizer has chatted with on an event, with unread counts."""
    event = agg.get_event(event_id)
    if event.creator_reg_number != organizer_reg:
        raise Forbidden("Only the organizer can view conversations.")
    order: List[str] = []
    unread: Dict[str, int] = {}
    for m in agg.messages:
        if m.event_id != event_id:
            continue
        if m.from_reg == organizer_reg:
            other = m.to_reg
        elif m.to_reg == organizer_reg:
            other = m.from_reg
        else:
            continue
        if other not in order:
            order.append(other)
        if m.to_reg == organizer_reg and not m.read:
            unread[other] = unread.get(other, 0) + 1
    out = []
    for reg in order:
        user = agg.find_user(reg)
        out.append(
            {
                "reg_number": reg,
                "name": user.full_name if user else reg,
                "volunteer": event.volunteer_for(reg) is not None,
                "unread": unread.get(reg, 0),
            }
        )
    return out


def delete_message(agg: Aggregate, message_id: int, reg_number: str, storage: ObjectStorage) -> Message:
    """Sender or event organizer may delete; attached files are removed best-effort."""
    message = next((m for m in agg.messages if m.id == message_id), None)
    if message is None:
        raise NotFound("Message not found")
    event = agg.find_event(message.event_id)
    if event is None:
        raise NotFound("Event not found")
    if reg_number not in (message.from_reg, event.creator_reg_number):
        raise Forbidden("Not authorized to delete this message")
    if message.type == "media" and message.external_id:
        try:
            storage.delete(message.external_id, "image" if message.media_type == PHOTO else "video")
        except Exception as e:
            logger.error("Failed to delete chat media %s: %s", message.external_id, e)
    agg.messages.remove(message)
    return message


# -------- Feedback --------


def submit_feedback(
    agg: Aggregate,
    event_id: int,
    reg_number: str,
    seat_capacity_rating: Optional[int],
    review: str,
    now: datetime,
) -> Feedback:
    """Record the single, immutable feedback of a booked user."""
    if not event_id or not reg_number or seat_capacity_rating is None or not (review or "").strip():
        raise ValidationFailed("All fields are required.")
    if seat_capacity_rating not in SEAT_CAPACITY_RATINGS:
        raise ValidationFailed("Seat capacity rating must be 2 or 3.")
    event = agg.find_event(event_id)
    if event is None:
        raise NotFound("Event not found.")
    if not event.booking_for(reg_number):
        raise Forbidden("You must have booked a ticket to provide feedback.")
    if find_feedback(agg, event_id, reg_number):
        raise Conflict("Feedback already submitted. Cannot change or resubmit.")

    feedback = Feedback(
        id=new_id((f.id for f in agg.feedbacks), now),
        event_id=event_id,
        reg_number=reg_number,
        seat_capacity_rating=int(seat_capacity_rating),
        review=review.strip(),
        submitted_at=timestamp(now),
    )
    agg.feedbacks.append(feedback)
    logger.info("Feedback submitted for event %s by %s", event_id, reg_number)
    return feedback


def find_feedback(agg: Aggregate, event_id: int, reg_number: str) -> Optional[Feedback]:
    return next((f for f in agg.feedbacks if f.event_id == event_id and f.reg_number == reg_number), None)


def _with_user(agg: Aggregate, feedback: Feedback) -> Dict[str, object]:
    user = agg.find_user(feedback.reg_number)
    doc = asdict(feedback)
    doc["user_name"] = (user.full_name if user else "") or feedback.reg_number
    return doc


def feedback_for_event(agg: Aggregate, event_id: int, organizer_reg: str) -> List[Dict[str, object]]:
    event = agg.get_event(event_id)
    if event.creator_reg_number != organizer_reg:
        raise Forbidden("Only the organizer can view feedback.")
    return [_with_user(agg, f) for f in agg.feedbacks if f.event_id == event_id]


def feedback_of(agg: Aggregate, event_id: int, reg_number: str, organizer_reg: str) -> Dict[str, object]:
    event = agg.get_event(event_id)
    if event.creator_reg_number != organizer_reg:
        raise Forbidden("Only the organizer can view feedback.")
    feedback = find_feedback(agg, event_id, reg_number)
    if feedback is None:
        raise NotFound("Feedback not found.")
    return _with_user(agg, feedback)
