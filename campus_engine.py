"""
Capacity, waitlist and volunteer reconciliation.

Every function here mutates an in-memory ``Aggregate`` and leaves persistence
to the caller. The rules:

- ``taken`` always equals ``len(bookings)`` and seats are re-packed to
  ``1..taken`` after every removal; a new booking takes seat ``taken + 1``.
- Freed seats are filled from the head of the waitlist (FIFO). Promotion does
  not re-check the promoted user's eligibility.
- A volunteer role string is held by at most one user per event, counting
  both accepted volunteers and pending invites.
- Volunteering supersedes a ticket: accepting an invite removes the user's
  booking and waitlist entry, and the freed seat goes to the waitlist.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from campus_errors import (
    CapacityExceeded,
    Conflict,
    Forbidden,
    NotFound,
    RoleConflict,
    ValidationFailed,
)
from campus_models import (
    ORGANIZER,
    REQUEST_ACCEPTED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    Aggregate,
    Booking,
    Event,
    User,
    Volunteer,
    VolunteerRequest,
    WaitlistEntry,
    new_id,
    timestamp,
)
from campus_notify import notify

logger = logging.getLogger(__name__)

ACCEPT = "accept"
REJECT = "reject"


# -----------------------------
# Seat and id bookkeeping
# -----------------------------


def repack_seats(event: Event) -> None:
    """Reassign seats ``1..n`` in current seat order and resync ``taken``."""
    event.bookings.sort(key=lambda b: b.seat)
    for seat, booking in enumerate(event.bookings, start=1):
        booking.seat = seat
    event.taken = len(event.bookings)


def renumber_volunteers(event: Event) -> None:
    for i, v in enumerate(event.volunteers, start=1):
        v.volunteer_id = f"V{i:02d}"


def _seat_user(event: Event, user: User, now: datetime, via: str = "app") -> Booking:
    event.taken += 1
    booking = Booking(
        reg_number=user.reg_number,
        name=user.name,
        seat=event.taken,
        event_id=event.id,
        role="O" if user.role == ORGANIZER else "S",
        booked_at=timestamp(now),
        via=via,
    )
    event.bookings.append(booking)
    return booking


def _remove_booking(event: Event, reg_number: str) -> int:
    before = len(event.bookings)
    event.bookings = [b for b in event.bookings if b.reg_number != reg_number]
    removed = before - len(event.bookings)
    if removed:
        repack_seats(event)
    return removed


def promote_from_waitlist(
    agg: Aggregate,
    event: Event,
    count: int,
    now: datetime,
    reason: str = "A seat opened up",
) -> List[Booking]:
    """Pop up to ``count`` entries off the waitlist head and book them.

    Entries whose user no longer exists are consumed without a booking.
    """
    promoted: List[Booking] = []
    heads, event.waitlist = event.waitlist[:count], event.waitlist[count:]
    for entry in heads:
        user = agg.find_user(entry.reg_number)
        if user is None:
            logger.warning("Dropping waitlist entry for unknown user %s on event %s", entry.reg_number, event.id)
            continue
        booking = _seat_user(event, user, now)
        promoted.append(booking)
        notify(
            agg,
            user.reg_number,
            f"{reason} for '{event.title}'. You have been auto-booked from the waitlist. Your seat: {booking.seat}",
            now,
        )
        logger.info("Auto-booked %s for event %s with seat %d", user.reg_number, event.id, booking.seat)
    return promoted


# -----------------------------
# Bookings
# -----------------------------


def book(agg: Aggregate, event_id: int, reg_number: str, now: datetime, via: str = "app") -> Booking:
    """Book a seat for ``reg_number``.

    A full event still records a "full" notification for the user before
    ``CapacityExceeded`` is raised.
    """
    event = agg.find_event(event_id)
    user = agg.find_user(reg_number)
    if event is None or user is None:
        raise NotFound("Event or user not found")
    if event.creator_reg_number == reg_number:
        raise Forbidden("You cannot book a ticket for your own event.")
    if event.volunteer_for(reg_number) or event.pending_request_for(reg_number):
        raise Conflict("Volunteers cannot book tickets for this event.")
    if event.booking_for(reg_number):
        raise Conflict("Ticket already booked for this event")
    if event.taken >= event.capacity:
        notify(agg, reg_number, f"Event {event.title} is full.", now)
        raise CapacityExceeded("Venue is full")

    via = "qr" if via == "qr" else "app"
    booking = _seat_user(event, user, now, via=via)
    # A direct booking replaces any waitlist entry the user held.
    idx = event.waitlist_index(reg_number)
    if idx != -1:
        del event.waitlist[idx]
    if via == "qr":
        notify(agg, reg_number, f"You booked a ticket via QR code for {event.title}", now)
    else:
        notify(agg, reg_number, f"You booked a ticket for {event.title}", now)
    return booking


def cancel_booking(agg: Aggregate, event_id: int, reg_number: str, now: datetime) -> Optional[Booking]:
    """Cancel the user's own booking. Returns the booking promoted from the waitlist, if any."""
    event = agg.get_event(event_id)
    if event.has_started(now):
        raise Forbidden("Cannot cancel a ticket for a live or past event.")
    if not event.booking_for(reg_number):
        raise NotFound("Booking not found")

    _remove_booking(event, reg_number)
    notify(agg, reg_number, f"Your ticket for '{event.title}' has been cancelled.", now)
    promoted = promote_from_waitlist(agg, event, 1, now)
    return promoted[0] if promoted else None


def organizer_cancel(
    agg: Aggregate,
    event_id: int,
    organizer_reg: str,
    target_reg: str,
    now: datetime,
) -> Optional[Booking]:
    """Organizer cancels another user's booking; same waitlist promotion as a self-cancel."""
    event = agg.get_event(event_id)
    if event.creator_reg_number != organizer_reg:
        raise Forbidden("Only the organizer can cancel bookings for this event.")
    if target_reg == event.creator_reg_number:
        raise Forbidden("Cannot cancel the event creator's ticket.")
    if event.has_started(now):
        raise Forbidden("Cannot cancel bookings for a live or past event.")
    if not event.booking_for(target_reg):
        raise NotFound("Booking not found")

    _remove_booking(event, target_reg)
    notify(agg, target_reg, f"Your ticket for '{event.title}' was cancelled by the organizer.", now)
    promoted = promote_from_waitlist(agg, event, 1, now)
    return promoted[0] if promoted else None


# -----------------------------
# Waitlist
# -----------------------------


def join_waitlist(agg: Aggregate, event_id: int, reg_number: str, now: datetime) -> WaitlistEntry:
    event = agg.find_event(event_id)
    user = agg.find_user(reg_number)
    if event is None or user is None:
        raise NotFound("Event or user not found")
    if event.creator_reg_number == reg_number:
        raise Forbidden("Organizer cannot join waitlist for own event.")
    if event.booking_for(reg_number):
        raise Conflict("You already have a booking for this event.")
    if event.waitlist_index(reg_number) != -1:
        raise Conflict("Already on waitlist.")
    if event.volunteer_for(reg_number):
        raise Conflict("Volunteers cannot join the waitlist for this event.")

    entry = WaitlistEntry(
        id=new_id((w.id for w in event.waitlist), now),
        reg_number=reg_number,
        time=timestamp(now),
    )
    event.waitlist.append(entry)
    notify(agg, reg_number, f"You joined the waitlist for '{event.title}'. We'll auto-book if a seat opens.", now)
    return entry


def leave_waitlist(agg: Aggregate, event_id: int, reg_number: str, now: datetime) -> None:
    event = agg.find_event(event_id)
    if event is None or agg.find_user(reg_number) is None:
        raise NotFound("Event or user not found")
    idx = event.waitlist_index(reg_number)
    if idx == -1:
        raise NotFound("Not on waitlist for this event.")
    del event.waitlist[idx]
    notify(agg, reg_number, f"You left the waitlist for '{event.title}'.", now)


# -----------------------------
# Volunteers
# -----------------------------


def add_volunteer(
    agg: Aggregate,
    event_id: int,
    organizer_reg: str,
    reg_number: str,
    role: str,
    now: datetime,
) -> VolunteerRequest:
    """Invite ``reg_number`` to volunteer as ``role``. Creates a pending request."""
    event = agg.get_event(event_id)
    if event.creator_reg_number != organizer_reg:
        raise Forbidden("Only the organizer can add volunteers.")
    if event.has_started(now):
        raise Forbidden("Cannot add volunteers for past events.")
    agg.get_user(reg_number)
    if reg_number == event.creator_reg_number:
        raise ValidationFailed("Organizer cannot be a volunteer.")
    if event.volunteer_for(reg_number):
        raise Conflict("User is already a volunteer for this event.")
    if event.pending_request_for(reg_number):
        raise Conflict("There is already a pending request for this user.")
    role_name = (role or "").strip()
    if not role_name:
        raise ValidationFailed("Role is required.")
    if any(v.role == role_name for v in event.volunteers):
        raise Conflict("This role is already assigned to another volunteer.")
    if event.role_holder(role_name) is not None:
        raise Conflict("This role already has a pending request.")

    request = VolunteerRequest(
        id=new_id((r.id for r in event.volunteer_requests), now),
        reg_number=reg_number,
        role=role_name,
        requested_at=timestamp(now),
    )
    event.volunteer_requests.append(request)
    notify(
        agg,
        reg_number,
        f"Organizer invited you to volunteer for '{event.title}' as '{role_name}'.",
        now,
        type="volunteer_request",
        event_id=event.id,
        role=role_name,
    )
    return request


def respond_volunteer(
    agg: Aggregate,
    event_id: int,
    reg_number: str,
    decision: str,
    now: datetime,
) -> Optional[Volunteer]:
    """Accept or reject the user's pending invite.

    Accepting revokes any booking the user held (seats re-packed, freed seats
    filled from the waitlist) and drops them from the waitlist. Returns the new
    volunteer on accept, None on reject.
    """
    event = agg.get_event(event_id)
    request = event.pending_request_for(reg_number)
    if request is None:
        raise NotFound("No pending request found")
    if event.has_started(now):
        raise Forbidden("This event has already started or passed.")
    if decision not in (ACCEPT, REJECT):
        raise ValidationFailed("Invalid decision")

    if decision == REJECT:
        request.status = REQUEST_REJECTED
        notify(agg, reg_number, f"You rejected volunteer role '{request.role}' for '{event.title}'.", now)
        notify(
            agg,
            event.creator_reg_number,
            f"{reg_number} rejected volunteer role '{request.role}' for '{event.title}'.",
            now,
        )
        return None

    if any(v.role == request.role for v in event.volunteers):
        request.status = REQUEST_REJECTED
        raise RoleConflict("Role already assigned to someone else.")

    user = agg.find_user(reg_number)
    volunteer = Volunteer(
        reg_number=reg_number,
        name=user.name if user else reg_number,
        volunteer_id="",
        role=request.role,
    )
    event.volunteers.append(volunteer)
    renumber_volunteers(event)
    request.status = REQUEST_ACCEPTED

    idx = event.waitlist_index(reg_number)
    if idx != -1:
        del event.waitlist[idx]
    if _remove_booking(event, reg_number):
        notify(agg, reg_number, f"Your ticket for '{event.title}' was removed as you are now a volunteer.", now)
        free = event.capacity - event.taken
        if free > 0 and event.waitlist:
            count = min(free, len(event.waitlist))
            logger.info("Volunteer %s freed a seat on event %s; auto-booking %d", reg_number, event.id, count)
            promote_from_waitlist(agg, event, count, now, reason="A volunteer freed up space")

    notify(agg, reg_number, f"You accepted volunteer role '{request.role}' for '{event.title}'.", now)
    notify(
        agg,
        event.creator_reg_number,
        f"{reg_number} accepted volunteer role '{request.role}' for '{event.title}'.",
        now,
    )
    return volunteer


def _drop_volunteer(event: Event, reg_number: str) -> Volunteer:
    volunteer = event.volunteer_for(reg_number)
    if volunteer is None:
        raise NotFound("Volunteer not found on this event.")
    event.volunteers.remove(volunteer)
    renumber_volunteers(event)
    event.volunteer_requests = [r for r in event.volunteer_requests if r.reg_number != reg_number]
    return volunteer


def remove_volunteer(
    agg: Aggregate,
    event_id: int,
    organizer_reg: str,
    reg_number: str,
    now: datetime,
) -> Volunteer:
    event = agg.get_event(event_id)
    if event.creator_reg_number != organizer_reg:
        raise Forbidden("Only the organizer can remove volunteers.")
    removed = _drop_volunteer(event, reg_number)
    notify(agg, reg_number, f"Your volunteer role for '{event.title}' has been cancelled.", now)
    return removed


def leave_volunteer(agg: Aggregate, event_id: int, reg_number: str, now: datetime) -> Volunteer:
    event = agg.get_event(event_id)
    removed = _drop_volunteer(event, reg_number)
    notify(agg, reg_number, f"You left the volunteer role for '{event.title}'.", now)
    notify(agg, event.creator_reg_number, f"{reg_number} left the volunteer role for '{event.title}'.", now)
    return removed


# -----------------------------
# Account removal
# -----------------------------


def purge_user(agg: Aggregate, reg_number: str) -> None:
    """Remove every booking, waitlist entry and volunteer record of a user."""
    for event in agg.events:
        _remove_booking(event, reg_number)
        event.waitlist = [w for w in event.waitlist if w.reg_number != reg_number]
        if event.volunteer_for(reg_number):
            event.volunteers = [v for v in event.volunteers if v.reg_number != reg_number]
            renumber_volunteers(event)
        event.volunteer_requests = [r for r in event.volunteer_requests if r.reg_number != reg_number]


# -----------------------------
# Read views
# -----------------------------


def tickets_for(agg: Aggregate, reg_number: str) -> List[Dict[str, object]]:
    """Booked tickets and waitlist positions of a user across all events."""
    tickets: List[Dict[str, object]] = []
    for event in agg.events:
        base = {
            "event_id": event.id,
            "event_title": event.title,
            "venue": event.venue,
            "date": event.date.isoformat(),
            "start_time": event.start_time.strftime("%H:%M"),
            "category": event.category,
        }
        booking = event.booking_for(reg_number)
        if booking:
            tickets.append(
                dict(
                    base,
                    seat=booking.seat,
                    role=booking.role,
                    ticket_id=booking.name[:3].lower() + reg_number,
                    waiting=False,
                    via=booking.via,
                    booked_at=booking.booked_at,
                )
            )
        idx = event.waitlist_index(reg_number)
        if idx != -1:
            tickets.append(
                dict(
                    base,
                    seat=None,
                    role="S",
                    ticket_id=f"WAIT-{reg_number}",
                    waiting=True,
                    wait_id=event.waitlist[idx].id,
                    position=idx + 1,
                )
            )
    return tickets


def waitlist_view(agg: Aggregate, event_id: int, organizer_reg: str) -> List[Dict[str, object]]:
    event = agg.get_event(event_id)
    if event.creator_reg_number != organizer_reg:
        raise Forbidden("Only the organizer can view this waitlist.")
    out = []
    for position, w in enumerate(event.waitlist, start=1):
        user = agg.find_user(w.reg_number)
        out.append(
            {
                "reg_number": w.reg_number,
                "name": user.full_name if user else w.reg_number,
                "time": w.time,
                "position": position,
            }
        )
    return out


def volunteers_view(agg: Aggregate, event_id: int, organizer_reg: str) -> List[Dict[str, object]]:
    """Accepted volunteers followed by still-pending invites."""
    event = agg.get_event(event_id)
    if event.creator_reg_number != organizer_reg:
        raise Forbidden("Only the organizer can view volunteers.")

    def first_name(reg: str, fallback: str) -> str:
        user = agg.find_user(reg)
        return user.name.strip() if user else fallback

    out: List[Dict[str, object]] = [
        {
            "reg_number": v.reg_number,
            "name": first_name(v.reg_number, v.name or v.reg_number),
            "volunteer_id": v.volunteer_id,
            "role": v.role,
            "status": REQUEST_ACCEPTED,
        }
        for v in event.volunteers
    ]
    accepted = {(v.reg_number, v.role) for v in event.volunteers}
    for r in event.volunteer_requests:
        if r.status == REQUEST_PENDING and (r.reg_number, r.role) not in accepted:
            out.append(
                {
                    "reg_number": r.reg_number,
                    "name": first_name(r.reg_number, r.reg_number),
                    "role": r.role,
                    "status": r.status,
                }
            )
    return out
