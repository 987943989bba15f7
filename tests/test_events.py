from datetime import timedelta

import pytest

from campus_engine import book, join_waitlist
from campus_errors import Conflict, Forbidden, NotFound, ValidationFailed
from campus_events import (
    admin_delete_event,
    attach_media,
    create_event,
    delete_event,
    delete_media,
    edit_event,
    event_summary,
    find_venue_conflicts,
    list_events,
)
from campus_media import InMemoryObjectStorage
from conftest import details_at


def test_overlapping_events_at_same_venue_conflict(agg, make_event, now):
    start = now + timedelta(days=1)
    first = make_event(start=start, duration=120)

    # Starts inside the first event's window
    with pytest.raises(Conflict):
        make_event(start=start + timedelta(minutes=60), duration=30)
    # Wraps around the first event
    with pytest.raises(Conflict):
        make_event(start=start - timedelta(minutes=30), duration=240)

    # Same day, same venue, back to back
    after = make_event(start=start + timedelta(minutes=120), duration=60)
    before = make_event(start=start - timedelta(minutes=60), duration=60)
    # Another venue at the same time
    elsewhere = make_event(start=start, venue="Auditorium")

    assert len({first.id, after.id, before.id, elsewhere.id}) == 4
    assert find_venue_conflicts(agg, "Seminar Hall", start, start + timedelta(minutes=1)) == [first.id]


def test_shared_resource_conflicts_across_venues(agg, make_event, now):
    start = now + timedelta(days=1)
    make_event(start=start, resources=["Projector", "Mic"])

    with pytest.raises(Conflict) as exc:
        make_event(start=start, venue="Auditorium", resources=["Mic"])
    assert "Mic" in exc.value.message

    make_event(start=start, venue="Auditorium", resources=["Speakers"])


def test_create_requires_future_start_and_organizer(agg, make_event, now):
    with pytest.raises(ValidationFailed):
        make_event(start=now)
    with pytest.raises(ValidationFailed):
        make_event(capacity=0)
    with pytest.raises(Forbidden):
        create_event(agg, details_at(now + timedelta(days=1)), "A", now)
    with pytest.raises(NotFound):
        create_event(agg, details_at(now + timedelta(days=1)), "nobody", now)


def test_create_announces_to_every_user(agg, make_event):
    ev = make_event()
    for user in agg.users:
        assert agg.notifications[user.reg_number][0].msg.startswith(f"New Event: {ev.title}")


def test_edit_capacity_rules(agg, make_event, now):
    ev = make_event(capacity=2)
    book(agg, ev.id, "A", now)
    book(agg, ev.id, "B", now)
    for reg in ("C", "D"):
        join_waitlist(agg, ev.id, reg, now)

    with pytest.raises(ValidationFailed):
        edit_event(agg, ev.id, details_at(ev.start, capacity=1), "ORG", now)

    # Raising capacity by one promotes only the waitlist head
    edit_event(agg, ev.id, details_at(ev.start, capacity=3), "ORG", now)
    assert ev.taken == 3
    assert ev.booking_for("C").seat == 3
    assert [w.reg_number for w in ev.waitlist] == ["D"]
    assert agg.notifications["A"][0].msg.startswith("Event Updated")


def test_edit_keeps_own_slot_and_resources(agg, make_event, now):
    ev = make_event(resources=["Projector"])
    edited = edit_event(agg, ev.id, details_at(ev.start, title="AI Workshop II"), "ORG", now)

    assert edited.title == "AI Workshop II"
    assert edited.resources == ["Projector"]


def test_edit_rechecks_conflicts_and_ownership(agg, make_event, now):
    start = now + timedelta(days=1)
    make_event(start=start)
    other = make_event(start=start + timedelta(hours=3))

    with pytest.raises(Conflict):
        edit_event(agg, other.id, details_at(start), "ORG", now)
    with pytest.raises(Forbidden):
        edit_event(agg, other.id, details_at(other.start), "A", now)
    with pytest.raises(Forbidden):
        edit_event(agg, other.id, details_at(other.start), "ORG", other.start)


def test_delete_event_notifies_bookers_and_drops_media(agg, make_event, now):
    storage = InMemoryObjectStorage()
    ev = make_event()
    book(agg, ev.id, "A", now)
    media = attach_media(agg, ev.id, "ORG", "stage.png", "image/png", b"png", now, storage)
    assert media.external_id in storage.objects

    with pytest.raises(Forbidden):
        delete_event(agg, ev.id, "A", now, storage)
    delete_event(agg, ev.id, "ORG", now, storage)

    assert agg.events == []
    assert agg.media == []
    assert storage.objects == {}
    assert agg.notifications["A"][0].msg == f"Event Cancelled: '{ev.title}' has been cancelled."


def test_started_event_cannot_be_deleted_by_creator(agg, make_event, now):
    storage = InMemoryObjectStorage()
    ev = make_event()
    with pytest.raises(Forbidden):
        delete_event(agg, ev.id, "ORG", ev.start, storage)

    # The admin path ignores start time
    admin_delete_event(agg, ev.id, "Venue closed", ev.start, storage)
    assert agg.events == []
    assert agg.notifications["ORG"][0].msg.endswith("Reason: Venue closed")


def test_attach_media_rules(agg, make_event, now):
    storage = InMemoryObjectStorage()
    ev = make_event()
    with pytest.raises(Forbidden):
        attach_media(agg, ev.id, "A", "x.png", "image/png", b"x", now, storage)
    with pytest.raises(ValidationFailed):
        attach_media(agg, ev.id, "ORG", "notes.pdf", "application/pdf", b"x", now, storage)
    with pytest.raises(ValidationFailed):
        attach_media(agg, ev.id, "ORG", "x.png", "image/png", b"", now, storage)

    clip = attach_media(agg, ev.id, "ORG", "clip.mp4", "video/mp4", b"1234", now, storage)
    assert clip.type == "video"
    assert clip.size == 4


def test_delete_media_survives_storage_failure(agg, make_event, now):
    storage = InMemoryObjectStorage()
    ev = make_event()
    media = attach_media(agg, ev.id, "ORG", "x.png", "image/png", b"x", now, storage)
    storage.objects.clear()

    delete_media(agg, media.id, "ORG", storage)
    assert agg.media == []


def test_list_events_and_summary(agg, make_event, now):
    storage = InMemoryObjectStorage()
    ev = make_event(capacity=1)
    book(agg, ev.id, "A", now)
    join_waitlist(agg, ev.id, "B", now)
    attach_media(agg, ev.id, "ORG", "x.png", "image/png", b"x", now, storage)

    [doc] = list_events(agg)
    assert doc["creator_name"] == "Olivia Reed"
    assert doc["start_time"] == ev.start_time.strftime("%H:%M")
    assert len(doc["media"]) == 1

    summary = event_summary(agg, ev.id)
    assert summary["taken"] == 1
    assert summary["available"] == 0
    assert summary["waitlisted"] == 1
