from datetime import timedelta

import pytest

from campus_engine import (
    book,
    cancel_booking,
    join_waitlist,
    leave_waitlist,
    add_volunteer,
    respond_volunteer,
    remove_volunteer,
    leave_volunteer,
    organizer_cancel,
    tickets_for,
    waitlist_view,
    volunteers_view,
)
from campus_errors import CapacityExceeded, Conflict, Forbidden, NotFound, RoleConflict, ValidationFailed
from campus_models import User, Volunteer


def seats(event):
    return sorted(b.seat for b in event.bookings)


def assert_dense(event):
    assert event.taken == len(event.bookings)
    assert seats(event) == list(range(1, event.taken + 1))


def test_full_event_rejects_and_notifies(agg, make_event, now):
    ev = make_event(capacity=2)
    assert book(agg, ev.id, "A", now).seat == 1
    assert book(agg, ev.id, "B", now).seat == 2

    with pytest.raises(CapacityExceeded):
        book(agg, ev.id, "C", now)
    assert agg.notifications["C"][0].msg == f"Event {ev.title} is full."

    # C was never queued, so nothing is promoted
    assert cancel_booking(agg, ev.id, "A", now) is None
    assert ev.taken == 1
    assert ev.bookings[0].reg_number == "B"
    assert ev.bookings[0].seat == 1
    assert ev.waitlist == []


def test_cancel_promotes_waitlist_head(agg, make_event, now):
    ev = make_event(capacity=1)
    book(agg, ev.id, "A", now)
    join_waitlist(agg, ev.id, "B", now)
    join_waitlist(agg, ev.id, "C", now)

    promoted = cancel_booking(agg, ev.id, "A", now)

    assert promoted.reg_number == "B"
    assert promoted.seat == 1
    assert ev.taken == 1
    assert [w.reg_number for w in ev.waitlist] == ["C"]
    assert "auto-booked" in agg.notifications["B"][0].msg


def test_seats_stay_dense_across_mixed_operations(agg, make_event, now):
    ev = make_event(capacity=3)
    for reg in ("A", "B", "C"):
        book(agg, ev.id, reg, now)
        assert_dense(ev)
    join_waitlist(agg, ev.id, "D", now)

    cancel_booking(agg, ev.id, "B", now)
    assert_dense(ev)
    assert {b.reg_number: b.seat for b in ev.bookings} == {"A": 1, "C": 2, "D": 3}

    cancel_booking(agg, ev.id, "A", now)
    assert_dense(ev)
    book(agg, ev.id, "A", now)
    assert_dense(ev)
    assert ev.booking_for("A").seat == 3


def test_booking_rules(agg, make_event, now):
    ev = make_event(capacity=5)
    with pytest.raises(Forbidden):
        book(agg, ev.id, "ORG", now)
    with pytest.raises(NotFound):
        book(agg, ev.id, "nobody", now)
    with pytest.raises(NotFound):
        book(agg, 12345, "A", now)

    b = book(agg, ev.id, "A", now, via="qr")
    assert b.via == "qr"
    assert b.role == "S"
    assert "QR code" in agg.notifications["A"][0].msg
    with pytest.raises(Conflict):
        book(agg, ev.id, "A", now)


def test_direct_booking_clears_waitlist_entry(agg, make_event, now):
    ev = make_event(capacity=1)
    book(agg, ev.id, "A", now)
    join_waitlist(agg, ev.id, "B", now)
    ev.capacity = 2

    book(agg, ev.id, "B", now)

    assert ev.waitlist == []
    assert ev.taken == 2


def test_cancel_rules(agg, make_event, now):
    ev = make_event(capacity=1)
    with pytest.raises(NotFound):
        cancel_booking(agg, ev.id, "A", now)
    book(agg, ev.id, "A", now)
    with pytest.raises(Forbidden):
        cancel_booking(agg, ev.id, "A", ev.start)


def test_organizer_cancel(agg, make_event, now):
    ev = make_event(capacity=1)
    book(agg, ev.id, "A", now)
    join_waitlist(agg, ev.id, "B", now)

    with pytest.raises(Forbidden):
        organizer_cancel(agg, ev.id, "C", "A", now)

    promoted = organizer_cancel(agg, ev.id, "ORG", "A", now)
    assert promoted.reg_number == "B"
    assert "cancelled by the organizer" in agg.notifications["A"][0].msg


def test_waitlist_rules(agg, make_event, now):
    ev = make_event(capacity=1)
    book(agg, ev.id, "A", now)
    with pytest.raises(Forbidden):
        join_waitlist(agg, ev.id, "ORG", now)
    with pytest.raises(Conflict):
        join_waitlist(agg, ev.id, "A", now)
    join_waitlist(agg, ev.id, "B", now)
    with pytest.raises(Conflict):
        join_waitlist(agg, ev.id, "B", now)

    leave_waitlist(agg, ev.id, "B", now)
    assert ev.waitlist == []
    with pytest.raises(NotFound):
        leave_waitlist(agg, ev.id, "B", now)


def test_promotion_skips_deleted_users(agg, make_event, now):
    ev = make_event(capacity=1)
    book(agg, ev.id, "A", now)
    join_waitlist(agg, ev.id, "B", now)
    join_waitlist(agg, ev.id, "C", now)
    agg.users = [u for u in agg.users if u.reg_number != "B"]

    # The head entry is consumed even though its user is gone
    assert cancel_booking(agg, ev.id, "A", now) is None
    assert ev.taken == 0
    assert [w.reg_number for w in ev.waitlist] == ["C"]


def test_accepting_volunteer_role_frees_seat(agg, make_event, now):
    agg.users.append(User(reg_number="E", name="Erin"))
    ev = make_event(capacity=3)
    for reg in ("B", "C", "A"):
        book(agg, ev.id, reg, now)
    join_waitlist(agg, ev.id, "D", now)
    join_waitlist(agg, ev.id, "E", now)
    assert ev.booking_for("A").seat == 3

    add_volunteer(agg, ev.id, "ORG", "A", "usher", now)
    volunteer = respond_volunteer(agg, ev.id, "A", "accept", now)

    assert volunteer.role == "usher"
    assert volunteer.volunteer_id == "V01"
    assert ev.booking_for("A") is None
    # Waitlist head D took the freed seat
    assert ev.booking_for("D").seat == 3
    assert ev.taken == 3
    assert [w.reg_number for w in ev.waitlist] == ["E"]
    assert_dense(ev)
    assert any("accepted volunteer role" in n.msg for n in agg.notifications["ORG"])


def test_accepting_volunteer_role_drops_waitlist_entry(agg, make_event, now):
    ev = make_event(capacity=1)
    book(agg, ev.id, "B", now)
    join_waitlist(agg, ev.id, "A", now)

    add_volunteer(agg, ev.id, "ORG", "A", "usher", now)
    respond_volunteer(agg, ev.id, "A", "accept", now)

    assert ev.waitlist == []
    assert ev.taken == 1


def test_volunteer_roles_are_unique(agg, make_event, now):
    ev = make_event(capacity=5)
    add_volunteer(agg, ev.id, "ORG", "A", "usher", now)
    with pytest.raises(Conflict):
        add_volunteer(agg, ev.id, "ORG", "B", "usher", now)

    respond_volunteer(agg, ev.id, "A", "accept", now)
    with pytest.raises(Conflict):
        add_volunteer(agg, ev.id, "ORG", "B", "usher", now)

    add_volunteer(agg, ev.id, "ORG", "B", "photographer", now)
    with pytest.raises(Conflict):
        add_volunteer(agg, ev.id, "ORG", "B", "host", now)


def test_volunteer_invite_rules(agg, make_event, now):
    ev = make_event(capacity=5)
    with pytest.raises(Forbidden):
        add_volunteer(agg, ev.id, "A", "B", "usher", now)
    with pytest.raises(ValidationFailed):
        add_volunteer(agg, ev.id, "ORG", "ORG", "usher", now)
    with pytest.raises(ValidationFailed):
        add_volunteer(agg, ev.id, "ORG", "B", "   ", now)
    with pytest.raises(NotFound):
        add_volunteer(agg, ev.id, "ORG", "nobody", "usher", now)
    with pytest.raises(Forbidden):
        add_volunteer(agg, ev.id, "ORG", "B", "usher", ev.start)


def test_pending_invitee_and_volunteer_cannot_book(agg, make_event, now):
    ev = make_event(capacity=5)
    add_volunteer(agg, ev.id, "ORG", "A", "usher", now)
    with pytest.raises(Conflict):
        book(agg, ev.id, "A", now)
    respond_volunteer(agg, ev.id, "A", "accept", now)
    with pytest.raises(Conflict):
        book(agg, ev.id, "A", now)
    with pytest.raises(Conflict):
        join_waitlist(agg, ev.id, "A", now)


def test_reject_invite(agg, make_event, now):
    ev = make_event(capacity=5)
    book(agg, ev.id, "A", now)
    add_volunteer(agg, ev.id, "ORG", "A", "usher", now)

    assert respond_volunteer(agg, ev.id, "A", "reject", now) is None

    assert ev.volunteer_requests[0].status == "rejected"
    assert ev.booking_for("A") is not None
    # The role is free again
    add_volunteer(agg, ev.id, "ORG", "B", "usher", now)


def test_respond_rules(agg, make_event, now):
    ev = make_event(capacity=5)
    with pytest.raises(NotFound):
        respond_volunteer(agg, ev.id, "A", "accept", now)
    add_volunteer(agg, ev.id, "ORG", "A", "usher", now)
    with pytest.raises(ValidationFailed):
        respond_volunteer(agg, ev.id, "A", "maybe", now)
    with pytest.raises(Forbidden):
        respond_volunteer(agg, ev.id, "A", "accept", ev.start + timedelta(minutes=1))


def test_role_taken_before_accept_marks_invite_rejected(agg, make_event, now):
    ev = make_event(capacity=5)
    add_volunteer(agg, ev.id, "ORG", "A", "usher", now)
    ev.volunteers.append(Volunteer(reg_number="B", name="Bob", volunteer_id="V01", role="usher"))

    with pytest.raises(RoleConflict) as exc:
        respond_volunteer(agg, ev.id, "A", "accept", now)

    assert exc.value.commit
    assert ev.volunteer_requests[0].status == "rejected"


def test_volunteer_ids_renumber_after_removal(agg, make_event, now):
    ev = make_event(capacity=5)
    for reg, role in [("A", "usher"), ("B", "host"), ("C", "photographer")]:
        add_volunteer(agg, ev.id, "ORG", reg, role, now)
        respond_volunteer(agg, ev.id, reg, "accept", now)
    assert [v.volunteer_id for v in ev.volunteers] == ["V01", "V02", "V03"]

    remove_volunteer(agg, ev.id, "ORG", "A", now)
    assert [(v.reg_number, v.volunteer_id) for v in ev.volunteers] == [("B", "V01"), ("C", "V02")]

    leave_volunteer(agg, ev.id, "B", now)
    assert [(v.reg_number, v.volunteer_id) for v in ev.volunteers] == [("C", "V01")]
    with pytest.raises(NotFound):
        leave_volunteer(agg, ev.id, "B", now)
    with pytest.raises(Forbidden):
        remove_volunteer(agg, ev.id, "C", "C", now)


def test_views(agg, make_event, now):
    ev = make_event(capacity=1)
    book(agg, ev.id, "A", now)
    join_waitlist(agg, ev.id, "B", now)
    add_volunteer(agg, ev.id, "ORG", "C", "usher", now)

    assert [(t["seat"], t["waiting"]) for t in tickets_for(agg, "A")] == [(1, False)]
    waiting = tickets_for(agg, "B")
    assert waiting[0]["waiting"] is True
    assert waiting[0]["position"] == 1

    assert [w["reg_number"] for w in waitlist_view(agg, ev.id, "ORG")] == ["B"]
    with pytest.raises(Forbidden):
        waitlist_view(agg, ev.id, "A")

    vols = volunteers_view(agg, ev.id, "ORG")
    assert vols == [{"reg_number": "C", "name": "Carol", "role": "usher", "status": "pending"}]
