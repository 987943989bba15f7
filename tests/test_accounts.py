from datetime import timedelta

import pytest

from campus_accounts import (
    admin_delete_user,
    admin_login,
    admin_stats,
    change_admin_credentials,
    delete_account,
    login,
    pending_organizers,
    remove_organizer,
    reset_password,
    signup,
    update_profile,
    verify_organizer,
)
from campus_engine import book, join_waitlist
from campus_errors import Conflict, NotFound, Unauthorized, ValidationFailed
from campus_media import InMemoryObjectStorage
from campus_models import Aggregate

DEFAULT_ADMIN = {"username": "admin", "password": "admin123"}


def register(agg, now, **kwargs):
    form = {
        "reg_number": "S100",
        "name": "Alice",
        "surname": "Johnson",
        "age": 20,
        "gender": "F",
        "email": "alice@example.com",
        "phone": "9876543210",
        "password": "Secret1",
        "role": "STUDENT",
    }
    form.update(kwargs)
    return signup(agg, now, **form)


def test_signup_hashes_password_and_logs_in(now):
    agg = Aggregate()
    user = register(agg, now)

    assert user.password != "Secret1"
    assert "password" not in user.profile()
    assert login(agg, "S100", "Secret1", now) is user
    assert user.last_seen == now.isoformat(timespec="seconds")
    with pytest.raises(Unauthorized):
        login(agg, "S100", "wrong", now)
    with pytest.raises(Unauthorized):
        login(agg, "nobody", "Secret1", now)


def test_signup_uniqueness_and_format(now):
    agg = Aggregate()
    register(agg, now)

    with pytest.raises(Conflict):
        register(agg, now, email="other@example.com", phone="9000000001")
    with pytest.raises(Conflict):
        register(agg, now, reg_number="S101", email="ALICE@example.com", phone="9000000001")
    with pytest.raises(Conflict):
        register(agg, now, reg_number="S101", email="other@example.com")
    with pytest.raises(ValidationFailed):
        register(agg, now, reg_number="S102", email="bad-email", phone="9000000002")
    with pytest.raises(ValidationFailed):
        register(agg, now, reg_number="S102", email="c@example.com", phone="12345")
    with pytest.raises(ValidationFailed):
        register(agg, now, reg_number="S102", email="c@example.com", phone="9000000002", password="alllower1")
    with pytest.raises(ValidationFailed):
        register(agg, now, reg_number="S102", email="c@example.com", phone="9000000002", name="")


def test_organizer_request_needs_approval(now):
    agg = Aggregate()
    user = register(agg, now, role="ORGANIZER")
    assert user.role == "STUDENT"
    assert user.organizer_status == "PENDING"
    assert [p["reg_number"] for p in pending_organizers(agg)] == ["S100"]

    assert verify_organizer(agg, "S100", "approve", None, now) == "approved"
    assert user.role == "ORGANIZER"
    assert "approved" in agg.notifications["S100"][0].msg
    with pytest.raises(ValidationFailed):
        verify_organizer(agg, "S100", "approve", None, now)

    remove_organizer(agg, "S100", now)
    assert user.role == "STUDENT"


def test_rejected_organizer_hears_why(now):
    agg = Aggregate()
    user = register(agg, now, role="ORGANIZER")
    assert verify_organizer(agg, "S100", "reject", "Not a club lead", now) == "rejected"
    assert user.role == "STUDENT"
    assert agg.notifications["S100"][0].msg.endswith("Reason: Not a club lead")


def test_reset_password_requires_matching_role(now):
    agg = Aggregate()
    register(agg, now)
    with pytest.raises(NotFound):
        reset_password(agg, "S100", "ORGANIZER", "NewPass1", now)
    reset_password(agg, "S100", "STUDENT", "NewPass1", now)
    login(agg, "S100", "NewPass1", now)


def test_update_profile_ignores_blank_values(now):
    agg = Aggregate()
    register(agg, now)
    update_profile(agg, "S100", department="CSE", branch="AI")
    user = update_profile(agg, "S100", department="", pincode="560001")

    assert (user.department, user.branch, user.pincode) == ("CSE", "AI", "560001")


def test_admin_credentials(now):
    agg = Aggregate()
    admin_login(agg, "ADMIN", "admin123", DEFAULT_ADMIN)
    with pytest.raises(Unauthorized):
        admin_login(agg, "admin", "nope", DEFAULT_ADMIN)

    change_admin_credentials(agg, "root", "Sup3r")
    assert agg.admin["password"] != "Sup3r"
    admin_login(agg, "root", "Sup3r", DEFAULT_ADMIN)


def test_deleting_an_account_purges_it(agg, make_event, now):
    storage = InMemoryObjectStorage()
    register(agg, now, reg_number="S100")
    ev = make_event(capacity=2)
    book(agg, ev.id, "A", now)
    book(agg, ev.id, "S100", now)
    join_waitlist(agg, ev.id, "B", now)

    with pytest.raises(Unauthorized):
        delete_account(agg, "S100", "wrong", storage)

    delete_account(agg, "S100", "Secret1", storage)
    assert agg.find_user("S100") is None
    assert "S100" not in agg.notifications
    # Seats are repacked, but the freed seat is not handed to the waitlist
    assert [(b.reg_number, b.seat) for b in ev.bookings] == [("A", 1)]
    assert [w.reg_number for w in ev.waitlist] == ["B"]


def test_admin_delete_user_removes_their_events(agg, make_event, now):
    storage = InMemoryObjectStorage()
    make_event()
    admin_delete_user(agg, "ORG", storage)

    assert agg.events == []
    assert agg.find_user("ORG") is None


def test_admin_stats_counts_recently_active_users(agg, make_event, now):
    make_event()
    login_time = now.isoformat(timespec="seconds")
    agg.find_user("A").last_seen = login_time
    agg.find_user("B").last_seen = (now - timedelta(minutes=10)).isoformat(timespec="seconds")

    stats = admin_stats(agg, now + timedelta(minutes=1))

    assert stats == {"total_users": 5, "total_events": 1, "total_organizers": 1, "active_users": 1}
