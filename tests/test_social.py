import pytest

from campus_engine import add_volunteer, book, respond_volunteer
from campus_errors import Conflict, Forbidden, NotFound, ValidationFailed
from campus_media import InMemoryObjectStorage
from campus_social import (
    conversations,
    delete_message,
    feedback_for_event,
    feedback_of,
    find_feedback,
    send_media_message,
    send_message,
    submit_feedback,
    thread,
)


@pytest.fixture()
def event(agg, make_event, now):
    ev = make_event(capacity=5)
    book(agg, ev.id, "A", now)
    add_volunteer(agg, ev.id, "ORG", "B", "usher", now)
    respond_volunteer(agg, ev.id, "B", "accept", now)
    return ev


def test_chat_between_organizer_and_attendees(agg, event, now):
    send_message(agg, event.id, "A", "ORG", "Is there parking?", now)
    send_message(agg, event.id, "ORG", "A", "  Yes, lot B.  ", now)
    send_message(agg, event.id, "B", "ORG", "I'll be at the door", now)

    msgs = thread(agg, event.id, "ORG", "A")
    assert [m.text for m in msgs] == ["Is there parking?", "Yes, lot B."]
    assert agg.notifications["ORG"][0].type == "chat"

    convs = conversations(agg, event.id, "ORG")
    assert [(c["reg_number"], c["volunteer"], c["unread"]) for c in convs] == [("A", False, 1), ("B", True, 1)]
    with pytest.raises(Forbidden):
        conversations(agg, event.id, "A")


def test_outsiders_cannot_chat(agg, event, now):
    with pytest.raises(Forbidden):
        send_message(agg, event.id, "C", "D", "hello", now)
    with pytest.raises(ValidationFailed):
        send_message(agg, event.id, "A", "ORG", "   ", now)
    with pytest.raises(NotFound):
        send_message(agg, 999, "A", "ORG", "hello", now)


def test_media_message_and_delete(agg, event, now):
    storage = InMemoryObjectStorage()
    msg = send_media_message(agg, event.id, "A", "ORG", "pic.jpg", "image/jpeg", b"jpeg", now, storage)
    assert msg.media_type == "photo"
    assert storage.open(msg.external_id) == (b"jpeg", "image/jpeg")

    with pytest.raises(ValidationFailed):
        send_media_message(agg, event.id, "A", "ORG", "a.txt", "text/plain", b"x", now, storage)
    with pytest.raises(Forbidden):
        delete_message(agg, msg.id, "C", storage)

    delete_message(agg, msg.id, "ORG", storage)
    assert agg.messages == []
    assert storage.objects == {}


def test_feedback_once_per_booked_user(agg, event, now):
    with pytest.raises(ValidationFailed):
        submit_feedback(agg, event.id, "A", 5, "Great", now)
    with pytest.raises(ValidationFailed):
        submit_feedback(agg, event.id, "A", 3, "  ", now)
    with pytest.raises(Forbidden):
        submit_feedback(agg, event.id, "C", 3, "Great", now)

    fb = submit_feedback(agg, event.id, "A", 2, "Seats were tight", now)
    assert find_feedback(agg, event.id, "A") is fb
    with pytest.raises(Conflict):
        submit_feedback(agg, event.id, "A", 3, "Changed my mind", now)

    [doc] = feedback_for_event(agg, event.id, "ORG")
    assert doc["user_name"] == "Alice Test"
    assert feedback_of(agg, event.id, "A", "ORG")["review"] == "Seats were tight"
    with pytest.raises(Forbidden):
        feedback_for_event(agg, event.id, "A")
    with pytest.raises(NotFound):
        feedback_of(agg, event.id, "C", "ORG")
