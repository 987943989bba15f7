import os
from datetime import datetime, timedelta

import pytest

# Keep the server module on the in-memory backend with no background thread
os.environ["DB_BACKEND"] = "memory"
os.environ["SCHEDULER_ENABLED"] = "false"

from campus_events import EventDetails, create_event
from campus_models import ORGANIZER, Aggregate, User

NOW = datetime(2030, 5, 1, 9, 0)


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def agg():
    """Aggregate with one organizer (ORG) and four students (A, B, C, D)."""
    state = Aggregate()
    state.users.append(User(reg_number="ORG", name="Olivia", surname="Reed", role=ORGANIZER))
    for reg, name in [("A", "Alice"), ("B", "Bob"), ("C", "Carol"), ("D", "Dave")]:
        state.users.append(User(reg_number=reg, name=name, surname="Test"))
    return state


def details_at(start, capacity=2, venue="Seminar Hall", duration=60, resources=None, title="AI Workshop"):
    return EventDetails(
        title=title,
        date=start.date(),
        start_time=start.time(),
        duration=duration,
        venue=venue,
        capacity=capacity,
        category="Workshop",
        resources=resources,
    )


@pytest.fixture()
def make_event(agg, now):
    """Create an event owned by ORG, starting a day after ``now`` unless told otherwise."""

    def _make(start=None, **kwargs):
        start = start or now + timedelta(days=1)
        return create_event(agg, details_at(start, **kwargs), "ORG", now)

    return _make
