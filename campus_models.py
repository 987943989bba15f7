"""
Data model for the campus event coordination backend.

Everything the service knows lives in one ``Aggregate``: users, events (with
their bookings, waitlist and volunteers), media, per-user notifications, chat
messages, feedback and the admin credentials. The aggregate is converted to and
from a plain JSON-like document for the store.

Conventions:
- Dates are ``YYYY-MM-DD`` and times ``HH:MM`` in the document.
- Timestamps are ISO-8601 strings.
- Seats are a dense ``1..taken`` assignment; volunteer IDs are ``V01``, ``V02``...
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, asdict
from datetime import date, time, datetime, timedelta
from typing import Dict, List, Optional, Iterable, Set

from campus_errors import NotFound


STUDENT = "STUDENT"
ORGANIZER = "ORGANIZER"

PENDING = "PENDING"
APPROVED = "APPROVED"
REJECTED = "REJECTED"

REQUEST_PENDING = "pending"
REQUEST_ACCEPTED = "accepted"
REQUEST_REJECTED = "rejected"

PHOTO = "photo"
VIDEO = "video"

# One-shot notification kinds recorded in Event.notified
LIVE = "live"
WAITLIST_EXPIRED = "waitlist_expired"
FEEDBACK = "feedback"
REMINDER_MINUTES = (60, 45, 25, 10)


def reminder_kind(minutes: int) -> str:
    return f"reminder_{minutes}"


# -----------------------------
# Entities
# -----------------------------


@dataclass
class User:
    """A registered account.

    Users asking to become organizers start as STUDENT with
    ``organizer_status`` PENDING until an admin decides.
    """

    reg_number: str
    name: str
    surname: str = ""
    email: str = ""
    phone: str = ""
    password: str = ""
    role: str = STUDENT
    age: Optional[int] = None
    gender: str = ""
    id: int = 0
    organizer_status: Optional[str] = None
    last_seen: Optional[str] = None
    department: Optional[str] = None
    blood_group: Optional[str] = None
    address: Optional[str] = None
    branch: Optional[str] = None
    pincode: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.surname}".strip()

    def profile(self) -> dict:
        """Document form without the password hash."""
        doc = asdict(self)
        doc.pop("password", None)
        return doc


@dataclass
class Booking:
    reg_number: str
    name: str
    seat: int
    event_id: int
    role: str = "S"  # S | O
    booked_at: str = ""
    via: str = "app"  # app | qr


@dataclass
class WaitlistEntry:
    id: int
    reg_number: str
    time: str


@dataclass
class Volunteer:
    reg_number: str
    name: str
    volunteer_id: str
    role: str


@dataclass
class VolunteerRequest:
    id: int
    reg_number: str
    role: str
    status: str = REQUEST_PENDING  # pending | accepted | rejected
    requested_at: str = ""


@dataclass
class Event:
    """A scheduled event occupying ``[start, start + duration)`` at a venue.

    Invariants kept by the engine:
    - ``taken == len(bookings)`` and seats are exactly ``1..taken``
    - at most one volunteer (accepted or pending) per role string
    - a user is at most one of: booked, waitlisted, volunteer
    """

    id: int
    title: str
    date: date
    start_time: time
    duration: int
    venue: str
    capacity: int
    category: str = ""
    creator_reg_number: str = ""
    taken: int = 0
    bookings: List[Booking] = field(default_factory=list)
    waitlist: List[WaitlistEntry] = field(default_factory=list)
    volunteers: List[Volunteer] = field(default_factory=list)
    volunteer_requests: List[VolunteerRequest] = field(default_factory=list)
    resources: List[str] = field(default_factory=list)
    notified: Set[str] = field(default_factory=set)

    @property
    def start(self) -> datetime:
        return datetime.combine(self.date, self.start_time)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration)

    def has_started(self, now: datetime) -> bool:
        return now >= self.start

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Return True if ``[start, end)`` overlaps this event's window."""
        return start < self.end and end > self.start

    def booking_for(self, reg_number: str) -> Optional[Booking]:
        return next((b for b in self.bookings if b.reg_number == reg_number), None)

    def waitlist_index(self, reg_number: str) -> int:
        return next((i for i, w in enumerate(self.waitlist) if w.reg_number == reg_number), -1)

    def volunteer_for(self, reg_number: str) -> Optional[Volunteer]:
        return next((v for v in self.volunteers if v.reg_number == reg_number), None)

    def pending_request_for(self, reg_number: str) -> Optional[VolunteerRequest]:
        return next(
            (r for r in self.volunteer_requests if r.reg_number == reg_number and r.status == REQUEST_PENDING),
            None,
        )

    def role_holder(self, role: str) -> Optional[str]:
        """Reg number holding ``role`` as an accepted volunteer or pending invite."""
        for v in self.volunteers:
            if v.role == role:
                return v.reg_number
        for r in self.volunteer_requests:
            if r.role == role and r.status == REQUEST_PENDING:
                return r.reg_number
        return None

    def to_doc(self) -> dict:
        doc = asdict(self)
        doc["date"] = self.date.isoformat()
        doc["start_time"] = self.start_time.strftime("%H:%M")
        doc["notified"] = sorted(self.notified)
        return doc

    @classmethod
    def from_doc(cls, doc: dict) -> "Event":
        return cls(
            id=int(doc["id"]),
            title=doc.get("title", ""),
            date=parse_date(doc["date"]),
            start_time=parse_time(doc["start_time"]),
            duration=int(doc.get("duration", 0)),
            venue=doc.get("venue", ""),
            capacity=int(doc.get("capacity", 0)),
            category=doc.get("category", ""),
            creator_reg_number=doc.get("creator_reg_number", ""),
            taken=int(doc.get("taken", 0)),
            bookings=[_build(Booking, b) for b in doc.get("bookings", [])],
            waitlist=[_build(WaitlistEntry, w) for w in doc.get("waitlist", [])],
            volunteers=[_build(Volunteer, v) for v in doc.get("volunteers", [])],
            volunteer_requests=[_build(VolunteerRequest, r) for r in doc.get("volunteer_requests", [])],
            resources=list(doc.get("resources", [])),
            notified=set(doc.get("notified", [])),
        )


@dataclass
class Media:
    id: int
    event_id: int
    name: str
    url: str
    external_id: str
    type: str  # photo | video
    size: int = 0
    uploaded_by: str = ""
    uploaded_at: str = ""


@dataclass
class Notification:
    msg: str
    time: str
    read: bool = False
    type: Optional[str] = None
    metadata: Dict[str, object] = field(default_factory=dict)


@dataclass
class Message:
    id: int
    event_id: int
    from_reg: str
    to_reg: str
    time: str
    text: str = ""
    read: bool = False
    type: str = "text"  # text | media
    media_type: Optional[str] = None
    url: Optional[str] = None
    external_id: Optional[str] = None


@dataclass
class Feedback:
    id: int
    event_id: int
    reg_number: str
    seat_capacity_rating: int
    review: str
    submitted_at: str


@dataclass
class Aggregate:
    """The single root document holding all application state."""

    users: List[User] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)
    media: List[Media] = field(default_factory=list)
    notifications: Dict[str, List[Notification]] = field(default_factory=dict)
    messages: List[Message] = field(default_factory=list)
    feedbacks: List[Feedback] = field(default_factory=list)
    admin: Dict[str, str] = field(default_factory=dict)
    version: int = 0

    # -------- Lookups --------

    def find_user(self, reg_number: str) -> Optional[User]:
        return next((u for u in self.users if u.reg_number == reg_number), None)

    def get_user(self, reg_number: str) -> User:
        user = self.find_user(reg_number)
        if user is None:
            raise NotFound("User not found")
        return user

    def find_event(self, event_id: int) -> Optional[Event]:
        return next((e for e in self.events if e.id == event_id), None)

    def get_event(self, event_id: int) -> Event:
        event = self.find_event(event_id)
        if event is None:
            raise NotFound("Event not found")
        return event

    def media_for(self, event_id: int) -> List[Media]:
        return [m for m in self.media if m.event_id == event_id]

    # -------- Document conversion --------

    def to_doc(self) -> dict:
        return {
            "users": [asdict(u) for u in self.users],
            "events": [e.to_doc() for e in self.events],
            "media": [asdict(m) for m in self.media],
            "notifications": {reg: [asdict(n) for n in items] for reg, items in self.notifications.items()},
            "messages": [asdict(m) for m in self.messages],
            "feedbacks": [asdict(f) for f in self.feedbacks],
            "admin": dict(self.admin),
            "version": self.version,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> "Aggregate":
        return cls(
            users=[_build(User, u) for u in doc.get("users", [])],
            events=[Event.from_doc(e) for e in doc.get("events", [])],
            media=[_build(Media, m) for m in doc.get("media", [])],
            notifications={
                reg: [_build(Notification, n) for n in items]
                for reg, items in doc.get("notifications", {}).items()
            },
            messages=[_build(Message, m) for m in doc.get("messages", [])],
            feedbacks=[_build(Feedback, f) for f in doc.get("feedbacks", [])],
            admin=dict(doc.get("admin") or {}),
            version=int(doc.get("version", 0)),
        )


# -----------------------------
# Utility helpers
# -----------------------------


def _build(model_cls, doc: dict):
    """Instantiate a flat dataclass from a document, ignoring unknown keys."""
    names = {f.name for f in fields(model_cls)}
    return model_cls(**{k: v for k, v in doc.items() if k in names})


def new_id(existing: Iterable[int], now: datetime) -> int:
    """Creation-time token: epoch milliseconds, bumped past any existing id."""
    token = int(now.timestamp() * 1000)
    return max(token, max(existing, default=0) + 1)


def timestamp(now: datetime) -> str:
    return now.isoformat(timespec="seconds")


def parse_date(s: str) -> date:
    return datetime.strptime(s, "%Y-%m-%d").date()


def parse_time(s: str) -> time:
    return datetime.strptime(s, "%H:%M").time()
