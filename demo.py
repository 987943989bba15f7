"""Demo script walking through bookings, the waitlist, volunteers and the scheduler.

Run: python demo.py

Supports two backends:
- In-memory (default)
- MongoDB (set DB_BACKEND=mongodb and MONGODB_URI in .env)

The demo drives its own clock so reminders and feedback requests fire
without waiting for real time to pass.
"""

from datetime import datetime, timedelta

from campus_config import Settings, build_system, configure_logging
from campus_errors import DomainError
from campus_events import EventDetails
from campus_models import ORGANIZER, STUDENT
from campus_system import CampusSystem


class DemoClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


PEOPLE = [
    ("ORG01", "Olivia", "Reed", "F", ORGANIZER),
    ("S01", "Alice", "Johnson", "F", STUDENT),
    ("S02", "Bob", "Smith", "M", STUDENT),
    ("S03", "Carol", "Lee", "F", STUDENT),
    ("S04", "Dave", "Kim", "M", STUDENT),
]


def seed_users(sys: CampusSystem) -> None:
    for i, (reg, name, surname, gender, role) in enumerate(PEOPLE):
        try:
            sys.signup(
                reg_number=reg,
                name=name,
                surname=surname,
                age=20 + i,
                gender=gender,
                email=f"{name.lower()}@example.com",
                phone=f"98765432{i:02d}",
                password="Passw0rd",
                role=role,
            )
        except DomainError:
            pass  # already exists
    for pending in sys.pending_organizers():
        sys.verify_organizer(pending["reg_number"], "approve")


def show(sys: CampusSystem, event_id: int) -> None:
    s = sys.event_summary(event_id)
    print(f"  {s['title']}: {s['taken']}/{s['capacity']} booked, {s['waitlisted']} waiting, {s['volunteers']} volunteers")


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    clock = DemoClock(datetime.now().replace(second=0, microsecond=0))
    sys = build_system(settings)
    sys.clock = clock

    seed_users(sys)
    start = clock.now + timedelta(days=1)
    event = sys.create_event(
        EventDetails(
            title="AI Workshop",
            date=start.date(),
            start_time=start.time(),
            duration=90,
            venue="Seminar Hall",
            capacity=2,
            category="Workshop",
            resources=["Projector"],
        ),
        "ORG01",
    )
    print(f"Created event {event.id} '{event.title}' at {event.start:%Y-%m-%d %H:%M}")

    print("\n=== Booking ===")
    sys.book(event.id, "S01")
    sys.book(event.id, "S02", via="qr")
    try:
        sys.book(event.id, "S03")
    except DomainError as e:
        print(f"  S03 rejected: {e}")
    sys.join_waitlist(event.id, "S03")
    sys.join_waitlist(event.id, "S04")
    show(sys, event.id)

    print("\n=== Cancellation promotes the waitlist head ===")
    promoted = sys.cancel_booking(event.id, "S01")
    print(f"  Promoted: {promoted.reg_number} (seat {promoted.seat})")
    show(sys, event.id)

    print("\n=== Volunteering frees a seat ===")
    sys.add_volunteer(event.id, "ORG01", "S02", "Photographer")
    volunteer = sys.respond_volunteer(event.id, "S02", "accept")
    print(f"  {volunteer.reg_number} is volunteer {volunteer.volunteer_id} ({volunteer.role})")
    for ticket in sys.tickets("S04"):
        print(f"  S04 ticket: seat {ticket['seat']} waiting={ticket['waiting']}")
    show(sys, event.id)

    print("\n=== Scheduler ===")
    scheduler = sys.make_scheduler()
    clock.now = event.start - timedelta(minutes=50)
    scheduler.tick()
    clock.now = event.start
    scheduler.tick()
    clock.now = event.end + timedelta(minutes=1)
    scheduler.tick()
    for note in sys.notifications("S03")[:4]:
        print(f"  S03 <- {note.msg}")

    print("\n=== Feedback ===")
    sys.submit_feedback(event.id, "S03", 3, "Great session, seats were fine.")
    for fb in sys.feedback_for_event(event.id, "ORG01"):
        print(f"  {fb['user_name']}: {fb['review']} (rating {fb['seat_capacity_rating']})")

    print("\n=== Admin stats ===")
    print(f"  {sys.admin_stats()}")


if __name__ == "__main__":
    main()
