"""FastAPI server exposing the CampusSystem API.

Run locally:
  uvicorn server:app --reload

Configuration is read from the environment (see ``campus_config``).
"""

from __future__ import annotations

import logging
import queue
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import List, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, Field, field_validator

from campus_config import Settings, build_system, configure_logging
from campus_errors import DomainError, ErrorCode
from campus_events import EventDetails
from campus_models import ORGANIZER, STUDENT, parse_date, parse_time

settings = Settings.from_env()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

sys = build_system(settings)

STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.VALIDATION_FAILED: 400,
    ErrorCode.CONFLICT: 409,
    ErrorCode.ROLE_CONFLICT: 409,
    ErrorCode.CAPACITY_EXCEEDED: 409,
    ErrorCode.PERSISTENCE_ERROR: 503,
}
STREAM_KEEPALIVE_SECONDS = 15


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = sys.make_scheduler(settings.scheduler_interval)
        scheduler.start()
    yield
    if scheduler is not None:
        scheduler.stop()


app = FastAPI(title="Campus Event Coordination", lifespan=lifespan)

# Enable CORS for local dev if needed
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status = STATUS_BY_CODE.get(exc.code, 400)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"ok": False, "error": exc.message, "code": exc.code.value})


# ---------- Pydantic Schemas ----------


class SignupIn(BaseModel):
    reg_number: str
    name: str
    surname: str
    age: Optional[int] = None
    gender: str
    email: str
    phone: str
    password: str
    role: str = STUDENT

    @field_validator("role")
    @classmethod
    def _v_role(cls, v: str) -> str:
        if v not in (STUDENT, ORGANIZER):
            raise ValueError("role must be STUDENT or ORGANIZER")
        return v


class LoginIn(BaseModel):
    reg_number: str
    password: str


class ResetPasswordIn(BaseModel):
    reg_number: str
    role: str
    new_password: str


class ProfileIn(BaseModel):
    department: Optional[str] = None
    blood_group: Optional[str] = None
    address: Optional[str] = None
    branch: Optional[str] = None
    pincode: Optional[str] = None


class DeleteAccountIn(BaseModel):
    reg_number: str
    password: str


class EventIn(BaseModel):
    reg_number: str
    title: str
    date: str  # YYYY-MM-DD
    start_time: str  # HH:MM
    duration: int = Field(gt=0)
    venue: str
    capacity: int = Field(gt=0)
    category: str
    resources: Optional[List[str]] = None  # omitted on edit keeps the current resources

    @field_validator("date")
    @classmethod
    def _v_date(cls, v: str) -> str:
        parse_date(v)
        return v

    @field_validator("start_time")
    @classmethod
    def _v_time(cls, v: str) -> str:
        parse_time(v)
        return v

    def details(self) -> EventDetails:
        return EventDetails(
            title=self.title,
            date=parse_date(self.date),
            start_time=parse_time(self.start_time),
            duration=self.duration,
            venue=self.venue,
            capacity=self.capacity,
            category=self.category,
            resources=self.resources,
        )


class BookIn(BaseModel):
    reg_number: str
    via: str = "app"


class UserRef(BaseModel):
    reg_number: str


class OrganizerCancelIn(BaseModel):
    organizer_reg: str
    reg_number: str


class VolunteerInviteIn(BaseModel):
    organizer_reg: str
    reg_number: str
    role: str


class VolunteerResponseIn(BaseModel):
    reg_number: str
    decision: str


class MessageIn(BaseModel):
    from_reg: str
    to_reg: str
    text: str


class FeedbackIn(BaseModel):
    reg_number: str
    seat_capacity_rating: Optional[int] = None
    review: str = ""


class AdminLoginIn(BaseModel):
    username: str
    password: str


class VerifyOrganizerIn(BaseModel):
    decision: str
    reason: Optional[str] = None


# ---------- Accounts ----------


@app.post("/api/signup", status_code=201)
def signup(payload: SignupIn):
    user = sys.signup(**payload.model_dump())
    return {"ok": True, "user": user.profile()}


@app.post("/api/login")
def login(payload: LoginIn):
    user = sys.login(payload.reg_number, payload.password)
    return {"ok": True, "user": user.profile()}


@app.post("/api/reset-password")
def reset_password(payload: ResetPasswordIn):
    sys.reset_password(payload.reg_number, payload.role, payload.new_password)
    return {"ok": True}


@app.get("/api/profile/{reg_number}")
def get_profile(reg_number: str):
    return {"ok": True, "user": sys.get_profile(reg_number)}


@app.put("/api/profile/{reg_number}")
def update_profile(reg_number: str, payload: ProfileIn):
    user = sys.update_profile(reg_number, **payload.model_dump())
    return {"ok": True, "user": user.profile()}


@app.post("/api/account/delete")
def delete_account(payload: DeleteAccountIn):
    sys.delete_account(payload.reg_number, payload.password)
    return {"ok": True}


@app.get("/api/notifications/{reg_number}")
def notifications(reg_number: str):
    return [asdict(n) for n in sys.notifications(reg_number)]


@app.post("/api/notifications/{reg_number}/read")
def mark_notifications_read(reg_number: str):
    return {"ok": True, "updated": sys.mark_notifications_read(reg_number)}


@app.get("/api/tickets/{reg_number}")
def tickets(reg_number: str):
    return sys.tickets(reg_number)


# ---------- Events ----------


@app.get("/api/events")
def list_events():
    return sys.list_events()


@app.post("/api/events", status_code=201)
def create_event(payload: EventIn):
    event = sys.create_event(payload.details(), payload.reg_number)
    return {"ok": True, "event": event.to_doc()}


@app.get("/api/events/{event_id}")
def get_event(event_id: int):
    return sys.get_event(event_id).to_doc()


@app.put("/api/events/{event_id}")
def edit_event(event_id: int, payload: EventIn):
    event = sys.edit_event(event_id, payload.details(), payload.reg_number)
    return {"ok": True, "event": event.to_doc()}


@app.delete("/api/events/{event_id}")
def delete_event(event_id: int, reg_number: str):
    sys.delete_event(event_id, reg_number)
    return {"ok": True}


@app.get("/api/events/{event_id}/summary")
def event_summary(event_id: int):
    return sys.event_summary(event_id)


# ---------- Bookings and waitlist ----------


@app.post("/api/events/{event_id}/book", status_code=201)
def book(event_id: int, payload: BookIn):
    booking = sys.book(event_id, payload.reg_number, payload.via)
    return {"ok": True, "booking": asdict(booking)}


@app.post("/api/events/{event_id}/cancel")
def cancel_booking(event_id: int, payload: UserRef):
    promoted = sys.cancel_booking(event_id, payload.reg_number)
    return {"ok": True, "promoted": promoted.reg_number if promoted else None}


@app.post("/api/events/{event_id}/cancel-attendee")
def organizer_cancel(event_id: int, payload: OrganizerCancelIn):
    promoted = sys.organizer_cancel(event_id, payload.organizer_reg, payload.reg_number)
    return {"ok": True, "promoted": promoted.reg_number if promoted else None}


@app.post("/api/events/{event_id}/waitlist", status_code=201)
def join_waitlist(event_id: int, payload: UserRef):
    entry = sys.join_waitlist(event_id, payload.reg_number)
    return {"ok": True, "entry": asdict(entry)}


@app.delete("/api/events/{event_id}/waitlist/{reg_number}")
def leave_waitlist(event_id: int, reg_number: str):
    sys.leave_waitlist(event_id, reg_number)
    return {"ok": True}


@app.get("/api/events/{event_id}/waitlist")
def waitlist(event_id: int, organizer_reg: str):
    return sys.waitlist(event_id, organizer_reg)


# ---------- Volunteers ----------


@app.get("/api/events/{event_id}/volunteers")
def volunteers(event_id: int, organizer_reg: str):
    return sys.volunteers(event_id, organizer_reg)


@app.post("/api/events/{event_id}/volunteers", status_code=201)
def add_volunteer(event_id: int, payload: VolunteerInviteIn):
    request = sys.add_volunteer(event_id, payload.organizer_reg, payload.reg_number, payload.role)
    return {"ok": True, "request": asdict(request)}


@app.post("/api/events/{event_id}/volunteers/respond")
def respond_volunteer(event_id: int, payload: VolunteerResponseIn):
    volunteer = sys.respond_volunteer(event_id, payload.reg_number, payload.decision)
    return {"ok": True, "volunteer": asdict(volunteer) if volunteer else None}


@app.post("/api/events/{event_id}/volunteers/leave")
def leave_volunteer(event_id: int, payload: UserRef):
    sys.leave_volunteer(event_id, payload.reg_number)
    return {"ok": True}


@app.delete("/api/events/{event_id}/volunteers/{reg_number}")
def remove_volunteer(event_id: int, reg_number: str, organizer_reg: str):
    sys.remove_volunteer(event_id, organizer_reg, reg_number)
    return {"ok": True}


# ---------- Media ----------


@app.post("/api/events/{event_id}/media", status_code=201)
async def upload_media(event_id: int, reg_number: str = Form(...), file: UploadFile = File(...)):
    data = await file.read()
    media = sys.upload_media(
        event_id,
        reg_number,
        file.filename or "upload",
        file.content_type or "application/octet-stream",
        data,
    )
    return {"ok": True, "media": asdict(media)}


@app.delete("/api/media/{media_id}")
def delete_media(media_id: int, reg_number: str):
    sys.delete_media(media_id, reg_number)
    return {"ok": True}


@app.get("/api/media/file/{external_id:path}")
def media_file(external_id: str):
    data, content_type = sys.open_file(external_id)
    return Response(content=data, media_type=content_type)


# ---------- Chat ----------


@app.post("/api/events/{event_id}/messages", status_code=201)
def send_message(event_id: int, payload: MessageIn):
    message = sys.send_message(event_id, payload.from_reg, payload.to_reg, payload.text)
    return {"ok": True, "message": asdict(message)}


@app.post("/api/events/{event_id}/messages/media", status_code=201)
async def send_media_message(
    event_id: int,
    from_reg: str = Form(...),
    to_reg: str = Form(...),
    file: UploadFile = File(...),
):
    data = await file.read()
    message = sys.send_media_message(
        event_id,
        from_reg,
        to_reg,
        file.filename or "upload",
        file.content_type or "application/octet-stream",
        data,
    )
    return {"ok": True, "message": asdict(message)}


@app.get("/api/events/{event_id}/messages")
def thread(event_id: int, reg_a: str, reg_b: str):
    return [asdict(m) for m in sys.thread(event_id, reg_a, reg_b)]


@app.get("/api/events/{event_id}/conversations")
def conversations(event_id: int, organizer_reg: str):
    return sys.conversations(event_id, organizer_reg)


@app.delete("/api/messages/{message_id}")
def delete_message(message_id: int, reg_number: str):
    sys.delete_message(message_id, reg_number)
    return {"ok": True}


# ---------- Feedback ----------


@app.post("/api/events/{event_id}/feedback", status_code=201)
def submit_feedback(event_id: int, payload: FeedbackIn):
    feedback = sys.submit_feedback(event_id, payload.reg_number, payload.seat_capacity_rating, payload.review)
    return {"ok": True, "feedback": asdict(feedback)}


@app.get("/api/events/{event_id}/feedback")
def feedback_for_event(event_id: int, organizer_reg: str):
    return sys.feedback_for_event(event_id, organizer_reg)


@app.get("/api/events/{event_id}/feedback/{reg_number}")
def feedback_of(event_id: int, reg_number: str, organizer_reg: str):
    return sys.feedback_of(event_id, reg_number, organizer_reg)


@app.get("/api/events/{event_id}/feedback-status/{reg_number}")
def feedback_status(event_id: int, reg_number: str):
    return sys.feedback_status(event_id, reg_number)


# ---------- Admin ----------


@app.post("/api/admin/login")
def admin_login(payload: AdminLoginIn):
    sys.admin_login(payload.username, payload.password)
    return {"ok": True}


@app.get("/api/admin/whoami")
def admin_whoami():
    return {"ok": True, "username": sys.admin_who()}


@app.put("/api/admin/credentials")
def change_admin_credentials(payload: AdminLoginIn):
    sys.change_admin_credentials(payload.username, payload.password)
    return {"ok": True}


@app.get("/api/admin/users")
def admin_users(role: Optional[str] = STUDENT):
    return sys.list_users(role)


@app.get("/api/admin/organizers")
def admin_organizers():
    return sys.list_organizers()


@app.get("/api/admin/organizers/pending")
def admin_pending_organizers():
    return sys.pending_organizers()


@app.post("/api/admin/organizers/{reg_number}/verify")
def admin_verify_organizer(reg_number: str, payload: VerifyOrganizerIn):
    status = sys.verify_organizer(reg_number, payload.decision, payload.reason)
    return {"ok": True, "status": status}


@app.delete("/api/admin/organizers/{reg_number}")
def admin_remove_organizer(reg_number: str):
    sys.remove_organizer(reg_number)
    return {"ok": True}


@app.delete("/api/admin/users/{reg_number}")
def admin_delete_user(reg_number: str):
    sys.admin_delete_user(reg_number)
    return {"ok": True}


@app.get("/api/admin/stats")
def admin_stats():
    return sys.admin_stats()


@app.delete("/api/admin/events/{event_id}")
def admin_delete_event(event_id: int, reason: Optional[str] = None):
    sys.admin_delete_event(event_id, reason)
    return {"ok": True}


@app.get("/api/admin/events/{event_id}/media")
def admin_event_media(event_id: int):
    return [asdict(m) for m in sys.admin_media(event_id)]


@app.delete("/api/admin/media/{media_id}")
def admin_delete_media(media_id: int):
    sys.admin_delete_media(media_id)
    return {"ok": True}


# ---------- Push stream ----------


@app.get("/api/stream")
def stream(reg_number: Optional[str] = None):
    """Server-sent events; ``reg_number`` also receives targeted updates."""
    announcer = sys.announcer
    messages = announcer.listen(reg_number)

    def events():
        try:
            while True:
                try:
                    yield messages.get(timeout=STREAM_KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ": keep-alive\n\n"
        finally:
            announcer.unlisten(messages)

    return StreamingResponse(events(), media_type="text/event-stream")
