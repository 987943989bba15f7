"""Accounts: signup, login, profiles, organizer approval and admin operations.

Passwords are stored as werkzeug hashes. A user asking for the ORGANIZER role
is created as a STUDENT with a PENDING organizer request until an admin
approves or rejects it.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from campus_engine import purge_user
from campus_errors import Conflict, NotFound, Unauthorized, ValidationFailed
from campus_events import purge_event_media
from campus_media import ObjectStorage
from campus_models import (
    APPROVED,
    ORGANIZER,
    PENDING,
    REJECTED,
    STUDENT,
    Aggregate,
    User,
    new_id,
    timestamp,
)
from campus_notify import notify

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\d{10}$")
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d).{6,}$")
ACTIVE_WINDOW = timedelta(minutes=5)
PROFILE_FIELDS = ("department", "blood_group", "address", "branch", "pincode")


def _check_password_strength(password: str) -> None:
    if not PASSWORD_RE.match(password or ""):
        raise ValidationFailed(
            "Password must contain uppercase, lowercase, number and be at least 6 characters long"
        )


def signup(
    agg: Aggregate,
    now: datetime,
    *,
    reg_number: str,
    name: str,
    surname: str,
    age: Optional[int],
    gender: str,
    email: str,
    phone: str,
    password: str,
    role: str,
) -> User:
    """Create an account. Reg number, email and phone must be unique."""
    reg_number = (reg_number or "").strip()
    email = (email or "").strip()
    phone = (phone or "").strip()
    if not all([name, surname, age, gender, email, phone, reg_number, password, role]):
        raise ValidationFailed("All fields are required")
    if role not in (STUDENT, ORGANIZER):
        raise ValidationFailed("Invalid role")
    if agg.find_user(reg_number):
        raise Conflict("Registration number already exists")
    if any((u.email or "").lower() == email.lower() for u in agg.users):
        raise Conflict("Email already in use")
    if any(u.phone == phone for u in agg.users):
        raise Conflict("Phone already in use")
    if not EMAIL_RE.match(email):
        raise ValidationFailed("Invalid email format")
    if not PHONE_RE.match(phone):
        raise ValidationFailed("Phone must be 10 digits")
    _check_password_strength(password)

    user = User(
        id=new_id((u.id for u in agg.users), now),
        reg_number=reg_number,
        name=name,
        surname=surname,
        age=age,
        gender=gender,
        email=email,
        phone=phone,
        password=generate_password_hash(password),
        role=STUDENT,
    )
    # Organizer accounts start as a request; the user acts as a student until approved.
    if role == ORGANIZER:
        user.organizer_status = PENDING
    agg.users.append(user)
    logger.info("Registered user %s (organizer request: %s)", reg_number, role == ORGANIZER)
    return user


def login(agg: Aggregate, reg_number: str, password: str, now: datetime) -> User:
    user = agg.find_user((reg_number or "").strip())
    if user is None or not check_password_hash(user.password, password or ""):
        raise Unauthorized("Invalid credentials")
    user.last_seen = timestamp(now)
    return user


def touch_last_seen(agg: Aggregate, reg_number: str, now: datetime) -> bool:
    user = agg.find_user(reg_number)
    if user is None:
        return False
    user.last_seen = timestamp(now)
    return True


def reset_password(agg: Aggregate, reg_number: str, role: str, new_password: str, now: datetime) -> None:
    user = agg.find_user(reg_number)
    if user is None or user.role != role:
        raise NotFound("User not found or role does not match.")
    _check_password_strength(new_password)
    user.password = generate_password_hash(new_password)
    notify(agg, reg_number, "Your password has been successfully reset.", now)


def update_profile(agg: Aggregate, reg_number: str, **changes: Optional[str]) -> User:
    """Set the optional profile fields; empty values leave a field untouched."""
    if not reg_number:
        raise ValidationFailed("Registration number is required.")
    user = agg.get_user(reg_number)
    for name in PROFILE_FIELDS:
        value = changes.get(name)
        if value:
            setattr(user, name, value)
    return user


# -------- Admin --------


def admin_login(agg: Aggregate, username: str, password: str, default_admin: Dict[str, str]) -> None:
    """Accept the stored admin credentials or the configured defaults.

    Usernames compare case-insensitively.
    """
    user_in = (username or "").strip().lower()
    stored = agg.admin
    if stored.get("username", "").lower() == user_in and check_password_hash(stored.get("password", ""), password or ""):
        return
    if default_admin.get("username", "").lower() == user_in and default_admin.get("password") == password:
        return
    raise Unauthorized("Invalid admin credentials")


def admin_username(agg: Aggregate, default_admin: Dict[str, str]) -> str:
    return agg.admin.get("username") or default_admin.get("username", "")


def change_admin_credentials(agg: Aggregate, username: str, password: str) -> None:
    if not username or not password:
        raise ValidationFailed("Missing fields")
    agg.admin = {"username": username, "password": generate_password_hash(password)}


def list_users(agg: Aggregate, role: Optional[str] = None) -> List[dict]:
    return [u.profile() for u in agg.users if role is None or u.role == role]


def pending_organizers(agg: Aggregate) -> List[dict]:
    return [u.profile() for u in agg.users if u.organizer_status == PENDING]


def verify_organizer(agg: Aggregate, reg_number: str, decision: str, reason: Optional[str], now: datetime) -> str:
    """Approve or reject a pending organizer request. Returns the new status."""
    user = agg.get_user(reg_number)
    if user.organizer_status != PENDING:
        raise ValidationFailed("No pending request")
    if decision == "approve":
        user.organizer_status = APPROVED
        user.role = ORGANIZER
        notify(agg, reg_number, "Your organizer request has been approved. Organizer dashboard unlocked.", now)
        return "approved"
    if decision == "reject":
        user.organizer_status = REJECTED
        suffix = f" Reason: {reason}" if reason else ""
        notify(agg, reg_number, f"Your organizer request was rejected.{suffix}", now)
        return "rejected"
    raise ValidationFailed("Invalid decision")


def remove_organizer(agg: Aggregate, reg_number: str, now: datetime) -> None:
    user = agg.get_user(reg_number)
    user.role = STUDENT
    notify(agg, reg_number, "Your organizer role has been removed by admin. You now have student access.", now)


def admin_stats(agg: Aggregate, now: datetime) -> Dict[str, int]:
    cutoff = now - ACTIVE_WINDOW
    active = 0
    for u in agg.users:
        if u.last_seen and datetime.fromisoformat(u.last_seen) > cutoff:
            active += 1
    return {
        "total_users": len(agg.users),
        "total_events": len(agg.events),
        "total_organizers": sum(1 for u in agg.users if u.role == ORGANIZER),
        "active_users": active,
    }


# -------- Account removal --------


def _erase_user(agg: Aggregate, user: User, storage: ObjectStorage) -> None:
    reg = user.reg_number
    purge_user(agg, reg)
    owned = [e.id for e in agg.events if e.creator_reg_number == reg]
    for event_id in owned:
        purge_event_media(agg, event_id, storage)
    agg.events = [e for e in agg.events if e.id not in owned]
    agg.messages = [m for m in agg.messages if m.from_reg != reg and m.to_reg != reg]
    agg.notifications.pop(reg, None)
    agg.users.remove(user)
    logger.info("Erased user %s and %d owned events", reg, len(owned))


def delete_account(agg: Aggregate, reg_number: str, password: str, storage: ObjectStorage) -> None:
    """Self-service account deletion, confirmed with the password."""
    if not reg_number or not password:
        raise ValidationFailed("Missing fields.")
    user = agg.find_user(reg_number)
    if user is None or not check_password_hash(user.password, password):
        raise Unauthorized("Invalid credentials.")
    _erase_user(agg, user, storage)


def admin_delete_user(agg: Aggregate, reg_number: str, storage: ObjectStorage) -> None:
    _erase_user(agg, agg.get_user(reg_number), storage)
