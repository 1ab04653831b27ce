"""
Account maintenance: profile edits, password changes, account deletion and
agency administration.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from app.teamspace.logbook import record_event
from app.teamspace.models import Agency, AuthSession, User
from app.teamspace.modules.chat.service import resolve_agency_channel
from app.teamspace.policies import can_manage_agencies, ensure

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_profile(s: "Session", user: User, name: str, email: str | None = None) -> list[str]:
    errors = []
    if not name.strip():
        errors.append("Name is required.")
    if email is not None:
        email = email.strip().lower()
        if not _EMAIL_RE.match(email):
            errors.append("A valid email is required.")
        elif s.query(User).filter(User.email == email, User.id != user.id).first():
            errors.append("That email is already in use.")
    return errors


def update_profile(user: User, name: str, email: str | None = None) -> User:
    user.name = name.strip()
    if email is not None:
        user.email = email.strip().lower()
    return user


def validate_password_change(user: User, current: str, new: str, confirm: str) -> list[str]:
    errors = []
    if not check_password_hash(user.password_hash, current or ""):
        errors.append("Current password is incorrect.")
    if len(new or "") < MIN_PASSWORD_LENGTH:
        errors.append(f"New password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if new != confirm:
        errors.append("New passwords don't match.")
    return errors


def change_password(user: User, new: str) -> None:
    user.password_hash = generate_password_hash(new)


@dataclass
class DeletionResult:
    sessions_removed: bool = False
    profile_removed: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.sessions_removed and self.profile_removed


def delete_account(s: "Session", user: User) -> DeletionResult:
    """
    Two sequential steps, each committed on its own: revoke the user's sign-in
    sessions, then remove the profile row. A failure in the second step leaves
    the first in place.
    """
    result = DeletionResult()
    user_id, name = user.id, user.name
    try:
        s.query(AuthSession).filter(AuthSession.user_id == user_id).delete(synchronize_session=False)
        record_event(s, event_type="user_left", details=f"{name} deleted their account", actor=user)
        s.commit()
        result.sessions_removed = True
    except SQLAlchemyError as e:
        s.rollback()
        logger.error("Account deletion failed revoking sessions (user_id=%s): %s", user_id, e)
        result.error = str(e)
        return result
    try:
        s.query(User).filter(User.id == user_id).delete(synchronize_session=False)
        s.commit()
        result.profile_removed = True
    except SQLAlchemyError as e:
        s.rollback()
        logger.error("Account deletion failed removing profile (user_id=%s): %s", user_id, e)
        result.error = str(e)
    return result


def list_agencies(s: "Session") -> list[Agency]:
    return s.query(Agency).order_by(Agency.name.asc()).all()


def validate_agency(s: "Session", name: str) -> list[str]:
    name = name.strip()
    if not name:
        return ["Agency name is required."]
    if s.query(Agency).filter(Agency.name == name).first():
        return ["An agency with that name already exists."]
    return []


def create_agency(s: "Session", user: User, name: str, description: str = "") -> Agency:
    ensure(can_manage_agencies(user), "Only core members can create agencies.")
    agency = Agency(name=name.strip(), description=description.strip() or None)
    s.add(agency)
    s.flush()
    resolve_agency_channel(s, agency)
    record_event(s, event_type="agency_created", details=f"Agency '{agency.name}' created", actor=user)
    return agency
