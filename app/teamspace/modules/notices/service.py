from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.teamspace.logbook import record_event
from app.teamspace.modules.notices.models import Notice
from app.teamspace.policies import can_manage_notices, ensure

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.teamspace.models import User

MANAGE_DENIED = "Only core members can manage notices."


def validate_notice_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("title") or "").strip():
        errors.append("Title is required.")
    if not (payload.get("content") or "").strip():
        errors.append("Content is required.")
    return errors


def list_notices(s: "Session") -> list[Notice]:
    return s.query(Notice).order_by(Notice.created_at.desc(), Notice.id.desc()).all()


def create_notice(s: "Session", payload: dict, user: "User") -> Notice:
    ensure(can_manage_notices(user), MANAGE_DENIED)
    now = datetime.utcnow()
    notice = Notice(
        title=(payload.get("title") or "").strip(),
        content=(payload.get("content") or "").strip(),
        posted_by=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(notice)
    s.flush()
    record_event(s, event_type="notice_created", details=f"Notice '{notice.title}' posted", actor=user)
    return notice


def update_notice(s: "Session", notice: Notice, payload: dict, user: "User") -> Notice:
    ensure(can_manage_notices(user), MANAGE_DENIED)
    notice.title = (payload.get("title") or "").strip()
    notice.content = (payload.get("content") or "").strip()
    notice.updated_at = datetime.utcnow()
    return notice


def delete_notice(s: "Session", notice: Notice, user: "User") -> None:
    ensure(can_manage_notices(user), MANAGE_DENIED)
    s.delete(notice)
