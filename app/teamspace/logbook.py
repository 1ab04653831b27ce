from __future__ import annotations

from flask import g, has_request_context
from sqlalchemy.orm import Session

from app.teamspace.models import LogBookEntry, User

EVENT_TYPES = (
    "user_joined",
    "user_left",
    "user_login",
    "user_login_failed",
    "user_logout",
    "message_posted",
    "notice_created",
    "journal_entry_created",
    "ledger_entry_created",
    "todo_created",
    "todo_status_changed",
    "agency_created",
    "error",
    "warning",
)


def record_event(
    s: Session,
    *,
    event_type: str,
    details: str,
    actor: User | None = None,
    request_id: str | None = None,
) -> LogBookEntry:
    """
    Append a Log Book entry. The caller commits.
    """
    rid = request_id or (getattr(g, "request_id", None) if has_request_context() else None)
    ev = LogBookEntry(
        request_id=rid,
        event_type=event_type,
        details=details,
        actor_user_id=actor.id if actor else None,
        actor_name=actor.name if actor else None,
    )
    s.add(ev)
    return ev
