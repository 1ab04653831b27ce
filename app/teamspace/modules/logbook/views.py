from __future__ import annotations

from flask import Blueprint, current_app, render_template, request
from sqlalchemy.exc import SQLAlchemyError

from app.teamspace.db import db_session
from app.teamspace.errors import describe_db_error
from app.teamspace.logbook import EVENT_TYPES
from app.teamspace.models import LogBookEntry
from app.teamspace.rbac import require_permission

bp = Blueprint("logbook", __name__)

_PAGE_SIZE = 200


def list_log_entries(s, search: str = "", event_type: str = "", limit: int = _PAGE_SIZE) -> list[LogBookEntry]:
    q = s.query(LogBookEntry)
    if search:
        like = f"%{search}%"
        q = q.filter(LogBookEntry.details.ilike(like) | LogBookEntry.actor_name.ilike(like))
    if event_type:
        q = q.filter(LogBookEntry.event_type == event_type)
    return q.order_by(LogBookEntry.created_at.desc(), LogBookEntry.id.desc()).limit(limit).all()


@bp.get("/")
@require_permission("VIEW_LOG_BOOK")
def logbook_list():
    search = (request.args.get("q") or "").strip()
    event_type = (request.args.get("event_type") or "").strip()
    if event_type not in EVENT_TYPES:
        event_type = ""
    error = None
    try:
        entries = list_log_entries(db_session(), search, event_type)
    except SQLAlchemyError as e:
        current_app.logger.error("Error fetching log book: %s", e)
        error = describe_db_error(e, "Log Book", "load log entries")
        entries = []
    return render_template(
        "logbook/list.html",
        entries=entries,
        search=search,
        event_type=event_type,
        event_types=EVENT_TYPES,
        error=error,
    )
