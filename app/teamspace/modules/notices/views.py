from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.teamspace.db import db_session
from app.teamspace.errors import describe_db_error
from app.teamspace.models import User
from app.teamspace.modules.notices.models import Notice
from app.teamspace.modules.notices.service import (
    MANAGE_DENIED,
    create_notice,
    delete_notice,
    list_notices,
    update_notice,
    validate_notice_payload,
)
from app.teamspace.policies import PolicyError, can_manage_notices
from app.teamspace.rbac import require_permission

bp = Blueprint("notices", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _render(editing: Notice | None = None, status: int = 200):
    error = None
    try:
        notices = list_notices(db_session())
    except SQLAlchemyError as e:
        current_app.logger.error("Error fetching notices: %s", e)
        error = describe_db_error(e, "Notices", "load notices")
        notices = []
    return (
        render_template(
            "notices/list.html",
            notices=notices,
            editing=editing,
            error=error,
            can_manage=can_manage_notices(_current_user()),
        ),
        status,
    )


def _get_notice_or_404(notice_id: int) -> Notice:
    n = db_session().get(Notice, notice_id)
    if not n:
        abort(404)
    return n


@bp.get("/")
@require_permission("VIEW_NOTICES")
def notices_list():
    edit_id = request.args.get("edit", type=int)
    editing = _get_notice_or_404(edit_id) if edit_id and can_manage_notices(_current_user()) else None
    return _render(editing=editing)


def _payload() -> dict:
    return {"title": request.form.get("title"), "content": request.form.get("content")}


def _denied():
    flash(MANAGE_DENIED, "danger")
    return _render(status=403)


def _apply(action: str, op):
    """Run a notice mutation with the shared policy/DB error handling."""
    s = db_session()
    try:
        op(s)
        s.commit()
    except PolicyError as e:
        s.rollback()
        flash(str(e), "danger")
        return _render(status=403)
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.error("Error during notice %s: %s", action, e)
        flash(describe_db_error(e, "Notices", f"{action} notice"), "danger")
        return redirect(url_for("notices.notices_list"))
    flash(f"Notice {action}d.", "success")
    return redirect(url_for("notices.notices_list"))


def _invalid(payload: dict):
    errors = validate_notice_payload(payload)
    for e in errors:
        flash(e, "danger")
    return bool(errors)


@bp.post("/new")
@require_permission("VIEW_NOTICES")
def notice_create():
    if not can_manage_notices(_current_user()):
        return _denied()
    payload = _payload()
    if _invalid(payload):
        return _render(status=400)
    return _apply("create", lambda s: create_notice(s, payload, _current_user()))


@bp.post("/<int:notice_id>/edit")
@require_permission("VIEW_NOTICES")
def notice_update(notice_id: int):
    notice = _get_notice_or_404(notice_id)
    if not can_manage_notices(_current_user()):
        return _denied()
    payload = _payload()
    if _invalid(payload):
        return _render(editing=notice, status=400)
    return _apply("update", lambda s: update_notice(s, notice, payload, _current_user()))


@bp.post("/<int:notice_id>/delete")
@require_permission("VIEW_NOTICES")
def notice_delete(notice_id: int):
    notice = _get_notice_or_404(notice_id)
    return _apply("delete", lambda s: delete_notice(s, notice, _current_user()))
