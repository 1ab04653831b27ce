from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.teamspace.db import db_session
from app.teamspace.errors import describe_db_error
from app.teamspace.models import User
from app.teamspace.modules.journal.models import JournalEntry
from app.teamspace.modules.journal.service import (
    create_entry,
    delete_entry,
    list_entries,
    update_entry,
    validate_entry_payload,
)
from app.teamspace.policies import PolicyError, can_mutate_journal_entry
from app.teamspace.rbac import require_permission

bp = Blueprint("journal", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    return {"title": request.form.get("title"), "content": request.form.get("content")}


def _render(editing: JournalEntry | None = None, form: dict | None = None, status: int = 200):
    s = db_session()
    error = None
    try:
        entries = list_entries(s)
    except SQLAlchemyError as e:
        current_app.logger.warning("Error fetching journal entries: %s", e)
        error = describe_db_error(e, "Journal feature", "load journal entries")
        entries = []
    return (
        render_template(
            "journal/list.html",
            entries=entries,
            editing=editing,
            form=form or {},
            error=error,
            can_mutate=lambda entry: can_mutate_journal_entry(_current_user(), entry),
        ),
        status,
    )


def _get_entry_or_404(entry_id: int) -> JournalEntry:
    entry = db_session().get(JournalEntry, entry_id)
    if not entry:
        abort(404)
    return entry


@bp.get("/")
@require_permission("VIEW_JOURNAL")
def journal_list():
    editing = None
    edit_id = request.args.get("edit", type=int)
    if edit_id:
        entry = _get_entry_or_404(edit_id)
        if can_mutate_journal_entry(_current_user(), entry):
            editing = entry
    return _render(editing=editing)


@bp.post("/new")
@require_permission("VIEW_JOURNAL")
def journal_create():
    s = db_session()
    payload = _payload()
    errors = validate_entry_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render(form=payload, status=400)
    try:
        create_entry(s, payload, _current_user())
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.error("Error creating journal entry: %s", e)
        flash(describe_db_error(e, "Journal feature", "create entry"), "danger")
        return redirect(url_for("journal.journal_list"))
    flash("Journal entry created.", "success")
    return redirect(url_for("journal.journal_list"))


@bp.post("/<int:entry_id>/edit")
@require_permission("VIEW_JOURNAL")
def journal_update(entry_id: int):
    s = db_session()
    entry = _get_entry_or_404(entry_id)
    if not can_mutate_journal_entry(_current_user(), entry):
        flash("Only the author can edit this entry.", "danger")
        return _render(status=403)
    payload = _payload()
    errors = validate_entry_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("journal.journal_list", edit=entry.id))
    try:
        update_entry(s, entry, payload, _current_user())
        s.commit()
    except PolicyError as e:
        s.rollback()
        flash(str(e), "danger")
        return _render(status=403)
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.error("Error updating journal entry %s: %s", entry_id, e)
        flash(describe_db_error(e, "Journal feature", "update entry"), "danger")
        return redirect(url_for("journal.journal_list"))
    flash("Journal entry updated.", "success")
    return redirect(url_for("journal.journal_list"))


@bp.post("/<int:entry_id>/delete")
@require_permission("VIEW_JOURNAL")
def journal_delete(entry_id: int):
    s = db_session()
    entry = _get_entry_or_404(entry_id)
    try:
        delete_entry(s, entry, _current_user())
        s.commit()
    except PolicyError as e:
        s.rollback()
        flash(str(e), "danger")
        return _render(status=403)
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.error("Error deleting journal entry %s: %s", entry_id, e)
        flash(describe_db_error(e, "Journal feature", "delete entry"), "danger")
        return redirect(url_for("journal.journal_list"))
    flash("Journal entry deleted.", "success")
    return redirect(url_for("journal.journal_list"))
