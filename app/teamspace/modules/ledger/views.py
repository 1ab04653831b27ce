from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.teamspace.db import db_session
from app.teamspace.errors import describe_db_error
from app.teamspace.models import User
from app.teamspace.modules.ledger.models import AgencyLedgerEntry, GroupLedgerEntry
from app.teamspace.modules.ledger.service import (
    ENTRY_TYPES,
    create_entry,
    delete_entry,
    ensure_can_manage,
    ledger_summary,
    list_agency_entries,
    list_group_entries,
    update_entry,
    validate_ledger_payload,
)
from app.teamspace.policies import PolicyError, can_manage_agency_ledger, can_manage_group_ledger
from app.teamspace.rbac import require_permission

bp = Blueprint("ledger", __name__)

SCOPE_GROUP = "group"
SCOPE_AGENCY = "agency"


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _list_url(scope: str) -> str:
    return url_for("ledger.group_ledger") if scope == SCOPE_GROUP else url_for("ledger.agency_ledger")


def _payload() -> dict:
    return {
        "description": request.form.get("description"),
        "amount": request.form.get("amount"),
        "type": request.form.get("type"),
        "date": request.form.get("date"),
    }


def _render(scope: str, *, editing=None, form: dict | None = None, status: int = 200):
    u = _current_user()
    s = db_session()
    search = (request.args.get("q") or "").strip()
    type_filter = (request.args.get("type") or "").strip()
    error = None
    entries = []
    try:
        if scope == SCOPE_GROUP:
            entries = list_group_entries(s, search, type_filter)
        elif u.agency_id:
            entries = list_agency_entries(s, u.agency_id, search, type_filter)
    except SQLAlchemyError as e:
        current_app.logger.error("Error fetching %s ledger: %s", scope, e)
        error = describe_db_error(e, "Accounting", "load transactions")
    can_manage = can_manage_group_ledger(u) if scope == SCOPE_GROUP else can_manage_agency_ledger(u, u.agency_id)
    return (
        render_template(
            "ledger/list.html",
            scope=scope,
            entries=entries,
            summary=ledger_summary(entries),
            editing=editing,
            form=form or {},
            search=search,
            type_filter=type_filter,
            entry_types=ENTRY_TYPES,
            can_manage=can_manage,
            no_agency=scope == SCOPE_AGENCY and not u.agency_id,
            agency=u.agency if scope == SCOPE_AGENCY else None,
            error=error,
        ),
        status,
    )


def _get_entry_or_404(scope: str, entry_id: int):
    model = GroupLedgerEntry if scope == SCOPE_GROUP else AgencyLedgerEntry
    entry = db_session().get(model, entry_id)
    if not entry:
        abort(404)
    return entry


def _apply(scope: str, action: str, op):
    s = db_session()
    try:
        op(s)
        s.commit()
    except PolicyError as e:
        s.rollback()
        flash(str(e), "danger")
        return _render(scope, status=403)
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.error("Error during %s ledger %s: %s", scope, action, e)
        flash(describe_db_error(e, "Accounting", f"{action} transaction"), "danger")
        return redirect(_list_url(scope))
    flash(f"Transaction {action}d.", "success")
    return redirect(_list_url(scope))


def _create(scope: str):
    u = _current_user()
    payload = _payload()
    errors = validate_ledger_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render(scope, form=payload, status=400)
    agency_id = None if scope == SCOPE_GROUP else u.agency_id
    if scope == SCOPE_AGENCY and not agency_id:
        flash("You need to be assigned to an agency to record transactions.", "danger")
        return _render(scope, status=400)
    return _apply(scope, "create", lambda s: create_entry(s, payload, u, agency_id=agency_id))


def _update(scope: str, entry_id: int):
    entry = _get_entry_or_404(scope, entry_id)
    try:
        ensure_can_manage(_current_user(), entry)
    except PolicyError as e:
        flash(str(e), "danger")
        return _render(scope, status=403)
    payload = _payload()
    errors = validate_ledger_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render(scope, editing=entry, form=payload, status=400)
    return _apply(scope, "update", lambda s: update_entry(s, entry, payload, _current_user()))


def _delete(scope: str, entry_id: int):
    entry = _get_entry_or_404(scope, entry_id)
    return _apply(scope, "delete", lambda s: delete_entry(s, entry, _current_user()))


def _editing(scope: str):
    edit_id = request.args.get("edit", type=int)
    return _get_entry_or_404(scope, edit_id) if edit_id else None


# ---------- Group ledger ----------
@bp.get("/group")
@require_permission("VIEW_GROUP_ACCOUNTING")
def group_ledger():
    return _render(SCOPE_GROUP, editing=_editing(SCOPE_GROUP))


@bp.post("/group/new")
@require_permission("VIEW_GROUP_ACCOUNTING")
def group_entry_create():
    return _create(SCOPE_GROUP)


@bp.post("/group/<int:entry_id>/edit")
@require_permission("VIEW_GROUP_ACCOUNTING")
def group_entry_update(entry_id: int):
    return _update(SCOPE_GROUP, entry_id)


@bp.post("/group/<int:entry_id>/delete")
@require_permission("VIEW_GROUP_ACCOUNTING")
def group_entry_delete(entry_id: int):
    return _delete(SCOPE_GROUP, entry_id)


# ---------- Agency ledger ----------
@bp.get("/agency")
@require_permission("VIEW_AGENCY_ACCOUNTING")
def agency_ledger():
    editing = _editing(SCOPE_AGENCY)
    if editing is not None and editing.agency_id != _current_user().agency_id:
        abort(404)
    return _render(SCOPE_AGENCY, editing=editing)


@bp.post("/agency/new")
@require_permission("VIEW_AGENCY_ACCOUNTING")
def agency_entry_create():
    return _create(SCOPE_AGENCY)


@bp.post("/agency/<int:entry_id>/edit")
@require_permission("VIEW_AGENCY_ACCOUNTING")
def agency_entry_update(entry_id: int):
    return _update(SCOPE_AGENCY, entry_id)


@bp.post("/agency/<int:entry_id>/delete")
@require_permission("VIEW_AGENCY_ACCOUNTING")
def agency_entry_delete(entry_id: int):
    return _delete(SCOPE_AGENCY, entry_id)
