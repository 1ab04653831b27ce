from __future__ import annotations

from datetime import date

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.teamspace.db import db_session
from app.teamspace.errors import describe_db_error
from app.teamspace.models import Agency, User
from app.teamspace.modules.todos.models import TODO_STATUSES, Todo
from app.teamspace.modules.todos.service import (
    STATUS_FILTERS,
    TYPE_FILTERS,
    create_todo,
    delete_todo,
    is_overdue,
    list_todos,
    set_todo_status,
    update_todo,
    validate_todo_payload,
)
from app.teamspace.policies import PolicyError, can_edit_todo
from app.teamspace.rbac import require_permission

bp = Blueprint("todos", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    return {
        "title": request.form.get("title"),
        "description": request.form.get("description"),
        "assigned_to": request.form.get("assigned_to"),
        "due_date": request.form.get("due_date"),
        "agency_id": request.form.get("agency_id"),
    }


def _render(*, editing: Todo | None = None, form: dict | None = None, status: int = 200):
    u = _current_user()
    s = db_session()
    search = (request.args.get("q") or "").strip()
    status_filter = request.args.get("status") or "all"
    type_filter = request.args.get("type") or "all"
    error = None
    try:
        todos = list_todos(s, u, search=search, status=status_filter, todo_type=type_filter)
        users = s.query(User).filter(User.is_active.is_(True)).order_by(User.name.asc()).all()
        agencies = s.query(Agency).order_by(Agency.name.asc()).all()
    except SQLAlchemyError as e:
        current_app.logger.error("Error fetching todos: %s", e)
        error = describe_db_error(e, "To-Dos", "load todos")
        todos, users, agencies = [], [], []
    return (
        render_template(
            "todos/list.html",
            pending=[t for t in todos if t.status == "pending"],
            completed=[t for t in todos if t.status == "completed"],
            editing=editing,
            form=form or {},
            users=users,
            agencies=agencies,
            search=search,
            status_filter=status_filter,
            type_filter=type_filter,
            status_filters=STATUS_FILTERS,
            type_filters=TYPE_FILTERS,
            can_edit=lambda t: can_edit_todo(u, t),
            is_overdue=lambda t: is_overdue(t, date.today()),
            error=error,
        ),
        status,
    )


def _get_todo_or_404(todo_id: int) -> Todo:
    t = db_session().get(Todo, todo_id)
    if not t:
        abort(404)
    return t


def _denied(message: str):
    flash(message, "danger")
    return _render(status=403)


def _apply(action: str, op, success: str | None = None):
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
        current_app.logger.error("Error during todo %s: %s", action, e)
        flash(describe_db_error(e, "To-Dos", f"{action} todo"), "danger")
        return redirect(url_for("todos.todos_list"))
    if success:
        flash(success, "success")
    return redirect(url_for("todos.todos_list"))


@bp.get("/")
@require_permission("VIEW_TODOS")
def todos_list():
    edit_id = request.args.get("edit", type=int)
    editing = None
    if edit_id:
        t = _get_todo_or_404(edit_id)
        editing = t if can_edit_todo(_current_user(), t) else None
    return _render(editing=editing)


@bp.post("/new")
@require_permission("VIEW_TODOS")
def todo_create():
    payload = _payload()
    errors = validate_todo_payload(db_session(), payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render(form=payload, status=400)
    return _apply("create", lambda s: create_todo(s, payload, _current_user()), "Todo created.")


@bp.post("/<int:todo_id>/edit")
@require_permission("VIEW_TODOS")
def todo_update(todo_id: int):
    todo = _get_todo_or_404(todo_id)
    if not can_edit_todo(_current_user(), todo):
        return _denied("Only the assignee or a core member can edit this todo.")
    payload = _payload()
    errors = validate_todo_payload(db_session(), payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render(editing=todo, form=payload, status=400)
    return _apply("update", lambda s: update_todo(s, todo, payload, _current_user()), "Todo updated.")


@bp.post("/<int:todo_id>/status")
@require_permission("VIEW_TODOS")
def todo_status(todo_id: int):
    todo = _get_todo_or_404(todo_id)
    if not can_edit_todo(_current_user(), todo):
        return _denied("Only the assignee or a core member can update this todo.")
    status = (request.form.get("status") or "").strip()
    if status not in TODO_STATUSES:
        flash("Status must be pending or completed.", "danger")
        return _render(status=400)
    return _apply("update", lambda s: set_todo_status(s, todo, status, _current_user()))


@bp.post("/<int:todo_id>/delete")
@require_permission("VIEW_TODOS")
def todo_delete(todo_id: int):
    todo = _get_todo_or_404(todo_id)
    return _apply("delete", lambda s: delete_todo(s, todo, _current_user()), "Todo deleted.")
