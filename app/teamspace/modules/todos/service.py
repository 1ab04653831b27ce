from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

from app.teamspace.logbook import record_event
from app.teamspace.models import ROLE_AGENCY_MEMBER, Agency, User
from app.teamspace.modules.todos.models import STATUS_COMPLETED, STATUS_PENDING, TODO_STATUSES, Todo
from app.teamspace.policies import can_edit_todo, ensure

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

TYPE_FILTERS = ("all", "personal", "agency")
STATUS_FILTERS = ("all",) + TODO_STATUSES


def toggle_status(status: str) -> str:
    if status not in TODO_STATUSES:
        raise ValueError(f"Unknown todo status: {status!r}")
    return STATUS_PENDING if status == STATUS_COMPLETED else STATUS_COMPLETED


def is_overdue(todo: Todo, today: date | None = None) -> bool:
    today = today or date.today()
    return todo.status == STATUS_PENDING and todo.due_date < today


def parse_due_date(raw: str | None) -> date | None:
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def validate_todo_payload(s: "Session", payload: dict) -> list[str]:
    errors = []
    if not (payload.get("title") or "").strip():
        errors.append("Title is required.")
    if not (payload.get("description") or "").strip():
        errors.append("Description is required.")
    assignee = (payload.get("assigned_to") or "").strip()
    if not assignee:
        errors.append("Assignee is required.")
    elif not assignee.isdigit() or s.get(User, int(assignee)) is None:
        errors.append("Unknown assignee.")
    if parse_due_date(payload.get("due_date")) is None:
        errors.append("Due date is required.")
    agency = (payload.get("agency_id") or "").strip()
    if agency and (not agency.isdigit() or s.get(Agency, int(agency)) is None):
        errors.append("Unknown agency.")
    return errors


def list_todos(
    s: "Session",
    user: User,
    *,
    search: str = "",
    status: str = "all",
    todo_type: str = "all",
) -> list[Todo]:
    q = s.query(Todo)
    # Agency members only see their agency's work.
    if user.role == ROLE_AGENCY_MEMBER and user.agency_id:
        q = q.filter(Todo.agency_id == user.agency_id)
    if search:
        like = f"%{search}%"
        q = q.filter(Todo.title.ilike(like) | Todo.description.ilike(like))
    if status in TODO_STATUSES:
        q = q.filter(Todo.status == status)
    if todo_type == "personal":
        q = q.filter(Todo.agency_id.is_(None))
    elif todo_type == "agency":
        q = q.filter(Todo.agency_id.isnot(None))
    return q.order_by(Todo.created_at.desc(), Todo.id.desc()).all()


def _agency_for(payload: dict, user: User) -> int | None:
    # Only core members pick an agency scope; everyone else works in their own.
    if not user.is_core_member:
        return user.agency_id
    raw = (payload.get("agency_id") or "").strip()
    return int(raw) if raw else None


def create_todo(s: "Session", payload: dict, user: User) -> Todo:
    todo = Todo(
        title=(payload.get("title") or "").strip(),
        description=(payload.get("description") or "").strip(),
        assigned_to=int(payload["assigned_to"]),
        agency_id=_agency_for(payload, user),
        due_date=parse_due_date(payload.get("due_date")),
        status=STATUS_PENDING,
    )
    s.add(todo)
    s.flush()
    record_event(s, event_type="todo_created", details=f"Todo '{todo.title}' created", actor=user)
    return todo


def update_todo(s: "Session", todo: Todo, payload: dict, user: User) -> Todo:
    ensure(can_edit_todo(user, todo), "Only the assignee or a core member can edit this todo.")
    todo.title = (payload.get("title") or "").strip()
    todo.description = (payload.get("description") or "").strip()
    todo.assigned_to = int(payload["assigned_to"])
    todo.due_date = parse_due_date(payload.get("due_date"))  # type: ignore[assignment]
    if user.is_core_member:
        todo.agency_id = _agency_for(payload, user)
    return todo


def set_todo_status(s: "Session", todo: Todo, status: str, user: User) -> bool:
    """
    Move a todo to ``status``. Returns False (and writes nothing) when it is
    already there, so repeating the same request is harmless.
    """
    if status not in TODO_STATUSES:
        raise ValueError(f"Unknown todo status: {status!r}")
    ensure(can_edit_todo(user, todo), "Only the assignee or a core member can update this todo.")
    if todo.status == status:
        return False
    todo.status = status
    record_event(s, event_type="todo_status_changed", details=f"Todo '{todo.title}' marked {status}", actor=user)
    return True


def delete_todo(s: "Session", todo: Todo, user: User) -> None:
    ensure(can_edit_todo(user, todo), "Only the assignee or a core member can delete this todo.")
    s.delete(todo)
