"""
Row-level rules for writes.

These mirror the database policies the hosted deployment used: a user may only
mutate their own journal entries, notices and the group ledger are managed by
core members, and so on. Services call ``ensure(...)`` before touching a row.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from app.teamspace.models import ROLE_CORE_MEMBER, User

if TYPE_CHECKING:
    from app.teamspace.modules.chat.models import Channel
    from app.teamspace.modules.journal.models import JournalEntry
    from app.teamspace.modules.todos.models import Todo


class PolicyError(PermissionError):
    """Raised when a row-level rule denies an action."""


def _is_core(user: User | None) -> bool:
    return bool(user) and user.is_active and user.role == ROLE_CORE_MEMBER


def can_mutate_journal_entry(user: User | None, entry: "JournalEntry") -> bool:
    return bool(user) and user.is_active and entry.author_id == user.id


def can_manage_notices(user: User | None) -> bool:
    return _is_core(user)


def can_manage_group_ledger(user: User | None) -> bool:
    return _is_core(user)


def can_view_agency(user: User | None, agency_id: int | None) -> bool:
    if not user or not user.is_active or agency_id is None:
        return False
    return _is_core(user) or user.agency_id == agency_id


def can_manage_agency_ledger(user: User | None, agency_id: int | None) -> bool:
    return can_view_agency(user, agency_id)


def can_use_channel(user: User | None, channel: "Channel") -> bool:
    if not user or not user.is_active:
        return False
    if channel.type == "group":
        return True
    return can_view_agency(user, channel.agency_id)


def can_edit_todo(user: User | None, todo: "Todo") -> bool:
    if not user or not user.is_active:
        return False
    return _is_core(user) or todo.assigned_to == user.id


def can_manage_agencies(user: User | None) -> bool:
    return _is_core(user)


def ensure(allowed: bool, message: str = "You do not have permission to perform this action.") -> None:
    if not allowed:
        raise PolicyError(message)
