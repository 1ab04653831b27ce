"""
Role-based access for the two member roles.

The table below is a UI convenience: it decides which navigation links, quick
actions and pages a user sees. Row-level rules for writes live in
``app.teamspace.policies``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for

from app.teamspace.models import ROLE_AGENCY_MEMBER, ROLE_CORE_MEMBER, User

ROLES = (ROLE_CORE_MEMBER, ROLE_AGENCY_MEMBER)
_BOTH = (ROLE_CORE_MEMBER, ROLE_AGENCY_MEMBER)
_CORE_ONLY = (ROLE_CORE_MEMBER,)


@dataclass(frozen=True)
class Permission:
    key: str
    name: str
    description: str
    roles: tuple[str, ...]


PERMISSIONS: dict[str, Permission] = {
    p.key: p
    for p in (
        Permission("VIEW_DASHBOARD", "View Dashboard", "Access to main dashboard", _BOTH),
        Permission("VIEW_NOTICES", "View Notices", "View announcements and notices", _BOTH),
        Permission("VIEW_TODOS", "View Todos", "View and manage tasks", _BOTH),
        Permission("VIEW_GROUP_CHAT", "View Group Chat", "Participate in group discussions", _BOTH),
        Permission("VIEW_JOURNAL", "View Journal", "Access to journal entries", _CORE_ONLY),
        Permission("VIEW_LOG_BOOK", "View Log Book", "Access to system logs", _CORE_ONLY),
        Permission("VIEW_GROUP_ACCOUNTING", "View Group Accounting", "Manage group finances", _CORE_ONLY),
        Permission("VIEW_AGENCY_CHAT", "View Agency Chat", "Participate in agency discussions", _BOTH),
        Permission("VIEW_AGENCY_ACCOUNTING", "View Agency Accounting", "Manage agency finances", _BOTH),
        Permission("EDIT_PROFILE", "Edit Profile", "Update personal information", _BOTH),
    )
}

_OPEN_ROUTES = frozenset(
    {"dashboard", "profile", "settings", "notices", "todos", "group-chat", "agency-chat", "agency-accounting"}
)
_CORE_ROUTES = frozenset({"journal", "log-book", "group-accounting"})


@dataclass(frozen=True)
class NavItem:
    name: str
    route: str
    endpoint: str
    description: str = ""
    permission: str | None = None


NAVIGATION: tuple[NavItem, ...] = (
    NavItem("Dashboard", "dashboard", "routes.dashboard"),
    NavItem("Profile", "profile", "settings.profile_get"),
    NavItem("Group Chat", "group-chat", "chat.group_chat"),
    NavItem("Notices", "notices", "notices.notices_list"),
    NavItem("Journal", "journal", "journal.journal_list"),
    NavItem("Todos", "todos", "todos.todos_list"),
    NavItem("Log Book", "log-book", "logbook.logbook_list"),
    NavItem("Group Accounting", "group-accounting", "ledger.group_ledger"),
    NavItem("Agency Chat", "agency-chat", "chat.agency_chat"),
    NavItem("Agency Accounting", "agency-accounting", "ledger.agency_ledger"),
)

QUICK_ACTIONS: tuple[NavItem, ...] = (
    NavItem("Group Chat", "group-chat", "chat.group_chat", "Communicate with all core members", "VIEW_GROUP_CHAT"),
    NavItem("Agency Chat", "agency-chat", "chat.agency_chat", "Chat with your agency team", "VIEW_AGENCY_CHAT"),
    NavItem("Journal", "journal", "journal.journal_list", "Create and view journal entries", "VIEW_JOURNAL"),
    NavItem("Log Book", "log-book", "logbook.logbook_list", "View system activity logs", "VIEW_LOG_BOOK"),
    NavItem("Group Accounting", "group-accounting", "ledger.group_ledger", "Manage group finances", "VIEW_GROUP_ACCOUNTING"),
    NavItem("Agency Accounting", "agency-accounting", "ledger.agency_ledger", "Track agency finances", "VIEW_AGENCY_ACCOUNTING"),
    NavItem("Notices", "notices", "notices.notices_list", "View announcements", "VIEW_NOTICES"),
    NavItem("To-Dos", "todos", "todos.todos_list", "Manage tasks and projects", "VIEW_TODOS"),
)


def _active(user: User | None) -> bool:
    return bool(user) and bool(user.is_active)


def has_permission(user: User | None, permission_key: str) -> bool:
    perm = PERMISSIONS[permission_key]
    if not _active(user):
        return False
    return user.role in perm.roles


def has_any_permission(user: User | None, permission_keys: Iterable[str]) -> bool:
    return any(has_permission(user, k) for k in permission_keys)


def has_all_permissions(user: User | None, permission_keys: Iterable[str]) -> bool:
    return all(has_permission(user, k) for k in permission_keys)


def permissions_for_role(role: str) -> list[Permission]:
    return [p for p in PERMISSIONS.values() if role in p.roles]


def user_permissions(user: User | None) -> list[Permission]:
    if not _active(user):
        return []
    return permissions_for_role(user.role)


def can_access_route(user: User | None, route: str) -> bool:
    if not _active(user):
        return False
    if route in _OPEN_ROUTES:
        return True
    if route in _CORE_ROUTES:
        return user.role == ROLE_CORE_MEMBER
    return False


def navigation_for(user: User | None) -> list[NavItem]:
    return [item for item in NAVIGATION if can_access_route(user, item.route)]


def quick_actions_for(user: User | None) -> list[NavItem]:
    return [item for item in QUICK_ACTIONS if item.permission and has_permission(user, item.permission)]


def role_display_name(role: str) -> str:
    return {
        ROLE_CORE_MEMBER: "Core Member",
        ROLE_AGENCY_MEMBER: "Agency Member",
    }.get(role, role)


def role_description(role: str) -> str:
    return {
        ROLE_CORE_MEMBER: "Full access to all features including journal, log book, and accounting",
        ROLE_AGENCY_MEMBER: "Access to agency-specific features and basic group features",
    }.get(role, "Limited access to basic features")


def _redirect_to_login():
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    return redirect(url_for("auth.login_get", next=nxt))


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if not _active(getattr(g, "current_user", None)):
            return _redirect_to_login()
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    if permission_key not in PERMISSIONS:
        raise KeyError(permission_key)

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → redirect to login.
            if not _active(user):
                return _redirect_to_login()
            # Authenticated but unauthorized → 403
            if not has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
