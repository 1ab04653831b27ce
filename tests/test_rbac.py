import pytest

from app.teamspace.models import ROLE_AGENCY_MEMBER, ROLE_CORE_MEMBER, User
from app.teamspace.rbac import (
    PERMISSIONS,
    can_access_route,
    has_all_permissions,
    has_any_permission,
    has_permission,
    navigation_for,
    permissions_for_role,
    quick_actions_for,
    role_display_name,
    user_permissions,
)

CORE_ONLY = {"VIEW_JOURNAL", "VIEW_LOG_BOOK", "VIEW_GROUP_ACCOUNTING"}


def _user(role: str, active: bool = True) -> User:
    return User(id=1, name="Test", email="t@example.com", password_hash="x", role=role, is_active=active)


def test_permission_table_has_ten_entries():
    assert len(PERMISSIONS) == 10
    assert {k for k, p in PERMISSIONS.items() if p.roles == (ROLE_CORE_MEMBER,)} == CORE_ONLY


def test_core_member_has_every_permission():
    core = _user(ROLE_CORE_MEMBER)
    assert all(has_permission(core, key) for key in PERMISSIONS)
    assert has_all_permissions(core, PERMISSIONS)


def test_agency_member_lacks_core_only_permissions():
    agent = _user(ROLE_AGENCY_MEMBER)
    for key in PERMISSIONS:
        assert has_permission(agent, key) is (key not in CORE_ONLY)
    assert has_any_permission(agent, ["VIEW_JOURNAL", "VIEW_TODOS"])
    assert not has_any_permission(agent, CORE_ONLY)
    assert not has_all_permissions(agent, ["VIEW_JOURNAL", "VIEW_TODOS"])


def test_no_user_or_inactive_user_has_nothing():
    assert not has_permission(None, "VIEW_DASHBOARD")
    assert not has_permission(_user(ROLE_CORE_MEMBER, active=False), "VIEW_DASHBOARD")
    assert user_permissions(None) == []
    assert navigation_for(None) == []
    assert quick_actions_for(None) == []


def test_unknown_permission_key_raises():
    with pytest.raises(KeyError):
        has_permission(_user(ROLE_CORE_MEMBER), "DELETE_EVERYTHING")


def test_permissions_for_role():
    assert len(permissions_for_role(ROLE_CORE_MEMBER)) == 10
    assert len(permissions_for_role(ROLE_AGENCY_MEMBER)) == 7
    assert permissions_for_role("guest") == []


def test_route_access():
    core, agent = _user(ROLE_CORE_MEMBER), _user(ROLE_AGENCY_MEMBER)
    for route in ("journal", "log-book", "group-accounting"):
        assert can_access_route(core, route)
        assert not can_access_route(agent, route)
    for route in ("dashboard", "profile", "settings", "todos", "agency-chat", "agency-accounting"):
        assert can_access_route(agent, route)
    assert not can_access_route(core, "admin")


def test_navigation_matches_role():
    core_nav = [i.name for i in navigation_for(_user(ROLE_CORE_MEMBER))]
    agent_nav = [i.name for i in navigation_for(_user(ROLE_AGENCY_MEMBER))]
    assert len(core_nav) == 10
    assert "Journal" in core_nav and "Log Book" in core_nav and "Group Accounting" in core_nav
    assert "Journal" not in agent_nav
    assert "Log Book" not in agent_nav
    assert "Group Accounting" not in agent_nav
    assert len(agent_nav) == 7


def test_quick_actions_match_role():
    core_actions = {a.permission for a in quick_actions_for(_user(ROLE_CORE_MEMBER))}
    agent_actions = {a.permission for a in quick_actions_for(_user(ROLE_AGENCY_MEMBER))}
    assert CORE_ONLY <= core_actions
    assert not (CORE_ONLY & agent_actions)
    assert len(core_actions) == 8
    assert len(agent_actions) == 5


def test_role_display_name():
    assert role_display_name(ROLE_CORE_MEMBER) == "Core Member"
    assert role_display_name(ROLE_AGENCY_MEMBER) == "Agency Member"
    assert role_display_name("guest") == "guest"
