import pytest
from sqlalchemy.exc import OperationalError
from werkzeug.security import check_password_hash, generate_password_hash

from app.teamspace import create_app
from app.teamspace.db import session_scope
from app.teamspace.models import ROLE_AGENCY_MEMBER, ROLE_CORE_MEMBER, Agency, AuthSession, Base, LogBookEntry, User
from app.teamspace.modules.chat.models import Channel
from app.teamspace.modules.settings import service as settings_service

CSRF = "test-csrf-token"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        pw = generate_password_hash("pw1234")
        s.add_all(
            [
                User(name="Core", email="core@example.com", password_hash=pw, role=ROLE_CORE_MEMBER),
                User(name="Agent", email="agent@example.com", password_hash=pw, role=ROLE_AGENCY_MEMBER),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email):
    client.post("/auth/login", data={"email": email, "password": "pw1234"})
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF


def _user(app, email):
    with session_scope(app) as s:
        return s.query(User).filter(User.email == email).one_or_none()


def test_profile_page_and_rename(app, client):
    _login(client, "agent@example.com")
    r = client.get("/settings/profile")
    assert r.status_code == 200
    assert b"agent@example.com" in r.data
    r = client.post("/settings/profile", data={"name": "Agent Renamed", "csrf_token": CSRF})
    assert r.status_code == 302
    assert _user(app, "agent@example.com").name == "Agent Renamed"


def test_update_account_rejects_taken_email(app, client):
    _login(client, "agent@example.com")
    r = client.post("/settings/account", data={"name": "Agent", "email": "core@example.com", "csrf_token": CSRF})
    assert r.status_code == 400
    assert b"already in use" in r.data
    r = client.post("/settings/account", data={"name": "Agent", "email": "New@Example.com", "csrf_token": CSRF})
    assert r.status_code == 302
    assert _user(app, "new@example.com") is not None


def test_change_password(app, client):
    _login(client, "agent@example.com")
    r = client.post(
        "/settings/password",
        data={"current_password": "wrong", "new_password": "abc", "confirm_password": "abd", "csrf_token": CSRF},
    )
    assert r.status_code == 400
    assert b"Current password is incorrect." in r.data
    assert b"at least 6 characters" in r.data
    assert b"don&#39;t match" in r.data

    r = client.post(
        "/settings/password",
        data={"current_password": "pw1234", "new_password": "newpass1", "confirm_password": "newpass1", "csrf_token": CSRF},
    )
    assert r.status_code == 302
    assert check_password_hash(_user(app, "agent@example.com").password_hash, "newpass1")


def test_delete_account_requires_confirmation(app, client):
    _login(client, "agent@example.com")
    r = client.post("/settings/delete", data={"confirm": "nope", "csrf_token": CSRF})
    assert r.status_code == 400
    assert _user(app, "agent@example.com") is not None


def test_delete_account(app, client):
    _login(client, "agent@example.com")
    r = client.post("/settings/delete", data={"confirm": "DELETE", "csrf_token": CSRF})
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]
    assert _user(app, "agent@example.com") is None
    assert client.get("/dashboard").status_code == 302
    with session_scope(app) as s:
        assert s.query(AuthSession).count() == 0
        left = s.query(LogBookEntry).filter(LogBookEntry.event_type == "user_left").one()
        assert left.actor_name == "Agent"


def test_delete_account_keeps_first_step_when_second_fails(app, monkeypatch):
    with session_scope(app) as s:
        user = s.query(User).filter(User.email == "agent@example.com").one()
        s.add(AuthSession(token="tok", user_id=user.id))

    calls = {"n": 0}
    real_query = None

    with session_scope(app) as s:
        user = s.query(User).filter(User.email == "agent@example.com").one()
        real_query = s.query

        def flaky_query(*entities, **kw):
            if entities and entities[0] is User:
                calls["n"] += 1
                raise OperationalError("DELETE FROM users", {}, Exception("database is locked"))
            return real_query(*entities, **kw)

        monkeypatch.setattr(s, "query", flaky_query)
        result = settings_service.delete_account(s, user)

    assert result.sessions_removed is True
    assert result.profile_removed is False
    assert not result.ok
    assert calls["n"] == 1
    with session_scope(app) as s:
        assert s.query(AuthSession).count() == 0
        assert s.query(User).filter(User.email == "agent@example.com").count() == 1


def test_core_member_creates_agency_with_channel(app, client):
    _login(client, "core@example.com")
    r = client.get("/settings/")
    assert b"Agencies" in r.data
    r = client.post("/settings/agencies", data={"name": "East", "description": "New office", "csrf_token": CSRF})
    assert r.status_code == 302
    with session_scope(app) as s:
        agency = s.query(Agency).filter(Agency.name == "East").one()
        assert s.query(Channel).filter(Channel.agency_id == agency.id).one().name == "East Chat"

    r = client.post("/settings/agencies", data={"name": "East", "csrf_token": CSRF})
    assert r.status_code == 400


def test_agency_member_cannot_create_agency(app, client):
    _login(client, "agent@example.com")
    r = client.get("/settings/")
    assert b"Create agency" not in r.data
    r = client.post("/settings/agencies", data={"name": "Rogue", "csrf_token": CSRF})
    assert r.status_code == 403
    with session_scope(app) as s:
        assert s.query(Agency).count() == 0
