import pytest
from werkzeug.security import generate_password_hash

from app.teamspace import create_app
from app.teamspace.db import session_scope
from app.teamspace.models import ROLE_AGENCY_MEMBER, ROLE_CORE_MEMBER, Base, LogBookEntry, User
from app.teamspace.modules.notices.models import Notice

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


def test_core_member_posts_notice(app, client):
    _login(client, "core@example.com")
    r = client.post("/notices/new", data={"title": "Office closed", "content": "Friday", "csrf_token": CSRF}, follow_redirects=True)
    assert r.status_code == 200
    assert b"Office closed" in r.data
    with session_scope(app) as s:
        assert s.query(LogBookEntry).filter(LogBookEntry.event_type == "notice_created").count() == 1


def test_agency_member_reads_but_cannot_post(app, client):
    _login(client, "core@example.com")
    client.post("/notices/new", data={"title": "Office closed", "content": "Friday", "csrf_token": CSRF})
    client.post("/auth/logout")

    _login(client, "agent@example.com")
    r = client.get("/notices/")
    assert r.status_code == 200
    assert b"Office closed" in r.data
    assert b"Post a notice" not in r.data

    r = client.post("/notices/new", data={"title": "Mine", "content": "x", "csrf_token": CSRF})
    assert r.status_code == 403
    with session_scope(app) as s:
        assert s.query(Notice).count() == 1


def test_notice_requires_title_and_content(client):
    _login(client, "core@example.com")
    r = client.post("/notices/new", data={"title": "", "content": "", "csrf_token": CSRF})
    assert r.status_code == 400


def test_agency_member_gets_403_before_validation(app, client):
    with session_scope(app) as s:
        s.add(Notice(title="Office closed", content="Friday"))
    with session_scope(app) as s:
        notice_id = s.query(Notice).one().id
    _login(client, "agent@example.com")
    r = client.post("/notices/new", data={"title": "", "content": "", "csrf_token": CSRF})
    assert r.status_code == 403
    assert b"Only core members can manage notices." in r.data
    r = client.post(f"/notices/{notice_id}/edit", data={"title": "", "content": "", "csrf_token": CSRF})
    assert r.status_code == 403
