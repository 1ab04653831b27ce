import threading
import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.teamspace.context import SESSION_TOKEN_KEY, AuthContext, AuthState, revoke_session_token
from app.teamspace.models import ROLE_CORE_MEMBER, AuthSession, Base, User


@pytest.fixture()
def db(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path/'ctx.db'}", future=True)
    Base.metadata.create_all(bind=engine)
    with Session(engine, expire_on_commit=False) as s:
        s.add(User(name="Core", email="core@example.com", password_hash=generate_password_hash("pw1234"), role=ROLE_CORE_MEMBER))
        s.commit()
        yield s
    engine.dispose()


def test_starts_uninitialized_and_ready_without_token(db):
    ctx = AuthContext({})
    assert ctx.state == AuthState.UNINITIALIZED
    ctx.initialize(db)
    assert ctx.state == AuthState.READY
    assert ctx.user is None
    assert not ctx.is_authenticated


def test_sign_in_then_rehydrate_from_token(db):
    store = {}
    ctx = AuthContext(store)
    user = ctx.sign_in(db, "Core@Example.com ", "pw1234")
    db.commit()
    assert user is not None
    assert store[SESSION_TOKEN_KEY]

    fresh = AuthContext(store).initialize(db)
    assert fresh.is_authenticated
    assert fresh.require_user().email == "core@example.com"


def test_bad_credentials_leave_no_identity(db):
    store = {}
    ctx = AuthContext(store)
    assert ctx.sign_in(db, "core@example.com", "wrong") is None
    assert ctx.error == "Invalid credentials."
    assert SESSION_TOKEN_KEY not in store
    with pytest.raises(RuntimeError):
        ctx.require_user()


def test_stale_token_is_cleared(db):
    store = {SESSION_TOKEN_KEY: "no-such-token"}
    ctx = AuthContext(store).initialize(db)
    assert ctx.state == AuthState.READY
    assert ctx.user is None
    assert SESSION_TOKEN_KEY not in store


def test_sign_out_revokes_and_clears(db):
    store = {}
    ctx = AuthContext(store)
    ctx.sign_in(db, "core@example.com", "pw1234")
    db.commit()
    revoked = []

    assert ctx.sign_out(revoked.append) is True
    assert len(revoked) == 1
    assert ctx.user is None
    assert SESSION_TOKEN_KEY not in store
    assert ctx.state == AuthState.READY


def test_sign_out_is_bounded_when_revoke_hangs(db):
    store = {}
    ctx = AuthContext(store)
    ctx.sign_in(db, "core@example.com", "pw1234")
    release = threading.Event()

    started = time.monotonic()
    finished = ctx.sign_out(lambda _token: release.wait(5), timeout=0.1)
    elapsed = time.monotonic() - started
    release.set()

    assert finished is False
    assert elapsed < 2
    assert ctx.user is None
    assert SESSION_TOKEN_KEY not in store


def test_sign_out_clears_even_when_revoke_fails(db):
    store = {}
    ctx = AuthContext(store)
    ctx.sign_in(db, "core@example.com", "pw1234")

    def broken(_token):
        raise ConnectionError("auth backend unreachable")

    assert ctx.sign_out(broken) is False
    assert ctx.user is None
    assert SESSION_TOKEN_KEY not in store


def test_revoke_session_token(db):
    store = {}
    ctx = AuthContext(store)
    ctx.sign_in(db, "core@example.com", "pw1234")
    db.commit()
    assert revoke_session_token(db, store[SESSION_TOKEN_KEY]) == 1
    db.commit()
    assert db.query(AuthSession).count() == 0
