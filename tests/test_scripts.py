import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from app.teamspace.models import ROLE_CORE_MEMBER, Agency, Base, User
from app.teamspace.modules.chat.models import Channel
from scripts import init_db
from scripts.release import release_database_url
from scripts.start import gunicorn_argv, resolve_port


def test_resolve_port():
    assert resolve_port(None) == 8080
    assert resolve_port(" 5000 ") == 5000
    with pytest.raises(ValueError):
        resolve_port("0")
    with pytest.raises(ValueError):
        resolve_port("http")


def test_gunicorn_uses_threaded_workers():
    argv = gunicorn_argv(5000, workers="3", threads="4")
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:5000"
    assert argv[argv.index("--worker-class") + 1] == "gthread"
    assert argv[argv.index("--threads") + 1] == "4"


def test_release_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        release_database_url()
    monkeypatch.setenv("DATABASE_URL", "sqlite:///x.db")
    monkeypatch.setenv("ENV", "production")
    with pytest.raises(RuntimeError):
        release_database_url()
    monkeypatch.setenv("ENV", "development")
    assert release_database_url() == "sqlite:///x.db"


def test_seed_is_idempotent(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'seed.db'}"
    engine = create_engine(url)
    Base.metadata.create_all(engine)
    monkeypatch.setenv("ADMIN_EMAIL", "Admin@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "secret1")
    monkeypatch.delenv("DEFAULT_AGENCY_NAME", raising=False)

    init_db.seed_only(database_url=url)
    init_db.seed_only(database_url=url)

    with Session(engine) as s:
        assert s.query(Agency).count() == 1
        assert s.query(Agency).one().name == "Head Office"
        assert sorted(c.name for c in s.query(Channel).all()) == ["Group Chat", "Head Office Chat"]
        admin = s.query(User).one()
        assert admin.email == "admin@example.com"
        assert admin.role == ROLE_CORE_MEMBER
    engine.dispose()
