"""
Engine and session plumbing.

The engine and sessionmaker live in ``app.extensions``. Request handlers share
one session per request (``db_session``); background threads and scripts open
their own.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from collections.abc import Iterator

from flask import Flask, current_app, g
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


def engine_options(db_url: str) -> dict[str, object]:
    opts: dict[str, object] = {"pool_pre_ping": True}
    if db_url.startswith("postgres"):
        # Managed Postgres drops idle connections; recycle before it does.
        opts.update(pool_recycle=1800, pool_size=5, max_overflow=10, pool_timeout=30)
    elif db_url.startswith("sqlite"):
        # Chat streams and sign-out revokes read from worker threads.
        opts["connect_args"] = {"check_same_thread": False}
    return opts


def init_db(app: Flask) -> Engine:
    db_url = app.config["DATABASE_URL"]
    engine = create_engine(db_url, **engine_options(db_url))
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )
    logger.debug("Database engine ready (dialect=%s)", engine.dialect.name)
    return engine


def _maker(app: Flask | None) -> sessionmaker[Session]:
    return (app or current_app).extensions["sqlalchemy_sessionmaker"]


def db_session(app: Flask | None = None) -> Session:
    """Request-scoped session, closed on teardown."""
    s = g.get("db_session")
    if s is None:
        s = g.db_session = _maker(app)()
    return s


def new_session(app: Flask) -> Session:
    """Unscoped session for work outside the request thread (streams, revokes)."""
    return _maker(app)()


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is not None:
        s.close()


@contextmanager
def session_scope(app: Flask | None = None) -> Iterator[Session]:
    """
    Commit on success, roll back on error. For scripts, tests and threads that
    have no request session.
    """
    s = _maker(app)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
