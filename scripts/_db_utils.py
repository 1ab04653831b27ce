from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from app.teamspace.db import engine_options


@contextmanager
def script_session(db_url: str) -> Iterator[Session]:
    """One-off session outside the app: commits on success, disposes its engine on exit."""
    engine = create_engine(db_url, **engine_options(db_url))
    try:
        with Session(engine, autoflush=False, expire_on_commit=False) as s:
            try:
                yield s
                s.commit()
            except Exception:
                s.rollback()
                raise
    finally:
        engine.dispose()
