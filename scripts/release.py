"""
Release phase: apply migrations, then seed (idempotent).

    python scripts/release.py [--skip-seed]

Refuses to run without DATABASE_URL, and refuses sqlite when ENV=production.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def release_database_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is required for the release phase.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to release against sqlite in production. Point DATABASE_URL at Postgres.")
    return db_url


def migrate(db_url: str, revision: str = "head") -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, revision)


def run_release(*, seed: bool = True) -> None:
    db_url = release_database_url()
    print("Applying migrations...", flush=True)
    migrate(db_url)
    if seed:
        from scripts import init_db

        print("Seeding agency, channels and admin...", flush=True)
        init_db.seed_only(database_url=db_url)
    print("Release complete.", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run migrations and seed data.")
    parser.add_argument("--skip-seed", action="store_true", help="Only apply migrations.")
    args = parser.parse_args()
    run_release(seed=not args.skip_seed)


if __name__ == "__main__":
    main()
