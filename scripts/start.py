#!/usr/bin/env python3
"""
Run the release phase, then exec gunicorn in place of this process.

    python scripts/start.py

Each open chat stream occupies a worker thread, so workers are threaded
(GUNICORN_THREADS, default 8; WEB_CONCURRENCY processes, default 2).
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_PORT = 8080


def resolve_port(raw: str | None) -> int:
    raw = (raw or "").strip()
    if not raw:
        print(f"WARNING: PORT not set, using {DEFAULT_PORT}", flush=True)
        return DEFAULT_PORT
    port = int(raw)
    if not 1 <= port <= 65535:
        raise ValueError(f"PORT out of range: {port}")
    return port


def gunicorn_argv(port: int, *, workers: str = "2", threads: str = "8") -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", workers,
        "--worker-class", "gthread",
        "--threads", threads,
        "--timeout", "60",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    try:
        port = resolve_port(os.environ.get("PORT"))
    except ValueError as e:
        print(f"ERROR: invalid PORT ({e}). Must be an integer 1-65535.", flush=True)
        sys.exit(1)

    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    argv = gunicorn_argv(
        port,
        workers=(os.environ.get("WEB_CONCURRENCY") or "2").strip(),
        threads=(os.environ.get("GUNICORN_THREADS") or "8").strip(),
    )
    print("Starting: " + " ".join(argv), flush=True)
    # exec so gunicorn is PID 1 and receives signals directly
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
