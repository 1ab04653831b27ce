import secrets

from flask import Request, session

CSRF_SESSION_KEY = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"


def ensure_csrf_token() -> str:
    """Return the session's CSRF token, minting one on first use."""
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def _submitted_token(req: Request) -> str | None:
    token = req.headers.get(CSRF_HEADER) or req.form.get(CSRF_SESSION_KEY)
    # Chat sends post JSON bodies.
    if not token and req.is_json:
        body = req.get_json(silent=True) or {}
        if isinstance(body, dict):
            token = body.get(CSRF_SESSION_KEY)
    return token


def validate_csrf(req: Request) -> bool:
    token = _submitted_token(req)
    expected = session.get(CSRF_SESSION_KEY)
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))
