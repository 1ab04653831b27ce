from __future__ import annotations

import re
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import generate_password_hash

from app.teamspace.context import AuthContext, revoke_session_token
from app.teamspace.db import db_session, new_session
from app.teamspace.errors import describe_db_error
from app.teamspace.logbook import record_event
from app.teamspace.models import Agency, ROLE_AGENCY_MEMBER, ROLE_CORE_MEMBER, User

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    recent = [t for t in _login_attempts.pop(ip, []) if t > cutoff]
    if recent:
        _login_attempts[ip] = recent
    return len(recent) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _safe_next(nxt: str) -> str | None:
    # Only allow local paths to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


def load_current_user() -> None:
    """
    Builds g.auth from the signed session cookie and mirrors the user to g.current_user.
    Also assigns a simple per-request request_id (for log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.auth = AuthContext(session)
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return
    g.auth.initialize(db_session())
    g.current_user = g.auth.user if g.auth.is_authenticated else None


def validate_registration(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Name is required.")
    email = (payload.get("email") or "").strip()
    if not _EMAIL_RE.match(email):
        errors.append("A valid email is required.")
    password = payload.get("password") or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if password != (payload.get("confirm_password") or ""):
        errors.append("Passwords don't match.")
    if payload.get("role") not in (ROLE_CORE_MEMBER, ROLE_AGENCY_MEMBER):
        errors.append("Choose a role.")
    return errors


@bp.get("/login")
def login_get():
    if g.get("current_user"):
        return redirect(url_for("routes.dashboard"))
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    s = db_session()
    try:
        user = g.auth.sign_in(s, email, password)
        if not user:
            record_event(s, event_type="user_login_failed", details=f"Failed sign-in for {email}")
            s.commit()
            flash(g.auth.error or "Invalid credentials.", "danger")
            return redirect(url_for("auth.login_get", next=nxt or None))
        _login_attempts.pop(ip, None)
        record_event(s, event_type="user_login", details=f"{user.name} signed in", actor=user)
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.exception("Login failed (email=%s request_id=%s)", email, g.get("request_id"))
        flash(describe_db_error(e, "Sign-in", "sign in"), "danger")
        return redirect(url_for("auth.login_get"))

    session.permanent = True
    return redirect(_safe_next(nxt) or url_for("routes.dashboard"))


@bp.get("/register")
def register_get():
    s = db_session()
    try:
        agencies = s.query(Agency).order_by(Agency.name.asc()).all()
    except SQLAlchemyError as e:
        current_app.logger.error("Could not load agencies for registration: %s", e)
        agencies = []
    return render_template("auth/register.html", agencies=agencies, form={})


@bp.post("/register")
def register_post():
    s = db_session()
    payload = {
        "name": request.form.get("name"),
        "email": request.form.get("email"),
        "password": request.form.get("password"),
        "confirm_password": request.form.get("confirm_password"),
        "role": (request.form.get("role") or "").strip(),
        "agency_id": (request.form.get("agency_id") or "").strip(),
    }
    errors = validate_registration(payload)
    email = (payload["email"] or "").strip().lower()

    agency = None
    if payload["agency_id"]:
        try:
            agency = s.get(Agency, int(payload["agency_id"]))
        except ValueError:
            agency = None
        if agency is None:
            errors.append("Unknown agency.")

    if not errors and s.query(User).filter(User.email == email).one_or_none():
        errors.append("An account with this email already exists.")

    if errors:
        for e in errors:
            flash(e, "danger")
        agencies = s.query(Agency).order_by(Agency.name.asc()).all()
        return render_template("auth/register.html", agencies=agencies, form=payload), 400

    try:
        user = User(
            name=(payload["name"] or "").strip(),
            email=email,
            password_hash=generate_password_hash(payload["password"]),
            role=payload["role"],
            agency_id=agency.id if agency else None,
            is_active=True,
        )
        s.add(user)
        s.flush()
        record_event(s, event_type="user_joined", details=f"{user.name} joined as {user.role}", actor=user)
        g.auth.establish(s, user)
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.exception("Registration failed (email=%s)", email)
        flash(describe_db_error(e, "Registration", "create your account"), "danger")
        return redirect(url_for("auth.register_get"))

    session.permanent = True
    flash("Welcome to Business Teamspace!", "success")
    return redirect(url_for("routes.dashboard"))


def _revoke_in_background(app):
    def revoke(token: str) -> None:
        s = new_session(app)
        try:
            revoke_session_token(s, token)
            s.commit()
        finally:
            s.close()

    return revoke


@bp.route("/logout", methods=["GET", "POST"])
def logout():
    user = g.get("current_user")
    if user:
        s = db_session()
        try:
            record_event(s, event_type="user_logout", details=f"{user.name} signed out", actor=user)
            s.commit()
        except SQLAlchemyError as e:
            s.rollback()
            current_app.logger.error("Could not log sign-out: %s", e)
    app = current_app._get_current_object()  # type: ignore[attr-defined]
    g.auth.sign_out(_revoke_in_background(app), timeout=app.config.get("SIGN_OUT_TIMEOUT_SECONDS", 3.0))
    g.current_user = None
    return redirect(url_for("auth.login_get"))
