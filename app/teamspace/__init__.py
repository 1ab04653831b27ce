import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, flash, g, redirect, render_template, request, session

from app.teamspace.auth import bp as auth_bp, load_current_user
from app.teamspace.config import PRODUCTION_ENVS, load_config
from app.teamspace.db import init_db, teardown_db_session
from app.teamspace.modules.chat.views import bp as chat_bp
from app.teamspace.modules.journal.views import bp as journal_bp
from app.teamspace.modules.ledger.views import bp as ledger_bp
from app.teamspace.modules.logbook.views import bp as logbook_bp
from app.teamspace.modules.notices.views import bp as notices_bp
from app.teamspace.modules.settings.views import bp as settings_bp
from app.teamspace.modules.todos.views import bp as todos_bp
from app.teamspace.realtime import init_feed
from app.teamspace.routes import bp as routes_bp
from app.teamspace.security import ensure_csrf_token, validate_csrf

logger = logging.getLogger(__name__)

BLUEPRINTS = (
    (routes_bp, None),
    (auth_bp, "/auth"),
    (chat_bp, "/chat"),
    (journal_bp, "/journal"),
    (notices_bp, "/notices"),
    (ledger_bp, "/ledger"),
    (todos_bp, "/todos"),
    (logbook_bp, "/log-book"),
    (settings_bp, "/settings"),
)

_UNGUARDED_PREFIXES = ("/static/", "/health", "/healthz")
_S3_KEYS = ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")


def _check_runtime_config(app: Flask) -> None:
    """Refuse to boot a misconfigured production app; elsewhere, just complain."""
    cfg = app.config
    if (cfg.get("ENV") or "").strip().lower() in PRODUCTION_ENVS:
        problems = []
        if cfg.get("DATABASE_URL_MISSING"):
            problems.append("DATABASE_URL is required in production.")
        elif str(cfg["DATABASE_URL"]).startswith("sqlite"):
            problems.append("DATABASE_URL must point at Postgres in production.")
        if str(cfg.get("SECRET_KEY") or "") in ("", "change-me"):
            problems.append("SECRET_KEY must be set to a non-default value in production.")
        if problems:
            raise RuntimeError(" ".join(problems))
    elif cfg.get("DATABASE_URL_MISSING"):
        app.logger.error("DATABASE_URL is not set; falling back to %s. Data will not persist.", cfg["DATABASE_URL"])

    if cfg.get("STORAGE_BACKEND") == "s3":
        missing = [k for k in _S3_KEYS if not cfg.get(k)]
        if missing:
            app.logger.error("S3 storage selected but missing: %s", ", ".join(missing))


def _register_template_helpers(app: Flask) -> None:
    from app.teamspace.rbac import has_permission, navigation_for, role_display_name

    @app.context_processor
    def _inject_globals() -> dict:
        user = g.get("current_user")
        return {
            "csrf_token": ensure_csrf_token(),
            "current_user": user,
            "has_perm": lambda key: has_permission(user, key),
            "nav_items": navigation_for(user),
            "role_display_name": role_display_name,
        }

    @app.template_filter("dateformat")
    def _dateformat(value, fmt: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        return value.strftime(fmt) if hasattr(value, "strftime") else str(value)

    @app.template_filter("money")
    def _money(value) -> str:
        return f"${value or 0:,.2f}"


def _csrf_guard():
    if request.path.startswith(_UNGUARDED_PREFIXES):
        return None
    ensure_csrf_token()
    session.permanent = True
    # Sign-in, registration and sign-out carry no session token yet.
    if request.method in ("GET", "HEAD", "OPTIONS") or (request.endpoint or "").startswith("auth."):
        return None
    if not validate_csrf(request):
        return render_template("errors/400.html", message="CSRF token missing or invalid."), 400
    return None


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(400)
    def bad_request(e):
        return render_template("errors/400.html", message=getattr(e, "description", None)), 400

    @app.errorhandler(403)
    def forbidden(e):
        missing = g.get("missing_permission")
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, g.get("request_id"))
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(404)
    def not_found(e):
        return render_template("errors/404.html"), 404

    @app.errorhandler(413)
    def too_large(e):
        msg = f"File too large. Maximum size is {(app.config.get('MAX_CONTENT_LENGTH') or 0) // (1024 * 1024)}MB."
        if request.is_json or request.path.endswith("/attachments"):
            return {"ok": False, "error": msg}, 413
        flash(msg, "danger")
        if request.referrer and request.referrer.startswith(request.host_url):
            return redirect(request.referrer)
        return render_template("errors/413.html"), 413

    @app.errorhandler(500)
    def server_error(e):
        app.logger.exception("Unhandled 500 (request_id=%s)", g.get("request_id"))
        return render_template("errors/500.html"), 500


def _dispose_engine_after_fork(app: Flask) -> None:
    # Forked workers must not share the parent's pooled connections.
    if not hasattr(os, "register_at_fork"):
        return

    def _child() -> None:
        engine = app.extensions.get("sqlalchemy_engine")
        if engine is not None:
            engine.dispose()

    os.register_at_fork(after_in_child=_child)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config.update(PERMANENT_SESSION_LIFETIME=timedelta(hours=8), SESSION_REFRESH_EACH_REQUEST=True)

    _check_runtime_config(app)
    init_db(app)
    init_feed(app)
    _dispose_engine_after_fork(app)

    _register_template_helpers(app)
    app.before_request(_csrf_guard)
    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    for blueprint, prefix in BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=prefix)
    _register_error_handlers(app)

    logger.info("Teamspace app ready (env=%s, storage=%s)", app.config.get("ENV"), app.config.get("STORAGE_BACKEND"))
    return app
