from flask import Blueprint, abort, current_app, g, redirect, render_template, send_file, url_for

from app.teamspace.rbac import (
    quick_actions_for,
    require_login,
    require_permission,
    role_description,
    role_display_name,
    user_permissions,
)
from app.teamspace.storage import LocalStorage, StorageError, storage_from_config

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    if g.get("current_user"):
        return redirect(url_for("routes.dashboard"))
    return redirect(url_for("auth.login_get"))


@bp.get("/dashboard")
@require_permission("VIEW_DASHBOARD")
def dashboard():
    user = g.current_user
    return render_template(
        "dashboard.html",
        quick_actions=quick_actions_for(user),
        permissions=user_permissions(user),
        role_name=role_display_name(user.role),
        role_description=role_description(user.role),
    )


@bp.get("/storage/<path:key>")
@require_login
def storage_file(key: str):
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        abort(404)
    try:
        if not storage.exists(key):
            abort(404)
        return send_file(storage.open(key), download_name=key.rsplit("/", 1)[-1], max_age=0)
    except StorageError:
        abort(404)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """Fast liveness check. No DB access."""
    return "ok", 200
