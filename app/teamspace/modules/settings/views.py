from __future__ import annotations

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.teamspace.db import db_session
from app.teamspace.errors import describe_db_error
from app.teamspace.models import User
from app.teamspace.modules.settings.service import (
    change_password,
    create_agency,
    delete_account,
    list_agencies,
    update_profile,
    validate_agency,
    validate_password_change,
    validate_profile,
)
from app.teamspace.policies import PolicyError, can_manage_agencies
from app.teamspace.rbac import require_permission

bp = Blueprint("settings", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _flash_all(errors: list[str]) -> None:
    for e in errors:
        flash(e, "danger")


def _render_settings(status: int = 200):
    u = _current_user()
    agencies, error = [], None
    if can_manage_agencies(u):
        try:
            agencies = list_agencies(db_session())
        except SQLAlchemyError as e:
            current_app.logger.error("Error fetching agencies: %s", e)
            error = describe_db_error(e, "Agencies", "load agencies")
    return (
        render_template(
            "settings/settings.html",
            agencies=agencies,
            can_manage_agencies=can_manage_agencies(u),
            error=error,
        ),
        status,
    )


def _commit(action: str, success: str, target: str):
    s = db_session()
    try:
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.error("Settings %s failed: %s", action, e)
        flash(describe_db_error(e, "Settings", action), "danger")
        return redirect(url_for(target))
    flash(success, "success")
    return redirect(url_for(target))


@bp.get("/profile")
@require_permission("EDIT_PROFILE")
def profile_get():
    return render_template("settings/profile.html")


@bp.post("/profile")
@require_permission("EDIT_PROFILE")
def profile_post():
    u = _current_user()
    name = request.form.get("name") or ""
    errors = validate_profile(db_session(), u, name)
    if errors:
        _flash_all(errors)
        return render_template("settings/profile.html"), 400
    update_profile(u, name)
    return _commit("update profile", "Profile updated.", "settings.profile_get")


@bp.get("/")
@require_permission("EDIT_PROFILE")
def settings_get():
    return _render_settings()


@bp.post("/account")
@require_permission("EDIT_PROFILE")
def account_update():
    u = _current_user()
    name = request.form.get("name") or ""
    email = request.form.get("email") or ""
    errors = validate_profile(db_session(), u, name, email)
    if errors:
        _flash_all(errors)
        return _render_settings(status=400)
    update_profile(u, name, email)
    return _commit("update account", "Account updated.", "settings.settings_get")


@bp.post("/password")
@require_permission("EDIT_PROFILE")
def password_change():
    u = _current_user()
    new = request.form.get("new_password") or ""
    errors = validate_password_change(
        u,
        request.form.get("current_password") or "",
        new,
        request.form.get("confirm_password") or "",
    )
    if errors:
        _flash_all(errors)
        return _render_settings(status=400)
    change_password(u, new)
    return _commit("change password", "Password changed.", "settings.settings_get")


@bp.post("/delete")
@require_permission("EDIT_PROFILE")
def account_delete():
    u = _current_user()
    if (request.form.get("confirm") or "").strip().upper() != "DELETE":
        flash("Type DELETE to confirm account deletion.", "danger")
        return _render_settings(status=400)
    result = delete_account(db_session(), u)
    if not result.sessions_removed:
        flash("Could not delete your account. Please try again.", "danger")
        return redirect(url_for("settings.settings_get"))
    # Sessions are gone either way, so the browser is signed out.
    g.auth.sign_out()
    g.current_user = None
    if result.profile_removed:
        flash("Your account has been deleted.", "success")
    else:
        flash("You have been signed out, but your profile could not be removed.", "warning")
    return redirect(url_for("auth.login_get"))


@bp.post("/agencies")
@require_permission("EDIT_PROFILE")
def agency_create():
    u = _current_user()
    s = db_session()
    name = request.form.get("name") or ""
    errors = validate_agency(s, name)
    if errors:
        _flash_all(errors)
        return _render_settings(status=400)
    try:
        create_agency(s, u, name, request.form.get("description") or "")
        s.commit()
    except PolicyError as e:
        s.rollback()
        flash(str(e), "danger")
        return _render_settings(status=403)
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.error("Agency create failed: %s", e)
        flash(describe_db_error(e, "Agencies", "create agency"), "danger")
        return redirect(url_for("settings.settings_get"))
    flash("Agency created.", "success")
    return redirect(url_for("settings.settings_get"))
