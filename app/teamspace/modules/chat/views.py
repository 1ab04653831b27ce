from __future__ import annotations

import json
import time

from flask import (
    Blueprint,
    Response,
    abort,
    current_app,
    flash,
    g,
    jsonify,
    redirect,
    render_template,
    request,
    stream_with_context,
    url_for,
)
from sqlalchemy.exc import SQLAlchemyError

from app.teamspace.db import db_session, new_session
from app.teamspace.errors import describe_db_error
from app.teamspace.models import User
from app.teamspace.modules.chat.models import CHANNEL_GROUP, Channel
from app.teamspace.modules.chat.service import (
    ChatError,
    list_messages,
    message_to_dict,
    post_message,
    publish_message,
    resolve_agency_channel,
    resolve_group_channel,
    sender_identity,
    upload_attachment,
)
from app.teamspace.modules.chat.timeline import ChatTimeline
from app.teamspace.policies import can_use_channel
from app.teamspace.rbac import require_login, require_permission
from app.teamspace.realtime import QueueSubscriber, get_feed
from app.teamspace.storage import StorageError, storage_from_config

bp = Blueprint("chat", __name__)

STREAM_HEARTBEAT_SECONDS = 15.0


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _render_room(channel: Channel | None, title: str, subtitle: str, *, no_agency: bool = False, error: str | None = None):
    messages = []
    if channel is not None and error is None:
        try:
            messages = [message_to_dict(m) for m in list_messages(db_session(), channel)]
        except SQLAlchemyError as e:
            current_app.logger.error("Error fetching messages (channel_id=%s): %s", channel.id, e)
            error = describe_db_error(e, "Chat", "load messages")
    return render_template(
        "chat/room.html",
        channel=channel,
        messages=messages,
        title=title,
        subtitle=subtitle,
        no_agency=no_agency,
        error=error,
        poll_seconds=float(current_app.config.get("CHAT_POLL_SECONDS", 5)),
    )


@bp.get("/group")
@require_permission("VIEW_GROUP_CHAT")
def group_chat():
    s = db_session()
    try:
        channel = resolve_group_channel(s)
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.error("Error resolving group channel: %s", e)
        return _render_room(None, "Group Chat", "Team communication", error=describe_db_error(e, "Group chat"))
    return _render_room(channel, "Group Chat", "Team communication")


@bp.get("/agency")
@require_permission("VIEW_AGENCY_CHAT")
def agency_chat():
    u = _current_user()
    if not u.agency_id or u.agency is None:
        return _render_room(None, "Agency Chat", "", no_agency=True)
    s = db_session()
    try:
        channel = resolve_agency_channel(s, u.agency)
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.error("Error resolving agency channel (agency_id=%s): %s", u.agency_id, e)
        return _render_room(None, "Agency Chat", u.agency.name, error=describe_db_error(e, "Agency chat"))
    return _render_room(channel, "Agency Chat", u.agency.name)


def _channel_or_404(channel_id: int) -> Channel:
    channel = db_session().get(Channel, channel_id)
    if channel is None:
        abort(404)
    if not can_use_channel(_current_user(), channel):
        g.missing_permission = "channel.use"
        abort(403)
    return channel


def _room_endpoint(channel: Channel) -> str:
    return url_for("chat.group_chat") if channel.type == CHANNEL_GROUP else url_for("chat.agency_chat")


@bp.get("/channels/<int:channel_id>/messages.json")
@require_login
def messages_json(channel_id: int):
    channel = _channel_or_404(channel_id)
    after_id = request.args.get("after", type=int)
    try:
        rows = [message_to_dict(m) for m in list_messages(db_session(), channel, after_id)]
    except SQLAlchemyError as e:
        current_app.logger.error("Error fetching messages (channel_id=%s): %s", channel.id, e)
        return jsonify({"ok": False, "error": describe_db_error(e, "Chat", "load messages")}), 500
    return jsonify({"ok": True, "messages": rows})


@bp.post("/channels/<int:channel_id>/messages")
@require_login
def send_message(channel_id: int):
    channel = _channel_or_404(channel_id)
    u = _current_user()
    wants_json = request.is_json
    body = request.get_json(silent=True) if wants_json else request.form
    body = body or {}
    content = body.get("content")
    client_id = body.get("client_id")

    s = db_session()
    try:
        m = post_message(s, channel, u, content, client_id=client_id)
        s.commit()
    except ChatError as e:
        s.rollback()
        if wants_json:
            return jsonify({"ok": False, "error": str(e), "client_id": client_id, "draft": content}), 400
        flash(str(e), "danger")
        return redirect(_room_endpoint(channel))
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.error("Error sending message (channel_id=%s): %s", channel.id, e)
        msg = describe_db_error(e, "Chat", "send message")
        if wants_json:
            return jsonify({"ok": False, "error": msg, "client_id": client_id, "draft": content}), 500
        flash(msg, "danger")
        return redirect(_room_endpoint(channel))

    publish_message(get_feed(), m)
    if wants_json:
        return jsonify({"ok": True, "client_id": m.client_id, "message": message_to_dict(m)}), 201
    return redirect(_room_endpoint(channel))


@bp.post("/channels/<int:channel_id>/attachments")
@require_login
def send_attachment(channel_id: int):
    channel = _channel_or_404(channel_id)
    u = _current_user()
    f = request.files.get("file")
    client_id = request.form.get("client_id")
    if not f or not f.filename:
        return jsonify({"ok": False, "error": "Choose a file to upload.", "client_id": client_id}), 400

    s = db_session()
    try:
        storage = storage_from_config(current_app.config)
        url, text = upload_attachment(storage, f.read(), f.filename, f.mimetype)
        m = post_message(s, channel, u, text, client_id=client_id, attachment_url=url)
        s.commit()
    except ChatError as e:
        s.rollback()
        return jsonify({"ok": False, "error": str(e), "client_id": client_id}), 400
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.error("Error posting attachment (channel_id=%s): %s", channel.id, e)
        return jsonify({"ok": False, "error": describe_db_error(e, "Chat", "upload file"), "client_id": client_id}), 500
    except (OSError, StorageError) as e:
        s.rollback()
        current_app.logger.error("Error uploading attachment: %s", e)
        return jsonify({"ok": False, "error": "Failed to upload file. Please try again.", "client_id": client_id}), 500

    publish_message(get_feed(), m)
    return jsonify({"ok": True, "client_id": m.client_id, "message": message_to_dict(m)}), 201


def _sse(row: dict) -> str:
    return f"id: {row['id']}\nevent: message\ndata: {json.dumps(row)}\n\n"


@bp.get("/channels/<int:channel_id>/stream")
@require_login
def stream(channel_id: int):
    channel = _channel_or_404(channel_id)
    app = current_app._get_current_object()  # type: ignore[attr-defined]
    idle_limit = float(app.config.get("CHAT_STREAM_IDLE_SECONDS", 300))
    after_id = request.args.get("after", type=int)
    if after_id is None:
        after_id = request.headers.get("Last-Event-ID", type=int)

    # Subscribe before reading history so nothing published in between is lost;
    # the timeline drops whatever shows up in both.
    sub = QueueSubscriber(get_feed(app), "messages", {"channel_id": channel.id})
    try:
        history = [message_to_dict(m) for m in list_messages(db_session(), channel, after_id)]
    except SQLAlchemyError:
        sub.close()
        raise

    def generate():
        timeline = ChatTimeline()
        try:
            for row in history:
                if timeline.receive(row):
                    yield _sse(row)
            last_activity = time.monotonic()
            while True:
                remaining = idle_limit - (time.monotonic() - last_activity)
                if remaining <= 0:
                    break
                ev = sub.get(timeout=min(STREAM_HEARTBEAT_SECONDS, remaining))
                if ev is None:
                    yield ": keep-alive\n\n"
                    continue
                last_activity = time.monotonic()
                row = dict(ev.row)
                if int(row["id"]) in timeline.seen_ids:
                    continue
                with new_session(app) as s:
                    row["sender"] = sender_identity(s, row.get("sender_id"))
                if timeline.receive(row):
                    yield _sse(row)
        finally:
            sub.close()

    return Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
