import io
import json

import pytest
from werkzeug.security import generate_password_hash

from app.teamspace import create_app
from app.teamspace.db import session_scope
from app.teamspace.models import ROLE_AGENCY_MEMBER, ROLE_CORE_MEMBER, Agency, Base, LogBookEntry, User
from app.teamspace.modules.chat.models import CHANNEL_AGENCY, CHANNEL_GROUP, Channel, Message
from app.teamspace.modules.chat.service import ChatError, attachment_key, publish_message, validate_message
from app.teamspace.realtime import get_feed

CSRF = "test-csrf-token"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("CHAT_STREAM_IDLE_SECONDS", "0.2")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "STORAGE_PUBLIC_BASE_URL"):
        monkeypatch.delenv(k, raising=False)
    monkeypatch.chdir(tmp_path)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        north = Agency(name="North")
        south = Agency(name="South")
        s.add_all([north, south])
        s.flush()
        pw = generate_password_hash("pw1234")
        s.add_all(
            [
                User(name="Core", email="core@example.com", password_hash=pw, role=ROLE_CORE_MEMBER),
                User(name="Agent", email="agent@example.com", password_hash=pw, role=ROLE_AGENCY_MEMBER, agency_id=north.id),
                User(name="Loner", email="loner@example.com", password_hash=pw, role=ROLE_AGENCY_MEMBER),
            ]
        )
        s.add(Channel(name="South Chat", type=CHANNEL_AGENCY, agency_id=south.id))
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email):
    client.post("/auth/login", data={"email": email, "password": "pw1234"})
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF


def _group_channel_id(app):
    with session_scope(app) as s:
        return s.query(Channel).filter(Channel.type == CHANNEL_GROUP).one().id


def _send(client, channel_id, content, client_id="temp-1"):
    return client.post(
        f"/chat/channels/{channel_id}/messages",
        json={"content": content, "client_id": client_id},
        headers={"X-CSRF-Token": CSRF},
    )


def test_validate_message():
    assert validate_message("  hi  ") == "hi"
    with pytest.raises(ChatError):
        validate_message("   ")
    with pytest.raises(ChatError):
        validate_message("x" * 4001)
    assert validate_message("", attachment_url="/storage/a.png") == ""


def test_attachment_key_is_safe():
    assert attachment_key("../../etc/passwd", now_ms=5) == "chat-attachments/5-etc_passwd"
    assert attachment_key("", now_ms=5) == "chat-attachments/5-attachment.bin"


def test_group_chat_page_creates_channel(app, client):
    _login(client, "agent@example.com")
    r = client.get("/chat/group")
    assert r.status_code == 200
    assert b"Group Chat" in r.data
    assert b"No messages yet" in r.data
    _group_channel_id(app)


def test_send_returns_confirmed_row_and_publishes(app, client):
    _login(client, "core@example.com")
    client.get("/chat/group")
    channel_id = _group_channel_id(app)

    received = []
    with app.app_context():
        get_feed().subscribe("messages", received.append, {"channel_id": channel_id})

    r = _send(client, channel_id, "Hello team", client_id="temp-abc")
    assert r.status_code == 201
    body = r.json
    assert body["ok"] is True
    assert body["client_id"] == "temp-abc"
    assert body["message"]["content"] == "Hello team"
    assert body["message"]["sender"]["name"] == "Core"

    assert [ev.row["id"] for ev in received] == [body["message"]["id"]]
    with session_scope(app) as s:
        assert s.query(Message).count() == 1
        assert s.query(LogBookEntry).filter(LogBookEntry.event_type == "message_posted").count() == 1


def test_failed_send_returns_draft(app, client):
    _login(client, "core@example.com")
    client.get("/chat/group")
    channel_id = _group_channel_id(app)
    r = _send(client, channel_id, "   ", client_id="temp-x")
    assert r.status_code == 400
    assert r.json == {"ok": False, "error": "Message cannot be empty.", "client_id": "temp-x", "draft": "   "}
    with session_scope(app) as s:
        assert s.query(Message).count() == 0


def test_messages_json_after_id(app, client):
    _login(client, "core@example.com")
    client.get("/chat/group")
    channel_id = _group_channel_id(app)
    first = _send(client, channel_id, "one", "t1").json["message"]["id"]
    _send(client, channel_id, "two", "t2")
    r = client.get(f"/chat/channels/{channel_id}/messages.json?after={first}")
    assert [m["content"] for m in r.json["messages"]] == ["two"]


def test_stream_replays_history_once_and_ends_when_idle(app, client):
    _login(client, "core@example.com")
    client.get("/chat/group")
    channel_id = _group_channel_id(app)
    _send(client, channel_id, "one", "t1")
    _send(client, channel_id, "two", "t2")

    r = client.get(f"/chat/channels/{channel_id}/stream")
    assert r.status_code == 200
    assert r.mimetype == "text/event-stream"
    events = [
        json.loads(line[len("data: "):])
        for line in r.get_data(as_text=True).splitlines()
        if line.startswith("data: ")
    ]
    assert [e["content"] for e in events] == ["one", "two"]
    assert events[0]["sender"]["name"] == "Core"
    with app.app_context():
        assert get_feed().subscriber_count("messages") == 0


def test_agency_chat_without_agency_shows_panel(client):
    _login(client, "loner@example.com")
    r = client.get("/chat/agency")
    assert r.status_code == 200
    assert b"No Agency Assigned" in r.data


def test_agency_chat_uses_own_agency_channel(app, client):
    _login(client, "agent@example.com")
    r = client.get("/chat/agency")
    assert r.status_code == 200
    assert b"North" in r.data
    with session_scope(app) as s:
        assert s.query(Channel).filter(Channel.name == "North Chat").count() == 1


def test_cannot_post_to_other_agency_channel(app, client):
    with session_scope(app) as s:
        south_channel = s.query(Channel).filter(Channel.name == "South Chat").one().id
    _login(client, "agent@example.com")
    r = _send(client, south_channel, "sneaky")
    assert r.status_code == 403


def test_upload_attachment(app, client):
    _login(client, "core@example.com")
    client.get("/chat/group")
    channel_id = _group_channel_id(app)
    r = client.post(
        f"/chat/channels/{channel_id}/attachments",
        data={"file": (io.BytesIO(b"hello"), "notes.txt"), "client_id": "temp-f", "csrf_token": CSRF},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    msg = r.json["message"]
    assert msg["content"].endswith("notes.txt")
    assert msg["attachment_url"].startswith("/storage/chat-attachments/")
    assert client.get(msg["attachment_url"]).data == b"hello"


def _data_events(body):
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


def test_non_text_payload_returns_json_error(app, client):
    _login(client, "core@example.com")
    client.get("/chat/group")
    channel_id = _group_channel_id(app)
    r = _send(client, channel_id, 42, "t-num")
    assert r.status_code == 400
    assert r.json["ok"] is False
    assert r.json["client_id"] == "t-num"
    assert r.json["draft"] == 42

    r = client.post(
        f"/chat/channels/{channel_id}/messages",
        json={"content": "hello", "client_id": 5},
        headers={"X-CSRF-Token": CSRF},
    )
    assert r.status_code == 400
    assert r.json["ok"] is False
    with session_scope(app) as s:
        assert s.query(Message).count() == 0


def test_stream_dedups_live_events_and_resolves_sender(app, client):
    _login(client, "core@example.com")
    client.get("/chat/group")
    channel_id = _group_channel_id(app)
    _send(client, channel_id, "one", "t1")

    r = client.get(f"/chat/channels/{channel_id}/stream", buffered=False)
    assert r.status_code == 200
    feed = get_feed(app)
    with session_scope(app) as s:
        core = s.query(User).filter(User.email == "core@example.com").one()
        first = s.query(Message).filter(Message.content == "one").one()
        live = Message(channel_id=channel_id, sender_id=core.id, content="live")
        s.add(live)
        s.flush()
        # The history row arrives again through the feed, then a new one.
        publish_message(feed, first)
        publish_message(feed, live)

    events = _data_events(r.get_data(as_text=True))
    r.close()
    assert [e["content"] for e in events] == ["one", "live"]
    assert events[1]["sender"] == {"id": events[0]["sender"]["id"], "name": "Core", "email": "core@example.com"}


def test_messages_from_other_workers_reach_the_room_by_polling(app, client):
    _login(client, "core@example.com")
    client.get("/chat/group")
    channel_id = _group_channel_id(app)
    last = _send(client, channel_id, "local", "t1").json["message"]["id"]

    # Written by another process: stored, but never published on this feed.
    with session_scope(app) as s:
        core = s.query(User).filter(User.email == "core@example.com").one()
        s.add(Message(channel_id=channel_id, sender_id=core.id, content="from elsewhere"))

    page = client.get("/chat/group").get_data(as_text=True)
    assert f'data-poll-url="/chat/channels/{channel_id}/messages.json"' in page
    assert 'data-poll-ms="5000"' in page

    r = client.get(f"/chat/channels/{channel_id}/messages.json?after={last}")
    assert [m["content"] for m in r.json["messages"]] == ["from elsewhere"]
    assert r.json["messages"][0]["sender"]["name"] == "Core"
