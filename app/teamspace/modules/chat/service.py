from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any

from werkzeug.utils import secure_filename

from app.teamspace.logbook import record_event
from app.teamspace.modules.chat.models import CHANNEL_AGENCY, CHANNEL_GROUP, Channel, Message
from app.teamspace.realtime import EVENT_INSERT, ChangeFeed

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.teamspace.models import Agency, User
    from app.teamspace.storage import Storage

logger = logging.getLogger(__name__)

GROUP_CHANNEL_NAME = "Group Chat"
ATTACHMENT_PREFIX = "chat-attachments"
ATTACHMENT_MARKER = "\U0001F4CE"  # paperclip
MAX_MESSAGE_LENGTH = 4000


class ChatError(ValueError):
    pass


def resolve_group_channel(s: "Session") -> Channel:
    """Return the singleton group channel, creating it on first use."""
    channel = (
        s.query(Channel)
        .filter(Channel.type == CHANNEL_GROUP)
        .order_by(Channel.id.asc())
        .first()
    )
    if channel is None:
        channel = Channel(name=GROUP_CHANNEL_NAME, type=CHANNEL_GROUP, agency_id=None)
        s.add(channel)
        s.flush()
        logger.info("Created group channel id=%s", channel.id)
    return channel


def resolve_agency_channel(s: "Session", agency: "Agency") -> Channel:
    channel = (
        s.query(Channel)
        .filter(Channel.type == CHANNEL_AGENCY, Channel.agency_id == agency.id)
        .one_or_none()
    )
    if channel is None:
        channel = Channel(name=f"{agency.name} Chat", type=CHANNEL_AGENCY, agency_id=agency.id)
        s.add(channel)
        s.flush()
        logger.info("Created agency channel id=%s agency_id=%s", channel.id, agency.id)
    return channel


def list_messages(s: "Session", channel: Channel, after_id: int | None = None) -> list[Message]:
    q = s.query(Message).filter(Message.channel_id == channel.id)
    if after_id is not None:
        q = q.filter(Message.id > after_id)
    return q.order_by(Message.created_at.asc(), Message.id.asc()).all()


def sender_identity(s: "Session", sender_id: int | None) -> dict[str, Any] | None:
    """Follow-up read resolving who sent a feed-delivered row."""
    if sender_id is None:
        return None
    from app.teamspace.models import User

    u = s.get(User, sender_id)
    if u is None:
        return None
    return {"id": u.id, "name": u.name, "email": u.email}


def message_row(m: Message) -> dict[str, Any]:
    """Raw column payload, as carried by change events."""
    return {
        "id": m.id,
        "channel_id": m.channel_id,
        "sender_id": m.sender_id,
        "content": m.content,
        "attachment_url": m.attachment_url,
        "client_id": m.client_id,
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }


def message_to_dict(m: Message) -> dict[str, Any]:
    row = message_row(m)
    row["sender"] = {"id": m.sender.id, "name": m.sender.name, "email": m.sender.email} if m.sender else None
    return row


def validate_message(content: str | None, attachment_url: str | None = None) -> str:
    if content is not None and not isinstance(content, str):
        raise ChatError("Message must be text.")
    text = (content or "").strip()
    if not text and not attachment_url:
        raise ChatError("Message cannot be empty.")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ChatError(f"Message is too long (max {MAX_MESSAGE_LENGTH} characters).")
    return text


def post_message(
    s: "Session",
    channel: Channel,
    user: "User",
    content: str | None,
    *,
    client_id: str | None = None,
    attachment_url: str | None = None,
) -> Message:
    """Insert a message. The caller commits, then calls ``publish_message``."""
    if client_id is not None and not isinstance(client_id, str):
        raise ChatError("client_id must be a string.")
    text = validate_message(content, attachment_url)
    m = Message(
        channel_id=channel.id,
        sender_id=user.id,
        content=text,
        attachment_url=attachment_url,
        client_id=(client_id or "").strip()[:64] or None,
        created_at=datetime.utcnow(),
    )
    s.add(m)
    s.flush()
    record_event(
        s,
        event_type="message_posted",
        details=f"{user.name} posted in {channel.name}",
        actor=user,
    )
    return m


def publish_message(feed: ChangeFeed, m: Message) -> int:
    return feed.publish("messages", EVENT_INSERT, message_row(m))


def attachment_key(filename: str, now_ms: int | None = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    safe = secure_filename(filename or "") or "attachment.bin"
    return f"{ATTACHMENT_PREFIX}/{now_ms}-{safe}"


def upload_attachment(storage: "Storage", file_bytes: bytes, filename: str, content_type: str | None) -> tuple[str, str]:
    """Store the file and return (url, message_text)."""
    if not file_bytes:
        raise ChatError("Attachment is empty.")
    key = attachment_key(filename)
    storage.save(key, file_bytes, content_type=content_type)
    display = secure_filename(filename or "") or "attachment.bin"
    return storage.url_for_key(key), f"{ATTACHMENT_MARKER} {display}"
