from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.teamspace.logbook import record_event
from app.teamspace.modules.journal.models import JournalEntry
from app.teamspace.policies import can_mutate_journal_entry, ensure

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.teamspace.models import User


def validate_entry_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("title") or "").strip():
        errors.append("Title is required.")
    if not (payload.get("content") or "").strip():
        errors.append("Content is required.")
    return errors


def list_entries(s: "Session") -> list[JournalEntry]:
    return s.query(JournalEntry).order_by(JournalEntry.created_at.desc(), JournalEntry.id.desc()).all()


def create_entry(s: "Session", payload: dict, user: "User") -> JournalEntry:
    now = datetime.utcnow()
    entry = JournalEntry(
        title=(payload.get("title") or "").strip(),
        content=(payload.get("content") or "").strip(),
        author_id=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(entry)
    s.flush()
    record_event(s, event_type="journal_entry_created", details=f"Journal entry '{entry.title}' created", actor=user)
    return entry


def update_entry(s: "Session", entry: JournalEntry, payload: dict, user: "User") -> JournalEntry:
    ensure(can_mutate_journal_entry(user, entry), "Only the author can edit this entry.")
    entry.title = (payload.get("title") or "").strip()
    entry.content = (payload.get("content") or "").strip()
    entry.updated_at = datetime.utcnow()
    return entry


def delete_entry(s: "Session", entry: JournalEntry, user: "User") -> None:
    ensure(can_mutate_journal_entry(user, entry), "Only the author can delete this entry.")
    s.delete(entry)
