"""
Reconciliation of locally pending chat messages with confirmed rows.

A timeline holds two kinds of records, both in the order this client observed
them:

- *pending*: fabricated locally when the user hits send, keyed by a client id
- *confirmed*: authoritative rows, keyed by their database id

Confirmed rows are merged by id, so the copy returned by the write and the
copy pushed by the change feed collapse into one entry whichever arrives
first. A pending record is replaced in place, keeping its position, when its
row shows up; it is removed (and its text handed back) when the write fails.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

PENDING = "pending"
CONFIRMED = "confirmed"


def new_client_id() -> str:
    return f"temp-{uuid.uuid4().hex}"


@dataclass
class TimelineMessage:
    status: str
    content: str
    sender_id: int | None
    client_id: str | None = None
    id: int | None = None
    row: Mapping[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"id:{self.id}" if self.id is not None else f"client:{self.client_id}"

    @property
    def is_pending(self) -> bool:
        return self.status == PENDING


def _confirmed(row: Mapping[str, Any]) -> TimelineMessage:
    return TimelineMessage(
        status=CONFIRMED,
        content=row.get("content") or "",
        sender_id=row.get("sender_id"),
        client_id=row.get("client_id"),
        id=int(row["id"]),
        row=dict(row),
    )


class ChatTimeline:
    def __init__(self) -> None:
        self._items: list[TimelineMessage] = []
        self._pending: dict[str, TimelineMessage] = {}
        self._seen_ids: set[int] = set()

    @property
    def messages(self) -> list[TimelineMessage]:
        return list(self._items)

    @property
    def seen_ids(self) -> frozenset[int]:
        return frozenset(self._seen_ids)

    @property
    def pending(self) -> list[TimelineMessage]:
        return [m for m in self._items if m.is_pending]

    def __len__(self) -> int:
        return len(self._items)

    def _find_confirmed(self, message_id: int) -> TimelineMessage | None:
        for m in self._items:
            if m.id == message_id:
                return m
        return None

    def _replace(self, old: TimelineMessage, new: TimelineMessage) -> None:
        idx = self._items.index(old)
        self._items[idx] = new

    def load(self, rows: Iterable[Mapping[str, Any]]) -> None:
        for row in rows:
            self.receive(row)

    def add_pending(self, content: str, sender_id: int | None, client_id: str | None = None) -> TimelineMessage:
        cid = client_id or new_client_id()
        if cid in self._pending:
            raise ValueError(f"Duplicate client id: {cid!r}")
        msg = TimelineMessage(status=PENDING, content=content, sender_id=sender_id, client_id=cid)
        self._pending[cid] = msg
        self._items.append(msg)
        return msg

    def receive(self, row: Mapping[str, Any]) -> TimelineMessage | None:
        """Merge a row delivered by history or the change feed; None if already seen."""
        message_id = int(row["id"])
        if message_id in self._seen_ids:
            return None
        self._seen_ids.add(message_id)
        msg = _confirmed(row)
        pending = self._pending.pop(msg.client_id, None) if msg.client_id else None
        if pending is not None:
            self._replace(pending, msg)
        else:
            self._items.append(msg)
        return msg

    def confirm(self, client_id: str, row: Mapping[str, Any]) -> TimelineMessage:
        """Swap a pending record for the row the write returned."""
        pending = self._pending.pop(client_id, None)
        message_id = int(row["id"])
        if message_id in self._seen_ids:
            # The feed echo won the race; keep its copy.
            if pending is not None:
                self._items.remove(pending)
            existing = self._find_confirmed(message_id)
            if existing is None:
                raise RuntimeError(f"Message {message_id} marked seen but missing from the timeline")
            return existing
        self._seen_ids.add(message_id)
        msg = _confirmed({**row, "client_id": row.get("client_id") or client_id})
        if pending is not None:
            self._replace(pending, msg)
        else:
            self._items.append(msg)
        return msg

    def fail(self, client_id: str) -> str | None:
        """Roll back a pending record; returns its text so the draft can be restored."""
        pending = self._pending.pop(client_id, None)
        if pending is None:
            return None
        self._items.remove(pending)
        return pending.content
