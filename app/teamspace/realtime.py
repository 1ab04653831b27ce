"""
In-process change feed.

Writers publish an event after their transaction commits; subscribers register
a callback for a table, optionally filtered on column equality (the
``channel_id=eq.<id>`` style filter). Delivery is best-effort and in
publish order per process. There is no replay: a subscriber only sees events
published after it subscribed.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from flask import Flask, current_app

logger = logging.getLogger(__name__)

EVENT_INSERT = "INSERT"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str
    row: Mapping[str, Any]


@dataclass
class Subscription:
    table: str
    callback: Callable[[ChangeEvent], None]
    filter: Mapping[str, Any] = field(default_factory=dict)
    _feed: "ChangeFeed | None" = None

    def matches(self, ev: ChangeEvent) -> bool:
        if ev.table != self.table:
            return False
        return all(ev.row.get(k) == v for k, v in self.filter.items())

    def unsubscribe(self) -> None:
        feed, self._feed = self._feed, None
        if feed is not None:
            feed._remove(self)


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: list[Subscription] = []

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        filter: Mapping[str, Any] | None = None,
    ) -> Subscription:
        sub = Subscription(table=table, callback=callback, filter=dict(filter or {}), _feed=self)
        with self._lock:
            self._subs.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            try:
                self._subs.remove(sub)
            except ValueError:
                pass

    def subscriber_count(self, table: str | None = None) -> int:
        with self._lock:
            return sum(1 for s in self._subs if table is None or s.table == table)

    def publish(self, table: str, event: str, row: Mapping[str, Any]) -> int:
        """Deliver to matching subscribers; returns how many were notified."""
        ev = ChangeEvent(table=table, event=event, row=dict(row))
        with self._lock:
            targets = [s for s in self._subs if s.matches(ev)]
        delivered = 0
        for sub in targets:
            try:
                sub.callback(ev)
                delivered += 1
            except Exception:
                logger.exception("Change feed subscriber failed (table=%s event=%s)", table, event)
        return delivered


class QueueSubscriber:
    """Buffers events from a subscription so a streaming response can drain them."""

    def __init__(self, feed: ChangeFeed, table: str, filter: Mapping[str, Any] | None = None, maxsize: int = 1000):
        self._queue: queue.Queue[ChangeEvent] = queue.Queue(maxsize=maxsize)
        self.subscription = feed.subscribe(table, self._put, filter)

    def _put(self, ev: ChangeEvent) -> None:
        try:
            self._queue.put_nowait(ev)
        except queue.Full:
            logger.warning("Dropping change event for slow subscriber (table=%s)", ev.table)

    def get(self, timeout: float | None = None) -> ChangeEvent | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self.subscription.unsubscribe()


def init_feed(app: Flask) -> ChangeFeed:
    feed = ChangeFeed()
    app.extensions["change_feed"] = feed
    return feed


def get_feed(app: Flask | None = None) -> ChangeFeed:
    app = app or current_app
    return app.extensions["change_feed"]
