"""
In-process change feed.

Routes publish a ``ChangeEvent`` after they commit. Subscribers register for
one user's events (or for everything) and get a ``Subscription`` back that
unregisters on ``close()``; a stream handler closes it when the client goes
away, so no callback outlives the connection that created it.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Literal, Optional

logger = logging.getLogger(__name__)

ChangeAction = Literal["INSERT", "UPDATE", "DELETE"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    action: ChangeAction
    user_id: Optional[str] = None  # None: applies to every user
    row_id: Optional[str] = None
    occurred_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        out = asdict(self)
        out["occurred_at"] = self.occurred_at.isoformat()
        return out


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    def __init__(self, feed: "ChangeFeed", key: Optional[str], callback: ChangeCallback):
        self._feed = feed
        self.key = key
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ChangeFeed:
    _ALL = None

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: Dict[Optional[str], List[Subscription]] = {}

    def subscribe(self, user_id: str, callback: ChangeCallback) -> Subscription:
        """Receive events for ``user_id`` plus broadcast events."""
        if not user_id:
            raise ValueError("user_id is required")
        return self._add(Subscription(self, user_id, callback))

    def subscribe_all(self, callback: ChangeCallback) -> Subscription:
        return self._add(Subscription(self, self._ALL, callback))

    def _add(self, sub: Subscription) -> Subscription:
        with self._lock:
            self._subs.setdefault(sub.key, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.key)
            if not subs:
                return
            try:
                subs.remove(sub)
            except ValueError:
                return
            if not subs:
                self._subs.pop(sub.key, None)

    def subscriber_count(self, user_id: Optional[str] = None) -> int:
        with self._lock:
            if user_id is None:
                return sum(len(v) for v in self._subs.values())
            return len(self._subs.get(user_id, ()))

    def publish(self, event: ChangeEvent) -> int:
        """Deliver to matching subscribers. Returns how many callbacks ran cleanly."""
        with self._lock:
            targets = list(self._subs.get(self._ALL, ()))
            if event.user_id is None:
                for key, subs in self._subs.items():
                    if key is not self._ALL:
                        targets.extend(subs)
            else:
                targets.extend(self._subs.get(event.user_id, ()))

        delivered = 0
        for sub in targets:
            if sub.closed:
                continue
            try:
                sub.callback(event)
                delivered += 1
            except Exception:
                # one broken listener must not stop the rest
                logger.exception(
                    "change_feed_callback_failed table=%s action=%s user_id=%s",
                    event.table, event.action, event.user_id,
                )
        return delivered


change_feed = ChangeFeed()


def publish_change(
    table: str,
    action: ChangeAction,
    *,
    user_id: Optional[str] = None,
    row_id: Optional[str] = None,
) -> ChangeEvent:
    event = ChangeEvent(table=table, action=action, user_id=user_id, row_id=row_id)
    change_feed.publish(event)
    return event
