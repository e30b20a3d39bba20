"""Live subscriptions and fan-out for rooms.

Message subscribers always receive the full ordered message list of the
room, never a diff. Typing subscribers receive the current non-stale marks
minus their own. Both get the current state as soon as they subscribe.
"""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List, Optional, Set


logger = logging.getLogger(__name__)

MessagesLoader = Callable[[int], List[dict]]
TypingLoader = Callable[[int, Optional[str]], List[dict]]
Callback = Callable[[List[dict]], Any]


class Subscription:
    """Cancel handle. Calling it, or ``cancel()``, is idempotent."""

    def __init__(self, engine: "FanoutEngine", topic: str, room_id: int,
                 on_update: Callback, self_user_id: Optional[str] = None) -> None:
        self._engine = engine
        self.topic = topic
        self.room_id = room_id
        self.self_user_id = self_user_id
        self._on_update = on_update
        self._lock = threading.Lock()
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def deliver(self, snapshot: List[dict]) -> None:
        with self._lock:
            if not self._active:
                return
        try:
            self._on_update(snapshot)
        except Exception:
            logger.exception("[FANOUT] subscriber failed room=%s topic=%s", self.room_id, self.topic)

    def cancel(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
        self._engine._remove(self)

    __call__ = cancel


class FanoutEngine:
    def __init__(self, load_messages: MessagesLoader, load_typing: TypingLoader) -> None:
        self._load_messages = load_messages
        self._load_typing = load_typing
        self._lock = threading.Lock()
        self._subs: DefaultDict[tuple, Set[Subscription]] = defaultdict(set)

    def _add(self, sub: Subscription) -> None:
        with self._lock:
            self._subs[(sub.topic, sub.room_id)].add(sub)

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            key = (sub.topic, sub.room_id)
            subs = self._subs.get(key)
            if subs is None:
                return
            subs.discard(sub)
            if not subs:
                self._subs.pop(key, None)

    def _current(self, topic: str, room_id: int) -> List[Subscription]:
        with self._lock:
            return list(self._subs.get((topic, room_id), ()))

    def subscribe_messages(self, room_id: int, on_update: Callback) -> Subscription:
        sub = Subscription(self, "messages", room_id, on_update)
        self._add(sub)
        sub.deliver(self._load_messages(room_id))
        return sub

    def subscribe_typing(self, room_id: int, self_user_id: str, on_update: Callback) -> Subscription:
        sub = Subscription(self, "typing", room_id, on_update, self_user_id=self_user_id)
        self._add(sub)
        sub.deliver(self._load_typing(room_id, self_user_id))
        return sub

    def publish_messages(self, room_id: int, snapshot: Optional[List[dict]] = None) -> int:
        subs = self._current("messages", room_id)
        if not subs:
            return 0
        if snapshot is None:
            snapshot = self._load_messages(room_id)
        for sub in subs:
            sub.deliver(snapshot)
        return len(subs)

    def publish_typing(self, room_id: int) -> int:
        subs = self._current("typing", room_id)
        for sub in subs:
            sub.deliver(self._load_typing(room_id, sub.self_user_id))
        return len(subs)

    def subscriber_count(self, room_id: Optional[int] = None) -> int:
        with self._lock:
            return sum(
                len(subs) for (_, rid), subs in self._subs.items()
                if room_id is None or rid == room_id
            )
