from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from app.core.clock import isoformat, utcnow


@dataclass(frozen=True)
class TypingMark:
    room_id: int
    user_id: str
    display_name: str
    started_at: datetime

    def payload(self) -> dict:
        return {
            "userId": self.user_id,
            "name": self.display_name,
            "startedAt": isoformat(self.started_at),
        }


class TypingStore:
    """Ephemeral "who is typing" marks, keyed by (room, user).

    Marks expire ``stale_ms`` after they were last set. Expiry is applied
    whenever marks are read; only ``sweep`` deletes expired marks.
    """

    def __init__(self, stale_ms: int = 3000, clock: Callable[[], datetime] = utcnow) -> None:
        self._stale = timedelta(milliseconds=stale_ms)
        self._clock = clock
        self._lock = threading.Lock()
        self._marks: Dict[int, Dict[str, TypingMark]] = {}

    def _is_stale(self, mark: TypingMark, now: datetime) -> bool:
        return now - mark.started_at >= self._stale

    def set_typing(self, room_id: int, user_id: str, display_name: str, is_typing: bool) -> bool:
        """Returns True when typing subscribers need a fresh snapshot."""
        now = self._clock()
        with self._lock:
            room = self._marks.get(room_id, {})
            previous = room.get(user_id)
            if is_typing:
                was_visible = previous is not None and not self._is_stale(previous, now)
                room[user_id] = TypingMark(room_id, user_id, display_name, now)
                self._marks[room_id] = room
                return not was_visible or previous.display_name != display_name
            if previous is None:
                return False
            # a stale mark may still sit in a snapshot nobody has replaced yet
            del room[user_id]
            if not room:
                self._marks.pop(room_id, None)
            return True

    def list_typing(self, room_id: int, excluding_user_id: Optional[str] = None) -> List[TypingMark]:
        # expired marks are filtered here and only removed by sweep(),
        # so sweep() can tell subscribers about every expiry
        now = self._clock()
        with self._lock:
            marks = [
                m for m in self._marks.get(room_id, {}).values()
                if m.user_id != excluding_user_id and not self._is_stale(m, now)
            ]
        return sorted(marks, key=lambda m: (m.started_at, m.user_id))

    def sweep(self) -> List[int]:
        now = self._clock()
        changed: List[int] = []
        with self._lock:
            for room_id, room in list(self._marks.items()):
                stale: List[Tuple[str, TypingMark]] = [
                    (uid, m) for uid, m in room.items() if self._is_stale(m, now)
                ]
                if not stale:
                    continue
                for uid, _ in stale:
                    del room[uid]
                if not room:
                    del self._marks[room_id]
                changed.append(room_id)
        return changed
