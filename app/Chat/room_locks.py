from __future__ import annotations

import threading
from collections import defaultdict
from typing import DefaultDict


class RoomLocks:
    """One lock per room; appends and fan-out for a room run under it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: DefaultDict[int, threading.Lock] = defaultdict(threading.Lock)

    def for_room(self, room_id: int) -> threading.Lock:
        with self._guard:
            return self._locks[room_id]
