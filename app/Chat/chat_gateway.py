from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ValidationError
from app.core.identity import Identity
from app.db.session import SessionLocal
from app.Chat import message_log, room_directory
from app.Chat.fanout import FanoutEngine, Subscription
from app.Chat.message import message_payload
from app.Chat.room import room_payload
from app.Chat.room_locks import RoomLocks
from app.Chat.typing_store import TypingStore


logger = logging.getLogger(__name__)


class ChatGateway:
    """Request surface of the chat core.

    Room and message failures propagate to the caller. Typing failures are
    logged and dropped; they never get in the way of sending.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        typing: Optional[TypingStore] = None,
        locks: Optional[RoomLocks] = None,
        max_length: int = settings.message_max_length,
    ) -> None:
        self._session_factory = session_factory
        self.typing = typing or TypingStore(stale_ms=settings.typing_stale_ms)
        self._locks = locks or RoomLocks()
        self._max_length = max_length
        self.fanout = FanoutEngine(self._load_messages, self._load_typing)

    # snapshots handed to subscribers
    def _load_messages(self, room_id: int) -> List[dict]:
        with self._session_factory() as db:
            return [message_payload(m) for m in message_log.list_since(db, room_id=room_id)]

    def _load_typing(self, room_id: int, exclude: Optional[str]) -> List[dict]:
        try:
            return [m.payload() for m in self.typing.list_typing(room_id, excluding_user_id=exclude)]
        except Exception:
            logger.warning("[TYPING] list failed room=%s", room_id, exc_info=True)
            return []

    # rooms
    def create_or_find_direct_room(
        self, caller: Identity, other_user_id: str, other_user_name: Optional[str] = None
    ) -> dict:
        if str(other_user_id) == caller.user_id:
            raise ValidationError("cannot open a direct room with yourself", code="INVALID_PARTICIPANTS")
        name = f"{caller.name} & {other_user_name}" if other_user_name else None
        with self._session_factory() as db:
            room = room_directory.create_room(
                db, kind="direct", participants=[caller.user_id, str(other_user_id)], name=name
            )
            return room_payload(room)

    def create_group_room(self, caller: Identity, participant_ids: Iterable[str], name: str) -> dict:
        participants = [caller.user_id] + [str(p) for p in participant_ids]
        with self._session_factory() as db:
            room = room_directory.create_room(db, kind="group", participants=participants, name=name)
            return room_payload(room)

    def get_room(self, caller: Identity, room_id: int) -> dict:
        with self._session_factory() as db:
            return room_payload(
                room_directory.require_participant(db, room_id=room_id, user_id=caller.user_id)
            )

    def list_my_rooms(self, caller: Identity) -> List[dict]:
        with self._session_factory() as db:
            return [room_payload(r) for r in room_directory.list_rooms_for_user(db, user_id=caller.user_id)]

    # messages
    def send_message(
        self,
        caller: Identity,
        room_id: int,
        *,
        kind: str = "text",
        text: Optional[str] = None,
        attachment: Optional[dict] = None,
    ) -> dict:
        with self._session_factory() as db:
            room_directory.require_participant(db, room_id=room_id, user_id=caller.user_id)
            draft = message_log.build_draft(
                kind=kind, text=text, attachment=attachment, max_length=self._max_length
            )
            with self._locks.for_room(room_id):
                msg = message_log.append(db, room_id=room_id, draft=draft, sender=caller)
                stored = message_payload(msg)
                snapshot = [message_payload(m) for m in message_log.list_since(db, room_id=room_id)]
                delivered = self.fanout.publish_messages(room_id, snapshot)
        logger.info("[CHAT] sent id=%s room=%s to %d subscriber(s)", stored["id"], room_id, delivered)
        self._apply_typing(room_id, caller, False)
        return stored

    def list_messages(
        self, caller: Identity, room_id: int, cursor: Optional[int] = None, limit: Optional[int] = None
    ) -> List[dict]:
        with self._session_factory() as db:
            room_directory.require_participant(db, room_id=room_id, user_id=caller.user_id)
            return [
                message_payload(m)
                for m in message_log.list_since(db, room_id=room_id, cursor=cursor, limit=limit)
            ]

    # typing
    def _apply_typing(self, room_id: int, caller: Identity, is_typing: bool) -> None:
        try:
            changed = self.typing.set_typing(room_id, caller.user_id, caller.name, is_typing)
            if changed:
                self.fanout.publish_typing(room_id)
        except Exception:
            logger.warning("[TYPING] update failed room=%s user=%s", room_id, caller.user_id, exc_info=True)

    def set_typing(self, caller: Identity, room_id: int, is_typing: bool) -> None:
        with self._session_factory() as db:
            room_directory.require_participant(db, room_id=room_id, user_id=caller.user_id)
        self._apply_typing(room_id, caller, is_typing)

    def list_typing(self, caller: Identity, room_id: int) -> List[dict]:
        with self._session_factory() as db:
            room_directory.require_participant(db, room_id=room_id, user_id=caller.user_id)
        return self._load_typing(room_id, caller.user_id)

    def sweep_typing(self) -> List[int]:
        try:
            rooms = self.typing.sweep()
        except Exception:
            logger.warning("[TYPING] sweep failed", exc_info=True)
            return []
        for room_id in rooms:
            self.fanout.publish_typing(room_id)
        return rooms

    # live updates
    def subscribe_room(self, caller: Identity, room_id: int, on_update) -> Subscription:
        with self._session_factory() as db:
            room_directory.require_participant(db, room_id=room_id, user_id=caller.user_id)
        with self._locks.for_room(room_id):
            return self.fanout.subscribe_messages(room_id, on_update)

    def subscribe_typing(self, caller: Identity, room_id: int, on_update) -> Subscription:
        with self._session_factory() as db:
            room_directory.require_participant(db, room_id=room_id, user_id=caller.user_id)
        return self.fanout.subscribe_typing(room_id, caller.user_id, on_update)


_gateway: Optional[ChatGateway] = None
_gateway_lock = threading.Lock()


def get_gateway() -> ChatGateway:
    global _gateway
    if _gateway is None:
        with _gateway_lock:
            if _gateway is None:
                _gateway = ChatGateway()
    return _gateway
