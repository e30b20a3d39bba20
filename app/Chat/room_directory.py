from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import NotFound, StorageUnavailable, Unauthorized, ValidationError
from app.Chat.room import ROOM_KINDS, Room, direct_key_for
from app.Chat.room_member import RoomMember


logger = logging.getLogger(__name__)


def get_room(db: Session, *, room_id: int) -> Optional[Room]:
    try:
        return db.query(Room).filter(Room.id == room_id).first()
    except SQLAlchemyError as exc:
        raise StorageUnavailable("could not read rooms") from exc


def require_room(db: Session, *, room_id: int) -> Room:
    room = get_room(db, room_id=room_id)
    if room is None:
        raise NotFound(f"room {room_id} not found", code="ROOM_NOT_FOUND")
    return room


def require_participant(db: Session, *, room_id: int, user_id: str) -> Room:
    room = require_room(db, room_id=room_id)
    if not room.has_participant(user_id):
        raise Unauthorized(f"user {user_id} is not in room {room_id}")
    return room


def find_direct_room(db: Session, *, user_a: str, user_b: str) -> Optional[int]:
    try:
        room_id = (
            db.query(Room.id)
            .filter(Room.kind == "direct", Room.direct_key == direct_key_for(user_a, user_b))
            .scalar()
        )
    except SQLAlchemyError as exc:
        raise StorageUnavailable("could not read rooms") from exc
    return room_id


def _unique(ids: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for uid in ids:
        uid = str(uid)
        if uid and uid not in seen:
            seen.append(uid)
    return seen


def create_room(
    db: Session,
    *,
    kind: str,
    participants: Iterable[str],
    name: Optional[str] = None,
) -> Room:
    """Create a room, or return the existing one for a direct pair.

    Direct rooms are keyed by the sorted participant pair. Two callers
    racing on the same pair both end up with the row that won the insert.
    """
    if kind not in ROOM_KINDS:
        raise ValidationError(f"unknown room kind {kind!r}", code="INVALID_KIND")
    members = _unique(participants)

    if kind == "direct":
        if len(members) != 2:
            raise ValidationError("direct rooms need two distinct participants", code="INVALID_PARTICIPANTS")
        existing = find_direct_room(db, user_a=members[0], user_b=members[1])
        if existing is not None:
            return require_room(db, room_id=existing)
        key = direct_key_for(members[0], members[1])
        name = name or "Direct Message"
    else:
        if len(members) < 2:
            raise ValidationError("group rooms need at least two participants", code="INVALID_PARTICIPANTS")
        key = None
        name = (name or "").strip() or "Group Chat"

    now = utcnow()
    room = Room(kind=kind, name=name, direct_key=key, created_at=now, last_activity_at=now)
    room.members = [RoomMember(user_id=uid) for uid in members]
    try:
        db.add(room)
        db.commit()
    except IntegrityError:
        db.rollback()
        if key is None:
            raise StorageUnavailable("could not create room")
        # lost the race for this pair; hand back the winner
        existing = find_direct_room(db, user_a=members[0], user_b=members[1])
        if existing is None:
            raise StorageUnavailable("could not create room")
        logger.info("[CHAT] direct room race resolved to room=%s", existing)
        return require_room(db, room_id=existing)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageUnavailable("could not create room") from exc
    db.refresh(room)
    logger.info("[CHAT] created %s room=%s members=%s", kind, room.id, members)
    return room


def list_rooms_for_user(db: Session, *, user_id: str) -> List[Room]:
    try:
        return (
            db.query(Room)
            .join(RoomMember, RoomMember.room_id == Room.id)
            .filter(RoomMember.user_id == user_id)
            .order_by(Room.last_activity_at.desc(), Room.id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise StorageUnavailable("could not read rooms") from exc
