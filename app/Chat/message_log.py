"""Append-only, per-room ordered message storage.

Every successful append also refreshes the owning room's
``last_activity_at`` and ``last_message`` inside the same transaction, so a
room listing never shows a last message that was not committed.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import NotFound, StorageUnavailable, ValidationError
from app.core.identity import Identity
from app.Chat.message import MESSAGE_KINDS, Message, message_payload
from app.Chat.room import Room


logger = logging.getLogger(__name__)

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


@dataclass(frozen=True)
class Attachment:
    url: str
    file_name: Optional[str] = None
    size_label: Optional[str] = None


@dataclass(frozen=True)
class MessageDraft:
    kind: str
    text: Optional[str] = None
    attachment: Optional[Attachment] = None


def format_size_label(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    exponent = min(int(math.floor(math.log(num_bytes, 1024))), len(_SIZE_UNITS) - 1)
    value = round(num_bytes / (1024 ** exponent), 2)
    return f"{value:g} {_SIZE_UNITS[exponent]}"


def _optional_str(value, field: str) -> Optional[str]:
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", code="INVALID_REQUEST")
    return value


def build_draft(
    *,
    kind: str,
    text: Optional[str] = None,
    attachment: Optional[dict] = None,
    max_length: int = 4000,
) -> MessageDraft:
    if not isinstance(kind, str):
        raise ValidationError("kind must be a string", code="INVALID_REQUEST")
    if kind not in MESSAGE_KINDS:
        raise ValidationError(f"unknown message kind {kind!r}", code="INVALID_KIND")
    text = _optional_str(text, "text")
    if text is not None and not text.strip():
        text = None
    if text is not None and len(text) > max_length:
        raise ValidationError("message text too long", code="TEXT_TOO_LONG")

    att = None
    if attachment is not None and not isinstance(attachment, dict):
        raise ValidationError("attachment must be an object", code="INVALID_ATTACHMENT")
    if attachment:
        url = _optional_str(attachment.get("url"), "attachment.url")
        if not url:
            raise ValidationError("attachment needs a url", code="INVALID_ATTACHMENT")
        file_name = _optional_str(attachment.get("fileName"), "attachment.fileName")
        size_label = _optional_str(attachment.get("sizeLabel"), "attachment.sizeLabel")
        size = attachment.get("size")
        if size is not None and (isinstance(size, bool) or not isinstance(size, int)):
            raise ValidationError("attachment.size must be an integer", code="INVALID_REQUEST")
        if size_label is None and size is not None:
            size_label = format_size_label(size)
        att = Attachment(url=url, file_name=file_name, size_label=size_label)

    if text is None and att is None:
        raise ValidationError("message needs text or an attachment", code="EMPTY_MESSAGE")
    if kind != "text" and att is None:
        raise ValidationError(f"{kind} message needs an attachment", code="INVALID_ATTACHMENT")
    return MessageDraft(kind=kind, text=text, attachment=att)


def latest(db: Session, *, room_id: int) -> Optional[Message]:
    try:
        return (
            db.query(Message)
            .filter(Message.room_id == room_id)
            .order_by(Message.seq.desc())
            .first()
        )
    except SQLAlchemyError as exc:
        raise StorageUnavailable("could not read messages") from exc


def append(db: Session, *, room_id: int, draft: MessageDraft, sender: Identity) -> Message:
    try:
        room = db.query(Room).filter(Room.id == room_id).with_for_update().first()
        if room is None:
            raise NotFound(f"room {room_id} not found", code="ROOM_NOT_FOUND")
        previous = latest(db, room_id=room_id)
        sent_at = utcnow()
        if previous is not None and sent_at < previous.sent_at:
            # clock stepped back; keep sent_at ordered within the room
            sent_at = previous.sent_at
        att = draft.attachment
        msg = Message(
            room_id=room_id,
            seq=(previous.seq + 1) if previous is not None else 1,
            sender_id=sender.user_id,
            sender_name=sender.name,
            sender_role=sender.role,
            kind=draft.kind,
            text=draft.text,
            attachment_url=att.url if att else None,
            attachment_name=att.file_name if att else None,
            attachment_size=att.size_label if att else None,
            sent_at=sent_at,
        )
        db.add(msg)
        db.flush()
        room.last_message = message_payload(msg)
        room.last_activity_at = msg.sent_at
        db.commit()
    except (SQLAlchemyError, StorageUnavailable) as exc:
        db.rollback()
        logger.error("[CHAT] append failed room=%s: %s", room_id, exc)
        raise StorageUnavailable("message was not stored") from exc
    except NotFound:
        db.rollback()
        raise
    logger.debug("[CHAT] appended id=%s room=%s seq=%s", msg.id, room_id, msg.seq)
    return msg


def list_since(
    db: Session,
    *,
    room_id: int,
    cursor: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[Message]:
    try:
        q = db.query(Message).filter(Message.room_id == room_id)
        if cursor is not None:
            q = q.filter(Message.seq > cursor)
        q = q.order_by(Message.sent_at.asc(), Message.seq.asc())
        if limit is not None:
            q = q.limit(limit)
        return q.all()
    except SQLAlchemyError as exc:
        raise StorageUnavailable("could not read messages") from exc
