from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import isoformat, utcnow
from app.model_base import Base


ROOM_KINDS = ("direct", "group")


class Room(Base):
    __tablename__ = "rooms"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(10), index=True)  # direct | group
    name: Mapped[str] = mapped_column(String(200))
    # "<low>:<high>" participant pair, direct rooms only
    direct_key: Mapped[str | None] = mapped_column(String(200), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    last_message: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    members = relationship(
        "RoomMember",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="RoomMember.id",
    )

    @property
    def participants(self) -> list[str]:
        return [m.user_id for m in self.members]

    def has_participant(self, user_id: str) -> bool:
        return any(m.user_id == user_id for m in self.members)


def direct_key_for(user_a: str, user_b: str) -> str:
    low, high = sorted((str(user_a), str(user_b)))
    return f"{low}:{high}"


def room_payload(room: Room) -> dict:
    return {
        "id": room.id,
        "kind": room.kind,
        "name": room.name,
        "participants": room.participants,
        "createdAt": isoformat(room.created_at),
        "lastActivityAt": isoformat(room.last_activity_at),
        "lastMessage": room.last_message,
    }
