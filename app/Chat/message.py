from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import isoformat
from app.model_base import Base


MESSAGE_KINDS = ("text", "image", "video", "audio", "file")


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("room_id", "seq"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id"), index=True)
    seq: Mapped[int] = mapped_column(Integer, index=True)
    sender_id: Mapped[str] = mapped_column(String(64), index=True)
    sender_name: Mapped[str] = mapped_column(String(200))
    sender_role: Mapped[str] = mapped_column(String(32))
    kind: Mapped[str] = mapped_column(String(10))
    text: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    attachment_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    attachment_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attachment_size: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    @property
    def attachment(self) -> dict | None:
        if self.attachment_url is None:
            return None
        return {
            "url": self.attachment_url,
            "fileName": self.attachment_name,
            "sizeLabel": self.attachment_size,
        }


def message_payload(msg: Message) -> dict:
    return {
        "id": msg.id,
        "roomId": msg.room_id,
        "seq": msg.seq,
        "senderId": msg.sender_id,
        "senderName": msg.sender_name,
        "senderRole": msg.sender_role,
        "kind": msg.kind,
        "text": msg.text,
        "attachment": msg.attachment,
        "sentAt": isoformat(msg.sent_at),
        "deliveryState": "sent",
    }
