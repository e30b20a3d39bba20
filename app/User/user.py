from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.model_base import Base


ROLES = ("student", "teacher", "school_admin", "super_admin")


class ChatUser(Base):
    """Profile mirror pushed by the school backend; used for contact lookup."""

    __tablename__ = "chat_users"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    role: Mapped[str] = mapped_column(String(32), index=True)
    school_ids: Mapped[list] = mapped_column(JSON, default=list)
    class_ids: Mapped[list] = mapped_column(JSON, default=list)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


def user_payload(user: ChatUser) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "role": user.role,
        "schoolIds": list(user.school_ids or []),
        "classIds": list(user.class_ids or []),
    }
