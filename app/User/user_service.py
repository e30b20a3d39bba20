from typing import List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import NotFound, StorageUnavailable, ValidationError
from app.User.user import ROLES, ChatUser


def upsert_profile(
    db: Session,
    *,
    user_id: str,
    name: str,
    role: str,
    school_ids: Sequence[int] = (),
    class_ids: Sequence[int] = (),
) -> ChatUser:
    if role not in ROLES:
        raise ValidationError(f"unknown role {role!r}", code="INVALID_ROLE")
    try:
        user = db.get(ChatUser, user_id)
        if user is None:
            user = ChatUser(id=user_id)
            db.add(user)
        user.name = name
        user.role = role
        user.school_ids = list(school_ids)
        user.class_ids = list(class_ids)
        user.updated_at = utcnow()
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageUnavailable("could not store profile") from exc
    return user


def _shares_class(a: ChatUser, b: ChatUser) -> bool:
    return bool(set(a.class_ids or []) & set(b.class_ids or []))


def can_chat_with(viewer: ChatUser, other: ChatUser, school_id: int) -> bool:
    if other.id == viewer.id:
        return False
    if school_id not in (other.school_ids or []):
        return False
    if viewer.role == "student":
        return other.role in ("teacher", "student") and _shares_class(viewer, other)
    if viewer.role == "teacher":
        if other.role == "student":
            return _shares_class(viewer, other)
        return other.role in ("teacher", "school_admin")
    # admins reach everyone in the school
    return True


def list_contacts(db: Session, *, user_id: str, school_id: Optional[int] = None) -> List[ChatUser]:
    try:
        viewer = db.get(ChatUser, user_id)
        if viewer is None:
            raise NotFound(f"no profile for user {user_id}", code="USER_NOT_FOUND")
        if school_id is None:
            if not viewer.school_ids:
                return []
            school_id = viewer.school_ids[0]
        candidates = db.query(ChatUser).order_by(ChatUser.name.asc()).all()
    except SQLAlchemyError as exc:
        raise StorageUnavailable("could not read profiles") from exc
    return [u for u in candidates if can_chat_with(viewer, u, school_id)]
