from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.identity import Identity, get_identity
from app.db.session import get_db
from app.User.user import user_payload
from app.User.user_service import list_contacts, upsert_profile

router = APIRouter(prefix="/user", tags=["user"])


class ProfileSync(BaseModel):
    name: str
    role: str
    schoolIds: List[int] = []
    classIds: List[int] = []


@router.put("/profiles/{user_id}")
def _sync_profile(user_id: str, body: ProfileSync, db: Session = Depends(get_db)):
    user = upsert_profile(
        db,
        user_id=user_id,
        name=body.name,
        role=body.role,
        school_ids=body.schoolIds,
        class_ids=body.classIds,
    )
    return user_payload(user)


@router.get("/contacts")
def _list_contacts(
    schoolId: Optional[int] = None,
    me: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    # contacts a direct chat may be opened with
    items = list_contacts(db, user_id=me.user_id, school_id=schoolId)
    return {"items": [user_payload(u) for u in items]}
