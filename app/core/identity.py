from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException


@dataclass(frozen=True)
class Identity:
    """Caller as vouched for by the external auth service; trusted as-is."""

    user_id: str
    name: str
    role: str


def get_identity(
    x_user_id: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Identity:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="missing X-User-Id")
    return Identity(
        user_id=x_user_id,
        name=x_user_name or x_user_id,
        role=x_user_role or "student",
    )


def identity_from_params(params) -> Optional[Identity]:
    # WebSocket and EventSource clients cannot set headers
    user_id = params.get("userId")
    if not user_id:
        return None
    return Identity(
        user_id=str(user_id),
        name=params.get("name") or str(user_id),
        role=params.get("role") or "student",
    )
