from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from app.core.config import settings
from app.core.identity import Identity, get_identity
from app.Chat.blob_store import BlobStoreClient, get_blob_store
from app.Chat.chat_gateway import ChatGateway, get_gateway


router = APIRouter(prefix="/chat", tags=["chat"])


class DirectRoomCreate(BaseModel):
    otherUserId: str
    otherUserName: Optional[str] = None


class GroupRoomCreate(BaseModel):
    participantIds: List[str]
    name: str


class AttachmentIn(BaseModel):
    url: str
    fileName: Optional[str] = None
    sizeLabel: Optional[str] = None
    size: Optional[int] = None  # bytes, used when sizeLabel is absent


class MessageCreate(BaseModel):
    kind: str = "text"
    text: Optional[str] = None
    attachment: Optional[AttachmentIn] = None


class TypingUpdate(BaseModel):
    isTyping: bool


@router.post("/rooms/direct")
def _create_or_find_direct_room(
    body: DirectRoomCreate,
    me: Identity = Depends(get_identity),
    gateway: ChatGateway = Depends(get_gateway),
):
    room = gateway.create_or_find_direct_room(me, body.otherUserId, body.otherUserName)
    return {"roomId": room["id"]}


@router.post("/rooms/group")
def _create_group_room(
    body: GroupRoomCreate,
    me: Identity = Depends(get_identity),
    gateway: ChatGateway = Depends(get_gateway),
):
    room = gateway.create_group_room(me, body.participantIds, body.name)
    return {"roomId": room["id"]}


@router.get("/rooms")
def _list_my_rooms(me: Identity = Depends(get_identity), gateway: ChatGateway = Depends(get_gateway)):
    return {"items": gateway.list_my_rooms(me)}


@router.get("/rooms/{room_id}")
def _get_room(room_id: int, me: Identity = Depends(get_identity), gateway: ChatGateway = Depends(get_gateway)):
    return gateway.get_room(me, room_id)


@router.get("/rooms/{room_id}/messages")
def _list_messages(
    room_id: int,
    cursor: Optional[int] = None,
    limit: Optional[int] = None,
    me: Identity = Depends(get_identity),
    gateway: ChatGateway = Depends(get_gateway),
):
    if limit is not None:
        limit = max(min(limit, settings.message_page_max), 1)
    items = gateway.list_messages(me, room_id, cursor=cursor, limit=limit)
    next_cursor = items[-1]["seq"] if items else cursor
    return {"items": items, "nextCursor": next_cursor}


@router.post("/rooms/{room_id}/messages")
def _send_message(
    room_id: int,
    body: MessageCreate,
    me: Identity = Depends(get_identity),
    gateway: ChatGateway = Depends(get_gateway),
):
    attachment = body.attachment.model_dump() if body.attachment else None
    msg = gateway.send_message(me, room_id, kind=body.kind, text=body.text, attachment=attachment)
    return {"message": msg}


@router.put("/rooms/{room_id}/typing")
def _set_typing(
    room_id: int,
    body: TypingUpdate,
    me: Identity = Depends(get_identity),
    gateway: ChatGateway = Depends(get_gateway),
):
    gateway.set_typing(me, room_id, body.isTyping)
    return {"ok": True}


@router.get("/rooms/{room_id}/typing")
def _list_typing(room_id: int, me: Identity = Depends(get_identity), gateway: ChatGateway = Depends(get_gateway)):
    return {"items": gateway.list_typing(me, room_id)}


@router.post("/attachments")
async def _upload_attachment(
    request: Request,
    fileName: str,
    me: Identity = Depends(get_identity),
    store: BlobStoreClient = Depends(get_blob_store),
):
    content = await request.body()
    content_type = request.headers.get("content-type", "application/octet-stream")
    return await store.upload(file_name=fileName, content=content, content_type=content_type)
