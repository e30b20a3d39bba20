from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool
from starlette.responses import StreamingResponse

from app.core.identity import Identity, identity_from_params
from app.Chat.chat_gateway import ChatGateway, get_gateway


router = APIRouter(prefix="/chat/sse", tags=["sse"])

logger = logging.getLogger(__name__)


def _frame(event: str, data, event_id=None) -> str:
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(data)}")
    return "\n".join(lines) + "\n\n"


async def room_event_stream(gateway: ChatGateway, me: Identity, room_id: int) -> AsyncGenerator[str, None]:
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def on_messages(snapshot):
        loop.call_soon_threadsafe(queue.put_nowait, ("messages", snapshot))

    def on_typing(snapshot):
        loop.call_soon_threadsafe(queue.put_nowait, ("typing", snapshot))

    logger.info("[SSE] subscribe room=%s user=%s", room_id, me.user_id)
    messages = await run_in_threadpool(gateway.subscribe_room, me, room_id, on_messages)
    typing = None
    try:
        typing = await run_in_threadpool(gateway.subscribe_typing, me, room_id, on_typing)
        while True:
            event, snapshot = await queue.get()
            last_seq = snapshot[-1]["seq"] if event == "messages" and snapshot else None
            yield _frame(event, snapshot, last_seq)
    finally:
        messages.cancel()
        if typing is not None:
            typing.cancel()
        logger.info("[SSE] closed room=%s user=%s", room_id, me.user_id)


@router.get("/rooms/{room_id}")
async def sse_room(room_id: int, request: Request, gateway: ChatGateway = Depends(get_gateway)):
    me = identity_from_params(request.query_params)
    if me is None:
        raise HTTPException(status_code=401, detail="missing userId")
    # membership errors surface as HTTP errors before streaming starts
    await run_in_threadpool(gateway.get_room, me, room_id)
    return EventSourceResponse(room_event_stream(gateway, me, room_id))


class EventSourceResponse(StreamingResponse):
    media_type = "text/event-stream"
