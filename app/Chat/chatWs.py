from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Tuple

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from app.core.errors import ChatError
from app.core.identity import identity_from_params
from app.Chat.chat_gateway import ChatGateway, get_gateway
from app.Chat.fanout import Subscription


router = APIRouter()

logger = logging.getLogger(__name__)


def _pusher(loop: asyncio.AbstractEventLoop, outbox: asyncio.Queue) -> Callable[[Dict[str, Any]], None]:
    # fan-out runs on worker threads; hop back onto this socket's loop
    def push(event: Dict[str, Any]) -> None:
        loop.call_soon_threadsafe(outbox.put_nowait, event)
    return push


async def _drain(ws: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        event = await outbox.get()
        await ws.send_text(json.dumps(event))


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket, gateway: ChatGateway = Depends(get_gateway)) -> None:
    me = identity_from_params(ws.query_params)
    if me is None:
        await ws.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await ws.accept()
    logger.info("[WS] connected user=%s", me.user_id)

    outbox: asyncio.Queue = asyncio.Queue()
    push = _pusher(asyncio.get_running_loop(), outbox)
    writer = asyncio.create_task(_drain(ws, outbox))
    handles: Dict[Tuple[str, int], Subscription] = {}

    try:
        while True:
            raw = await ws.receive_text()
            logger.debug("[WS] recv: %s", raw[:200])
            try:
                data: Dict[str, Any] = json.loads(raw)
            except json.JSONDecodeError:
                push({"type": "error", "code": "invalid_json", "message": "invalid_json"})
                continue
            if not isinstance(data, dict):
                push({"type": "error", "code": "invalid_json", "message": "expected an object"})
                continue

            event_type = data.get("type")
            client_id = data.get("clientId")
            try:
                if event_type in ("subscribe_room", "subscribe_typing"):
                    rid = int(data.get("roomId"))
                    topic = "messages" if event_type == "subscribe_room" else "typing"
                    if (topic, rid) not in handles:
                        def on_update(snapshot, rid=rid, topic=topic):
                            push({"type": topic, "roomId": rid, "data": snapshot})

                        subscribe = gateway.subscribe_room if topic == "messages" else gateway.subscribe_typing
                        handles[(topic, rid)] = await run_in_threadpool(subscribe, me, rid, on_update)
                        logger.info("[WS] %s subscribed room=%s topic=%s", me.user_id, rid, topic)
                    push({"type": "subscribed", "topic": topic, "roomId": rid})
                    continue

                if event_type in ("unsubscribe_room", "unsubscribe_typing"):
                    rid = int(data.get("roomId"))
                    topic = "messages" if event_type == "unsubscribe_room" else "typing"
                    handle = handles.pop((topic, rid), None)
                    if handle is not None:
                        handle.cancel()
                    push({"type": "unsubscribed", "topic": topic, "roomId": rid})
                    continue

                if event_type == "send_message":
                    msg = await run_in_threadpool(
                        lambda: gateway.send_message(
                            me,
                            int(data.get("roomId")),
                            kind=data.get("kind") or "text",
                            text=data.get("text"),
                            attachment=data.get("attachment"),
                        )
                    )
                    push({"type": "ack", "clientId": client_id, "data": msg})
                    continue

                if event_type == "typing":
                    await run_in_threadpool(
                        gateway.set_typing, me, int(data.get("roomId")), bool(data.get("isTyping"))
                    )
                    continue
            except ChatError as exc:
                push({"type": "error", "clientId": client_id, "code": exc.code, "message": exc.message})
                continue
            except (TypeError, ValueError):
                push({"type": "error", "clientId": client_id, "code": "invalid_request", "message": "roomId must be an integer"})
                continue

            push({"type": "error", "code": "unknown_event", "message": "unknown_event"})
    except WebSocketDisconnect:
        pass
    finally:
        # every subscription dies with the socket
        for handle in handles.values():
            handle.cancel()
        handles.clear()
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
        except Exception:
            # peer vanished while a frame was in flight
            logger.debug("[WS] writer stopped user=%s", me.user_id, exc_info=True)
        logger.info("[WS] disconnected user=%s", me.user_id)
