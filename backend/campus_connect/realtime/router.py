"""WebSocket surface of the change feed.

    WebSocket /ws/changes/{table}?room_id=<id>

Frames sent to the client:
    - {"type": "subscribed", "table": ..., "room_id": ...} once, on connect
    - {"type": "change", "table": ..., "eventType": ..., "new": ..., "old": ...}
    - {"type": "disconnected", "reason": ...} when the feed drops the
      subscription; the socket is then closed with 1012 and the client is
      expected to reconnect and re-query

``room_id`` narrows a ``messages`` subscription to one room. Frames from
the client are read only to notice the disconnect. The feed subscription
is released on every exit path.
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from campus_connect.chat.backend import get_backend
from campus_connect.errors import FeedDisconnectedError
from campus_connect.store import TABLE_COLUMNS

from .feed import Subscription

logger = logging.getLogger(__name__)

router = APIRouter()


async def _forward(websocket: WebSocket, sub: Subscription) -> None:
    try:
        async for event in sub:
            await websocket.send_json({"type": "change", **event.model_dump(mode="json")})
    except FeedDisconnectedError as e:
        logger.warning("[ws/changes] %s", e)
        await websocket.send_json({"type": "disconnected", "reason": sub.disconnect_reason})
        await websocket.close(code=1012)  # 1012 = Service Restart


async def _until_client_leaves(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass


@router.websocket("/ws/changes/{table}")
async def changes_endpoint(
    websocket: WebSocket,
    table: str,
    room_id: Optional[str] = Query(None, description="Only messages of this room"),
) -> None:
    if table not in TABLE_COLUMNS:
        await websocket.close(code=1008)  # 1008 = Policy Violation
        return

    match = ("room_id", room_id) if room_id and table == "messages" else None
    # Subscribe before accepting so nothing written after the handshake is missed.
    sub = get_backend().feed.subscribe(table, match)
    tasks = []
    try:
        await websocket.accept()
        await websocket.send_json({"type": "subscribed", "table": table, "room_id": room_id})
        tasks = [
            asyncio.create_task(_forward(websocket, sub)),
            asyncio.create_task(_until_client_leaves(websocket)),
        ]
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        # Release before the first await: a cancelled endpoint may be
        # cancelled again at any await below.
        sub.release()
        logger.debug("[ws/changes] Released %s subscription %s", table, sub.id)
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error("[ws/changes] %s stream ended with error: %s", table, result)
