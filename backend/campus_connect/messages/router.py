"""Message endpoints: recent history, send and admin purge."""
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from campus_connect.chat.backend import get_backend
from campus_connect.store import utcnow

from .schemas import PurgeRequest, SendMessageRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["messages"])


@router.get("/rooms/{room_id}/messages")
async def load_recent(
    room_id: str,
    lookback_hours: Optional[float] = Query(None, gt=0, description="Defaults to chat.lookback_days"),
) -> JSONResponse:
    """Messages of a room inside the lookback window, oldest first.

    Args:
        room_id: Room to read.
        lookback_hours: Window size; the configured default when omitted.
    """
    backend = get_backend()
    await backend.rooms.get_room(room_id)
    lookback = timedelta(hours=lookback_hours) if lookback_hours else None
    messages = await backend.messages.load_recent(room_id, lookback)
    return JSONResponse([m.model_dump(mode="json") for m in messages])


@router.post("/rooms/{room_id}/messages", status_code=201)
async def send_message(room_id: str, body: SendMessageRequest) -> JSONResponse:
    backend = get_backend()
    room = await backend.rooms.get_room(room_id)
    message = await backend.messages.send(room, body.sender_id, body.content)
    return JSONResponse(message.model_dump(mode="json"), status_code=201)


@router.post("/messages/purge")
async def purge_messages(body: PurgeRequest) -> JSONResponse:
    """Delete messages older than ``older_than_days`` in every room (admin)."""
    cutoff = utcnow() - timedelta(days=body.older_than_days)
    deleted = await get_backend().messages.purge_older_than(cutoff)
    return JSONResponse({"deleted": deleted, "cutoff": cutoff.isoformat()})
