"""Room directory endpoints."""
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from campus_connect.chat.backend import get_backend

from .schemas import DirectMessageRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.get("")
async def list_rooms() -> JSONResponse:
    rooms = await get_backend().rooms.list_rooms()
    return JSONResponse([r.model_dump(mode="json") for r in rooms])


@router.post("/defaults")
async def ensure_default_rooms() -> JSONResponse:
    """Seed the default group and anonymous rooms on an empty directory.

    Returns:
        JSON array of all rooms after the bootstrap.
    """
    rooms = await get_backend().rooms.ensure_default_rooms()
    return JSONResponse([r.model_dump(mode="json") for r in rooms])


@router.post("/dm")
async def open_direct_message(body: DirectMessageRequest) -> JSONResponse:
    """Return the direct-message room for a pair of identities.

    The room is created on first contact; argument order is irrelevant.
    """
    room = await get_backend().rooms.open_direct_message(body.self_id, body.other_id)
    return JSONResponse(room.model_dump(mode="json"))


@router.delete("/{room_id}")
async def delete_room(room_id: str) -> JSONResponse:
    """Delete a room together with all of its messages (admin)."""
    removed = await get_backend().rooms.delete_room(room_id)
    logger.info("[rooms] Deleted %s (%d messages)", room_id, removed)
    return JSONResponse({"deleted": room_id, "messages_deleted": removed})
