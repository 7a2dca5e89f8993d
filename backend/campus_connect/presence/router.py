"""Presence endpoints."""
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from campus_connect.chat.backend import get_backend

router = APIRouter(prefix="/presence", tags=["presence"])


class PresenceUpdate(BaseModel):
    online: bool


@router.put("/{user_id}")
async def set_online(user_id: str, body: PresenceUpdate) -> JSONResponse:
    profile = await get_backend().presence.set_online(user_id, body.online)
    return JSONResponse(profile.model_dump(mode="json"))


@router.post("/{user_id}/heartbeat")
async def heartbeat(user_id: str) -> JSONResponse:
    """Keep an identity online; clients call this periodically."""
    profile = await get_backend().presence.heartbeat(user_id)
    return JSONResponse(profile.model_dump(mode="json"))
