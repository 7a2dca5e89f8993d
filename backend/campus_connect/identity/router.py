"""Login, logout and student directory endpoints."""
import logging

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from campus_connect.chat.backend import get_backend

from .schemas import LoginRequest, LoginResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["identity"])


@router.post("/auth/login")
async def login(body: LoginRequest) -> JSONResponse:
    """Resolve (or create) the identity for a credential and mark it online.

    Args:
        body: Display name and credential.

    Returns:
        The session record (carrying the name just typed) and the stored
        profile.
    """
    backend = get_backend()
    profile = await backend.identity.resolve(body.name, body.credential)
    profile = await backend.presence.set_online(profile.id, True)
    user = backend.identity.session_for(profile, body.name)
    logger.info("[auth/login] %s (%s)", user.id, "admin" if user.isAdmin else "student")
    return JSONResponse(LoginResponse(user=user, profile=profile).model_dump(mode="json"))


@router.post("/auth/logout/{user_id}")
async def logout(user_id: str) -> JSONResponse:
    profile = await get_backend().presence.set_online(user_id, False)
    return JSONResponse({"id": profile.id, "is_online": profile.is_online})


@router.get("/profiles")
async def list_profiles() -> JSONResponse:
    profiles = await get_backend().identity.list_profiles()
    return JSONResponse([p.model_dump(mode="json") for p in profiles])


@router.get("/profiles/search")
async def search_profiles(q: str = Query("", description="Name fragment")) -> JSONResponse:
    """Case-insensitive name search for the student directory."""
    backend = get_backend()
    profiles = await backend.identity.search(q, limit=backend.settings.chat.directory_search_limit)
    return JSONResponse([p.model_dump(mode="json") for p in profiles])
