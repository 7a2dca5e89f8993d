"""Notice board endpoints."""
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from campus_connect.chat.backend import get_backend

from .schemas import CreateNoticeRequest, UpdateNoticeRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notices", tags=["notices"])


@router.get("")
async def list_notices() -> JSONResponse:
    """All notices, newest first."""
    notices = await get_backend().notices.list_notices()
    return JSONResponse([n.model_dump(mode="json") for n in notices])


@router.post("", status_code=201)
async def create_notice(body: CreateNoticeRequest) -> JSONResponse:
    notice = await get_backend().notices.create_notice(body.title, body.content, body.color)
    return JSONResponse(notice.model_dump(mode="json"), status_code=201)


@router.put("/{notice_id}")
async def update_notice(notice_id: str, body: UpdateNoticeRequest) -> JSONResponse:
    """Patch a notice; fields left out of the body are unchanged."""
    notice = await get_backend().notices.update_notice(
        notice_id, body.model_dump(exclude_unset=True)
    )
    return JSONResponse(notice.model_dump(mode="json"))


@router.delete("/{notice_id}")
async def delete_notice(notice_id: str) -> JSONResponse:
    await get_backend().notices.delete_notice(notice_id)
    return JSONResponse({"deleted": notice_id})
