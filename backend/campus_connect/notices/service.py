"""Notice board: admin-managed announcements shown newest first."""
import logging
from typing import Any, Dict, List, Optional

from campus_connect.errors import InputValidationError, NotFoundError
from campus_connect.store import TableStore

from .schemas import Notice, NoticeColor

logger = logging.getLogger(__name__)


class NoticeBoard:
    def __init__(self, store: TableStore) -> None:
        self._store = store

    async def list_notices(self) -> List[Notice]:
        rows = await self._store.run(self._store.query, "notices", descending=True)
        return [Notice(**row) for row in rows]

    async def create_notice(
        self,
        title: str,
        content: Optional[str] = None,
        color: NoticeColor = NoticeColor.BLUE,
    ) -> Notice:
        title = (title or "").strip()
        if not title:
            raise InputValidationError("Notice title is required")
        row = (await self._store.run(self._store.insert, "notices", [{
            "title": title,
            "content": content,
            "color": NoticeColor(color).value,
        }]))[0]
        logger.info("[Notices] Created notice %s", row["id"])
        return Notice(**row)

    async def update_notice(self, notice_id: str, patch: Dict[str, Any]) -> Notice:
        patch = {k: v for k, v in patch.items() if v is not None}
        if "color" in patch:
            patch["color"] = NoticeColor(patch["color"]).value
        if "title" in patch and not str(patch["title"]).strip():
            raise InputValidationError("Notice title is required")
        if not patch:
            return await self._get(notice_id)
        rows = await self._store.run(
            self._store.update, "notices", eq={"id": notice_id}, patch=patch
        )
        if not rows:
            raise NotFoundError(f"Notice {notice_id} not found")
        return Notice(**rows[0])

    async def delete_notice(self, notice_id: str) -> None:
        if not await self._store.run(self._store.delete, "notices", eq={"id": notice_id}):
            raise NotFoundError(f"Notice {notice_id} not found")
        logger.info("[Notices] Deleted notice %s", notice_id)

    async def _get(self, notice_id: str) -> Notice:
        row = await self._store.run(self._store.get, "notices", notice_id)
        if row is None:
            raise NotFoundError(f"Notice {notice_id} not found")
        return Notice(**row)
