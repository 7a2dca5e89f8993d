"""Presence tracking: online flags plus a last-seen liveness timeout.

``set_online`` is the session start/end signal. Because the end signal is
best-effort (a client can vanish without sending it), every update also
stamps ``last_seen_at`` and ``expire_stale`` clears the online flag of
identities that have not been seen for ``stale_after_seconds``.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from campus_connect.config import PresenceSettings
from campus_connect.errors import NotFoundError
from campus_connect.identity.schemas import Profile
from campus_connect.store import TableStore, utcnow

logger = logging.getLogger(__name__)


class PresenceTracker:
    def __init__(self, store: TableStore, settings: PresenceSettings) -> None:
        self._store = store
        self._settings = settings

    async def set_online(self, user_id: str, online: bool) -> Profile:
        """Set the online flag. Repeating the same value is harmless."""
        return await self._touch(user_id, {"is_online": bool(online)})

    async def heartbeat(self, user_id: str) -> Profile:
        """Refresh ``last_seen_at`` and keep the identity online."""
        return await self._touch(user_id, {"is_online": True})

    async def expire_stale(self, now: Optional[datetime] = None) -> List[str]:
        """Mark identities offline whose last-seen time is past the threshold.

        Returns:
            Ids of the identities that were flipped offline.
        """
        threshold = (now or utcnow()) - timedelta(seconds=self._settings.stale_after_seconds)
        stale = await self._store.run(self._flip_stale, threshold)
        if stale:
            logger.info("[Presence] Expired %d stale sessions", len(stale))
        return stale

    def _flip_stale(self, threshold: datetime) -> List[str]:
        online = self._store.query("profiles", eq={"is_online": True})
        stale = [
            row["id"] for row in online
            if row["last_seen_at"] is None or row["last_seen_at"] < threshold
        ]
        if stale:
            self._store.update("profiles", eq={"id": stale}, patch={"is_online": False})
        return stale

    async def _touch(self, user_id: str, patch: dict) -> Profile:
        patch = dict(patch, last_seen_at=utcnow())
        rows = await self._store.run(
            self._store.update, "profiles", eq={"id": user_id}, patch=patch
        )
        if not rows:
            raise NotFoundError(f"Profile {user_id} not found")
        logger.debug("[Presence] %s online=%s", user_id, rows[0]["is_online"])
        return Profile(**rows[0])
