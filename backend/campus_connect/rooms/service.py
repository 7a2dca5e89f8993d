"""Room directory: listing, first-run bootstrap and direct-message rooms."""
import logging
from typing import List, Optional, Tuple

from campus_connect.config import ChatSettings
from campus_connect.errors import ConflictError, InputValidationError, NotFoundError
from campus_connect.store import TableStore

from .schemas import Room, RoomKind

logger = logging.getLogger(__name__)


def canonical_pair(a: str, b: str) -> Tuple[str, str]:
    """The two identity ids in lexicographic order."""
    return (a, b) if a <= b else (b, a)


def canonical_dm_key(a: str, b: str, separator: str = ":") -> str:
    """Order-independent key for the dm room between *a* and *b*."""
    return separator.join(canonical_pair(a, b))


class RoomDirectory:
    """Lists and creates rooms.

    Direct-message rooms are found through their ``dm_key`` column, which
    is unique in the store, so the same pair never yields two rooms.
    """

    def __init__(self, store: TableStore, settings: ChatSettings) -> None:
        self._store = store
        self._settings = settings

    async def list_rooms(self) -> List[Room]:
        return [Room(**row) for row in await self._store.run(self._store.query, "rooms")]

    async def get_room(self, room_id: str) -> Room:
        row = await self._store.run(self._store.get, "rooms", room_id)
        if row is None:
            raise NotFoundError(f"Room {room_id} not found")
        return Room(**row)

    async def ensure_default_rooms(self) -> List[Room]:
        """Seed one group and one anonymous room if no room exists yet.

        Only the "any room exists" check is made: once anything is there,
        the defaults are never recreated.

        Returns:
            All rooms after the bootstrap.
        """
        if await self._store.run(self._seed_if_empty):
            logger.info("[Rooms] Seeded default rooms")
        return await self.list_rooms()

    def _seed_if_empty(self) -> bool:
        # Check and insert run back to back on the single database worker.
        if self._store.count("rooms"):
            return False
        self._store.insert("rooms", [
            {"name": self._settings.default_group_room, "type": RoomKind.GROUP.value},
            {"name": self._settings.default_anonymous_room, "type": RoomKind.ANONYMOUS.value},
        ])
        return True

    async def find_direct_message(self, self_id: str, other_id: str) -> Optional[Room]:
        key = canonical_dm_key(self_id, other_id, self._settings.dm_separator)
        rows = await self._store.run(self._store.query, "rooms", eq={"dm_key": key}, limit=1)
        return Room(**rows[0]) if rows else None

    async def open_direct_message(self, self_id: str, other_id: str) -> Room:
        """Return the dm room for the pair, creating it on first contact.

        Argument order does not matter. A lost creation race is resolved
        by looking the winner's room up.
        """
        if not self_id or not other_id:
            raise InputValidationError("Both identity ids are required")
        if self_id == other_id:
            raise InputValidationError("Cannot open a direct message with yourself")

        existing = await self.find_direct_message(self_id, other_id)
        if existing is not None:
            return existing

        key = canonical_dm_key(self_id, other_id, self._settings.dm_separator)
        try:
            created = (await self._store.run(self._store.insert, "rooms", [
                {"name": key, "type": RoomKind.DM.value, "dm_key": key}
            ]))[0]
        except ConflictError:
            existing = await self.find_direct_message(self_id, other_id)
            if existing is None:
                raise
            return existing
        logger.info("[Rooms] Created dm room %s for %s", created["id"], key)
        return Room(**created)

    async def delete_room(self, room_id: str) -> int:
        """Delete a room and, explicitly, all of its messages.

        Returns:
            Number of messages removed with the room.
        """
        await self.get_room(room_id)
        removed = await self._store.run(self._store.delete, "messages", eq={"room_id": room_id})
        await self._store.run(self._store.delete, "rooms", eq={"id": room_id})
        logger.info("[Rooms] Deleted room %s with %d messages", room_id, len(removed))
        return len(removed)
