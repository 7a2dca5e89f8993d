"""Message store: room-scoped append and bounded-lookback reads."""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from campus_connect.chat.anonymity import stamp_anonymous
from campus_connect.config import ChatSettings
from campus_connect.errors import InputValidationError, NotFoundError
from campus_connect.rooms.schemas import Room
from campus_connect.store import TableStore, utcnow

from .schemas import Message

logger = logging.getLogger(__name__)

_JOINED_SELECT = """
    SELECT m.id, m.room_id, m.sender_id, m.content, m.is_anonymous, m.created_at,
           p.full_name, p.student_id
    FROM messages m
    LEFT JOIN profiles p ON p.id = m.sender_id
"""

_JOINED_COLUMNS = [
    "id", "room_id", "sender_id", "content", "is_anonymous", "created_at",
    "sender_name", "sender_credential",
]


class MessageStore:
    """Appends and reads messages; admin purge by age."""

    def __init__(self, store: TableStore, settings: ChatSettings) -> None:
        self._store = store
        self._settings = settings

    @property
    def default_lookback(self) -> timedelta:
        return timedelta(days=self._settings.lookback_days)

    async def load_recent(
        self,
        room_id: str,
        lookback: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> List[Message]:
        """Messages of *room_id* newer than ``now - lookback``, oldest first.

        Sender name and credential are joined in; a missing sender profile
        leaves both as None.
        """
        since = (now or utcnow()) - (lookback or self.default_lookback)
        rows = await self._store.run(
            self._store.db.fetchall,
            _JOINED_SELECT
            + " WHERE m.room_id = ? AND m.created_at > ?"
            + " ORDER BY m.created_at ASC, m.id ASC",
            [room_id, since],
        )
        return [Message(**dict(zip(_JOINED_COLUMNS, row))) for row in rows]

    def validate_text(self, text: str) -> str:
        if not text or not text.strip():
            raise InputValidationError("Message content is required")
        if len(text) > self._settings.max_message_length:
            raise InputValidationError(
                f"Message exceeds {self._settings.max_message_length} characters"
            )
        return text

    async def send(self, room: Room, sender_id: str, text: str) -> Message:
        """Append a message to *room*.

        The anonymous flag is taken from the room kind now and stored with
        the message; it is never derived from the room again.
        """
        text = self.validate_text(text)
        sender = await self._store.run(self._store.get, "profiles", sender_id)
        if sender is None:
            raise NotFoundError(f"Sender {sender_id} not found")
        created = (await self._store.run(self._store.insert, "messages", [{
            "room_id": room.id,
            "sender_id": sender_id,
            "content": text,
            "is_anonymous": stamp_anonymous(room.type),
        }]))[0]
        logger.debug("[Messages] %s sent %s to room %s", sender_id, created["id"], room.id)
        return Message(
            **created,
            sender_name=sender["full_name"],
            sender_credential=sender["student_id"],
        )

    async def purge_older_than(self, cutoff: datetime) -> int:
        """Delete every message, in every room, created before *cutoff*."""
        removed = await self._store.run(self._store.delete, "messages", before=cutoff)
        logger.info("[Messages] Purged %d messages older than %s", len(removed), cutoff.isoformat())
        return len(removed)
