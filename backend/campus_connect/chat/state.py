"""Client-side state for a chat session.

Rooms, messages, profiles and notices are cached here and mutated from
two directions: the session's own requests (the row a write returned)
and the change feed (the echo of that write, or writes by others). Both
go through the same ``apply_*`` entry point for the entity, which merges
by id, so replaying an event or receiving an echo never duplicates rows.

Message lists are kept as id-keyed maps and sorted on read by
``(created_at, id)``, so out-of-order delivery never shows out of order.
"""
import logging
from typing import Dict, List, Optional, Union

from campus_connect.identity.schemas import Profile
from campus_connect.messages.schemas import Message
from campus_connect.notices.schemas import Notice
from campus_connect.realtime.feed import ChangeEvent, EventType
from campus_connect.rooms.schemas import Room

logger = logging.getLogger(__name__)

Kind = Union[EventType, str]


class ClientState:
    def __init__(self) -> None:
        self._rooms: Dict[str, Room] = {}
        self._messages: Dict[str, Dict[str, Message]] = {}
        self._profiles: Dict[str, Profile] = {}
        self._notices: Dict[str, Notice] = {}

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    @property
    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def room(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def messages(self, room_id: str) -> List[Message]:
        """Messages of *room_id*, ascending by creation time."""
        return sorted(
            self._messages.get(room_id, {}).values(),
            key=lambda m: (m.created_at, m.id),
        )

    @property
    def profiles(self) -> List[Profile]:
        return list(self._profiles.values())

    def profile(self, user_id: str) -> Optional[Profile]:
        return self._profiles.get(user_id)

    @property
    def notices(self) -> List[Notice]:
        """Newest first."""
        return sorted(
            self._notices.values(), key=lambda n: (n.created_at, n.id), reverse=True
        )

    # -----------------------------------------------------------------------
    # Merge entry points
    # -----------------------------------------------------------------------

    def apply_room(self, kind: Kind, room: Room) -> None:
        if EventType(kind) == EventType.DELETE:
            self._rooms.pop(room.id, None)
            self._messages.pop(room.id, None)
        else:
            self._rooms[room.id] = room

    def apply_message(self, kind: Kind, message: Message) -> None:
        room_messages = self._messages.setdefault(message.room_id, {})
        if EventType(kind) == EventType.DELETE:
            room_messages.pop(message.id, None)
            return
        room_messages[message.id] = self._with_sender(message, room_messages.get(message.id))

    def apply_profile(self, kind: Kind, profile: Profile) -> None:
        if EventType(kind) == EventType.DELETE:
            self._profiles.pop(profile.id, None)
        else:
            self._profiles[profile.id] = profile

    def apply_notice(self, kind: Kind, notice: Notice) -> None:
        if EventType(kind) == EventType.DELETE:
            self._notices.pop(notice.id, None)
        else:
            self._notices[notice.id] = notice

    def apply_event(self, event: ChangeEvent) -> None:
        """Route a change-feed event to the matching entry point."""
        row = event.row
        if event.table == "rooms":
            self.apply_room(event.eventType, Room(**row))
        elif event.table == "messages":
            self.apply_message(event.eventType, Message(**row))
        elif event.table == "profiles":
            self.apply_profile(event.eventType, Profile(**row))
        elif event.table == "notices":
            self.apply_notice(event.eventType, Notice(**row))
        else:
            logger.debug("[State] Ignoring event for table %s", event.table)

    # Bulk forms used after a (re)load; each row still merges by id.

    def merge_rooms(self, rooms: List[Room]) -> None:
        for room in rooms:
            self.apply_room(EventType.INSERT, room)

    def merge_messages(self, messages: List[Message]) -> None:
        for message in messages:
            self.apply_message(EventType.INSERT, message)

    def merge_profiles(self, profiles: List[Profile]) -> None:
        for profile in profiles:
            self.apply_profile(EventType.INSERT, profile)

    def merge_notices(self, notices: List[Notice]) -> None:
        for notice in notices:
            self.apply_notice(EventType.INSERT, notice)

    def forget_messages(self, room_id: str) -> None:
        self._messages.pop(room_id, None)

    def clear(self) -> None:
        self._rooms.clear()
        self._messages.clear()
        self._profiles.clear()
        self._notices.clear()

    def _with_sender(self, message: Message, previous: Optional[Message]) -> Message:
        # Feed rows carry no sender fields; keep known ones or look them up.
        if message.sender_name is not None or message.sender_credential is not None:
            return message
        if previous is not None and previous.sender_name is not None:
            return message.model_copy(update={
                "sender_name": previous.sender_name,
                "sender_credential": previous.sender_credential,
            })
        sender = self._profiles.get(message.sender_id)
        if sender is None:
            return message
        return message.model_copy(update={
            "sender_name": sender.full_name,
            "sender_credential": sender.student_id,
        })
