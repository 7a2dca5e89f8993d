"""Anonymity policy for anonymous-room messages.

Masking is purely a display-time decision. The stored message keeps its
true sender id and content; only the label shown to a viewer changes.
The anonymous flag itself is decided once, when the message is built,
from the kind of the room it is sent to.
"""
from typing import Set, Union

from campus_connect.config import ChatSettings
from campus_connect.errors import InputValidationError
from campus_connect.messages.schemas import Message
from campus_connect.rooms.schemas import Room, RoomKind


def stamp_anonymous(room_kind: Union[RoomKind, str]) -> bool:
    """Anonymous flag for a new message sent to a room of *room_kind*."""
    return RoomKind(room_kind) == RoomKind.ANONYMOUS


def should_reveal_sender(
    message: Message, viewer_is_admin: bool, reveal_toggle_on: bool
) -> bool:
    """Whether *message*'s true sender may be shown to this viewer.

    Non-anonymous messages are always revealed. Anonymous ones only to an
    admin viewer whose reveal toggle for the room is on.
    """
    if not message.is_anonymous:
        return True
    return viewer_is_admin and reveal_toggle_on


def sender_label(
    message: Message,
    *,
    viewer_is_admin: bool,
    reveal_toggle_on: bool,
    settings: ChatSettings,
    admin_credential: str,
) -> str:
    """Name to render next to *message*."""
    if should_reveal_sender(message, viewer_is_admin, reveal_toggle_on):
        return message.sender_name or settings.unknown_sender_label
    if message.sender_credential == admin_credential:
        return settings.admin_ghost_label
    return settings.anonymous_label


class RevealToggles:
    """Per-room reveal switches for admins.

    Ephemeral (never persisted), off by default, only actionable by an
    admin viewer on an anonymous-kind room.
    """

    def __init__(self) -> None:
        self._enabled: Set[str] = set()

    def is_on(self, room_id: str) -> bool:
        return room_id in self._enabled

    def toggle(self, room: Room, viewer_is_admin: bool) -> bool:
        """Flip the switch for *room* and return its new state."""
        if not viewer_is_admin:
            raise InputValidationError("Only admins can reveal anonymous senders")
        if room.type != RoomKind.ANONYMOUS:
            raise InputValidationError("Reveal is only available in anonymous rooms")
        if room.id in self._enabled:
            self._enabled.discard(room.id)
            return False
        self._enabled.add(room.id)
        return True

    def reset(self) -> None:
        self._enabled.clear()
