"""Tests for the anonymity display policy."""
from datetime import datetime

import pytest

from campus_connect.chat.anonymity import (
    RevealToggles,
    sender_label,
    should_reveal_sender,
    stamp_anonymous,
)
from campus_connect.config import ChatSettings
from campus_connect.errors import InputValidationError
from campus_connect.messages.schemas import Message
from campus_connect.rooms.schemas import Room, RoomKind

CHAT = ChatSettings()


def _message(anonymous: bool, **overrides) -> Message:
    data = {
        "id": "m1",
        "room_id": "r1",
        "sender_id": "u1",
        "content": "hello",
        "is_anonymous": anonymous,
        "created_at": datetime(2024, 1, 1),
        "sender_name": "Asha",
        "sender_credential": "9999999999",
    }
    data.update(overrides)
    return Message(**data)


def _room(kind: RoomKind, room_id: str = "r1") -> Room:
    return Room(id=room_id, name=kind.value, type=kind, created_at=datetime(2024, 1, 1))


def _label(message, viewer_is_admin=False, reveal_toggle_on=False):
    return sender_label(
        message,
        viewer_is_admin=viewer_is_admin,
        reveal_toggle_on=reveal_toggle_on,
        settings=CHAT,
        admin_credential="admin123",
    )


class TestStampAnonymous:
    @pytest.mark.parametrize("kind,expected", [
        (RoomKind.ANONYMOUS, True),
        (RoomKind.GROUP, False),
        (RoomKind.DM, False),
        ("anonymous", True),
    ])
    def test_stamp_follows_room_kind(self, kind, expected):
        assert stamp_anonymous(kind) is expected


class TestShouldRevealSender:
    """The reveal rule over every viewer/toggle combination."""

    @pytest.mark.parametrize("admin", [True, False])
    @pytest.mark.parametrize("toggle", [True, False])
    def test_named_messages_always_revealed(self, admin, toggle):
        assert should_reveal_sender(_message(False), admin, toggle) is True

    @pytest.mark.parametrize("admin,toggle,expected", [
        (True, True, True),
        (True, False, False),
        (False, True, False),
        (False, False, False),
    ])
    def test_anonymous_needs_admin_and_toggle(self, admin, toggle, expected):
        assert should_reveal_sender(_message(True), admin, toggle) is expected


class TestSenderLabel:
    """Tests for the rendered sender name."""

    def test_masked_for_student_viewer(self):
        assert _label(_message(True)) == "Anonymous Student"

    def test_revealed_for_admin_with_toggle(self):
        assert _label(_message(True), viewer_is_admin=True, reveal_toggle_on=True) == "Asha"

    def test_masked_admin_sender_shows_ghost(self):
        message = _message(True, sender_credential="admin123", sender_name="Dean")
        assert _label(message) == "Admin (Ghost)"

    def test_missing_sender_is_unknown(self):
        message = _message(False, sender_name=None, sender_credential=None)
        assert _label(message) == "Unknown"

    def test_policy_never_touches_message(self):
        message = _message(True)
        _label(message)
        assert message.sender_id == "u1"
        assert message.content == "hello"


class TestRevealToggles:
    """Tests for the per-room reveal switches."""

    def test_default_off(self):
        assert RevealToggles().is_on("r1") is False

    def test_admin_toggles_anonymous_room(self):
        toggles = RevealToggles()
        room = _room(RoomKind.ANONYMOUS)

        assert toggles.toggle(room, viewer_is_admin=True) is True
        assert toggles.is_on("r1") is True
        assert toggles.toggle(room, viewer_is_admin=True) is False

    def test_room_scoped(self):
        toggles = RevealToggles()
        toggles.toggle(_room(RoomKind.ANONYMOUS, "r1"), viewer_is_admin=True)

        assert toggles.is_on("r2") is False

    def test_student_cannot_toggle(self):
        with pytest.raises(InputValidationError):
            RevealToggles().toggle(_room(RoomKind.ANONYMOUS), viewer_is_admin=False)

    def test_only_anonymous_rooms(self):
        with pytest.raises(InputValidationError):
            RevealToggles().toggle(_room(RoomKind.GROUP), viewer_is_admin=True)

    def test_reset(self):
        toggles = RevealToggles()
        toggles.toggle(_room(RoomKind.ANONYMOUS), viewer_is_admin=True)
        toggles.reset()
        assert toggles.is_on("r1") is False
