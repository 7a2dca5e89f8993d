"""Tests for the client state merge."""
from datetime import datetime, timedelta

import pytest

from campus_connect.chat.state import ClientState
from campus_connect.identity.schemas import Profile
from campus_connect.messages.schemas import Message
from campus_connect.notices.schemas import Notice
from campus_connect.realtime.feed import ChangeEvent, EventType
from campus_connect.rooms.schemas import Room

T0 = datetime(2024, 3, 1, 12, 0, 0)


def _room_row(room_id="r1", name="General Campus"):
    return {"id": room_id, "name": name, "type": "group", "created_at": T0}


def _message_row(message_id, minutes, room_id="r1", sender_id="u1"):
    return {
        "id": message_id,
        "room_id": room_id,
        "sender_id": sender_id,
        "content": f"msg {message_id}",
        "is_anonymous": False,
        "created_at": T0 + timedelta(minutes=minutes),
    }


def _profile_row(user_id="u1", name="Asha", online=False):
    return {
        "id": user_id,
        "student_id": "9999999999",
        "full_name": name,
        "is_online": online,
        "role": "student",
        "created_at": T0,
    }


def _event(table, kind, new=None, old=None):
    return ChangeEvent(table=table, eventType=kind, new=new, old=old)


class TestMergeIdempotence:
    """Replaying the same insert never duplicates an entity."""

    @pytest.mark.parametrize("table,row", [
        ("rooms", _room_row()),
        ("messages", _message_row("m1", 0)),
        ("profiles", _profile_row()),
        ("notices", {"id": "n1", "title": "Exams", "created_at": T0}),
    ])
    def test_duplicate_insert(self, table, row):
        state = ClientState()
        event = _event(table, EventType.INSERT, new=row)

        state.apply_event(event)
        state.apply_event(event)

        counts = {
            "rooms": len(state.rooms),
            "messages": len(state.messages("r1")),
            "profiles": len(state.profiles),
            "notices": len(state.notices),
        }
        assert counts[table] == 1

    def test_local_write_then_echo(self):
        state = ClientState()
        local = Message(**_message_row("m1", 0), sender_name="Asha", sender_credential="9999999999")

        state.apply_message(EventType.INSERT, local)
        state.apply_event(_event("messages", EventType.INSERT, new=_message_row("m1", 0)))

        [merged] = state.messages("r1")
        assert merged.sender_name == "Asha"


class TestMessageOrdering:
    """Out-of-order delivery still reads in creation order."""

    def test_out_of_order_delivery(self):
        state = ClientState()
        for message_id, minutes in (("t2", 2), ("t1", 1), ("t3", 3)):
            state.apply_event(_event("messages", EventType.INSERT, new=_message_row(message_id, minutes)))

        assert [m.id for m in state.messages("r1")] == ["t1", "t2", "t3"]

    def test_equal_timestamps_break_ties_by_id(self):
        state = ClientState()
        state.merge_messages([Message(**_message_row("b", 0)), Message(**_message_row("a", 0))])

        assert [m.id for m in state.messages("r1")] == ["a", "b"]

    def test_rooms_are_kept_apart(self):
        state = ClientState()
        state.merge_messages([
            Message(**_message_row("m1", 0, room_id="r1")),
            Message(**_message_row("m2", 0, room_id="r2")),
        ])

        assert [m.id for m in state.messages("r1")] == ["m1"]
        assert [m.id for m in state.messages("r2")] == ["m2"]


class TestEntityMerges:
    """Update and delete handling per entity."""

    def test_room_delete_drops_its_messages(self):
        state = ClientState()
        state.apply_room(EventType.INSERT, Room(**_room_row()))
        state.apply_message(EventType.INSERT, Message(**_message_row("m1", 0)))

        state.apply_event(_event("rooms", EventType.DELETE, old=_room_row()))

        assert state.rooms == []
        assert state.messages("r1") == []

    def test_room_update_replaces(self):
        state = ClientState()
        state.apply_room(EventType.INSERT, Room(**_room_row()))

        state.apply_event(_event("rooms", EventType.UPDATE, new=_room_row(name="Renamed"), old=_room_row()))

        assert [r.name for r in state.rooms] == ["Renamed"]

    def test_profile_update_replaces_in_place(self):
        state = ClientState()
        state.merge_profiles([Profile(**_profile_row("u1", "Asha")), Profile(**_profile_row("u2", "Ravi"))])

        state.apply_event(_event("profiles", EventType.UPDATE, new=_profile_row("u1", "Asha", online=True)))

        assert [p.id for p in state.profiles] == ["u1", "u2"]
        assert state.profile("u1").is_online is True

    def test_message_delete(self):
        state = ClientState()
        state.apply_message(EventType.INSERT, Message(**_message_row("m1", 0)))

        state.apply_event(_event("messages", EventType.DELETE, old=_message_row("m1", 0)))

        assert state.messages("r1") == []

    def test_fanout_message_resolves_sender_from_profiles(self):
        state = ClientState()
        state.apply_profile(EventType.INSERT, Profile(**_profile_row("u1", "Asha")))

        state.apply_event(_event("messages", EventType.INSERT, new=_message_row("m1", 0)))

        assert state.messages("r1")[0].sender_name == "Asha"

    def test_unknown_table_is_ignored(self):
        state = ClientState()
        state.apply_event(_event("subjects", EventType.INSERT, new={"id": "s1"}))
        assert state.rooms == []


class TestNotices:
    """Notices stay newest-first through insert/update/delete."""

    def _notice(self, notice_id, minutes, title="t"):
        return {"id": notice_id, "title": title, "created_at": T0 + timedelta(minutes=minutes)}

    def test_newest_first(self):
        state = ClientState()
        state.apply_event(_event("notices", EventType.INSERT, new=self._notice("old", 0)))
        state.apply_event(_event("notices", EventType.INSERT, new=self._notice("new", 5)))

        assert [n.id for n in state.notices] == ["new", "old"]

    def test_update_replaces_by_id(self):
        state = ClientState()
        state.apply_notice(EventType.INSERT, Notice(**self._notice("n1", 0, "Draft")))

        state.apply_event(_event("notices", EventType.UPDATE, new=self._notice("n1", 0, "Final")))

        assert [n.title for n in state.notices] == ["Final"]

    def test_delete_removes_by_id(self):
        state = ClientState()
        state.merge_notices([Notice(**self._notice("n1", 0)), Notice(**self._notice("n2", 1))])

        state.apply_event(_event("notices", EventType.DELETE, old=self._notice("n1", 0)))

        assert [n.id for n in state.notices] == ["n2"]
