"""Tests for the DuckDB-backed table store."""
from datetime import timedelta

import pytest

from campus_connect.errors import ConflictError, InputValidationError
from campus_connect.realtime.feed import EventType
from campus_connect.store import CampusDatabase, utcnow


class TestCampusDatabase:
    """Tests for the database singleton."""

    def test_get_instance_returns_same_object(self, tmp_path):
        CampusDatabase.reset_instance()
        try:
            db1 = CampusDatabase.get_instance(str(tmp_path / "campus.duckdb"))
            db2 = CampusDatabase.get_instance()
            assert db1 is db2
        finally:
            CampusDatabase.reset_instance()

    def test_schema_bootstrap_is_idempotent(self, backend):
        backend.db._initialize_db()
        assert backend.store.count("rooms") == 0


class TestTableStoreWrites:
    """Tests for insert/update/delete and their change events."""

    def test_insert_generates_id_and_timestamp(self, store):
        row = store.insert("notices", [{"title": "Exam week"}])[0]

        assert row["id"]
        assert row["created_at"] is not None
        assert row["color"] == "blue"

    def test_insert_publishes_event(self, store):
        sub = store.feed.subscribe("notices")
        store.insert("notices", [{"title": "Exam week"}])

        assert sub._queue.qsize() == 1
        event = sub._queue.get_nowait()
        assert event.eventType == EventType.INSERT
        assert event.new["title"] == "Exam week"

    @pytest.mark.asyncio
    async def test_worker_write_publishes_before_caller_resumes(self, store):
        sub = store.feed.subscribe("notices")

        await store.run(store.insert, "notices", [{"title": "Exam week"}])

        assert sub._queue.get_nowait().new["title"] == "Exam week"

    @pytest.mark.asyncio
    async def test_worker_errors_reach_the_caller(self, store):
        await store.run(store.insert, "rooms", [{"name": "a:b", "type": "dm", "dm_key": "a:b"}])

        with pytest.raises(ConflictError):
            await store.run(store.insert, "rooms", [{"name": "a:b", "type": "dm", "dm_key": "a:b"}])

    def test_unique_violation_raises_conflict(self, store):
        store.insert("rooms", [{"name": "a:b", "type": "dm", "dm_key": "a:b"}])

        with pytest.raises(ConflictError):
            store.insert("rooms", [{"name": "a:b", "type": "dm", "dm_key": "a:b"}])

        assert store.count("rooms") == 1

    def test_failed_batch_is_rolled_back(self, store):
        with pytest.raises(ConflictError):
            store.insert("rooms", [
                {"name": "x", "type": "dm", "dm_key": "k"},
                {"name": "y", "type": "dm", "dm_key": "k"},
            ])

        assert store.count("rooms") == 0

    def test_update_publishes_old_and_new_images(self, store):
        notice = store.insert("notices", [{"title": "Old"}])[0]
        sub = store.feed.subscribe("notices")

        updated = store.update("notices", {"id": notice["id"]}, {"title": "New"})

        assert updated[0]["title"] == "New"
        event = sub._queue.get_nowait()
        assert event.old["title"] == "Old"
        assert event.new["title"] == "New"

    def test_message_columns_cannot_be_patched(self, store):
        with pytest.raises(InputValidationError):
            store.update("messages", {"id": "m1"}, {"is_anonymous": False})

    def test_unfiltered_delete_is_refused(self, store):
        with pytest.raises(InputValidationError):
            store.delete("notices")

    def test_delete_before_cutoff(self, store):
        now = utcnow()
        store.insert("notices", [
            {"title": "old", "created_at": now - timedelta(days=10)},
            {"title": "new", "created_at": now},
        ])

        removed = store.delete("notices", before=now - timedelta(days=1))

        assert [r["title"] for r in removed] == ["old"]
        assert [r["title"] for r in store.query("notices")] == ["new"]


class TestTableStoreReads:
    """Tests for query filters and ordering."""

    def test_unknown_table_is_rejected(self, store):
        with pytest.raises(InputValidationError):
            store.query("secrets")

    def test_unknown_column_is_rejected(self, store):
        with pytest.raises(InputValidationError):
            store.query("rooms", eq={"name; DROP TABLE rooms": "x"})

    def test_ilike_is_case_insensitive(self, store):
        store.insert("notices", [{"title": "Library Hours"}, {"title": "Sports day"}])

        rows = store.query("notices", ilike={"title": "%library%"})

        assert [r["title"] for r in rows] == ["Library Hours"]

    def test_descending_order_and_limit(self, store):
        now = utcnow()
        store.insert("notices", [
            {"title": f"n{i}", "created_at": now + timedelta(seconds=i)} for i in range(3)
        ])

        rows = store.query("notices", descending=True, limit=2)

        assert [r["title"] for r in rows] == ["n2", "n1"]

    def test_empty_in_list_matches_nothing(self, store):
        store.insert("notices", [{"title": "x"}])
        assert store.query("notices", eq={"id": []}) == []
