"""Table-level read/write operations with change publication.

``TableStore`` exposes the logical operations every service builds on:

    query(table, eq, ilike, after, before, order_by, descending, limit)
    insert(table, rows)      -> created rows (ids/timestamps generated)
    update(table, eq, patch) -> updated rows
    delete(table, eq, before) -> deleted rows

Each successful write publishes one ChangeEvent per affected row on the
change feed, after the statement has committed.

The operations are blocking. Services await them through ``run``, which
executes them on the database worker; events raised there are handed
back to the event loop, ahead of the awaiting coroutine's wake-up.

Table and column names are whitelisted; only values are bound as
parameters.
"""
import asyncio
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from campus_connect.errors import InputValidationError
from campus_connect.realtime.feed import ChangeEvent, ChangeFeed, EventType

from .database import CampusDatabase

logger = logging.getLogger(__name__)

T = TypeVar("T")

TABLE_COLUMNS: Dict[str, List[str]] = {
    "profiles": [
        "id", "student_id", "full_name", "avatar_url", "is_online",
        "last_seen_at", "role", "created_at",
    ],
    "rooms": ["id", "name", "type", "subject_id", "dm_key", "created_at"],
    "messages": ["id", "room_id", "sender_id", "content", "is_anonymous", "created_at"],
    "notices": ["id", "title", "content", "color", "created_at"],
}

# Columns that can never be patched after insert.
IMMUTABLE_COLUMNS: Dict[str, set] = {
    "profiles": {"id", "student_id", "created_at"},
    "rooms": {"id", "dm_key", "created_at"},
    "messages": {"id", "room_id", "sender_id", "content", "is_anonymous", "created_at"},
    "notices": {"id", "created_at"},
}

_INSERT_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "profiles": {"is_online": False, "role": "student"},
    "messages": {"is_anonymous": False},
    "notices": {"color": "blue"},
}


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TableStore:
    """Generic CRUD over the whitelisted tables, wired to the change feed."""

    def __init__(self, db: CampusDatabase, feed: ChangeFeed) -> None:
        self._db = db
        self.feed = feed
        self._worker = threading.local()

    @property
    def db(self) -> CampusDatabase:
        return self._db

    async def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Await a blocking store operation without holding up the loop.

        Example:
            rows = await store.run(store.query, "rooms", eq={"type": "dm"})
        """
        loop = asyncio.get_running_loop()

        def call() -> T:
            self._worker.loop = loop
            try:
                return fn(*args, **kwargs)
            finally:
                self._worker.loop = None

        return await self._db.run(call)

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def query(
        self,
        table: str,
        *,
        eq: Optional[Dict[str, Any]] = None,
        ilike: Optional[Dict[str, str]] = None,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
        order_by: str = "created_at",
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[dict]:
        columns = self._columns(table)
        self._check_column(table, order_by)
        where, params = self._where(table, eq=eq, ilike=ilike, after=after, before=before)
        direction = "DESC" if descending else "ASC"
        sql = (
            f"SELECT {', '.join(columns)} FROM {table}{where} "
            f"ORDER BY {order_by} {direction}, id {direction}"
        )
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return [dict(zip(columns, row)) for row in self._db.fetchall(sql, params)]

    def get(self, table: str, row_id: str) -> Optional[dict]:
        rows = self.query(table, eq={"id": row_id}, limit=1)
        return rows[0] if rows else None

    def count(self, table: str, eq: Optional[Dict[str, Any]] = None) -> int:
        self._columns(table)
        where, params = self._where(table, eq=eq)
        return self._db.fetchall(f"SELECT COUNT(*) FROM {table}{where}", params)[0][0]

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def insert(self, table: str, rows: List[Dict[str, Any]]) -> List[dict]:
        """Insert rows atomically and publish an insert event per row."""
        prepared = [self._prepare_insert(table, row) for row in rows]
        with self._db.transaction():
            for row in prepared:
                cols = list(row)
                placeholders = ", ".join("?" for _ in cols)
                self._db.execute(
                    f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({placeholders})",
                    list(row.values()),
                )
        created = self.query(table, eq={"id": [row["id"] for row in prepared]})
        for row in created:
            self._publish(table, EventType.INSERT, new=row)
        return created

    def update(
        self, table: str, eq: Dict[str, Any], patch: Dict[str, Any]
    ) -> List[dict]:
        """Apply a patch to matching rows and publish an update event per row."""
        if not patch:
            return self.query(table, eq=eq)
        frozen = IMMUTABLE_COLUMNS.get(table, set()) & set(patch)
        if frozen:
            raise InputValidationError(
                f"Columns {sorted(frozen)} of {table} cannot be changed"
            )
        for column in patch:
            self._check_column(table, column)

        old_rows = self.query(table, eq=eq)
        if not old_rows:
            return []
        ids = [row["id"] for row in old_rows]
        set_clause = ", ".join(f"{column} = ?" for column in patch)
        where, params = self._where(table, eq={"id": ids})
        self._db.execute(
            f"UPDATE {table} SET {set_clause}{where}", list(patch.values()) + params
        )
        new_rows = {row["id"]: row for row in self.query(table, eq={"id": ids})}
        updated = []
        for old in old_rows:
            new = new_rows.get(old["id"])
            if new is None:
                continue
            updated.append(new)
            self._publish(table, EventType.UPDATE, new=new, old=old)
        return updated

    def delete(
        self,
        table: str,
        eq: Optional[Dict[str, Any]] = None,
        before: Optional[datetime] = None,
    ) -> List[dict]:
        """Delete matching rows and publish a delete event per row."""
        if not eq and before is None:
            raise InputValidationError(f"Refusing unfiltered delete on {table}")
        old_rows = self.query(table, eq=eq, before=before)
        if not old_rows:
            return []
        where, params = self._where(table, eq={"id": [row["id"] for row in old_rows]})
        self._db.execute(f"DELETE FROM {table}{where}", params)
        for old in old_rows:
            self._publish(table, EventType.DELETE, old=old)
        return old_rows

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    def _columns(self, table: str) -> List[str]:
        try:
            return TABLE_COLUMNS[table]
        except KeyError:
            raise InputValidationError(f"Unknown table: {table}") from None

    def _check_column(self, table: str, column: str) -> None:
        if column not in self._columns(table):
            raise InputValidationError(f"Unknown column {column} on {table}")

    def _prepare_insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        for column in row:
            self._check_column(table, column)
        prepared = dict(_INSERT_DEFAULTS.get(table, {}))
        prepared.update({k: v for k, v in row.items() if v is not None})
        prepared.setdefault("id", str(uuid.uuid4()))
        prepared.setdefault("created_at", utcnow())
        return prepared

    def _where(
        self,
        table: str,
        eq: Optional[Dict[str, Any]] = None,
        ilike: Optional[Dict[str, str]] = None,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
    ) -> Tuple[str, list]:
        clauses: List[str] = []
        params: list = []
        for column, value in (eq or {}).items():
            self._check_column(table, column)
            if value is None:
                clauses.append(f"{column} IS NULL")
            elif isinstance(value, (list, tuple, set)):
                values = list(value)
                if not values:
                    clauses.append("FALSE")
                    continue
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            else:
                clauses.append(f"{column} = ?")
                params.append(value)
        for column, pattern in (ilike or {}).items():
            self._check_column(table, column)
            clauses.append(f"{column} ILIKE ?")
            params.append(pattern)
        if after is not None:
            clauses.append("created_at > ?")
            params.append(after)
        if before is not None:
            clauses.append("created_at < ?")
            params.append(before)
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def _publish(
        self,
        table: str,
        event_type: EventType,
        new: Optional[dict] = None,
        old: Optional[dict] = None,
    ) -> None:
        event = ChangeEvent(table=table, eventType=event_type, new=new, old=old)
        loop = getattr(self._worker, "loop", None)
        if loop is None:
            self._deliver(event)
        else:
            # The feed's queues belong to the loop thread.
            loop.call_soon_threadsafe(self._deliver, event)

    def _deliver(self, event: ChangeEvent) -> None:
        delivered = self.feed.publish(event)
        logger.debug("[Store] %s %s on %s -> %d subscribers", event.eventType.value, event.row.get("id"), event.table, delivered)
