"""DuckDB-backed storage for profiles, rooms, messages and notices.

This module owns the single embedded database connection. It plays the
role of the managed relational backend: schema bootstrap, statement
execution and translation of engine errors into the CampusConnect error
taxonomy.

Database Schema:
    profiles: one row per login credential (student_id is unique)
    rooms:    group / anonymous / dm rooms; dm_key is the canonical
              sorted-pair key, unique, set only for dm rooms
    messages: room-scoped chat messages; is_anonymous fixed at insert
    notices:  dashboard announcements

The engine does not cascade deletes, so room deletion removes the room's
messages explicitly (see rooms.service).

Thread Safety:
    The DuckDB connection is NOT thread-safe. Statements are serialized
    under a re-entrant lock, and coroutines hand their store work to a
    single-worker executor through ``run`` so the event loop never waits
    on the engine.

Usage:
    db = CampusDatabase.get_instance()
    rows = await db.run(db.fetchall, "SELECT id FROM rooms")
"""
import asyncio
import functools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, Sequence, TypeVar

import duckdb

from campus_connect.errors import ConflictError, StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id           VARCHAR PRIMARY KEY,
        student_id   VARCHAR NOT NULL UNIQUE,
        full_name    VARCHAR NOT NULL,
        avatar_url   VARCHAR,
        is_online    BOOLEAN NOT NULL DEFAULT FALSE,
        last_seen_at TIMESTAMP,
        role         VARCHAR NOT NULL DEFAULT 'student'
                     CHECK (role IN ('student', 'admin')),
        created_at   TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rooms (
        id         VARCHAR PRIMARY KEY,
        name       VARCHAR NOT NULL,
        type       VARCHAR NOT NULL CHECK (type IN ('group', 'dm', 'anonymous')),
        subject_id VARCHAR,
        dm_key     VARCHAR UNIQUE,
        created_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id           VARCHAR PRIMARY KEY,
        room_id      VARCHAR NOT NULL,
        sender_id    VARCHAR NOT NULL,
        content      VARCHAR NOT NULL,
        is_anonymous BOOLEAN NOT NULL DEFAULT FALSE,
        created_at   TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_room ON messages(room_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS notices (
        id         VARCHAR PRIMARY KEY,
        title      VARCHAR NOT NULL,
        content    VARCHAR,
        color      VARCHAR NOT NULL DEFAULT 'blue',
        created_at TIMESTAMP NOT NULL
    )
    """,
]


@contextmanager
def _translated() -> Iterator[None]:
    """Map engine exceptions onto the CampusConnect taxonomy."""
    try:
        yield
    except duckdb.ConstraintException as e:
        raise ConflictError(str(e)) from e
    except (duckdb.IOException, duckdb.ConnectionException) as e:
        raise StoreUnavailableError(str(e)) from e


class CampusDatabase:
    """Singleton wrapper around the DuckDB connection.

    Attributes:
        _instance: Singleton instance of the database.
        _default_db_path: File used when no path is given.
    """

    _instance: Optional["CampusDatabase"] = None
    _default_db_path: str = "campus_connect.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open (or create) the database and bootstrap the schema.

        Args:
            db_path: Path to the DuckDB file, or ":memory:".
        """
        self._db_path = db_path or self._default_db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.RLock()
        self._initialize_db()
        logger.info("[CampusDatabase] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "CampusDatabase":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the connection and clear the singleton (used by tests)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    @property
    def path(self) -> str:
        return self._db_path

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            with _translated():
                self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="campus-db")
        return self._executor

    def _initialize_db(self) -> None:
        """Create tables and indexes. Safe to call multiple times."""
        with self._lock:
            conn = self._get_connection()
            for statement in _SCHEMA:
                conn.execute(statement)

    async def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run blocking store work on the database worker thread.

        Cancelling the awaiting coroutine does not interrupt a statement
        that has already started.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._get_executor(), functools.partial(fn, *args, **kwargs)
        )

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> duckdb.DuckDBPyConnection:
        with self._lock:
            conn = self._get_connection()
            with _translated():
                return conn.execute(sql, list(params or []))

    def fetchall(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[tuple]:
        with self._lock:
            return self.execute(sql, params).fetchall()

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Run the enclosed statements atomically."""
        with self._lock:
            conn = self._get_connection()
            conn.begin()
            try:
                yield conn
            except Exception:
                conn.rollback()
                raise
            with _translated():
                conn.commit()

    def close(self) -> None:
        """Wait for queued store work, then close the connection."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
