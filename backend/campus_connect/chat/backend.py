"""Wiring of the store, change feed and chat services.

``CampusBackend`` is what the HTTP routers and the client-side
``ChatSession`` talk to. One instance exists per process, created at
startup; tests build their own over an in-memory database.
"""
import logging
from typing import Optional

from campus_connect.config import AppSettings, get_config
from campus_connect.identity.service import IdentityResolver
from campus_connect.messages.service import MessageStore
from campus_connect.notices.service import NoticeBoard
from campus_connect.presence.service import PresenceTracker
from campus_connect.realtime.feed import ChangeFeed
from campus_connect.rooms.service import RoomDirectory
from campus_connect.store import CampusDatabase, TableStore

logger = logging.getLogger(__name__)


class CampusBackend:
    def __init__(self, db: CampusDatabase, settings: Optional[AppSettings] = None) -> None:
        self.settings = settings or AppSettings()
        self.db = db
        self.feed = ChangeFeed(self.settings.realtime.queue_size)
        self.store = TableStore(db, self.feed)
        self.identity = IdentityResolver(self.store, self.settings.identity)
        self.rooms = RoomDirectory(self.store, self.settings.chat)
        self.messages = MessageStore(self.store, self.settings.chat)
        self.presence = PresenceTracker(self.store, self.settings.presence)
        self.notices = NoticeBoard(self.store)

    @classmethod
    def in_memory(cls, settings: Optional[AppSettings] = None) -> "CampusBackend":
        return cls(CampusDatabase(":memory:"), settings)

    def close(self) -> None:
        dropped = self.feed.disconnect_all("shutdown")
        if dropped:
            logger.info("[Backend] Dropped %d live subscriptions", dropped)
        self.db.close()


# Global backend instance (initialized on startup)
_backend: Optional[CampusBackend] = None


def get_backend() -> CampusBackend:
    """Return the global backend, creating it from config on first use."""
    global _backend
    if _backend is None:
        settings = get_config()
        _backend = CampusBackend(
            CampusDatabase.get_instance(settings.database.path), settings
        )
    return _backend


def set_backend(backend: Optional[CampusBackend]) -> None:
    """Set (or clear) the global backend instance."""
    global _backend
    _backend = backend
