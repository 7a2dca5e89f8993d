"""In-process change feed for table-level pub/sub.

Every successful write in the store publishes one ``ChangeEvent`` per
affected row. Consumers subscribe per table, optionally narrowed by a
single ``(column, value)`` equality filter, and read events as an async
iterator.

Delivery model:
    - Publishing never blocks; each subscription owns a bounded queue.
    - A subscription whose queue overflows is disconnected rather than
      silently dropping events. Its next read raises FeedDisconnectedError
      and the consumer is expected to resubscribe and backfill.
    - ``disconnect_all()`` drops every subscription the same way (used on
      shutdown and to exercise reconnect handling).

Thread Safety:
    Designed for a single asyncio event loop, like the rest of the app.
"""
import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from campus_connect.errors import FeedDisconnectedError

logger = logging.getLogger(__name__)

# Queue sentinels
_DISCONNECTED = object()
_CLOSED = object()


class EventType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """A single row-level change.

    Attributes:
        table: Table the row belongs to.
        eventType: insert, update or delete.
        new: Row image after the change (insert/update).
        old: Row image before the change (update/delete).
        ts: Publish time, seconds since epoch.
    """
    table: str
    eventType: EventType
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None
    ts: float = Field(default_factory=time.time)

    @property
    def row(self) -> Dict[str, Any]:
        """The most recent image of the affected row."""
        return self.new or self.old or {}


class Subscription:
    """One consumer's view of the feed for a table (and optional filter)."""

    def __init__(
        self,
        feed: "ChangeFeed",
        table: str,
        match: Optional[Tuple[str, Any]] = None,
        maxsize: int = 1000,
    ) -> None:
        self.id = str(uuid.uuid4())
        self.table = table
        self.match = match
        self.closed = False
        self.disconnect_reason: Optional[str] = None
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        if self.match is None:
            return True
        column, value = self.match
        for image in (event.new, event.old):
            if image is not None and image.get(column) == value:
                return True
        return False

    def offer(self, event: ChangeEvent) -> bool:
        """Queue an event without blocking. Returns False if not delivered."""
        if self.closed or self.disconnect_reason is not None:
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.disconnect("buffer overflow")
            return False

    def disconnect(self, reason: str) -> None:
        """Drop the subscription; buffered events are discarded."""
        if self.disconnect_reason is not None or self.closed:
            return
        self.disconnect_reason = reason
        self._feed.remove(self)
        self._drain()
        self._queue.put_nowait(_DISCONNECTED)
        logger.info("[Feed] Subscription %s on %s disconnected: %s", self.id, self.table, reason)

    async def get(self) -> ChangeEvent:
        if self.closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if item is _DISCONNECTED:
            raise FeedDisconnectedError(
                f"Subscription to {self.table} dropped: {self.disconnect_reason}"
            )
        return item

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        return await self.get()

    def release(self) -> None:
        """Leave the feed and wake a pending reader; never awaits."""
        if self.closed:
            return
        self.closed = True
        self._feed.remove(self)
        self._drain()
        self._queue.put_nowait(_CLOSED)

    async def close(self) -> None:
        self.release()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _drain(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()


class ChangeFeed:
    """Fan-out hub: table -> live subscriptions."""

    def __init__(self, queue_size: int = 1000) -> None:
        self.queue_size = queue_size
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(
        self, table: str, match: Optional[Tuple[str, Any]] = None
    ) -> Subscription:
        sub = Subscription(self, table, match, maxsize=self.queue_size)
        self._subscriptions.setdefault(table, []).append(sub)
        logger.debug("[Feed] Subscribed %s to %s (filter=%s)", sub.id, table, match)
        return sub

    def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to every matching subscription.

        Returns:
            Number of subscriptions the event was queued for.
        """
        delivered = 0
        for sub in list(self._subscriptions.get(event.table, [])):
            if sub.matches(event) and sub.offer(event):
                delivered += 1
        return delivered

    def remove(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.table)
        if subs and sub in subs:
            subs.remove(sub)
            if not subs:
                del self._subscriptions[sub.table]

    def disconnect_all(self, reason: str = "feed reset") -> int:
        subs = [s for group in self._subscriptions.values() for s in group]
        for sub in subs:
            sub.disconnect(reason)
        return len(subs)

    def subscriber_count(self, table: Optional[str] = None) -> int:
        if table is not None:
            return len(self._subscriptions.get(table, []))
        return sum(len(group) for group in self._subscriptions.values())
