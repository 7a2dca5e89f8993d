"""Scoped live channels over the change feed.

A ``LiveChannel`` owns exactly one feed subscription and a pump task that
hands each event to a handler on the event loop. Its lifetime is bound
to the consuming scope:

    async with LiveChannel(feed, "messages", ("room_id", room_id),
                           on_event=state.apply_event) as channel:
        ...

Once ``close()`` starts, no further event reaches the handler, including
events already sitting in the subscription buffer.

When the feed drops the subscription, the channel resubscribes with
exponential backoff plus jitter and then awaits ``on_resubscribe`` so the
consumer can re-query and merge what it missed. After
``reconnect_max_attempts`` failures the channel is ``failed``; whatever
the consumer already holds stays as it is.
"""
import asyncio
import inspect
import logging
import random
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple

from campus_connect.config import RealtimeSettings
from campus_connect.errors import CampusError, FeedDisconnectedError

from .feed import ChangeEvent, ChangeFeed, Subscription

logger = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], Any]
ResubscribeHandler = Callable[[], Awaitable[Any]]


class ChannelState(str, Enum):
    IDLE = "idle"
    LIVE = "live"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    CLOSED = "closed"


def backoff_delay(attempt: int, settings: RealtimeSettings) -> float:
    """Seconds to wait before reconnect *attempt* (1-based)."""
    base_delay = settings.reconnect_base_delay_ms / 1000.0
    max_delay = settings.reconnect_max_delay_ms / 1000.0
    jitter = random.uniform(0, settings.reconnect_jitter_ms / 1000.0)
    return min(base_delay * (2 ** (attempt - 1)), max_delay) + jitter


class LiveChannel:
    """One table subscription pumped into a handler until closed."""

    def __init__(
        self,
        feed: ChangeFeed,
        table: str,
        match: Optional[Tuple[str, Any]] = None,
        on_event: Optional[EventHandler] = None,
        on_resubscribe: Optional[ResubscribeHandler] = None,
        settings: Optional[RealtimeSettings] = None,
    ) -> None:
        self.table = table
        self.match = match
        self.state = ChannelState.IDLE
        self.reconnects = 0
        self._feed = feed
        self._on_event = on_event
        self._on_resubscribe = on_resubscribe
        self._settings = settings or RealtimeSettings()
        self._sub: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_closed(self) -> bool:
        return self.state == ChannelState.CLOSED

    async def open(self) -> "LiveChannel":
        if self.state != ChannelState.IDLE:
            raise RuntimeError(f"Channel on {self.table} already {self.state.value}")
        self._sub = self._feed.subscribe(self.table, self.match)
        self.state = ChannelState.LIVE
        self._task = asyncio.create_task(self._pump())
        logger.debug("[Channel] Opened %s (filter=%s)", self.table, self.match)
        return self

    async def close(self) -> None:
        if self.state == ChannelState.CLOSED:
            return
        self.state = ChannelState.CLOSED
        if self._sub is not None:
            await self._sub.close()
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.debug("[Channel] Closed %s (filter=%s)", self.table, self.match)

    async def __aenter__(self) -> "LiveChannel":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _pump(self) -> None:
        while not self.is_closed:
            try:
                async for event in self._sub:
                    if self.is_closed:
                        return
                    await self._dispatch(event)
                return
            except FeedDisconnectedError as e:
                if self.is_closed:
                    return
                logger.warning("[Channel] %s lost: %s", self.table, e)
                if not await self._reconnect():
                    return

    async def _dispatch(self, event: ChangeEvent) -> None:
        if self._on_event is None:
            return
        try:
            result = self._on_event(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # One bad event must not end the pump.
            logger.exception("[Channel] Handler failed on %s %s: %s", event.table, event.eventType.value, e)

    async def _reconnect(self) -> bool:
        self.state = ChannelState.RECONNECTING
        attempts = self._settings.reconnect_max_attempts
        for attempt in range(1, attempts + 1):
            delay = backoff_delay(attempt, self._settings)
            logger.info(
                "[Channel] Resubscribing to %s in %.3fs (attempt %d/%d)",
                self.table, delay, attempt, attempts,
            )
            await asyncio.sleep(delay)
            if self.is_closed:
                return False
            sub = self._feed.subscribe(self.table, self.match)
            try:
                if self._on_resubscribe is not None:
                    await self._on_resubscribe()
            except CampusError as e:
                await sub.close()
                logger.warning("[Channel] Backfill for %s failed: %s", self.table, e)
                continue
            if self.is_closed:
                await sub.close()
                return False
            self._sub = sub
            self.reconnects += 1
            self.state = ChannelState.LIVE
            return True
        self.state = ChannelState.FAILED
        logger.error("[Channel] Giving up on %s after %d attempts", self.table, attempts)
        return False
