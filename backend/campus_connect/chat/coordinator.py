"""Client-side chat coordinator.

``ChatSession`` drives one logged-in user's view of the chat: it resolves
the identity, keeps presence up to date, loads rooms and messages into a
``ClientState`` and keeps that state live through scoped channels.

Channel scopes:
    - global: rooms, profiles and notices, open from login to logout
    - room:   messages of the active room only; replaced whenever the
              active room changes, so a previous room's events can never
              land in the current view

Every backend call is bounded by ``realtime.request_timeout_seconds``;
expiry raises OperationTimeoutError to the initiating action.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Awaitable, List, Optional, TypeVar

from pydantic import BaseModel

from campus_connect.config import AppSettings
from campus_connect.errors import InputValidationError, NotFoundError, OperationTimeoutError
from campus_connect.identity.schemas import Profile, SessionUser
from campus_connect.identity.session_store import SessionStore
from campus_connect.messages.schemas import Message
from campus_connect.realtime.channel import LiveChannel
from campus_connect.realtime.feed import EventType
from campus_connect.rooms.schemas import Room

from .anonymity import RevealToggles, sender_label
from .backend import CampusBackend
from .state import ClientState

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RenderedMessage(BaseModel):
    """A message as one particular viewer sees it."""
    id: str
    sender_label: str
    content: str
    created_at: datetime
    is_anonymous: bool
    is_own: bool


class ChatSession:
    def __init__(
        self,
        backend: CampusBackend,
        settings: Optional[AppSettings] = None,
        session_store: Optional[SessionStore] = None,
    ) -> None:
        self._backend = backend
        self._settings = settings or backend.settings
        self._session_store = session_store
        self.state = ClientState()
        self.reveal = RevealToggles()
        self.user: Optional[SessionUser] = None
        self.active_room_id: Optional[str] = None
        self.draft = ""
        self._global_channels: List[LiveChannel] = []
        self._room_channel: Optional[LiveChannel] = None

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.isAdmin

    @property
    def active_room(self) -> Optional[Room]:
        return self.state.room(self.active_room_id) if self.active_room_id else None

    # -----------------------------------------------------------------------
    # Session lifecycle
    # -----------------------------------------------------------------------

    async def login(self, name: str, credential: str) -> SessionUser:
        """Resolve the identity and start the session.

        Input is validated before any backend call.
        """
        identity = self._backend.identity
        name, credential = identity.validate(name, credential)
        profile = await self._call(identity.resolve(name, credential))
        user = identity.session_for(profile, name)
        await self._enter(user)
        if self._session_store is not None:
            self._session_store.save(user)
        logger.info("[Session] %s logged in as %s", user.id, user.name)
        return user

    async def restore(self) -> Optional[SessionUser]:
        """Re-enter the persisted session, if a valid one exists.

        Only the id and display name are taken from the stored record;
        credential and admin status come from the profile.
        """
        if self._session_store is None:
            return None
        stored = self._session_store.load()
        if stored is None:
            return None
        identity = self._backend.identity
        profile = await self._call(identity.get_profile(stored.id))
        if profile is None or profile.student_id != stored.credential:
            logger.warning("[Session] Stored session %s does not match a profile; discarding", stored.id)
            self._session_store.clear()
            return None
        user = identity.session_for(profile, stored.name)
        await self._enter(user)
        self._session_store.save(user)
        logger.info("[Session] Restored session for %s", user.id)
        return user

    async def logout(self) -> None:
        if self.user is None:
            return
        user_id = self.user.id
        await self.close()
        await self._call(self._backend.presence.set_online(user_id, False))
        if self._session_store is not None:
            self._session_store.clear()
        self.user = None
        self.draft = ""
        self.reveal.reset()
        self.state.clear()
        logger.info("[Session] %s logged out", user_id)

    async def close(self) -> None:
        """Tear down every live channel; loaded state is kept."""
        await self.leave_room()
        channels, self._global_channels = self._global_channels, []
        for channel in channels:
            await channel.close()

    async def _enter(self, user: SessionUser) -> None:
        await self.close()
        self.user = user
        backend = self._backend
        await self._call(backend.presence.set_online(user.id, True))
        await self._call(backend.rooms.ensure_default_rooms())
        realtime = self._settings.realtime
        for table, backfill in (
            ("rooms", self._backfill_rooms),
            ("profiles", self._backfill_profiles),
            ("notices", self._backfill_notices),
        ):
            channel = LiveChannel(
                backend.feed, table,
                on_event=self.state.apply_event,
                on_resubscribe=backfill,
                settings=realtime,
            )
            self._global_channels.append(await channel.open())
            await backfill()

    async def _backfill_rooms(self) -> None:
        self.state.merge_rooms(await self._call(self._backend.rooms.list_rooms()))

    async def _backfill_profiles(self) -> None:
        self.state.merge_profiles(await self._call(self._backend.identity.list_profiles()))

    async def _backfill_notices(self) -> None:
        self.state.merge_notices(await self._call(self._backend.notices.list_notices()))

    # -----------------------------------------------------------------------
    # Rooms
    # -----------------------------------------------------------------------

    async def open_room(self, room_id: str) -> Room:
        """Make *room_id* the active room.

        The previous room channel is closed first. The new channel is
        opened before the initial load so nothing sent in between is
        missed; the overlap is absorbed by the merge.
        """
        self._require_user()
        room = self.state.room(room_id)
        if room is None:
            room = await self._call(self._backend.rooms.get_room(room_id))
            self.state.apply_room(EventType.INSERT, room)
        await self.leave_room()

        self.active_room_id = room.id
        self._room_channel = await LiveChannel(
            self._backend.feed, "messages", ("room_id", room.id),
            on_event=self.state.apply_event,
            on_resubscribe=self._backfill_messages,
            settings=self._settings.realtime,
        ).open()
        await self._backfill_messages()
        logger.debug("[Session] Viewing room %s", room.id)
        return room

    async def leave_room(self) -> None:
        channel, self._room_channel = self._room_channel, None
        if channel is not None:
            await channel.close()
        if self.active_room_id is not None:
            self.state.forget_messages(self.active_room_id)
            self.active_room_id = None

    @asynccontextmanager
    async def viewing(self, room_id: str) -> AsyncIterator[Room]:
        """Scope form of ``open_room``; the room channel is released on exit."""
        room = await self.open_room(room_id)
        try:
            yield room
        finally:
            if self.active_room_id == room.id:
                await self.leave_room()

    async def _backfill_messages(self) -> None:
        room_id = self.active_room_id
        if room_id is None:
            return
        messages = await self._call(self._backend.messages.load_recent(room_id))
        if self.active_room_id == room_id:
            self.state.merge_messages(messages)

    async def start_direct_message(self, other_id: str) -> Room:
        user = self._require_user()
        room = await self._call(self._backend.rooms.open_direct_message(user.id, other_id))
        self.state.apply_room(EventType.INSERT, room)
        return await self.open_room(room.id)

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    async def send(self, text: Optional[str] = None) -> Message:
        """Send *text* (default: the current draft) to the active room.

        The draft is cleared before the write; if the write fails the text
        is put back into the draft and the error is raised.
        """
        user = self._require_user()
        room = self._require_room()
        text = self.draft if text is None else text
        self._backend.messages.validate_text(text)

        self.draft = ""
        try:
            message = await self._call(self._backend.messages.send(room, user.id, text))
        except Exception:
            self.draft = text
            raise
        if self.active_room_id == room.id:
            self.state.apply_message(EventType.INSERT, message)
        return message

    def toggle_reveal(self) -> bool:
        return self.reveal.toggle(self._require_room(), self.is_admin)

    def rendered_messages(self, room_id: Optional[str] = None) -> List[RenderedMessage]:
        room_id = room_id or self.active_room_id
        if room_id is None:
            return []
        reveal_on = self.reveal.is_on(room_id)
        viewer_id = self.user.id if self.user else None
        admin_credential = self._settings.identity.admin_credential
        return [
            RenderedMessage(
                id=m.id,
                sender_label=sender_label(
                    m,
                    viewer_is_admin=self.is_admin,
                    reveal_toggle_on=reveal_on,
                    settings=self._settings.chat,
                    admin_credential=admin_credential,
                ),
                content=m.content,
                created_at=m.created_at,
                is_anonymous=m.is_anonymous,
                is_own=m.sender_id == viewer_id,
            )
            for m in self.state.messages(room_id)
        ]

    async def search_profiles(self, term: str) -> List[Profile]:
        chat = self._settings.chat
        term = (term or "").strip()
        if len(term) < chat.directory_min_query:
            return []
        return await self._call(
            self._backend.identity.search(term, limit=chat.directory_search_limit)
        )

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    async def _call(self, operation: Awaitable[T]) -> T:
        timeout = self._settings.realtime.request_timeout_seconds
        try:
            return await asyncio.wait_for(operation, timeout)
        except asyncio.TimeoutError:
            raise OperationTimeoutError(f"Request timed out after {timeout}s") from None

    def _require_user(self) -> SessionUser:
        if self.user is None:
            raise InputValidationError("Not logged in")
        return self.user

    def _require_room(self) -> Room:
        room = self.active_room
        if room is None:
            raise NotFoundError("No active room")
        return room
