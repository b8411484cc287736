from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .actions import ActionDispatcher
from .attachments import AttachmentRef, AttachmentStore
from .config import SessionConfig
from .connection.http import AvatarFetcher, HttpRpcTransport, RpcTransport
from .ids import ConversationId
from .models import (
    ConnectionUpdate,
    PresenceStatus,
    RoomListing,
    SentMessage,
    TypingState,
    UserInfo,
)
from .reconcile import CatchUpPage, EventReconciler
from .roster import RosterSync
from .segments import PlainTextRenderer, SegmentRenderer
from .session import ChatSession
from .stream import EventStream
from .util.asyncio import PeriodicTask
from .util.events import Listener

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ClientConfig:
    session: SessionConfig = field(default_factory=SessionConfig)


class GoogleChatClient:
    """
    High-level async client facade.

    Wires the session, roster sync, event reconciliation and the action
    dispatcher together and exposes the user-facing API. UI code subscribes to
    notifications with `on(event, listener)`.
    """

    def __init__(
        self,
        *,
        auth_token: str | None = None,
        config: ClientConfig | None = None,
        transport: RpcTransport | None = None,
        avatar_fetcher: AvatarFetcher | None = None,
        renderer: SegmentRenderer | None = None,
        attachments: AttachmentStore | None = None,
        known_contacts: list[str] | None = None,
        event_stream: bool = True,
    ) -> None:
        self.config = config or ClientConfig()
        cfg = self.config.session
        self.session = ChatSession(
            transport=transport or HttpRpcTransport(cfg, auth_token=auth_token),
            config=cfg,
            auth_token=auth_token,
            known_contacts=known_contacts,
        )
        renderer = renderer or PlainTextRenderer()
        self.roster = RosterSync(self.session, avatar_fetcher=avatar_fetcher)
        self.reconciler = EventReconciler(self.session, renderer=renderer)
        self.actions = ActionDispatcher(
            self.session, self.reconciler, renderer=renderer, attachments=attachments
        )
        self.stream = (
            EventStream(self.session, self.reconciler) if event_stream and cfg.events_url else None
        )
        self._presence_poll = PeriodicTask(
            self.roster.poll_presence,
            interval_s=cfg.presence_poll_interval_s,
            name="pygchat.presence_poll",
        )
        self._connect_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self.session.connected

    @property
    def self_user_id(self) -> str | None:
        return self.session.self_user_id

    def on(self, event: str, listener: Listener) -> None:
        self.session.events.on(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        self.session.events.off(event, listener)

    async def connect(self) -> None:
        """
        Log in and bring the local view up to date.

        Order: own user id, event stream (holding pushes), catch-up from the
        last applied event when resuming a previous connection, world listing
        (with batched presence and profile lookups), then the held pushes.
        Pushes that repeat catch-up history are dropped as duplicates.
        """

        async with self._connect_lock:
            if self.session.connected:
                return
            resume_from = self.session.last_event_timestamp
            await self.session.events.emit("connection.update", ConnectionUpdate(connection="connecting"))
            try:
                await self.roster.fetch_self_status()
                if self.stream is not None:
                    await self.stream.start(hold=True)
                self.session.connected = True
                if resume_from > 0:
                    await self.catch_up_since(resume_from)
                await self.roster.refresh_world()
                if self.stream is not None:
                    await self.stream.release()
            except Exception as e:
                await self._teardown()
                await self.session.events.emit(
                    "connection.update", ConnectionUpdate(connection="close", last_disconnect=e)
                )
                raise

            self._presence_poll.start()
            logger.info("connected as %s", self.session.self_user_id)
            await self.session.events.emit("connection.update", ConnectionUpdate(connection="open"))

    async def disconnect(self) -> None:
        async with self._connect_lock:
            await self._teardown()
        await self.session.events.emit("connection.update", ConnectionUpdate(connection="close"))

    async def _teardown(self) -> None:
        await self._presence_poll.stop()
        if self.stream is not None:
            await self.stream.stop()
        self.actions.cancel_all_uploads()
        await self.roster.close()
        self.session.reset()

    async def catch_up_since(self, since: int) -> int:
        """Pull every event after `since`, page by page. Returns how many were applied."""

        total = 0
        while True:
            page = await self.reconciler.catch_up_all(since)
            total += page.applied
            if not page.more_available or page.next_since <= since:
                break
            since = page.next_since
        return total

    async def catch_up_conversation(self, conversation_id: ConversationId, since: int = 0) -> CatchUpPage:
        return await self.reconciler.catch_up_conversation(conversation_id, since)

    # -- roster

    async def refresh_world(self) -> list[str]:
        return await self.roster.refresh_world()

    async def get_user_info(self, user_id: str) -> UserInfo | None:
        return await self.roster.get_user_info(user_id)

    async def list_rooms(self) -> list[RoomListing]:
        return await self.roster.list_rooms()

    # -- actions

    async def send_im(self, user_id: str, markup: str) -> SentMessage | None:
        return await self.actions.send_im(user_id, markup)

    async def send_chat(
        self, conversation_id: ConversationId, markup: str, *, attachment: AttachmentRef | None = None
    ) -> SentMessage | None:
        return await self.actions.send_chat(conversation_id, markup, attachment=attachment)

    async def send_message(
        self, conversation_id: ConversationId, markup: str, *, attachment: AttachmentRef | None = None
    ) -> SentMessage | None:
        return await self.actions.send_message(conversation_id, markup, attachment=attachment)

    def set_typing(self, conversation_id: ConversationId, state: TypingState | str) -> None:
        self.actions.set_typing(conversation_id, state)

    async def mark_seen(self, conversation_id: ConversationId, timestamp: int) -> bool:
        return await self.actions.mark_seen(conversation_id, timestamp)

    async def set_focus(self, conversation_id: ConversationId, focused: bool = True) -> bool:
        return await self.actions.set_focus(conversation_id, focused)

    async def set_presence(self, status: PresenceStatus | str, message: str | None = None) -> None:
        await self.actions.set_presence(status, message)

    async def create_conversation(
        self,
        is_dm: bool,
        target_user: str,
        first_message: str | None = None,
        *,
        name: str | None = None,
    ) -> ConversationId:
        return await self.actions.create_conversation(is_dm, target_user, first_message, name=name)

    async def archive_conversation(self, conversation_id: ConversationId) -> bool:
        return await self.actions.archive_conversation(conversation_id)

    async def leave_or_kick(self, conversation_id: ConversationId, target_user: str | None = None) -> None:
        await self.actions.leave_or_kick(conversation_id, target_user)

    async def rename_conversation(self, conversation_id: ConversationId, name: str) -> None:
        await self.actions.rename_conversation(conversation_id, name)

    async def invite(self, conversation_id: ConversationId, user_id: str) -> None:
        await self.actions.invite(conversation_id, user_id)

    async def join_chat(self, conversation_id: ConversationId) -> CatchUpPage:
        return await self.actions.join_chat(conversation_id)
