"""
Event reconciliation.

Applies inbound events, whether pushed over the event stream or pulled by
catch-up, to the session exactly once and in timestamp order per
conversation. The session keeps a watermark per conversation (timestamp of
the last applied event); anything at or below it is a duplicate and is
dropped. Watermarks outlive the directory, so history redelivered after a
reconnect, an archive or a leave is still recognised. Typing notifications
carry no timestamp and bypass the watermark.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from . import proto
from .envelope import build_request_header
from .events import (
    ChatEvent,
    ConversationRenamed,
    MembershipChanged,
    MessagePosted,
    PresenceChanged,
    TypingChanged,
    WatermarkUpdated,
    decode_event,
)
from .exceptions import DecodeError
from .ids import ConversationId, require_conversation_id, to_group_id
from .models import ReceivedMessage, TypingNotice, WatermarkNotice
from .segments import PlainTextRenderer, SegmentRenderer
from .session import ChatSession

logger = logging.getLogger(__name__)


class PendingEchoes:
    """
    Client-generated ids of our own sends that have not come back yet.

    Entries expire after `ttl_s`; past `max_size` the oldest are evicted, so a
    server that never echoes cannot grow the set without bound.
    """

    def __init__(
        self,
        *,
        ttl_s: float,
        max_size: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_s = ttl_s
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[int, float] = OrderedDict()

    def __len__(self) -> int:
        self._expire()
        return len(self._entries)

    def __contains__(self, client_generated_id: object) -> bool:
        self._expire()
        return client_generated_id in self._entries

    def add(self, client_generated_id: int) -> None:
        self._expire()
        self._entries.pop(client_generated_id, None)
        self._entries[client_generated_id] = self._clock()
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def discard(self, client_generated_id: int) -> None:
        self._entries.pop(client_generated_id, None)

    def confirm(self, client_generated_id: int) -> bool:
        """Consume a pending id. True when the id was ours and still pending."""

        self._expire()
        return self._entries.pop(client_generated_id, None) is not None

    def _expire(self) -> None:
        # Insertion order is timestamp order.
        now = self._clock()
        while self._entries:
            cgid, added = next(iter(self._entries.items()))
            if now - added < self.ttl_s:
                break
            del self._entries[cgid]


@dataclass(frozen=True, slots=True)
class CatchUpPage:
    applied: int
    more_available: bool
    next_since: int


class EventReconciler:
    def __init__(
        self,
        session: ChatSession,
        *,
        renderer: SegmentRenderer | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session
        self.renderer = renderer or PlainTextRenderer()
        self.pending = PendingEchoes(
            ttl_s=session.config.echo_ttl_s,
            max_size=session.config.echo_max_pending,
            clock=clock,
        )
        self._catch_up_lock = asyncio.Lock()
        self._handlers: dict[type, Callable[[Any], Awaitable[None]]] = {
            MessagePosted: self._on_message_posted,
            MembershipChanged: self._on_membership_changed,
            TypingChanged: self._on_typing_changed,
            WatermarkUpdated: self._on_watermark_updated,
            PresenceChanged: self._on_presence_changed,
            ConversationRenamed: self._on_conversation_renamed,
        }

    @property
    def handled_types(self) -> frozenset[type]:
        return frozenset(self._handlers)

    # -- applying events

    def decode(self, events: Iterable[Any]) -> list[ChatEvent]:
        """Decode wire events, skipping (and logging) malformed ones."""

        offline = self.session.config.treat_invisible_as_offline
        out: list[ChatEvent] = []
        for pb in events:
            try:
                event = decode_event(pb, treat_invisible_as_offline=offline)
            except DecodeError as e:
                logger.warning("skipping malformed event: %s", e)
                continue
            if event is None:
                logger.debug("ignoring event body %r", pb.WhichOneof("body"))
                continue
            out.append(event)
        return out

    async def apply_events(self, events: Iterable[Any]) -> int:
        """
        Decode and apply a batch of wire events in timestamp order.

        Returns how many events were applied (duplicates and malformed events
        are not counted).
        """

        decoded = self.decode(events)
        decoded.sort(key=lambda e: e.timestamp)
        applied = 0
        for event in decoded:
            if await self.apply_event(event):
                applied += 1
        return applied

    async def apply_event(self, event: ChatEvent) -> bool:
        conv = event.conversation_id
        ts = event.timestamp

        watermarks = self.session.event_watermarks
        if ts > 0:
            if conv is not None:
                if ts <= watermarks.get(conv, 0):
                    logger.debug("dropping stale %s in %s (ts=%d)", type(event).__name__, conv, ts)
                    return False
                # Advance before dispatch: a redelivery arriving while a
                # handler awaits must already see the new watermark.
                watermarks[conv] = ts
            self.session.note_event_timestamp(ts)

        handler = self._handlers[type(event)]
        await handler(event)

        if conv is not None:
            snap = self.session.directory.snapshot(conv)
            if snap is not None:
                snap.last_event_timestamp = max(snap.last_event_timestamp, watermarks.get(conv, 0))
        return True

    async def _register_conversation(self, conv: ConversationId, sender_id: str | None) -> None:
        directory = self.session.directory
        if directory.is_known(conv):
            return
        if conv.is_dm:
            if not sender_id or sender_id == self.session.self_user_id:
                # Our own message into a DM we never listed: the peer is unknown.
                return
            directory.record_dm(conv, sender_id)
            await self.session.add_contact(sender_id)
        else:
            directory.record_group(conv)
        logger.info("learned conversation %s from an event", conv)
        await self.session.events.emit("conversations.changed")

    async def _on_message_posted(self, ev: MessagePosted) -> None:
        await self._register_conversation(ev.conversation_id, ev.sender_id)

        from_self = ev.sender_id == self.session.self_user_id
        if ev.client_generated_id is not None and self.pending.confirm(ev.client_generated_id):
            await self.session.events.emit(
                "message.confirmed", ev.conversation_id, ev.client_generated_id, ev.message_id
            )
            return

        message = ReceivedMessage(
            conversation_id=ev.conversation_id,
            sender_id=ev.sender_id,
            segments=ev.segments,
            text=self.renderer.to_text(ev.segments),
            timestamp=ev.timestamp,
            message_id=ev.message_id,
            is_action=ev.is_action,
            from_self=from_self,
            attachment_ids=ev.attachment_ids,
        )
        await self.session.events.emit("message.received", message)

    async def _on_membership_changed(self, ev: MembershipChanged) -> None:
        directory = self.session.directory
        conv = ev.conversation_id
        self_id = self.session.self_user_id

        if ev.joined:
            if not directory.is_known(conv) and not conv.is_dm:
                directory.record_group(conv)
                await self.session.events.emit("conversations.changed")
            snap = directory.snapshot(conv)
            if snap is not None:
                snap.add_members(ev.user_ids)
            return

        if self_id is not None and self_id in ev.user_ids:
            self.session.focused.discard(conv)
            if directory.archive(conv):
                logger.info("left conversation %s", conv)
            await self.session.events.emit("conversation.removed", conv)
            await self.session.events.emit("conversations.changed")
            return

        snap = directory.snapshot(conv)
        if snap is not None:
            snap.remove_members(ev.user_ids)

    async def _on_typing_changed(self, ev: TypingChanged) -> None:
        if ev.user_id == self.session.self_user_id:
            return
        await self.session.events.emit(
            "typing", TypingNotice(conversation_id=ev.conversation_id, user_id=ev.user_id, state=ev.state)
        )

    async def _on_watermark_updated(self, ev: WatermarkUpdated) -> None:
        if ev.user_id == self.session.self_user_id:
            snap = self.session.directory.snapshot(ev.conversation_id)
            if snap is not None and ev.read_timestamp > snap.last_read_timestamp:
                snap.last_read_timestamp = ev.read_timestamp
        await self.session.events.emit(
            "watermark",
            WatermarkNotice(
                conversation_id=ev.conversation_id, user_id=ev.user_id, timestamp=ev.read_timestamp
            ),
        )

    async def _on_presence_changed(self, ev: PresenceChanged) -> None:
        await self.session.events.emit("buddy.presence", ev.record)

    async def _on_conversation_renamed(self, ev: ConversationRenamed) -> None:
        directory = self.session.directory
        if not directory.is_known(ev.conversation_id) and not ev.conversation_id.is_dm:
            directory.record_group(ev.conversation_id)
        if directory.rename(ev.conversation_id, ev.name):
            await self.session.events.emit("conversations.changed")

    # -- catch-up

    async def catch_up_conversation(self, conversation_id: ConversationId, since: int = 0) -> CatchUpPage:
        """
        Fetch and apply one page of history for a conversation.

        `since` of 0 asks for the most recent page. Catch-ups run one at a
        time; the caller decides whether to ask for the next page.
        """

        conv = require_conversation_id(conversation_id)
        req = proto.CatchUpGroupRequest()
        req.request_header.CopyFrom(build_request_header(self.session))
        req.group_id.CopyFrom(to_group_id(conv))
        req.page_size = self.session.config.catch_up_page_size
        req.cutoff_size = self.session.config.catch_up_cutoff_size
        if since > 0:
            req.range.from_revision_timestamp = since

        async with self._catch_up_lock:
            res = await self.session.call("catch_up_group", req)
            return await self._apply_page(res, since)

    async def catch_up_all(self, since: int) -> CatchUpPage:
        """Fetch and apply one page of events across all conversations after `since`."""

        if since <= 0:
            raise ValueError("catch_up_all needs a positive timestamp")
        req = proto.CatchUpUserRequest()
        req.request_header.CopyFrom(build_request_header(self.session))
        req.range.from_revision_timestamp = since
        req.page_size = self.session.config.catch_up_page_size
        req.cutoff_size = self.session.config.catch_up_cutoff_size

        async with self._catch_up_lock:
            res = await self.session.call("catch_up_user", req)
            return await self._apply_page(res, since)

    async def _apply_page(self, res: Any, since: int) -> CatchUpPage:
        applied = await self.apply_events(res.events)
        newest = max((e.revision_timestamp for e in res.events), default=since)
        more = res.status == proto.CatchUpStatus.CATCH_UP_STATUS_PAGINATED
        logger.debug("catch-up page: %d applied, more=%s", applied, more)
        return CatchUpPage(applied=applied, more_available=more, next_since=max(newest, since))
