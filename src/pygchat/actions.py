"""
Outbound actions.

Every user action becomes exactly one RPC (an attachment send is the only
multi-step pipeline). Local state is only changed once the server has
accepted the action, except for typing notifications, which are fire and
forget.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any

from . import proto
from .attachments import AttachmentRef, AttachmentStore, FileAttachmentStore
from .constants import ME_ACTION_ANNOTATION_TYPE
from .envelope import build_event_header, build_request_header
from .exceptions import (
    AttachmentSendError,
    ConversationCreateError,
    TransportError,
    UnknownConversationError,
)
from .ids import (
    ConversationId,
    from_group_id,
    require_conversation_id,
    require_user_id,
    to_group_id,
)
from .models import OutboundMessage, PresenceStatus, SendFailure, SentMessage, TypingState
from .reconcile import CatchUpPage, EventReconciler
from .segments import PlainTextRenderer, SegmentRenderer, meify, segments_to_proto
from .session import ChatSession
from .util.asyncio import ensure_task, log_task_failure

logger = logging.getLogger(__name__)

_TYPING_TO_WIRE: dict[TypingState, str] = {
    TypingState.TYPING: "TYPING_STATE_TYPING",
    TypingState.PAUSED: "TYPING_STATE_PAUSED",
    TypingState.STOPPED: "TYPING_STATE_STOPPED",
}


class ActionDispatcher:
    def __init__(
        self,
        session: ChatSession,
        reconciler: EventReconciler,
        *,
        renderer: SegmentRenderer | None = None,
        attachments: AttachmentStore | None = None,
    ) -> None:
        self.session = session
        self.reconciler = reconciler
        self.renderer = renderer or PlainTextRenderer()
        self.attachments = attachments or FileAttachmentStore()
        # In-flight attachment uploads, owned by the conversation they target.
        self._uploads: dict[ConversationId, set[asyncio.Task[str]]] = {}

        session.events.on("conversation.removed", self._on_conversation_removed)

    def _request_header(self) -> Any:
        return build_request_header(self.session)

    # -- messages

    async def send_message(
        self,
        conversation_id: ConversationId,
        markup: str,
        *,
        attachment: AttachmentRef | None = None,
    ) -> SentMessage | None:
        """
        Send a message (optionally with one attachment) to a conversation.

        With an attachment the RPCs are, in order: create_upload_session,
        upload_bytes, send_message. If any upload step fails the message is
        not sent: `send.failed` is emitted and `AttachmentSendError` raised.
        Returns None when the conversation was archived or left while the
        upload was running.
        """

        conv = require_conversation_id(conversation_id)
        is_action, text = meify(markup)
        segments = self.renderer.render(text)

        attachment_id: str | None = None
        if attachment is not None:
            attachment_id = await self._upload_for(conv, attachment)
            if attachment_id is None:
                return None

        header = build_event_header(self.session, conv)
        cgid = header.client_generated_id
        outbound = OutboundMessage(
            conversation_id=conv,
            segments=tuple(segments),
            client_generated_id=cgid,
            is_action=is_action,
            attachment_id=attachment_id,
        )

        req = proto.SendMessageRequest()
        req.request_header.CopyFrom(self._request_header())
        req.event_request_header.CopyFrom(header)
        req.message_content.segments.extend(segments_to_proto(outbound.segments))
        if outbound.attachment_id:
            req.message_content.attachments.add().attachment_id = outbound.attachment_id
        if outbound.is_action:
            req.annotations.add().type = ME_ACTION_ANNOTATION_TYPE

        self.reconciler.pending.add(cgid)
        try:
            res = await self.session.call("send_message", req)
        except TransportError:
            self.reconciler.pending.discard(cgid)
            raise

        sent = SentMessage(
            conversation_id=conv,
            client_generated_id=cgid,
            text=markup,
            message_id=res.message.id or None,
            attachment_id=attachment_id,
        )
        await self.session.events.emit("message.sent", sent)
        return sent

    async def send_im(self, user_id: str, markup: str) -> SentMessage | None:
        """Message a user, creating the DM first when none is known."""

        uid = require_user_id(user_id)
        conv = self.session.directory.resolve_dm(uid)
        if conv is None:
            conv = await self.create_conversation(True, uid)
        return await self.send_message(conv, markup)

    async def send_chat(
        self,
        conversation_id: ConversationId,
        markup: str,
        *,
        attachment: AttachmentRef | None = None,
    ) -> SentMessage | None:
        conv = require_conversation_id(conversation_id)
        if not self.session.directory.is_known_group(conv):
            raise UnknownConversationError(f"not a known group conversation: {conv}")
        return await self.send_message(conv, markup, attachment=attachment)

    # -- attachments

    async def _upload_for(self, conv: ConversationId, ref: AttachmentRef) -> str | None:
        task = ensure_task(self._upload_pipeline(conv, ref), name=f"pygchat.upload.{conv}")
        self._uploads.setdefault(conv, set()).add(task)
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            tracked = self._uploads.get(conv)
            still_owned = tracked is not None and task in tracked
            if tracked is not None:
                tracked.discard(task)
                if not tracked:
                    del self._uploads[conv]

        if task.cancelled():
            logger.info("upload for %s was cancelled", conv)
            return None
        exc = task.exception()
        if not still_owned:
            logger.info("dropping upload result for %s: conversation went away", conv)
            return None
        if exc is not None:
            await self.session.events.emit(
                "send.failed", SendFailure(conversation_id=conv, reason=str(exc))
            )
            raise exc
        return task.result()

    async def _upload_pipeline(self, conv: ConversationId, ref: AttachmentRef) -> str:
        try:
            data = await self.attachments.load(ref)
        except OSError as e:
            raise AttachmentSendError(f"could not read attachment: {e}", stage="load") from e

        session_req = proto.CreateUploadSessionRequest()
        session_req.request_header.CopyFrom(self._request_header())
        session_req.group_id.CopyFrom(to_group_id(conv))
        session_req.filename = data.filename
        session_req.size = len(data.data)
        session_req.content_type = data.content_type
        try:
            session_res = await self.session.call("create_upload_session", session_req)
        except TransportError as e:
            raise AttachmentSendError(f"upload session failed: {e}", stage="session") from e
        if not session_res.upload_url:
            raise AttachmentSendError("server returned no upload url", stage="session")

        upload_req = proto.UploadBytesRequest()
        upload_req.request_header.CopyFrom(self._request_header())
        upload_req.upload_url = session_res.upload_url
        upload_req.data = data.data
        try:
            upload_res = await self.session.call("upload_bytes", upload_req)
        except TransportError as e:
            raise AttachmentSendError(f"upload failed: {e}", stage="upload") from e
        if not upload_res.attachment_id:
            raise AttachmentSendError("server returned no attachment id", stage="upload")

        logger.debug("uploaded %s (%d bytes) to %s", data.filename, len(data.data), conv)
        return upload_res.attachment_id

    def pending_uploads(self, conversation_id: ConversationId) -> int:
        return len(self._uploads.get(conversation_id, ()))

    def cancel_uploads(self, conversation_id: ConversationId) -> int:
        """Cancel the uploads owned by a conversation. Returns how many were cancelled."""

        tasks = self._uploads.pop(conversation_id, set())
        for t in tasks:
            t.cancel()
        if tasks:
            logger.info("cancelled %d upload(s) for %s", len(tasks), conversation_id)
        return len(tasks)

    def cancel_all_uploads(self) -> None:
        for conv in list(self._uploads):
            self.cancel_uploads(conv)

    def _on_conversation_removed(self, conversation_id: ConversationId) -> None:
        self.cancel_uploads(conversation_id)

    # -- typing / read state / focus / presence

    def set_typing(
        self, conversation_id: ConversationId, state: TypingState | str
    ) -> asyncio.Task[Any] | None:
        """
        Tell the server our typing state. Returns immediately.

        The RPC runs in the background; failures are only logged. Nothing is
        sent while disconnected.
        """

        conv = require_conversation_id(conversation_id)
        state = TypingState(state)
        if not self.session.connected:
            return None

        req = proto.SetTypingStateRequest()
        req.request_header.CopyFrom(self._request_header())
        req.group_id.CopyFrom(to_group_id(conv))
        req.state = proto.TypingStateType.Value(_TYPING_TO_WIRE[state])

        task = ensure_task(self.session.call("set_typing_state", req), name=f"pygchat.typing.{conv}")
        task.add_done_callback(log_task_failure)
        return task

    async def mark_seen(self, conversation_id: ConversationId, timestamp: int) -> bool:
        """
        Report `timestamp` as read in a conversation.

        Only sent while the conversation has focus, our own status is
        AVAILABLE, and `timestamp` is newer than the last reported marker.
        Returns True when the RPC was sent.
        """

        conv = require_conversation_id(conversation_id)
        if conv not in self.session.focused:
            return False
        if self.session.self_status is not PresenceStatus.AVAILABLE:
            return False
        snap = self.session.directory.snapshot(conv)
        if timestamp <= (snap.last_read_timestamp if snap is not None else 0):
            return False

        req = proto.MarkGroupReadstateRequest()
        req.request_header.CopyFrom(self._request_header())
        req.group_id.CopyFrom(to_group_id(conv))
        req.last_read_time = timestamp
        await self.session.call("mark_group_readstate", req)

        snap = self.session.directory.snapshot(conv)
        if snap is not None and timestamp > snap.last_read_timestamp:
            snap.last_read_timestamp = timestamp
        return True

    async def set_focus(self, conversation_id: ConversationId, focused: bool) -> bool:
        conv = require_conversation_id(conversation_id)
        if focused == (conv in self.session.focused):
            return False

        req = proto.SetFocusRequest()
        req.request_header.CopyFrom(self._request_header())
        req.group_id.CopyFrom(to_group_id(conv))
        req.type = (
            proto.FocusType.FOCUS_TYPE_FOCUSED if focused else proto.FocusType.FOCUS_TYPE_UNFOCUSED
        )
        await self.session.call("set_focus", req)

        if focused:
            self.session.focused.add(conv)
        else:
            self.session.focused.discard(conv)
        return True

    async def set_presence(self, status: PresenceStatus | str, message: str | None = None) -> None:
        status = PresenceStatus(status)
        cfg = self.session.config

        req = proto.SetPresenceRequest()
        req.request_header.CopyFrom(self._request_header())
        req.presence_state_setting.timeout_secs = cfg.presence_timeout_s
        if status is PresenceStatus.AVAILABLE:
            req.presence_state_setting.type = (
                proto.ClientPresenceStateType.CLIENT_PRESENCE_STATE_DESKTOP_ACTIVE
            )
        else:
            req.presence_state_setting.type = (
                proto.ClientPresenceStateType.CLIENT_PRESENCE_STATE_DESKTOP_IDLE
            )

        if status is PresenceStatus.DO_NOT_DISTURB:
            req.dnd_setting.do_not_disturb = True
            req.dnd_setting.timeout_secs = cfg.dnd_timeout_s
        else:
            req.dnd_setting.do_not_disturb = False

        if message:
            req.mood_setting.segments.extend(segments_to_proto(self.renderer.render(message)))
        else:
            # An empty mood clears the status message.
            req.mood_setting.SetInParent()

        await self.session.call("set_presence", req)
        self.session.self_status = status

    # -- conversation lifecycle

    async def create_conversation(
        self,
        is_dm: bool,
        target_user: str,
        first_message: str | None = None,
        *,
        name: str | None = None,
    ) -> ConversationId:
        """
        Create a DM (or a group seeded with one invitee).

        The new conversation is registered, its recent history fetched, and
        `first_message` sent right after. If creation fails nothing is sent.
        """

        uid = require_user_id(target_user)
        req = proto.CreateConversationRequest()
        req.request_header.CopyFrom(self._request_header())
        req.type = (
            proto.ConversationType.CONVERSATION_TYPE_ONE_TO_ONE
            if is_dm
            else proto.ConversationType.CONVERSATION_TYPE_GROUP
        )
        req.invitee_ids.add().user_id.id = uid
        req.client_generated_id = secrets.randbits(32)
        if name and not is_dm:
            req.name = name

        res = await self.session.call("create_conversation", req)
        conv = from_group_id(res.group.group_id) if res.HasField("group") else None
        if conv is None:
            raise ConversationCreateError(f"server did not create a conversation with {uid}")

        directory = self.session.directory
        if conv.is_dm:
            directory.record_dm(conv, uid)
            await self.session.add_contact(uid)
        else:
            directory.record_group(conv, res.group.name or name)
            snap = directory.ensure_snapshot(conv)
            snap.add_members([m.user_id.id for m in res.group.members if m.user_id.id])
        await self.session.events.emit("conversations.changed")

        try:
            await self.reconciler.catch_up_conversation(conv)
        except TransportError as e:
            logger.warning("initial catch-up of %s failed: %s", conv, e)

        if first_message:
            await self.send_message(conv, first_message)
        return conv

    async def archive_conversation(self, conversation_id: ConversationId) -> bool:
        """
        Archive a conversation on the server, then forget it locally.

        If the RPC fails the directory is left untouched.
        """

        conv = require_conversation_id(conversation_id)
        req = proto.ModifyConversationViewRequest()
        req.request_header.CopyFrom(self._request_header())
        req.group_id.CopyFrom(to_group_id(conv))
        req.new_view = proto.ConversationView.CONVERSATION_VIEW_ARCHIVED
        req.last_event_timestamp = self.session.last_event_timestamp
        await self.session.call("modify_conversation_view", req)

        self.cancel_uploads(conv)
        self.session.focused.discard(conv)
        removed = self.session.directory.archive(conv)
        if removed:
            await self.session.events.emit("conversations.changed")
        return removed

    async def leave_or_kick(
        self, conversation_id: ConversationId, target_user: str | None = None
    ) -> None:
        """Leave a group conversation, or remove `target_user` from it."""

        conv = require_conversation_id(conversation_id)
        if not self.session.directory.is_known_group(conv):
            raise UnknownConversationError(f"not a known group conversation: {conv}")
        uid = require_user_id(target_user) if target_user is not None else None

        req = proto.RemoveMembershipsRequest()
        req.request_header.CopyFrom(self._request_header())
        req.event_request_header.CopyFrom(build_event_header(self.session, conv))
        if uid is not None:
            req.participant_id.id = uid
        await self.session.call("remove_memberships", req)

        if uid is None:
            self.cancel_uploads(conv)
            self.session.focused.discard(conv)
            self.session.directory.forget_group(conv)
            await self.session.events.emit("conversations.changed")
        else:
            snap = self.session.directory.snapshot(conv)
            if snap is not None:
                snap.remove_members([uid])

    async def rename_conversation(self, conversation_id: ConversationId, name: str) -> None:
        conv = require_conversation_id(conversation_id)
        req = proto.RenameConversationRequest()
        req.request_header.CopyFrom(self._request_header())
        req.event_request_header.CopyFrom(build_event_header(self.session, conv))
        req.new_name = name
        await self.session.call("rename_conversation", req)

        if self.session.directory.rename(conv, name):
            await self.session.events.emit("conversations.changed")

    async def invite(self, conversation_id: ConversationId, user_id: str) -> None:
        conv = require_conversation_id(conversation_id)
        uid = require_user_id(user_id)
        req = proto.AddMembershipsRequest()
        req.request_header.CopyFrom(self._request_header())
        req.event_request_header.CopyFrom(build_event_header(self.session, conv))
        req.invitee_ids.add().user_id.id = uid
        await self.session.call("add_memberships", req)

        snap = self.session.directory.snapshot(conv)
        if snap is not None:
            snap.add_members([uid])

    async def join_chat(self, conversation_id: ConversationId) -> CatchUpPage:
        """Start tracking a space and pull its most recent history."""

        conv = require_conversation_id(conversation_id)
        directory = self.session.directory
        if not directory.is_known(conv) and not conv.is_dm:
            directory.record_group(conv)
            await self.session.events.emit("conversations.changed")
        return await self.reconciler.catch_up_conversation(conv)
