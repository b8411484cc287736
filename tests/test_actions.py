from __future__ import annotations

import asyncio

import pytest

from pygchat import proto
from pygchat.constants import ME_ACTION_ANNOTATION_TYPE
from pygchat.exceptions import (
    AttachmentSendError,
    ConversationCreateError,
    InvalidIdentifierError,
    RpcError,
    TransportError,
    UnknownConversationError,
)
from pygchat.ids import ConversationId, to_group_id
from pygchat.models import AttachmentData, PresenceStatus, TypingState

SPACE = ConversationId.space("s1")
DM = ConversationId.dm("d1")
FILE = AttachmentData(data=b"\x89PNG...", filename="cat.png", content_type="image/png")


def _upload_session(url: str = "https://upload/1") -> object:
    res = proto.CreateUploadSessionResponse()
    res.upload_url = url
    return res


def _uploaded(attachment_id: str = "att1") -> object:
    res = proto.UploadBytesResponse()
    res.attachment_id = attachment_id
    return res


def _created(conv: ConversationId, *members: str) -> object:
    res = proto.CreateConversationResponse()
    res.group.group_id.CopyFrom(to_group_id(conv))
    for m in members:
        res.group.members.add().user_id.id = m
    return res


@pytest.mark.asyncio
async def test_send_message(dispatcher, reconciler, transport, record) -> None:
    rec = record("message.sent")
    res = proto.SendMessageResponse()
    res.message.id = "msg1"
    transport.queue("send_message", res)

    sent = await dispatcher.send_message(SPACE, "hello\nworld")

    assert transport.methods == ["send_message"]
    (req,) = transport.requests("send_message")
    assert req.request_header.auth_token == "tok"
    assert req.event_request_header.group_id.space_id.space_id == "s1"
    assert [s.text for s in req.message_content.segments] == ["hello", "\n", "world"]
    assert len(req.annotations) == 0

    assert sent.message_id == "msg1"
    assert sent.client_generated_id == req.event_request_header.client_generated_id
    assert sent.client_generated_id in reconciler.pending
    assert rec.of("message.sent") == [(sent,)]


@pytest.mark.asyncio
async def test_send_me_action(dispatcher, transport) -> None:
    await dispatcher.send_message(SPACE, "/me waves")
    (req,) = transport.requests("send_message")
    assert [s.text for s in req.message_content.segments] == ["waves"]
    assert [a.type for a in req.annotations] == [ME_ACTION_ANNOTATION_TYPE]


@pytest.mark.asyncio
async def test_send_failure_forgets_pending_echo(dispatcher, reconciler, transport, record) -> None:
    rec = record("message.sent")
    transport.queue("send_message", RpcError("send_message", status_code=3))
    with pytest.raises(TransportError):
        await dispatcher.send_message(SPACE, "hello")
    assert len(reconciler.pending) == 0
    assert rec.of("message.sent") == []


@pytest.mark.asyncio
async def test_invalid_ids_send_nothing(dispatcher, transport) -> None:
    with pytest.raises(InvalidIdentifierError):
        await dispatcher.send_message(ConversationId.space("bad id"), "x")
    with pytest.raises(InvalidIdentifierError):
        await dispatcher.send_im("bad id", "x")
    with pytest.raises(InvalidIdentifierError):
        await dispatcher.invite(SPACE, "")
    assert transport.calls == []


@pytest.mark.asyncio
async def test_attachment_pipeline_order(dispatcher, transport) -> None:
    transport.queue("create_upload_session", _upload_session())
    transport.queue("upload_bytes", _uploaded("att9"))

    sent = await dispatcher.send_message(SPACE, "look", attachment=FILE)

    assert transport.methods == ["create_upload_session", "upload_bytes", "send_message"]
    session_req, upload_req, send_req = (r for _, r in transport.calls)
    assert session_req.filename == "cat.png"
    assert session_req.size == len(FILE.data)
    assert session_req.content_type == "image/png"
    assert upload_req.upload_url == "https://upload/1"
    assert upload_req.data == FILE.data
    assert [a.attachment_id for a in send_req.message_content.attachments] == ["att9"]
    assert sent.attachment_id == "att9"
    assert dispatcher.pending_uploads(SPACE) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("session_res", "upload_res", "stage", "methods"),
    [
        (RpcError("create_upload_session", status_code=7), None, "session", ["create_upload_session"]),
        (proto.CreateUploadSessionResponse(), None, "session", ["create_upload_session"]),
        (_upload_session(), TransportError("reset"), "upload", ["create_upload_session", "upload_bytes"]),
        (_upload_session(), proto.UploadBytesResponse(), "upload", ["create_upload_session", "upload_bytes"]),
    ],
)
async def test_attachment_failure_aborts_send(
    dispatcher, transport, record, session_res, upload_res, stage, methods
) -> None:
    rec = record("send.failed", "message.sent")
    transport.queue("create_upload_session", session_res)
    if upload_res is not None:
        transport.queue("upload_bytes", upload_res)

    with pytest.raises(AttachmentSendError) as ei:
        await dispatcher.send_message(SPACE, "look", attachment=FILE)

    assert ei.value.stage == stage
    assert transport.methods == methods
    (failure,) = rec.of("send.failed")
    assert failure[0].conversation_id == SPACE
    assert rec.of("message.sent") == []


@pytest.mark.asyncio
async def test_unreadable_attachment(dispatcher, transport, tmp_path) -> None:
    with pytest.raises(AttachmentSendError) as ei:
        await dispatcher.send_message(SPACE, "x", attachment=tmp_path / "missing.png")
    assert ei.value.stage == "load"
    assert transport.calls == []


@pytest.mark.asyncio
async def test_attachment_from_file(dispatcher, transport, tmp_path) -> None:
    path = tmp_path / "notes.txt"
    path.write_bytes(b"hello")
    transport.queue("create_upload_session", _upload_session())
    transport.queue("upload_bytes", _uploaded())

    await dispatcher.send_message(SPACE, "", attachment=path)
    (req,) = transport.requests("create_upload_session")
    assert req.filename == "notes.txt"
    assert req.content_type == "text/plain"
    assert req.size == 5


@pytest.mark.asyncio
async def test_archive_during_upload_drops_result(dispatcher, session, transport) -> None:
    session.directory.record_group(SPACE, "Room")
    transport.queue("create_upload_session", _upload_session())
    transport.queue("upload_bytes", _uploaded())
    gate = transport.gate("upload_bytes")

    send = asyncio.create_task(dispatcher.send_message(SPACE, "look", attachment=FILE))
    for _ in range(5):
        await asyncio.sleep(0)
    assert dispatcher.pending_uploads(SPACE) == 1

    assert await dispatcher.archive_conversation(SPACE)
    gate.set()

    assert await send is None
    assert "send_message" not in transport.methods
    assert dispatcher.pending_uploads(SPACE) == 0


@pytest.mark.asyncio
async def test_leave_event_cancels_uploads(dispatcher, session, transport) -> None:
    gate = transport.gate("create_upload_session")
    send = asyncio.create_task(dispatcher.send_message(SPACE, "look", attachment=FILE))
    for _ in range(5):
        await asyncio.sleep(0)

    await session.events.emit("conversation.removed", SPACE)
    gate.set()
    assert await send is None
    assert transport.methods == ["create_upload_session"]


@pytest.mark.asyncio
async def test_send_im_known_dm(dispatcher, session, transport) -> None:
    session.directory.record_dm(DM, "alice")
    await dispatcher.send_im("alice", "hi")
    assert transport.methods == ["send_message"]
    (req,) = transport.requests("send_message")
    assert req.event_request_header.group_id.dm_id.dm_id == "d1"


@pytest.mark.asyncio
async def test_send_im_creates_dm(dispatcher, session, transport, record) -> None:
    rec = record("buddy.added", "message.sent")
    transport.queue("create_conversation", _created(DM, "me", "alice"))

    sent = await dispatcher.send_im("alice", "hi")

    assert transport.methods == ["create_conversation", "catch_up_group", "send_message"]
    (req,) = transport.requests("create_conversation")
    assert req.type == proto.ConversationType.CONVERSATION_TYPE_ONE_TO_ONE
    assert [i.user_id.id for i in req.invitee_ids] == ["alice"]
    assert 0 <= req.client_generated_id < 2**32
    assert session.directory.resolve_dm("alice") == DM
    assert sent.conversation_id == DM
    assert rec.names() == ["buddy.added", "message.sent"]


@pytest.mark.asyncio
async def test_create_failure_sends_nothing(dispatcher, transport) -> None:
    transport.queue("create_conversation", RpcError("create_conversation", status_code=9))
    with pytest.raises(RpcError):
        await dispatcher.create_conversation(True, "alice", "first")
    assert transport.methods == ["create_conversation"]

    transport.queue("create_conversation", proto.CreateConversationResponse())
    with pytest.raises(ConversationCreateError):
        await dispatcher.create_conversation(True, "alice", "first")
    assert "send_message" not in transport.methods


@pytest.mark.asyncio
async def test_create_group_with_first_message(dispatcher, session, transport) -> None:
    res = _created(SPACE, "me", "alice")
    res.group.name = "Plans"
    transport.queue("create_conversation", res)

    conv = await dispatcher.create_conversation(False, "alice", "welcome", name="Plans")

    assert conv == SPACE
    (req,) = transport.requests("create_conversation")
    assert req.type == proto.ConversationType.CONVERSATION_TYPE_GROUP
    assert req.name == "Plans"
    assert session.directory.is_known_group(SPACE)
    assert session.directory.snapshot(SPACE).name == "Plans"
    assert session.directory.snapshot(SPACE).members == ["me", "alice"]
    assert transport.methods[-1] == "send_message"


@pytest.mark.asyncio
async def test_send_chat_requires_known_group(dispatcher, session, transport) -> None:
    with pytest.raises(UnknownConversationError):
        await dispatcher.send_chat(SPACE, "hi")
    assert transport.calls == []

    session.directory.record_group(SPACE)
    await dispatcher.send_chat(SPACE, "hi")
    assert transport.methods == ["send_message"]


@pytest.mark.asyncio
async def test_set_typing(dispatcher, session, transport) -> None:
    task = dispatcher.set_typing(SPACE, TypingState.PAUSED)
    assert task is not None
    await task
    (req,) = transport.requests("set_typing_state")
    assert req.state == proto.TypingStateType.TYPING_STATE_PAUSED
    assert req.group_id.space_id.space_id == "s1"

    session.connected = False
    assert dispatcher.set_typing(SPACE, "typing") is None
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_set_typing_failure_is_only_logged(dispatcher, transport, caplog) -> None:
    transport.queue("set_typing_state", TransportError("down"))
    task = dispatcher.set_typing(SPACE, TypingState.TYPING)
    await asyncio.wait({task})
    await asyncio.sleep(0)
    assert isinstance(task.exception(), TransportError)
    assert "background task" in caplog.text


@pytest.mark.asyncio
async def test_mark_seen_gating(dispatcher, session, transport) -> None:
    session.directory.record_group(SPACE)

    assert not await dispatcher.mark_seen(SPACE, 100)
    session.focused.add(SPACE)
    session.self_status = PresenceStatus.AWAY
    assert not await dispatcher.mark_seen(SPACE, 100)
    assert transport.calls == []

    session.self_status = PresenceStatus.AVAILABLE
    assert await dispatcher.mark_seen(SPACE, 100)
    (req,) = transport.requests("mark_group_readstate")
    assert req.last_read_time == 100
    assert session.directory.snapshot(SPACE).last_read_timestamp == 100

    assert not await dispatcher.mark_seen(SPACE, 100)
    assert not await dispatcher.mark_seen(SPACE, 50)
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_mark_seen_never_regresses(dispatcher, session, transport) -> None:
    session.focused.add(SPACE)
    gate = transport.gate("mark_group_readstate")
    first = asyncio.create_task(dispatcher.mark_seen(SPACE, 100))
    await asyncio.sleep(0)
    session.directory.ensure_snapshot(SPACE).last_read_timestamp = 200
    gate.set()
    assert await first
    assert session.directory.snapshot(SPACE).last_read_timestamp == 200


@pytest.mark.asyncio
async def test_mark_seen_unknown_conversation_adds_no_snapshot(dispatcher, session, transport) -> None:
    session.focused.add(SPACE)
    assert await dispatcher.mark_seen(SPACE, 100)
    assert session.directory.snapshot(SPACE) is None
    assert transport.methods == ["mark_group_readstate"]


@pytest.mark.asyncio
async def test_set_focus(dispatcher, session, transport) -> None:
    assert await dispatcher.set_focus(SPACE, True)
    assert SPACE in session.focused
    assert not await dispatcher.set_focus(SPACE, True)
    assert await dispatcher.set_focus(SPACE, False)
    assert SPACE not in session.focused

    first, second = transport.requests("set_focus")
    assert first.type == proto.FocusType.FOCUS_TYPE_FOCUSED
    assert second.type == proto.FocusType.FOCUS_TYPE_UNFOCUSED


@pytest.mark.asyncio
async def test_set_focus_failure_keeps_state(dispatcher, session, transport) -> None:
    transport.queue("set_focus", TransportError("down"))
    with pytest.raises(TransportError):
        await dispatcher.set_focus(SPACE, True)
    assert SPACE not in session.focused


@pytest.mark.asyncio
async def test_set_presence(dispatcher, session, transport) -> None:
    await dispatcher.set_presence(PresenceStatus.AVAILABLE)
    await dispatcher.set_presence("do_not_disturb", "heads down")
    await dispatcher.set_presence(PresenceStatus.AWAY)

    available, dnd, away = transport.requests("set_presence")
    active = proto.ClientPresenceStateType.CLIENT_PRESENCE_STATE_DESKTOP_ACTIVE
    idle = proto.ClientPresenceStateType.CLIENT_PRESENCE_STATE_DESKTOP_IDLE

    assert available.presence_state_setting.type == active
    assert available.presence_state_setting.timeout_secs == 720
    assert not available.dnd_setting.do_not_disturb
    assert available.HasField("mood_setting")
    assert len(available.mood_setting.segments) == 0

    assert dnd.dnd_setting.do_not_disturb
    assert dnd.dnd_setting.timeout_secs == 172800
    assert [s.text for s in dnd.mood_setting.segments] == ["heads down"]

    assert away.presence_state_setting.type == idle
    assert session.self_status is PresenceStatus.AWAY


@pytest.mark.asyncio
async def test_archive_conversation(dispatcher, session, transport, record) -> None:
    session.directory.record_dm(DM, "alice")
    session.focused.add(DM)
    session.last_event_timestamp = 77
    rec = record("conversations.changed")

    assert await dispatcher.archive_conversation(DM)
    (req,) = transport.requests("modify_conversation_view")
    assert req.new_view == proto.ConversationView.CONVERSATION_VIEW_ARCHIVED
    assert req.last_event_timestamp == 77
    assert session.directory.resolve_dm("alice") is None
    assert DM not in session.focused
    assert len(rec.of("conversations.changed")) == 1


@pytest.mark.asyncio
async def test_archive_failure_leaves_directory(dispatcher, session, transport) -> None:
    session.directory.record_dm(DM, "alice")
    transport.queue("modify_conversation_view", RpcError("modify_conversation_view", status_code=2))
    with pytest.raises(RpcError):
        await dispatcher.archive_conversation(DM)
    assert session.directory.resolve_dm("alice") == DM


@pytest.mark.asyncio
async def test_archived_history_is_not_replayed(dispatcher, reconciler, session, record) -> None:
    session.directory.record_dm(DM, "alice")
    rec = record("message.received")
    ev = proto.Event()
    ev.group_id.CopyFrom(to_group_id(DM))
    ev.revision_timestamp = 100
    ev.message_posted.message.creator.id = "alice"

    assert await reconciler.apply_events([ev]) == 1
    assert await dispatcher.archive_conversation(DM)
    assert await reconciler.apply_events([ev]) == 0
    assert len(rec.of("message.received")) == 1
    assert session.directory.resolve_dm("alice") is None


@pytest.mark.asyncio
async def test_archive_unknown_is_noop_locally(dispatcher, transport) -> None:
    assert not await dispatcher.archive_conversation(SPACE)
    assert transport.methods == ["modify_conversation_view"]


@pytest.mark.asyncio
async def test_leave_and_kick(dispatcher, session, transport) -> None:
    with pytest.raises(UnknownConversationError):
        await dispatcher.leave_or_kick(SPACE)
    assert transport.calls == []

    session.directory.record_group(SPACE, "Room")
    session.directory.snapshot(SPACE).add_members(["me", "alice", "bob"])

    await dispatcher.leave_or_kick(SPACE, "bob")
    kick = transport.requests("remove_memberships")[0]
    assert kick.participant_id.id == "bob"
    assert session.directory.snapshot(SPACE).members == ["me", "alice"]

    await dispatcher.leave_or_kick(SPACE)
    leave = transport.requests("remove_memberships")[1]
    assert not leave.HasField("participant_id")
    assert not session.directory.is_known(SPACE)


@pytest.mark.asyncio
async def test_rename_and_invite(dispatcher, session, transport) -> None:
    session.directory.record_group(SPACE, "Old")
    await dispatcher.rename_conversation(SPACE, "New")
    await dispatcher.invite(SPACE, "carol")

    (rename,) = transport.requests("rename_conversation")
    assert rename.new_name == "New"
    (add,) = transport.requests("add_memberships")
    assert [i.user_id.id for i in add.invitee_ids] == ["carol"]
    snap = session.directory.snapshot(SPACE)
    assert snap.name == "New"
    assert "carol" in snap.members


@pytest.mark.asyncio
async def test_join_chat(dispatcher, session, transport) -> None:
    page = await dispatcher.join_chat(SPACE)
    assert session.directory.is_known_group(SPACE)
    assert transport.methods == ["catch_up_group"]
    assert page.applied == 0
