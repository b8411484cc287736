from __future__ import annotations

import asyncio

import pytest

from pygchat import proto
from pygchat.constants import ME_ACTION_ANNOTATION_TYPE
from pygchat.events import EVENT_TYPES, MessagePosted, decode_event
from pygchat.exceptions import DecodeError
from pygchat.ids import ConversationId, to_group_id
from pygchat.models import PresenceStatus, TypingState
from pygchat.reconcile import PendingEchoes

SPACE = ConversationId.space("s1")
DM = ConversationId.dm("d1")


def _event(conv: ConversationId | None, ts: int) -> object:
    ev = proto.Event()
    if conv is not None:
        ev.group_id.CopyFrom(to_group_id(conv))
    ev.revision_timestamp = ts
    return ev


def _message(conv: ConversationId, ts: int, sender: str, text: str = "hi", *, cgid: int = 0) -> object:
    ev = _event(conv, ts)
    msg = ev.message_posted.message
    msg.id = f"m{ts}"
    msg.creator.id = sender
    seg = msg.content.segments.add()
    seg.type = proto.SegmentType.SEGMENT_TYPE_TEXT
    seg.text = text
    if cgid:
        msg.client_generated_id = cgid
    return ev


def _typing(conv: ConversationId, user: str) -> object:
    ev = _event(conv, 0)
    ev.typing_state_changed.user_id.id = user
    ev.typing_state_changed.state = proto.TypingStateType.TYPING_STATE_TYPING
    return ev


def _membership(conv: ConversationId, ts: int, joined: bool, *users: str) -> object:
    ev = _event(conv, ts)
    ev.membership_changed.type = (
        proto.MembershipChangeType.MEMBERSHIP_CHANGE_JOINED
        if joined
        else proto.MembershipChangeType.MEMBERSHIP_CHANGE_LEFT
    )
    for u in users:
        ev.membership_changed.affected_members.add().id = u
    return ev


def _catch_up(*events: object, paginated: bool = False) -> object:
    res = proto.CatchUpResponse()
    for ev in events:
        res.events.add().CopyFrom(ev)
    res.status = (
        proto.CatchUpStatus.CATCH_UP_STATUS_PAGINATED
        if paginated
        else proto.CatchUpStatus.CATCH_UP_STATUS_COMPLETED
    )
    return res


def test_every_event_type_has_a_handler(reconciler) -> None:
    assert reconciler.handled_types == frozenset(EVENT_TYPES)


def test_decode_message() -> None:
    ev = _message(SPACE, 10, "alice", "hello", cgid=7)
    ev.message_posted.message.annotations.add().type = ME_ACTION_ANNOTATION_TYPE
    decoded = decode_event(ev)
    assert isinstance(decoded, MessagePosted)
    assert decoded.conversation_id == SPACE
    assert decoded.sender_id == "alice"
    assert decoded.client_generated_id == 7
    assert decoded.is_action
    assert decoded.segments[0].text == "hello"


def test_decode_rejects_malformed() -> None:
    with pytest.raises(DecodeError):
        decode_event(_message(SPACE, 10, ""))
    no_group = _message(SPACE, 10, "alice")
    no_group.ClearField("group_id")
    with pytest.raises(DecodeError):
        decode_event(no_group)
    assert decode_event(_event(SPACE, 10)) is None


@pytest.mark.asyncio
async def test_duplicate_event_applied_once(reconciler, session, record) -> None:
    session.directory.record_group(SPACE, "Room")
    rec = record("message.received")
    ev = _message(SPACE, 100, "alice")

    assert await reconciler.apply_events([ev]) == 1
    assert await reconciler.apply_events([ev]) == 0
    assert len(rec.of("message.received")) == 1
    assert session.directory.snapshot(SPACE).last_event_timestamp == 100
    assert session.last_event_timestamp == 100


@pytest.mark.asyncio
async def test_stale_events_are_dropped(reconciler, session, record) -> None:
    session.directory.record_group(SPACE, "Room")
    rec = record("message.received")

    await reconciler.apply_events([_message(SPACE, 200, "alice", "new")])
    await reconciler.apply_events([_message(SPACE, 150, "alice", "old")])
    assert [m[0].text for m in rec.of("message.received")] == ["new"]


@pytest.mark.asyncio
async def test_batch_is_applied_in_timestamp_order(reconciler, session, record) -> None:
    session.directory.record_group(SPACE, "Room")
    rec = record("message.received")
    await reconciler.apply_events(
        [_message(SPACE, 30, "alice", "c"), _message(SPACE, 10, "alice", "a"), _message(SPACE, 20, "bob", "b")]
    )
    assert [m[0].text for m in rec.of("message.received")] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_watermarks_are_per_conversation(reconciler, session, record) -> None:
    other = ConversationId.space("s2")
    session.directory.record_group(SPACE)
    session.directory.record_group(other)
    rec = record("message.received")
    await reconciler.apply_events([_message(SPACE, 50, "alice")])
    await reconciler.apply_events([_message(other, 40, "alice")])
    assert len(rec.of("message.received")) == 2


@pytest.mark.asyncio
async def test_typing_bypasses_watermark(reconciler, session, record) -> None:
    session.directory.record_group(SPACE)
    rec = record("typing")
    await reconciler.apply_events([_message(SPACE, 100, "alice")])
    await reconciler.apply_events([_typing(SPACE, "alice"), _typing(SPACE, "alice"), _typing(SPACE, "me")])

    notices = [args[0] for args in rec.of("typing")]
    assert [(n.user_id, n.state) for n in notices] == [("alice", TypingState.TYPING)] * 2


@pytest.mark.asyncio
async def test_own_echo_is_confirmed_not_received(reconciler, session, record) -> None:
    session.directory.record_group(SPACE)
    rec = record("message.received", "message.confirmed")
    reconciler.pending.add(555)

    await reconciler.apply_events([_message(SPACE, 10, "me", cgid=555)])
    await reconciler.apply_events([_message(SPACE, 20, "me", cgid=556)])

    assert rec.of("message.confirmed") == [(SPACE, 555, "m10")]
    (received,) = rec.of("message.received")
    assert received[0].from_self
    assert len(reconciler.pending) == 0


@pytest.mark.asyncio
async def test_message_registers_unknown_dm(reconciler, session, record) -> None:
    rec = record("conversations.changed", "buddy.added", "message.received")
    await reconciler.apply_events([_message(DM, 10, "alice")])

    assert session.directory.resolve_dm("alice") == DM
    assert "alice" in session.contacts
    assert rec.names() == ["buddy.added", "conversations.changed", "message.received"]


@pytest.mark.asyncio
async def test_message_registers_unknown_space(reconciler, session) -> None:
    await reconciler.apply_events([_message(SPACE, 10, "alice")])
    assert session.directory.is_known_group(SPACE)
    assert session.directory.snapshot(SPACE).name == "Unknown"


@pytest.mark.asyncio
async def test_own_message_in_unlisted_dm_does_not_map_self(reconciler, session) -> None:
    await reconciler.apply_events([_message(DM, 10, "me")])
    assert session.directory.resolve_dm("me") is None


@pytest.mark.asyncio
async def test_membership_changes(reconciler, session, record) -> None:
    session.directory.record_group(SPACE, "Room")
    session.focused.add(SPACE)
    rec = record("conversation.removed")

    await reconciler.apply_events([_membership(SPACE, 10, True, "alice", "bob")])
    assert session.directory.snapshot(SPACE).members == ["alice", "bob"]

    await reconciler.apply_events([_membership(SPACE, 20, False, "bob")])
    assert session.directory.snapshot(SPACE).members == ["alice"]

    await reconciler.apply_events([_membership(SPACE, 30, False, "me")])
    assert not session.directory.is_known(SPACE)
    assert SPACE not in session.focused
    assert rec.of("conversation.removed") == [(SPACE,)]


@pytest.mark.asyncio
async def test_rename_event(reconciler, session, record) -> None:
    session.directory.record_group(SPACE, "Old")
    rec = record("conversations.changed")
    ev = _event(SPACE, 10)
    ev.group_updated.new_name = "New"
    await reconciler.apply_events([ev])
    assert session.directory.snapshot(SPACE).name == "New"
    assert len(rec.of("conversations.changed")) == 1


@pytest.mark.asyncio
async def test_read_receipts(reconciler, session, record) -> None:
    session.directory.record_group(SPACE)
    rec = record("watermark")
    mine = _event(SPACE, 10)
    mine.read_receipt_changed.user_id.id = "me"
    mine.read_receipt_changed.last_read_time = 9
    theirs = _event(SPACE, 11)
    theirs.read_receipt_changed.user_id.id = "alice"
    theirs.read_receipt_changed.last_read_time = 11

    await reconciler.apply_events([mine, theirs])
    assert session.directory.snapshot(SPACE).last_read_timestamp == 9
    assert [(n[0].user_id, n[0].timestamp) for n in rec.of("watermark")] == [("me", 9), ("alice", 11)]


@pytest.mark.asyncio
async def test_presence_event(reconciler, record) -> None:
    rec = record("buddy.presence")
    ev = _event(None, 10)
    up = ev.user_status_updated.user_presence
    up.user_id.id = "alice"
    up.presence = proto.PresenceType.PRESENCE_ACTIVE
    up.dnd_state = proto.DndStateType.DND_STATE_AVAILABLE

    await reconciler.apply_events([ev])
    (record_args,) = rec.of("buddy.presence")
    assert record_args[0].status is PresenceStatus.AVAILABLE


@pytest.mark.asyncio
async def test_malformed_event_does_not_stop_batch(reconciler, session, record, caplog) -> None:
    session.directory.record_group(SPACE)
    rec = record("message.received")
    applied = await reconciler.apply_events([_message(SPACE, 10, "bad id"), _message(SPACE, 11, "alice")])
    assert applied == 1
    assert len(rec.of("message.received")) == 1
    assert "skipping malformed event" in caplog.text


def test_pending_echoes_expire() -> None:
    now = [0.0]
    pending = PendingEchoes(ttl_s=600, max_size=10, clock=lambda: now[0])
    pending.add(1)
    now[0] = 300
    pending.add(2)
    now[0] = 601
    assert 1 not in pending
    assert 2 in pending
    assert not pending.confirm(1)
    assert pending.confirm(2)
    assert len(pending) == 0


def test_pending_echoes_are_bounded() -> None:
    pending = PendingEchoes(ttl_s=600, max_size=3)
    for cgid in range(5):
        pending.add(cgid)
    assert len(pending) == 3
    assert 0 not in pending and 1 not in pending
    assert 4 in pending


@pytest.mark.asyncio
async def test_catch_up_conversation(reconciler, session, transport) -> None:
    session.directory.record_group(SPACE)
    transport.queue("catch_up_group", _catch_up(_message(SPACE, 10, "alice"), _message(SPACE, 20, "bob"), paginated=True))

    page = await reconciler.catch_up_conversation(SPACE)
    assert page.applied == 2
    assert page.more_available
    assert page.next_since == 20

    (req,) = transport.requests("catch_up_group")
    assert req.group_id.space_id.space_id == "s1"
    assert req.page_size == 500
    assert req.cutoff_size == 500
    assert not req.HasField("range")

    await reconciler.catch_up_conversation(SPACE, since=20)
    assert transport.requests("catch_up_group")[1].range.from_revision_timestamp == 20


@pytest.mark.asyncio
async def test_catch_up_redelivery_is_idempotent(reconciler, session, transport, record) -> None:
    session.directory.record_group(SPACE)
    rec = record("message.received")
    await reconciler.apply_events([_message(SPACE, 10, "alice")])
    transport.queue("catch_up_group", _catch_up(_message(SPACE, 10, "alice"), _message(SPACE, 20, "alice")))

    page = await reconciler.catch_up_conversation(SPACE)
    assert page.applied == 1
    assert len(rec.of("message.received")) == 2


@pytest.mark.asyncio
async def test_catch_up_all(reconciler, transport) -> None:
    with pytest.raises(ValueError):
        await reconciler.catch_up_all(0)

    transport.queue("catch_up_user", _catch_up())
    page = await reconciler.catch_up_all(1000)
    assert page == type(page)(applied=0, more_available=False, next_since=1000)
    (req,) = transport.requests("catch_up_user")
    assert req.range.from_revision_timestamp == 1000


@pytest.mark.asyncio
async def test_catch_ups_are_serialized(reconciler, transport) -> None:
    gate = transport.gate("catch_up_group")
    first = asyncio.create_task(reconciler.catch_up_conversation(SPACE))
    second = asyncio.create_task(reconciler.catch_up_conversation(DM))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert transport.methods == ["catch_up_group"]
    gate.set()
    await asyncio.gather(first, second)
    assert transport.methods == ["catch_up_group", "catch_up_group"]


@pytest.mark.asyncio
async def test_history_after_leaving_stays_applied(reconciler, session, record) -> None:
    session.directory.record_group(SPACE, "Room")
    rec = record("message.received")
    old = _message(SPACE, 100, "alice")

    await reconciler.apply_events([old, _membership(SPACE, 110, False, "me")])
    assert not session.directory.is_known(SPACE)

    assert await reconciler.apply_events([old]) == 0
    assert len(rec.of("message.received")) == 1
    assert not session.directory.is_known(SPACE)
    assert session.event_watermarks[SPACE] == 110


@pytest.mark.asyncio
async def test_watermarks_survive_session_reset(reconciler, session, record) -> None:
    rec = record("message.received")
    await reconciler.apply_events([_message(SPACE, 100, "alice")])
    session.reset()

    assert await reconciler.apply_events([_message(SPACE, 100, "alice")]) == 0
    assert await reconciler.apply_events([_message(SPACE, 120, "alice")]) == 1
    assert len(rec.of("message.received")) == 2
    assert session.directory.snapshot(SPACE).last_event_timestamp == 120
