"""
Inbound event variants.

`decode_event` turns one wire `proto.Event` into a small frozen dataclass;
everything downstream dispatches on the dataclass type and never looks at the
protobuf again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from . import proto
from .constants import ME_ACTION_ANNOTATION_TYPE
from .exceptions import DecodeError
from .ids import ConversationId, from_group_id, is_valid_id
from .models import PresenceRecord, Segment, TypingState
from .roster import presence_from_proto
from .segments import segments_from_proto

_TYPING_FROM_WIRE: dict[str, TypingState] = {
    "TYPING_STATE_TYPING": TypingState.TYPING,
    "TYPING_STATE_PAUSED": TypingState.PAUSED,
    "TYPING_STATE_STOPPED": TypingState.STOPPED,
}


@dataclass(frozen=True, slots=True)
class MessagePosted:
    conversation_id: ConversationId
    timestamp: int
    sender_id: str
    segments: list[Segment] = field(default_factory=list)
    message_id: str | None = None
    client_generated_id: int | None = None
    is_action: bool = False
    attachment_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class MembershipChanged:
    conversation_id: ConversationId
    timestamp: int
    joined: bool
    user_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class TypingChanged:
    conversation_id: ConversationId
    timestamp: int
    user_id: str
    state: TypingState


@dataclass(frozen=True, slots=True)
class WatermarkUpdated:
    conversation_id: ConversationId
    timestamp: int
    user_id: str
    read_timestamp: int


@dataclass(frozen=True, slots=True)
class PresenceChanged:
    # Presence updates are not always scoped to a conversation.
    conversation_id: ConversationId | None
    timestamp: int
    record: PresenceRecord


@dataclass(frozen=True, slots=True)
class ConversationRenamed:
    conversation_id: ConversationId
    timestamp: int
    name: str


ChatEvent = Union[
    MessagePosted,
    MembershipChanged,
    TypingChanged,
    WatermarkUpdated,
    PresenceChanged,
    ConversationRenamed,
]

EVENT_TYPES: tuple[type, ...] = (
    MessagePosted,
    MembershipChanged,
    TypingChanged,
    WatermarkUpdated,
    PresenceChanged,
    ConversationRenamed,
)


def _require_conv(pb: Any) -> ConversationId:
    conv = from_group_id(pb.group_id) if pb.HasField("group_id") else None
    if conv is None:
        raise DecodeError("event without a valid group id")
    return conv


def _require_user(value: str, what: str) -> str:
    if not is_valid_id(value):
        raise DecodeError(f"{what} has invalid user id {value!r}")
    return value


def decode_event(pb: Any, *, treat_invisible_as_offline: bool = False) -> ChatEvent | None:
    """
    Decode one `proto.Event`.

    Returns None for event bodies this client does not handle. Raises
    `DecodeError` when the event is malformed (missing ids, missing payload).
    """

    body = pb.WhichOneof("body")
    ts = pb.revision_timestamp

    if body == "message_posted":
        conv = _require_conv(pb)
        msg = pb.message_posted.message
        sender = _require_user(msg.creator.id, "message")
        return MessagePosted(
            conversation_id=conv,
            timestamp=ts,
            sender_id=sender,
            segments=segments_from_proto(msg.content.segments),
            message_id=msg.id or None,
            client_generated_id=msg.client_generated_id or None,
            is_action=any(a.type == ME_ACTION_ANNOTATION_TYPE for a in msg.annotations),
            attachment_ids=[a.attachment_id for a in msg.content.attachments if a.attachment_id],
        )

    if body == "membership_changed":
        conv = _require_conv(pb)
        ev = pb.membership_changed
        if ev.type == proto.MembershipChangeType.MEMBERSHIP_CHANGE_JOINED:
            joined = True
        elif ev.type == proto.MembershipChangeType.MEMBERSHIP_CHANGE_LEFT:
            joined = False
        else:
            raise DecodeError(f"membership change of unknown type {ev.type}")
        users = [u.id for u in ev.affected_members if is_valid_id(u.id)]
        return MembershipChanged(conversation_id=conv, timestamp=ts, joined=joined, user_ids=users)

    if body == "typing_state_changed":
        conv = _require_conv(pb)
        ev = pb.typing_state_changed
        state = _TYPING_FROM_WIRE.get(proto.TypingStateType.Name(ev.state))
        if state is None:
            raise DecodeError(f"typing event with unknown state {ev.state}")
        return TypingChanged(
            conversation_id=conv,
            timestamp=ts,
            user_id=_require_user(ev.user_id.id, "typing event"),
            state=state,
        )

    if body == "read_receipt_changed":
        conv = _require_conv(pb)
        ev = pb.read_receipt_changed
        return WatermarkUpdated(
            conversation_id=conv,
            timestamp=ts,
            user_id=_require_user(ev.user_id.id, "read receipt"),
            read_timestamp=ev.last_read_time,
        )

    if body == "user_status_updated":
        record = presence_from_proto(
            pb.user_status_updated.user_presence,
            treat_invisible_as_offline=treat_invisible_as_offline,
        )
        if record is None:
            raise DecodeError("presence update without a valid user id")
        conv = from_group_id(pb.group_id) if pb.HasField("group_id") else None
        return PresenceChanged(conversation_id=conv, timestamp=ts, record=record)

    if body == "group_updated":
        conv = _require_conv(pb)
        name = pb.group_updated.new_name
        if not name:
            return None
        return ConversationRenamed(conversation_id=conv, timestamp=ts, name=name)

    return None
