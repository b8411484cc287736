from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .ids import ConversationId, ConversationKind


class TypingState(str, Enum):
    TYPING = "typing"
    PAUSED = "paused"
    STOPPED = "stopped"


class PresenceStatus(str, Enum):
    """
    Application-level status derived from server presence.

    The server has no "offline" state: a contact that is neither active nor
    reachable is INVISIBLE. OFFLINE is only produced when the session is
    configured with `treat_invisible_as_offline`.
    """

    AVAILABLE = "available"
    AWAY = "away"
    EXTENDED_AWAY = "extended_away"
    DO_NOT_DISTURB = "do_not_disturb"
    INVISIBLE = "invisible"
    OFFLINE = "offline"


class SegmentKind(str, Enum):
    TEXT = "text"
    LINE_BREAK = "line_break"
    LINK = "link"


@dataclass(frozen=True, slots=True)
class Segment:
    kind: SegmentKind
    text: str = ""
    link_target: str | None = None
    bold: bool = False
    italic: bool = False
    strikethrough: bool = False
    underline: bool = False


@dataclass(slots=True)
class ConversationSnapshot:
    """
    Local view of one conversation.

    `last_event_timestamp` mirrors the session's reconciliation watermark for
    this conversation (microseconds of the last applied event) and only moves
    forward; `last_read_timestamp` is the last read marker this client reported
    and also only moves forward.
    """

    conversation_id: ConversationId
    name: str | None = None
    members: list[str] = field(default_factory=list)
    last_event_timestamp: int = 0
    last_read_timestamp: int = 0

    @property
    def kind(self) -> ConversationKind:
        return self.conversation_id.kind

    def add_members(self, user_ids: list[str]) -> None:
        for uid in user_ids:
            if uid not in self.members:
                self.members.append(uid)

    def remove_members(self, user_ids: list[str]) -> None:
        self.members = [m for m in self.members if m not in user_ids]


@dataclass(frozen=True, slots=True)
class PresenceRecord:
    user_id: str
    reachable: bool
    status: PresenceStatus
    status_text: str | None = None


@dataclass(frozen=True, slots=True)
class ProfileUpdate:
    user_id: str
    alias: str | None = None
    avatar_url: str | None = None


@dataclass(frozen=True, slots=True)
class AvatarUpdate:
    user_id: str
    data: bytes
    checksum: str


@dataclass(frozen=True, slots=True)
class UserInfo:
    user_id: str
    display_name: str | None = None
    first_name: str | None = None
    photo_url: str | None = None
    email: str | None = None
    gender: str | None = None


@dataclass(frozen=True, slots=True)
class RoomListing:
    conversation_id: ConversationId
    name: str | None
    users: str


@dataclass(frozen=True, slots=True)
class AttachmentData:
    data: bytes
    filename: str
    content_type: str = "application/octet-stream"


@dataclass(frozen=True, slots=True)
class OutboundMessage:
    """A message ready to go on the wire, keyed by its client-generated id."""

    conversation_id: ConversationId
    segments: tuple[Segment, ...]
    client_generated_id: int
    is_action: bool = False
    attachment_id: str | None = None


@dataclass(frozen=True, slots=True)
class SentMessage:
    conversation_id: ConversationId
    client_generated_id: int
    text: str
    message_id: str | None = None
    attachment_id: str | None = None


@dataclass(frozen=True, slots=True)
class ReceivedMessage:
    conversation_id: ConversationId
    sender_id: str
    segments: list[Segment]
    text: str
    timestamp: int
    message_id: str | None = None
    is_action: bool = False
    from_self: bool = False
    attachment_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class TypingNotice:
    conversation_id: ConversationId
    user_id: str
    state: TypingState


@dataclass(frozen=True, slots=True)
class WatermarkNotice:
    conversation_id: ConversationId
    user_id: str
    timestamp: int


@dataclass(frozen=True, slots=True)
class SendFailure:
    conversation_id: ConversationId
    reason: str


@dataclass(slots=True)
class ConnectionUpdate:
    connection: str | None = None  # "connecting" | "open" | "close"
    last_disconnect: Exception | None = None
