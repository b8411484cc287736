from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from . import proto
from .constants import MAX_ID_LENGTH
from .exceptions import InvalidIdentifierError

_TOKEN_RE = re.compile(r"[A-Za-z0-9_-]+")


class ConversationKind(str, Enum):
    DM = "dm"
    SPACE = "space"


@dataclass(frozen=True, slots=True)
class ConversationId:
    """
    A conversation token tagged with its kind.

    DM and space tokens live in different namespaces on the server, so the kind
    is part of the identity: `ConversationId.dm("x") != ConversationId.space("x")`.
    """

    kind: ConversationKind
    token: str

    @classmethod
    def dm(cls, token: str) -> ConversationId:
        return cls(ConversationKind.DM, token)

    @classmethod
    def space(cls, token: str) -> ConversationId:
        return cls(ConversationKind.SPACE, token)

    @property
    def is_dm(self) -> bool:
        return self.kind is ConversationKind.DM

    def __str__(self) -> str:
        return self.token


def is_valid_id(value: object) -> bool:
    """True when `value` has the shape of a server-issued token."""

    if not isinstance(value, str) or not value or len(value) > MAX_ID_LENGTH:
        return False
    return _TOKEN_RE.fullmatch(value) is not None


def require_user_id(value: object) -> str:
    if not is_valid_id(value):
        raise InvalidIdentifierError(value, kind="user id")
    return value  # type: ignore[return-value]


def require_conversation_id(value: object) -> ConversationId:
    if not isinstance(value, ConversationId) or not is_valid_id(value.token):
        raise InvalidIdentifierError(value, kind="conversation id")
    return value


def to_group_id(conversation_id: ConversationId) -> Any:
    """Build a `proto.GroupId` for a (validated) conversation id."""

    conv = require_conversation_id(conversation_id)
    group_id = proto.GroupId()
    if conv.is_dm:
        group_id.dm_id.dm_id = conv.token
    else:
        group_id.space_id.space_id = conv.token
    return group_id


def from_group_id(group_id: Any) -> ConversationId | None:
    """Inverse of `to_group_id`; returns None for empty or malformed ids."""

    if group_id is None:
        return None
    which = group_id.WhichOneof("kind")
    if which == "dm_id":
        conv = ConversationId.dm(group_id.dm_id.dm_id)
    elif which == "space_id":
        conv = ConversationId.space(group_id.space_id.space_id)
    else:
        return None
    return conv if is_valid_id(conv.token) else None
