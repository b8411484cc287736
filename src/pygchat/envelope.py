from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Any

from . import proto
from .ids import ConversationId, require_conversation_id, to_group_id

if TYPE_CHECKING:
    from .session import ChatSession


def new_client_generated_id() -> int:
    """Random 63-bit unsigned correlation id."""

    return secrets.randbits(63)


def build_request_header(session: ChatSession) -> Any:
    header = proto.RequestHeader()
    header.client_type = session.config.client_type
    header.client_version = session.config.client_version
    if session.auth_token:
        header.auth_token = session.auth_token
    return header


def build_event_header(session: ChatSession, conversation_id: ConversationId) -> Any:
    """
    Header for requests that create an event in `conversation_id`.

    The fresh `client_generated_id` comes back on the resulting event, which
    is how the reconciler recognizes our own sends.
    """

    conv = require_conversation_id(conversation_id)
    header = proto.EventRequestHeader()
    header.group_id.CopyFrom(to_group_id(conv))
    header.client_generated_id = new_client_generated_id()
    return header
