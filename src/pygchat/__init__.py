"""
pygchat: an asyncio-first Google Chat protocol client core.

Keeps a session's view of users and conversations in sync with the server
(roster listings, pushed events, catch-up) and turns user actions into
protobuf RPCs.
"""

from __future__ import annotations

from .client import ClientConfig, GoogleChatClient
from .config import SessionConfig
from .exceptions import PygchatError
from .ids import ConversationId

__all__ = [
    "ClientConfig",
    "ConversationId",
    "GoogleChatClient",
    "PygchatError",
    "SessionConfig",
]

__version__ = "0.1.0"
