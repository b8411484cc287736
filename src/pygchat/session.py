from __future__ import annotations

import logging
from typing import Any

from .config import SessionConfig
from .connection.http import RpcTransport
from .directory import Directory
from .exceptions import RpcError, TransportError
from .ids import ConversationId
from .models import PresenceStatus
from .util.events import AsyncEventEmitter

logger = logging.getLogger(__name__)


class ChatSession:
    """
    All mutable state of one logged-in account.

    The session is created by the caller and handed to every component; there
    is no module-level state. It is meant to be driven from a single asyncio
    event loop: components mutate it only in synchronous stretches between
    awaits, which serializes event-driven and action-driven updates.
    """

    def __init__(
        self,
        *,
        transport: RpcTransport,
        config: SessionConfig | None = None,
        auth_token: str | None = None,
        known_contacts: list[str] | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self.transport = transport
        self.auth_token = auth_token
        self.events = AsyncEventEmitter()
        self.directory = Directory()

        self.connected = False
        self.self_status = PresenceStatus.AVAILABLE
        self.focused: set[ConversationId] = set()
        # Highest revision timestamp applied across all conversations (microseconds).
        # Survives disconnects so a reconnect can catch up from here.
        self.last_event_timestamp = 0
        # Last applied revision timestamp per conversation. Kept across
        # disconnects, archive and leave: the directory forgets conversations,
        # this does not.
        self.event_watermarks: dict[ConversationId, int] = {}

        # Buddy list: users shown to the UI, including ones carried over from a
        # previous session.
        self.contacts: set[str] = set(known_contacts or [])
        # Avatar reference (URL/checksum) last applied per user.
        self.avatar_refs: dict[str, str] = {}

    @property
    def self_user_id(self) -> str | None:
        return self.directory.self_user_id

    async def add_contact(self, user_id: str) -> bool:
        """Add `user_id` to the buddy list; emits `buddy.added` when new."""

        if self.config.hide_self and user_id == self.self_user_id:
            return False
        if user_id in self.contacts:
            return False
        self.contacts.add(user_id)
        await self.events.emit("buddy.added", user_id)
        return True

    def note_event_timestamp(self, timestamp: int) -> None:
        if timestamp > self.last_event_timestamp:
            self.last_event_timestamp = timestamp

    async def call(self, method: str, request: Any) -> Any:
        """
        Issue one RPC through the transport.

        Returns the typed response or raises `TransportError` (`RpcError` when
        the server answered with an error status). Never retries.
        """

        logger.debug("rpc %s ->", method)
        try:
            response = await self.transport.invoke(method, request)
        except TransportError:
            logger.debug("rpc %s failed", method, exc_info=True)
            raise
        except Exception as e:
            raise TransportError(f"{method} failed: {e}") from e

        header = getattr(response, "response_header", None)
        if header is not None and header.status_code:
            raise RpcError(
                method, status_code=header.status_code, description=header.error_description
            )
        logger.debug("rpc %s <- ok", method)
        return response

    def reset(self) -> None:
        """Drop everything tied to the current connection (keeps the event watermarks)."""

        self.connected = False
        self.directory.clear()
        self.focused.clear()
        self.avatar_refs.clear()
