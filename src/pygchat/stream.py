from __future__ import annotations

import asyncio
import logging

from google.protobuf.message import DecodeError as ProtobufDecodeError

from . import proto
from .connection.websocket import WebSocketConfig, WebSocketTransport
from .exceptions import DecodeError, TransportError
from .models import ConnectionUpdate
from .reconcile import EventReconciler
from .session import ChatSession
from .util.asyncio import cancel_suppress, ensure_task

logger = logging.getLogger(__name__)


class EventStream:
    """
    Server push channel.

    Each binary frame is a serialized `proto.StreamEventsResponse`; its events
    go straight to the reconciler, which makes redelivery after a reconnect
    harmless.
    """

    def __init__(
        self,
        session: ChatSession,
        reconciler: EventReconciler,
        *,
        transport: WebSocketTransport | None = None,
    ) -> None:
        self.session = session
        self.reconciler = reconciler
        if transport is None:
            headers = dict(session.config.headers)
            if session.auth_token:
                headers["Authorization"] = f"Bearer {session.auth_token}"
            transport = WebSocketTransport(
                WebSocketConfig(
                    url=session.config.events_url,
                    connect_timeout_s=session.config.connect_timeout_s,
                    extra_headers=headers,
                )
            )
        self._transport = transport
        self._recv_task: asyncio.Task[None] | None = None
        self._closed = True
        self._held: list[bytes] | None = None

    @property
    def is_open(self) -> bool:
        return self._transport.is_open

    @property
    def holding(self) -> bool:
        return self._held is not None

    async def start(self, *, hold: bool = False) -> None:
        """
        Open the socket and start reading.

        With `hold`, frames are queued instead of applied until `release()`.
        The client holds while it catches up, so history lands before pushes.
        """

        await cancel_suppress(self._recv_task)
        self._recv_task = None

        await self._transport.connect()
        self._closed = False
        self._held = [] if hold else None
        self._recv_task = ensure_task(self._recv_loop(), name="pygchat.event_stream")

    async def release(self) -> int:
        """Apply frames queued while holding, oldest first, then go live."""

        applied = 0
        # Frames arriving while this drains are appended and picked up here.
        while self._held:
            applied += await self._handle_frame(self._held.pop(0))
        self._held = None
        return applied

    async def stop(self) -> None:
        self._closed = True
        self._held = None
        await cancel_suppress(self._recv_task)
        self._recv_task = None
        await self._transport.close()

    async def feed(self, frame: bytes) -> int:
        """Decode one frame and apply its events. Returns how many were applied."""

        res = proto.StreamEventsResponse()
        try:
            res.ParseFromString(frame)
        except ProtobufDecodeError as e:
            raise DecodeError(f"undecodable event frame ({len(frame)} bytes)") from e
        return await self.reconciler.apply_events(res.events)

    async def _handle_frame(self, frame: bytes) -> int:
        try:
            return await self.feed(frame)
        except DecodeError as e:
            logger.warning("%s", e)
            await self.session.events.emit("stream.decode_error", frame)
            return 0

    async def _recv_loop(self) -> None:
        while not self._closed:
            try:
                frame = await self._transport.recv()
            except TransportError as e:
                if self._closed:
                    return
                logger.warning("event stream closed: %s", e)
                self.session.connected = False
                await self.session.events.emit(
                    "connection.update", ConnectionUpdate(connection="close", last_disconnect=e)
                )
                return

            if self._held is not None:
                self._held.append(frame)
                continue
            await self._handle_frame(frame)
