from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any

import pytest

from pygchat.actions import ActionDispatcher
from pygchat.config import SessionConfig
from pygchat.proto import response_type_for
from pygchat.reconcile import EventReconciler
from pygchat.roster import RosterSync
from pygchat.session import ChatSession

SELF_ID = "me"


class FakeTransport:
    """
    In-memory `RpcTransport`.

    Records every `(method, request)` and answers with queued responses (or
    raises queued exceptions). Unqueued methods get an empty response.
    `gate(method)` makes calls to `method` wait until the returned event is set.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self._responses: dict[str, list[Any]] = defaultdict(list)
        self._gates: dict[str, asyncio.Event] = {}

    def queue(self, method: str, *items: Any) -> None:
        self._responses[method].extend(items)

    def gate(self, method: str) -> asyncio.Event:
        ev = asyncio.Event()
        self._gates[method] = ev
        return ev

    @property
    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]

    def requests(self, method: str) -> list[Any]:
        return [r for m, r in self.calls if m == method]

    async def invoke(self, method: str, request: Any) -> Any:
        self.calls.append((method, request))
        gate = self._gates.get(method)
        if gate is not None:
            await gate.wait()
        pending = self._responses.get(method)
        item = pending.pop(0) if pending else response_type_for(method)()
        if isinstance(item, BaseException):
            raise item
        return item


class FakeAvatarFetcher:
    def __init__(self) -> None:
        self.urls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    async def fetch(self, url: str) -> bytes:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return b"img:" + url.encode()


class FakeSocket:
    """Stands in for `WebSocketTransport`: frames come from a queue."""

    def __init__(self) -> None:
        self.frames: asyncio.Queue[bytes | Exception] = asyncio.Queue()
        self.connected = False
        self.closed = False

    @property
    def is_open(self) -> bool:
        return self.connected and not self.closed

    async def connect(self) -> None:
        self.connected = True
        self.closed = False

    async def close(self) -> None:
        self.closed = True

    async def recv(self) -> bytes:
        item = await self.frames.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def drained(self) -> None:
        """Wait until the reader has taken every queued frame."""

        while not self.frames.empty():
            await asyncio.sleep(0)
        await asyncio.sleep(0)


class Recorder:
    """Collects emitted notifications as `(event, args)` pairs."""

    def __init__(self, session: ChatSession, *events: str) -> None:
        self.seen: list[tuple[str, tuple[Any, ...]]] = []
        for name in events:
            session.events.on(name, self._make(name))

    def _make(self, name: str) -> Any:
        def _listener(*args: Any) -> None:
            self.seen.append((name, args))

        return _listener

    def of(self, name: str) -> list[tuple[Any, ...]]:
        return [args for n, args in self.seen if n == name]

    def names(self) -> list[str]:
        return [n for n, _ in self.seen]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def config() -> SessionConfig:
    return SessionConfig()


@pytest.fixture
def session(transport: FakeTransport, config: SessionConfig) -> ChatSession:
    s = ChatSession(transport=transport, config=config, auth_token="tok")
    s.directory.self_user_id = SELF_ID
    s.connected = True
    return s


@pytest.fixture
def avatars() -> FakeAvatarFetcher:
    return FakeAvatarFetcher()


@pytest.fixture
def roster(session: ChatSession, avatars: FakeAvatarFetcher) -> RosterSync:
    return RosterSync(session, avatar_fetcher=avatars)


@pytest.fixture
def reconciler(session: ChatSession) -> EventReconciler:
    return EventReconciler(session)


@pytest.fixture
def dispatcher(session: ChatSession, reconciler: EventReconciler) -> ActionDispatcher:
    return ActionDispatcher(session, reconciler)


@pytest.fixture
def record(session: ChatSession) -> Any:
    def _record(*events: str) -> Recorder:
        return Recorder(session, *events)

    return _record


@pytest.fixture
def sock() -> FakeSocket:
    return FakeSocket()
