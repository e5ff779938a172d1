"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import itertools
import json
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable

import pytest
import pytest_asyncio

from chat_client.application.exceptions import TransportClosedError, TransportError
from chat_client.application.ports.auth import StaticTokenProvider
from chat_client.config import Settings
from chat_client.domain.entities.message import Message, Sender
from chat_client.infrastructure.ws.socket import TransportSocket
from chat_client.services.status import ConnectionStatusModel

WS_URL = "ws://chat.test"
TOKEN = "token-abc"


class FakeConnection:
    """In-memory WireConnection driven by FakeChatServer."""

    def __init__(self, server: FakeChatServer) -> None:
        self._server = server
        self._inbox: asyncio.Queue[str | TransportClosedError] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.closed = False

    async def send(self, text: str) -> None:
        if self.closed:
            raise TransportClosedError(1006, "closed")
        frame = json.loads(text)
        self.sent.append(frame)
        self._server.frames.append(frame)
        await self._server.handle(self, frame)

    async def recv(self) -> str:
        item = await self._inbox.get()
        if isinstance(item, TransportClosedError):
            self.closed = True
            raise item
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(TransportClosedError(1000, "client closed"))

    def push(self, type: str, data: dict[str, Any] | None = None, *, ack: int | None = None) -> None:
        frame: dict[str, Any] = {"type": type, "data": data or {}}
        if ack is not None:
            frame["ack"] = ack
        self._inbox.put_nowait(json.dumps(frame))

    def push_raw(self, text: str) -> None:
        self._inbox.put_nowait(text)

    def drop(self, code: int = 1006, reason: str = "abnormal closure") -> None:
        self._inbox.put_nowait(TransportClosedError(code, reason))


class FakeChatServer:
    """Scripted chat backend; also serves as the ConnectionFactory."""

    def __init__(self, *, user_id: str = "user-1", display_name: str = "Alice") -> None:
        self.user_id = user_id
        self.display_name = display_name
        self.confirm_handshake = True
        self.reject_token = False
        self.ack_joins = True
        self.ack_sends = True
        self.reject_sends: str | None = None
        self.fail_connects = 0
        self.connect_calls = 0
        self.connections: list[FakeConnection] = []
        self.frames: list[dict[str, Any]] = []
        self._message_ids = itertools.count(1)

    async def __call__(self, url: str) -> FakeConnection:
        self.connect_calls += 1
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise TransportError("Cannot reach chat server: connection refused")
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn

    @property
    def current(self) -> FakeConnection:
        return self.connections[-1]

    def sent(self, type: str | None = None) -> list[dict[str, Any]]:
        return [f for f in self.frames if type is None or f["type"] == type]

    async def handle(self, conn: FakeConnection, frame: dict[str, Any]) -> None:
        kind = frame["type"]
        data = frame.get("data", {})
        if kind == "handshake":
            if self.reject_token:
                conn.drop(4001, "Authentication failed")
            elif self.confirm_handshake:
                conn.push("connection_established", {"userId": self.user_id, "displayName": self.display_name})
        elif kind == "join:conversation" and self.ack_joins:
            conn.push("conversation:joined", {"conversationId": data["conversationId"]})
        elif kind == "send:message":
            if self.reject_sends is not None:
                conn.push("ack", {"success": False, "error": self.reject_sends}, ack=frame["ack"])
            elif self.ack_sends:
                conn.push("ack", {"success": True, "messageId": f"m{next(self._message_ids)}"}, ack=frame["ack"])


class FakeClock:
    """Clock whose sleeps are recorded and, with ``hold=True``, block until released."""

    def __init__(self, *, hold: bool = False) -> None:
        self.hold = hold
        self.sleeps: list[float] = []
        self._sleepers: list[asyncio.Future[None]] = []
        self._now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        self._now += timedelta(milliseconds=1)
        return self._now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if not self.hold:
            await asyncio.sleep(0)
            return
        waiter = asyncio.get_running_loop().create_future()
        self._sleepers.append(waiter)
        await waiter

    @property
    def waiting(self) -> int:
        return sum(1 for s in self._sleepers if not s.done())

    def release(self) -> None:
        sleepers, self._sleepers = self._sleepers, []
        for waiter in sleepers:
            if not waiter.done():
                waiter.set_result(None)


class FakeHistory:
    def __init__(self, pages: dict[str, list[Message]] | None = None) -> None:
        self.pages = pages or {}
        self.calls: list[tuple[str, int]] = []
        self.closed = False

    async def load(self, conversation_id: str, limit: int) -> list[Message]:
        self.calls.append((conversation_id, limit))
        return list(self.pages.get(conversation_id, []))[:limit]

    async def aclose(self) -> None:
        self.closed = True


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(0.001)


def make_message(
    *,
    message_id: str = "m-100",
    text: str = "hello",
    sender_id: str = "user-2",
    display_name: str = "Bob",
    created_at: datetime | None = None,
) -> Message:
    return Message(
        id=message_id,
        text=text,
        created_at=created_at or datetime(2024, 5, 1, 11, 0, tzinfo=timezone.utc),
        sender=Sender(id=sender_id, display_name=display_name),
    )


def message_record(
    *,
    message_id: str = "m-100",
    text: str = "hello",
    sender_id: str = "user-2",
    display_name: str = "Bob",
    created_at: str = "2024-05-01T11:00:00Z",
) -> dict[str, Any]:
    return {
        "id": message_id,
        "text": text,
        "createdAt": created_at,
        "sender": {"id": sender_id, "displayName": display_name},
    }


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "CHAT_WS_URL": WS_URL,
        "CHAT_API_URL": "http://chat.test/api",
        "CONNECT_TIMEOUT_SECONDS": 0.5,
        "JOIN_TIMEOUT_SECONDS": 0.2,
        "SEND_ACK_TIMEOUT_SECONDS": 0.2,
        "RECONNECT_BASE_DELAY_SECONDS": 1.0,
        "RECONNECT_MAX_ATTEMPTS": 5,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def server() -> FakeChatServer:
    return FakeChatServer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tokens() -> StaticTokenProvider:
    return StaticTokenProvider(TOKEN)


@pytest.fixture
def status() -> ConnectionStatusModel:
    return ConnectionStatusModel(max_attempts=5)


@pytest.fixture
def socket(server: FakeChatServer, status: ConnectionStatusModel) -> TransportSocket:
    return TransportSocket(WS_URL, server, status, connect_timeout=0.5)


@pytest_asyncio.fixture
async def connected_socket(socket: TransportSocket) -> AsyncIterator[TransportSocket]:
    await socket.connect(TOKEN)
    yield socket
    await socket.disconnect()
