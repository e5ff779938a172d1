from __future__ import annotations

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close

from chat_client.application.exceptions import TransportClosedError, TransportError
from chat_client.infrastructure.ws.connection import WebsocketsConnection, open_websocket


class _ClosedSocket:
    def __init__(self, rcvd: Close | None) -> None:
        self._rcvd = rcvd

    async def recv(self):
        raise ConnectionClosed(self._rcvd, None)

    async def send(self, text: str) -> None:
        raise ConnectionClosed(self._rcvd, None)


class _BytesSocket:
    async def recv(self):
        return b'{"type": "ack"}'


@pytest.mark.asyncio
async def test_close_frame_code_and_reason_are_kept():
    conn = WebsocketsConnection(_ClosedSocket(Close(4001, "Authentication failed")))

    with pytest.raises(TransportClosedError) as exc_info:
        await conn.recv()
    assert exc_info.value.code == 4001
    assert exc_info.value.reason == "Authentication failed"

    with pytest.raises(TransportClosedError):
        await conn.send("{}")


@pytest.mark.asyncio
async def test_abnormal_closure_maps_to_1006():
    conn = WebsocketsConnection(_ClosedSocket(None))

    with pytest.raises(TransportClosedError) as exc_info:
        await conn.recv()
    assert exc_info.value.code == 1006


@pytest.mark.asyncio
async def test_binary_frames_are_decoded():
    conn = WebsocketsConnection(_BytesSocket())

    assert await conn.recv() == '{"type": "ack"}'


@pytest.mark.asyncio
async def test_invalid_url_is_a_transport_error():
    with pytest.raises(TransportError):
        await open_websocket("not a websocket url")
