"""``websockets``-backed implementation of the WireConnection port."""
from __future__ import annotations

import logging

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from chat_client.application.exceptions import TransportClosedError, TransportError

logger = logging.getLogger(__name__)


class WebsocketsConnection:
    """Translates ``websockets`` exceptions into the client's error taxonomy."""

    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws

    async def send(self, text: str) -> None:
        try:
            await self._ws.send(text)
        except ConnectionClosed as exc:
            raise _closed(exc) from exc

    async def recv(self) -> str:
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as exc:
            raise _closed(exc) from exc
        if isinstance(raw, bytes):
            return raw.decode("utf-8", errors="replace")
        return raw

    async def close(self) -> None:
        await self._ws.close()


def _closed(exc: ConnectionClosed) -> TransportClosedError:
    if exc.rcvd is not None:
        return TransportClosedError(exc.rcvd.code, exc.rcvd.reason)
    return TransportClosedError(1006, "connection lost")


async def open_websocket(url: str) -> WebsocketsConnection:
    """Default ConnectionFactory. Handshake timeouts are enforced by the caller."""
    try:
        ws = await connect(url, open_timeout=None, ping_interval=20, ping_timeout=20)
    except InvalidURI as exc:
        raise TransportError(f"Invalid chat server URL: {url}") from exc
    except InvalidHandshake as exc:
        raise TransportError(f"WebSocket upgrade rejected: {exc}") from exc
    except OSError as exc:
        raise TransportError(f"Cannot reach chat server: {exc}") from exc
    logger.debug("WebSocket opened to %s", url)
    return WebsocketsConnection(ws)
