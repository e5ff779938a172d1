"""One physical real-time connection to the chat backend."""
from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import uuid
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from chat_client.application.dto.payloads import SessionInfo
from chat_client.application.exceptions import (
    AckTimeoutError,
    AuthenticationError,
    ConnectTimeoutError,
    NotConnectedError,
    TransportClosedError,
    TransportError,
)
from chat_client.application.handlers import HandlerSet
from chat_client.application.ports.transport import ConnectionFactory, WireConnection
from chat_client.infrastructure.ws.protocol import (
    ACK,
    AUTH_CLOSE_CODES,
    CONNECTION_ESTABLISHED,
    HANDSHAKE,
    LINK_LOST,
    SERVER_ERROR,
    AckEnvelope,
    HandshakeConfirmation,
    WsFrame,
)
from chat_client.logging_config import connection_id_ctx
from chat_client.services.status import ConnectionStatusModel

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], Any]
AckCallback = Callable[[AckEnvelope], None]


class TransportSocket:
    """Owns a single WireConnection: handshake, framing, listeners and acks.

    Every connection gets a new epoch. Frames, acks and loss notifications
    from an older epoch are ignored, so nothing from a torn-down link can
    reach listeners after ``disconnect()`` or a fresh ``connect()``.
    """

    def __init__(
        self,
        url: str,
        connection_factory: ConnectionFactory,
        status: ConnectionStatusModel,
        *,
        connect_timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._factory = connection_factory
        self._status = status
        self._connect_timeout = connect_timeout

        self._conn: WireConnection | None = None
        self._reader: asyncio.Task[None] | None = None
        self._epoch = 0
        self._ack_ids = itertools.count(1)
        self._acks: dict[int, AckCallback] = {}
        self._waiters: set[asyncio.Future[AckEnvelope]] = set()
        self._listeners: dict[str, HandlerSet[Listener]] = {}
        self._session: SessionInfo | None = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    @property
    def session(self) -> SessionInfo | None:
        """Identity from the most recent successful handshake."""
        return self._session

    # -- lifecycle -------------------------------------------------------------

    async def connect(self, auth_token: str | None, *, announce: bool = True) -> SessionInfo:
        """Open a link and complete the handshake.

        With ``announce=False`` the status model is left as it is on success,
        so a caller that still has work to do (a room rejoin) can publish
        Connected itself.
        """
        if not auth_token:
            self._status.link_failed("No authentication token found")
            raise AuthenticationError("No authentication token found")

        await self._teardown(error=None)
        self._epoch += 1
        epoch = self._epoch
        self._status.connecting()
        connection_id_ctx.set(uuid.uuid4().hex[:8])
        logger.info("Connecting to chat server %s", self._url)

        conn: WireConnection | None = None
        try:
            async with asyncio.timeout(self._connect_timeout):
                conn = await self._factory(self._url)
                await conn.send(
                    WsFrame(type=HANDSHAKE, data={"auth": {"token": auth_token}}).model_dump_json(exclude_none=True)
                )
                session = await self._await_confirmation(conn)
        except TimeoutError:
            await _close_quietly(conn)
            self._status.link_failed("Connection timeout")
            raise ConnectTimeoutError(
                f"No handshake confirmation within {self._connect_timeout:g}s"
            ) from None
        except (AuthenticationError, TransportError) as exc:
            await _close_quietly(conn)
            self._status.link_failed(exc.detail)
            logger.warning("Chat connection failed: %s", exc.detail)
            raise
        except asyncio.CancelledError:
            await _close_quietly(conn)
            raise

        if epoch != self._epoch:
            # disconnect() ran while the handshake was in flight
            await _close_quietly(conn)
            raise TransportError("Connection superseded")

        self._conn = conn
        self._session = session
        self._reader = asyncio.create_task(self._read_loop(conn, epoch), name=f"chat-reader-{epoch}")
        if announce:
            self._status.connected()
        logger.info("Connected to chat server as user %s", session.user_id)
        return session

    async def disconnect(self) -> None:
        """Tear the link down. Safe to call repeatedly."""
        was_active = self._conn is not None
        await self._teardown(error=None)
        self._status.disconnected()
        if was_active:
            logger.info("Disconnected from chat server")

    async def _teardown(self, error: TransportError | None) -> None:
        self._epoch += 1
        conn, self._conn = self._conn, None
        reader, self._reader = self._reader, None
        self._fail_waiters(error)
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        await _close_quietly(conn)

    def _fail_waiters(self, error: TransportError | None) -> None:
        self._acks.clear()
        waiters, self._waiters = self._waiters, set()
        for waiter in waiters:
            if waiter.done():
                continue
            if error is None:
                waiter.cancel()
            else:
                waiter.set_exception(error)

    # -- outbound --------------------------------------------------------------

    async def emit(
        self,
        event: str,
        payload: dict[str, Any] | None = None,
        ack: AckCallback | None = None,
    ) -> int | None:
        """Send one event. Returns the ack id when ``ack`` is given.

        ``ack`` is called exactly once with the server's envelope, or never
        if the link drops first.
        """
        conn = self._conn
        if conn is None:
            raise NotConnectedError("Not connected to chat server")
        ack_id = next(self._ack_ids) if ack is not None else None
        if ack_id is not None:
            self._acks[ack_id] = ack
        frame = WsFrame(type=event, data=payload or {}, ack=ack_id)
        try:
            await conn.send(frame.model_dump_json(exclude_none=True))
        except TransportError:
            if ack_id is not None:
                self._acks.pop(ack_id, None)
            raise
        logger.debug("-> %s (ack=%s)", event, ack_id)
        return ack_id

    async def emit_with_ack(
        self,
        event: str,
        payload: dict[str, Any],
        *,
        timeout: float,
    ) -> AckEnvelope:
        """Emit and wait for the acknowledgment envelope.

        Raises ``AckTimeoutError`` after ``timeout`` seconds and
        ``TransportClosedError`` if the link drops while waiting. A
        ``disconnect()`` cancels the wait.
        """
        waiter: asyncio.Future[AckEnvelope] = asyncio.get_running_loop().create_future()

        def _resolve(envelope: AckEnvelope) -> None:
            if not waiter.done():
                waiter.set_result(envelope)

        self._waiters.add(waiter)
        try:
            ack_id = await self.emit(event, payload, ack=_resolve)
            try:
                return await asyncio.wait_for(waiter, timeout)
            except TimeoutError:
                self._acks.pop(ack_id, None)
                raise AckTimeoutError(f"No acknowledgment for {event} within {timeout:g}s") from None
        finally:
            self._waiters.discard(waiter)

    # -- inbound ---------------------------------------------------------------

    def on(self, event: str, handler: Listener) -> None:
        self._listeners.setdefault(event, HandlerSet(event)).add(handler)

    def off(self, event: str, handler: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners is not None:
            listeners.discard(handler)

    async def _await_confirmation(self, conn: WireConnection) -> SessionInfo:
        try:
            raw = await conn.recv()
        except TransportClosedError as exc:
            if exc.code in AUTH_CLOSE_CODES:
                raise AuthenticationError(exc.reason or "Authentication failed") from exc
            raise
        try:
            frame = WsFrame.model_validate_json(raw)
            if frame.type == SERVER_ERROR:
                raise TransportError(str(frame.data.get("message", "Handshake rejected")))
            if frame.type != CONNECTION_ESTABLISHED:
                raise TransportError(f"Unexpected handshake frame {frame.type!r}")
            confirmation = HandshakeConfirmation.model_validate(frame.data)
        except PydanticValidationError as exc:
            raise TransportError("Malformed handshake confirmation") from exc
        return SessionInfo(user_id=confirmation.user_id, display_name=confirmation.display_name)

    async def _read_loop(self, conn: WireConnection, epoch: int) -> None:
        try:
            while True:
                raw = await conn.recv()
                if epoch != self._epoch:
                    return
                self._dispatch(raw)
        except TransportError as exc:
            if epoch == self._epoch:
                await self._on_link_lost(exc)

    async def _on_link_lost(self, error: TransportError) -> None:
        logger.warning("Lost connection to chat server: %s", error.detail)
        closed = error if isinstance(error, TransportClosedError) else TransportClosedError(reason=error.detail)
        await self._teardown(error=closed)
        self._status.link_failed(error.detail)
        self._emit_local(LINK_LOST, {"reason": error.detail, "code": closed.code})

    def _dispatch(self, raw: str) -> None:
        try:
            frame = WsFrame.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("Dropping undecodable frame (%d bytes)", len(raw))
            return

        if frame.type == ACK:
            self._dispatch_ack(frame)
            return
        logger.debug("<- %s", frame.type)
        self._emit_local(frame.type, frame.data)

    def _dispatch_ack(self, frame: WsFrame) -> None:
        callback = self._acks.pop(frame.ack, None) if frame.ack is not None else None
        if callback is None:
            logger.debug("Ignoring ack for unknown or expired id %s", frame.ack)
            return
        try:
            envelope = AckEnvelope.model_validate(frame.data)
        except PydanticValidationError:
            envelope = AckEnvelope(success=False, error="Malformed acknowledgment")
        try:
            callback(envelope)
        except Exception:
            logger.exception("Error in ack callback for id %s", frame.ack)

    def _emit_local(self, event: str, data: dict[str, Any]) -> None:
        listeners = self._listeners.get(event)
        if listeners:
            listeners.emit(data)


async def _close_quietly(conn: WireConnection | None) -> None:
    if conn is None:
        return
    try:
        await conn.close()
    except (TransportError, OSError):
        logger.debug("Error while closing connection", exc_info=True)
