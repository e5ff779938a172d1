"""UI-facing chat session: the only surface the screen layer touches."""
from __future__ import annotations

import asyncio
import logging
from types import TracebackType

from chat_client.application.dto.events import MessageReceived
from chat_client.application.dto.payloads import MessagePayload, SessionInfo
from chat_client.application.exceptions import ChatError, TransportError
from chat_client.application.ports.auth import TokenProvider
from chat_client.application.ports.clock import Clock, SystemClock
from chat_client.application.ports.history import HistorySource
from chat_client.application.ports.transport import ConnectionFactory
from chat_client.config import Settings, settings as default_settings
from chat_client.domain.entities.connection_state import ConnectionState
from chat_client.domain.entities.message import Message
from chat_client.infrastructure.http.history import HistoryLoader
from chat_client.infrastructure.ws.connection import open_websocket
from chat_client.infrastructure.ws.protocol import TYPING_START, TYPING_STOP
from chat_client.infrastructure.ws.socket import TransportSocket
from chat_client.services.delivery import MessageDeliveryPipeline
from chat_client.services.inbound import InboundEventRouter
from chat_client.services.reconnection import ReconnectionController
from chat_client.services.rooms import RoomController
from chat_client.services.status import ConnectionStatusModel
from chat_client.services.timeline import MessageTimeline

logger = logging.getLogger(__name__)


class ChatSession:
    """Wires the transport components for one screen.

    Collaborators are injected; nothing here is module-global, so two
    sessions never share a socket, a room or a timeline.
    """

    def __init__(
        self,
        tokens: TokenProvider,
        *,
        connection_factory: ConnectionFactory | None = None,
        history: HistorySource | None = None,
        clock: Clock | None = None,
        config: Settings | None = None,
    ) -> None:
        cfg = config or default_settings
        self._config = cfg
        self._clock = clock or SystemClock()
        self.status = ConnectionStatusModel(max_attempts=cfg.RECONNECT_MAX_ATTEMPTS)
        self.timeline = MessageTimeline()

        self._socket = TransportSocket(
            cfg.CHAT_WS_URL,
            connection_factory or open_websocket,
            self.status,
            connect_timeout=cfg.CONNECT_TIMEOUT_SECONDS,
        )
        self.rooms = RoomController(self._socket, self._clock, join_timeout=cfg.JOIN_TIMEOUT_SECONDS)
        self.reconnection = ReconnectionController(
            self._socket,
            tokens,
            self.status,
            self._clock,
            base_delay=cfg.RECONNECT_BASE_DELAY_SECONDS,
            max_attempts=cfg.RECONNECT_MAX_ATTEMPTS,
            resume=self._resume,
        )
        self.inbound = InboundEventRouter(self._socket)
        self.delivery = MessageDeliveryPipeline(
            self._socket,
            self.rooms,
            self.timeline,
            self._clock,
            ack_timeout=cfg.SEND_ACK_TIMEOUT_SECONDS,
        )
        self._history = history or HistoryLoader(
            cfg.CHAT_API_URL, tokens, timeout=cfg.HTTP_TIMEOUT_SECONDS,
        )
        self._disposed = False

        self.inbound.on_message(self._on_message_received)

    async def __aenter__(self) -> ChatSession:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.dispose()

    @property
    def state(self) -> ConnectionState:
        return self.status.state

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.timeline.snapshot()

    @property
    def conversation_id(self) -> str | None:
        room = self.rooms.current
        return room.conversation_id if room is not None else None

    @property
    def user(self) -> SessionInfo | None:
        return self._socket.session

    async def connect(self) -> None:
        self._ensure_alive()
        await self.reconnection.connect()

    async def open_conversation(self, conversation_id: str, *, history_limit: int | None = None) -> list[Message]:
        """Join ``conversation_id`` and load its latest page of history.

        Switching conversations discards unacknowledged sends and clears the
        timeline first. The history fetch runs alongside the join.
        """
        self._ensure_alive()
        if self.conversation_id is not None and self.conversation_id != conversation_id:
            self.delivery.dispose()
            self.timeline.clear()

        limit = history_limit or self._config.HISTORY_PAGE_SIZE
        history_task = asyncio.create_task(
            self._history.load(conversation_id, limit), name=f"chat-history-{conversation_id}",
        )
        try:
            await self.rooms.join(conversation_id)
        except BaseException:
            history_task.cancel()
            raise
        history = await history_task
        self.timeline.extend_older(history)
        return history

    async def load_history(self, *, limit: int | None = None) -> list[Message]:
        """Reload the newest page for the current conversation."""
        conversation_id = self.conversation_id
        if conversation_id is None:
            return []
        history = await self._history.load(conversation_id, limit or self._config.HISTORY_PAGE_SIZE)
        self.timeline.extend_older(history)
        return history

    async def leave_conversation(self) -> None:
        self.delivery.dispose()
        await self.rooms.leave()
        self.timeline.clear()

    def send(self, payload: MessagePayload | str) -> str:
        if isinstance(payload, str):
            payload = MessagePayload(text=payload)
        return self.delivery.send(payload)

    async def send_typing(self, is_typing: bool) -> None:
        conversation_id = self.rooms.joined_conversation_id
        if conversation_id is None or not self._socket.connected:
            logger.debug("Typing signal skipped: no joined conversation")
            return
        try:
            await self._socket.emit(TYPING_START if is_typing else TYPING_STOP, {"conversationId": conversation_id})
        except TransportError as exc:
            logger.debug("Typing signal not delivered: %s", exc.detail)

    async def disconnect(self) -> None:
        self.delivery.dispose()
        self.rooms.reset()
        await self.reconnection.disconnect()

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        await self.disconnect()
        await self._history.aclose()

    async def _resume(self) -> None:
        room = await self.rooms.rejoin()
        if room is not None:
            logger.info("Rejoined conversation %s after reconnect", room.conversation_id)

    def _on_message_received(self, event: MessageReceived) -> None:
        target = self.rooms.joined_conversation_id
        if event.conversation_id is not None and target is not None and event.conversation_id != target:
            logger.debug("Ignoring message for conversation %s", event.conversation_id)
            return
        self.timeline.add(event.message)

    def _ensure_alive(self) -> None:
        if self._disposed:
            raise ChatError("Chat session has been disposed")
