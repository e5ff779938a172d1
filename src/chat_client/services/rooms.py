"""Join/leave for the single active conversation room."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from chat_client.application.exceptions import (
    JoinCancelledError,
    JoinTimeoutError,
    NotConnectedError,
    TransportError,
)
from chat_client.application.ports.clock import Clock
from chat_client.domain.entities.room import ConversationRoom
from chat_client.infrastructure.ws.protocol import (
    CONVERSATION_JOINED,
    JOIN_CONVERSATION,
    LEAVE_CONVERSATION,
    LINK_LOST,
    ConversationJoinedPayload,
)
from chat_client.infrastructure.ws.socket import TransportSocket

logger = logging.getLogger(__name__)


class RoomController:
    """Owns at most one ConversationRoom per connection.

    ``join`` and ``leave`` are the only mutators. A second ``join`` while one
    is waiting for its acknowledgment supersedes it: the earlier call raises
    ``JoinCancelledError`` and the newer one proceeds.
    """

    def __init__(self, socket: TransportSocket, clock: Clock, *, join_timeout: float = 5.0) -> None:
        self._socket = socket
        self._clock = clock
        self._join_timeout = join_timeout
        self._room: ConversationRoom | None = None
        self._pending: tuple[str, asyncio.Future[None]] | None = None
        self._generation = 0

        socket.on(CONVERSATION_JOINED, self._on_joined)
        socket.on(LINK_LOST, self._on_link_lost)

    @property
    def current(self) -> ConversationRoom | None:
        return self._room

    @property
    def joined_conversation_id(self) -> str | None:
        if self._room is not None and self._room.is_joined:
            return self._room.conversation_id
        return None

    async def join(self, conversation_id: str) -> ConversationRoom:
        if not self._socket.connected:
            raise NotConnectedError("Not connected to chat server")
        if self._room is not None and self._room.is_joined and self._room.conversation_id == conversation_id:
            return self._room

        self._generation += 1
        generation = self._generation
        self._cancel_pending("Superseded by a newer join")

        if self._room is not None and self._room.conversation_id != conversation_id:
            await self._leave_room()
            if generation != self._generation:
                raise JoinCancelledError(f"Join of {conversation_id} superseded")

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._pending = (conversation_id, waiter)
        self._room = ConversationRoom(conversation_id=conversation_id)
        logger.info("Joining conversation %s", conversation_id)
        try:
            await self._socket.emit(JOIN_CONVERSATION, {"conversationId": conversation_id})
            await asyncio.wait_for(waiter, self._join_timeout)
        except TimeoutError:
            if generation == self._generation:
                self._pending = None
                self._room = None
            raise JoinTimeoutError(
                f"No confirmation for conversation {conversation_id} within {self._join_timeout:g}s"
            ) from None
        except NotConnectedError:
            # link went away while the previous room was being left
            if generation == self._generation:
                self._pending = None
                self._room = None
            raise
        except TransportError:
            if generation == self._generation:
                self._pending = None
            raise

        if generation != self._generation:
            raise JoinCancelledError(f"Join of {conversation_id} superseded")
        self._pending = None
        self._room = ConversationRoom(conversation_id=conversation_id, joined_at=self._clock.now())
        logger.info("Joined conversation %s", conversation_id)
        return self._room

    async def rejoin(self) -> ConversationRoom | None:
        """Join the previously targeted room again, e.g. after a reconnect."""
        room = self._room
        if room is None:
            return None
        self._room = replace(room, joined_at=None)
        return await self.join(room.conversation_id)

    async def leave(self) -> None:
        """Best-effort leave; local state is cleared whether or not the emit succeeds."""
        self._generation += 1
        self._cancel_pending("Conversation left")
        await self._leave_room()

    def reset(self) -> None:
        """Forget all room state without talking to the server (link is gone)."""
        self._generation += 1
        self._cancel_pending("Disconnected")
        self._room = None

    async def _leave_room(self) -> None:
        room, self._room = self._room, None
        if room is None or not self._socket.connected:
            return
        logger.info("Leaving conversation %s", room.conversation_id)
        try:
            await self._socket.emit(LEAVE_CONVERSATION, {"conversationId": room.conversation_id})
        except TransportError as exc:
            logger.warning("Leave for conversation %s not delivered: %s", room.conversation_id, exc.detail)

    def _cancel_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, None
        if pending is not None and not pending[1].done():
            pending[1].set_exception(JoinCancelledError(reason))

    def _on_joined(self, data: dict[str, Any]) -> None:
        try:
            payload = ConversationJoinedPayload.model_validate(data)
        except PydanticValidationError:
            logger.warning("Dropping malformed %s event", CONVERSATION_JOINED)
            return
        pending = self._pending
        if pending is None or pending[0] != payload.conversation_id:
            logger.debug("Ignoring join confirmation for %s", payload.conversation_id)
            return
        if not pending[1].done():
            pending[1].set_result(None)

    def _on_link_lost(self, _data: dict[str, Any]) -> None:
        pending, self._pending = self._pending, None
        if pending is not None and not pending[1].done():
            pending[1].set_exception(TransportError("Connection lost while joining"))
        if self._room is not None:
            # keep the target so a reconnect can rejoin it
            self._room = replace(self._room, joined_at=None)
