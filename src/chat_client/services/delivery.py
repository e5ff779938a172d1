"""Outbound sends: optimistic insert, acknowledgment, rollback, retry."""
from __future__ import annotations

import asyncio
import functools
import logging
from typing import Callable

from chat_client.application.dto.payloads import MessagePayload, PendingSend, SendFailure
from chat_client.application.exceptions import (
    AckTimeoutError,
    ChatError,
    NoActiveConversationError,
    NotConnectedError,
    SendRejectedError,
    SendTimeoutError,
    TransportError,
    ValidationError,
)
from chat_client.application.handlers import HandlerSet
from chat_client.application.ports.clock import Clock
from chat_client.domain.entities.message import Message, Sender
from chat_client.domain.value_objects.ids import new_temp_id
from chat_client.infrastructure.ws.protocol import SEND_MESSAGE
from chat_client.infrastructure.ws.socket import TransportSocket
from chat_client.services.rooms import RoomController
from chat_client.services.timeline import MessageTimeline

logger = logging.getLogger(__name__)

SentListener = Callable[[Message], None]
FailureListener = Callable[[SendFailure], None]


class MessageDeliveryPipeline:
    """Sends messages to the joined conversation.

    Each ``send`` inserts an optimistic message and tracks a PendingSend
    until the server acknowledges it (the id is swapped in place) or the
    send fails (the message is removed and a SendFailure with a ``retry``
    closure is published). Failed sends are never retried automatically.
    """

    def __init__(
        self,
        socket: TransportSocket,
        rooms: RoomController,
        timeline: MessageTimeline,
        clock: Clock,
        *,
        ack_timeout: float = 10.0,
    ) -> None:
        self._socket = socket
        self._rooms = rooms
        self._timeline = timeline
        self._clock = clock
        self._ack_timeout = ack_timeout
        self._pending: dict[str, PendingSend] = {}
        self._epoch = 0
        self._sent_listeners: HandlerSet[SentListener] = HandlerSet("message sent")
        self._failure_listeners: HandlerSet[FailureListener] = HandlerSet("send failure")

    @property
    def pending(self) -> tuple[PendingSend, ...]:
        return tuple(self._pending.values())

    def on_sent(self, listener: SentListener) -> None:
        self._sent_listeners.add(listener)

    def off_sent(self, listener: SentListener) -> None:
        self._sent_listeners.discard(listener)

    def on_failure(self, listener: FailureListener) -> None:
        self._failure_listeners.add(listener)

    def off_failure(self, listener: FailureListener) -> None:
        self._failure_listeners.discard(listener)

    def send(self, payload: MessagePayload) -> str:
        """Queue ``payload`` for delivery and return its temporary id.

        Must be called from inside the running event loop. Raises without
        touching the timeline when the link is down, no room is joined, or
        the payload is empty.
        """
        return self._submit(payload, retries_used=0)

    def dispose(self) -> None:
        """Drop every outstanding send; late acknowledgments become no-ops."""
        self._epoch += 1
        pending, self._pending = self._pending, {}
        for item in pending.values():
            if item.task is not None:
                item.task.cancel()
            self._timeline.remove(item.temp_id)
        if pending:
            logger.info("Discarded %d unacknowledged message(s)", len(pending))

    def _submit(self, payload: MessagePayload, retries_used: int) -> str:
        if not self._socket.connected:
            raise NotConnectedError("Not connected to chat server")
        conversation_id = self._rooms.joined_conversation_id
        if conversation_id is None:
            raise NoActiveConversationError("No active conversation")
        if payload.is_empty:
            raise ValidationError("Message cannot be empty")

        temp_id = new_temp_id()
        session = self._socket.session
        sender = Sender(
            id=session.user_id if session else "",
            display_name=session.display_name if session else "",
        )
        self._timeline.add(
            Message(
                id=temp_id,
                text=payload.clean_text,
                created_at=self._clock.now(),
                sender=sender,
                attachment=payload.attachment,
                pending=True,
            )
        )
        pending = PendingSend(
            temp_id=temp_id,
            payload=payload,
            conversation_id=conversation_id,
            retries_used=retries_used,
        )
        self._pending[temp_id] = pending
        pending.task = asyncio.create_task(self._deliver(pending, self._epoch), name=f"chat-send-{temp_id}")
        logger.debug("Sending %s to conversation %s", temp_id, conversation_id)
        return temp_id

    async def _deliver(self, pending: PendingSend, epoch: int) -> None:
        error: ChatError
        try:
            envelope = await self._socket.emit_with_ack(
                SEND_MESSAGE,
                pending.payload.to_wire(pending.conversation_id, pending.temp_id),
                timeout=self._ack_timeout,
            )
        except AckTimeoutError:
            error = SendTimeoutError(f"No acknowledgment within {self._ack_timeout:g}s")
        except (TransportError, NotConnectedError) as exc:
            error = exc
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            # the socket cancelled the ack wait on a manual disconnect
            error = NotConnectedError("Disconnected before acknowledgment")
        else:
            if epoch != self._epoch:
                return
            if envelope.success and envelope.message_id:
                self._confirm(pending, envelope.message_id)
                return
            error = SendRejectedError(envelope.error or "Message rejected by server")

        if epoch != self._epoch:
            return
        self._fail(pending, error)

    def _confirm(self, pending: PendingSend, server_id: str) -> None:
        if self._pending.pop(pending.temp_id, None) is None:
            return
        message = self._timeline.confirm(pending.temp_id, server_id)
        logger.debug("Message %s confirmed as %s", pending.temp_id, server_id)
        if message is not None:
            self._sent_listeners.emit(message)

    def _fail(self, pending: PendingSend, error: ChatError) -> None:
        if self._pending.pop(pending.temp_id, None) is None:
            return
        self._timeline.remove(pending.temp_id)
        logger.warning("Message %s not delivered: %s", pending.temp_id, error.detail)
        self._failure_listeners.emit(
            SendFailure(
                temp_id=pending.temp_id,
                payload=pending.payload,
                error=error,
                retries_used=pending.retries_used,
                retry=functools.partial(self._submit, pending.payload, pending.retries_used + 1),
            )
        )
