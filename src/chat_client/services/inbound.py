"""Demultiplexes inbound socket events into typed handlers."""
from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from chat_client.application.dto.events import MessageReceived, ServerNotice, TypingSignal
from chat_client.application.handlers import HandlerSet
from chat_client.infrastructure.mappers.message import parse_record, record_to_entity
from chat_client.infrastructure.ws.protocol import (
    MESSAGE_RECEIVED,
    SERVER_ERROR,
    TYPING_START,
    TYPING_STOP,
    ServerErrorPayload,
    TypingPayload,
)
from chat_client.infrastructure.ws.socket import TransportSocket

logger = logging.getLogger(__name__)

MessageHandler = Callable[[MessageReceived], Any]
TypingHandler = Callable[[TypingSignal], Any]
ErrorHandler = Callable[[ServerNotice], Any]


class InboundEventRouter:
    """Validates message, typing and error events at the boundary.

    Malformed payloads are logged and dropped so one bad event never stops
    delivery of the ones after it. Typing signals from the local user are
    ignored. Server errors are passed on and never close the link.
    """

    def __init__(self, socket: TransportSocket) -> None:
        self._socket = socket
        self._message_handlers: HandlerSet[MessageHandler] = HandlerSet(MESSAGE_RECEIVED)
        self._typing_handlers: HandlerSet[TypingHandler] = HandlerSet("typing")
        self._error_handlers: HandlerSet[ErrorHandler] = HandlerSet(SERVER_ERROR)

        socket.on(MESSAGE_RECEIVED, self._route_message)
        socket.on(TYPING_START, self._route_typing_start)
        socket.on(TYPING_STOP, self._route_typing_stop)
        socket.on(SERVER_ERROR, self._route_error)

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.add(handler)

    def off_message(self, handler: MessageHandler) -> None:
        self._message_handlers.discard(handler)

    def on_typing(self, handler: TypingHandler) -> None:
        self._typing_handlers.add(handler)

    def off_typing(self, handler: TypingHandler) -> None:
        self._typing_handlers.discard(handler)

    def on_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.add(handler)

    def off_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.discard(handler)

    def _route_message(self, data: dict[str, Any]) -> None:
        record = parse_record(data)
        if record is None:
            return
        self._message_handlers.emit(
            MessageReceived(message=record_to_entity(record), conversation_id=record.conversation_id)
        )

    def _route_typing_start(self, data: dict[str, Any]) -> None:
        self._route_typing(data, is_typing=True)

    def _route_typing_stop(self, data: dict[str, Any]) -> None:
        self._route_typing(data, is_typing=False)

    def _route_typing(self, data: dict[str, Any], *, is_typing: bool) -> None:
        try:
            payload = TypingPayload.model_validate(data)
        except PydanticValidationError:
            logger.warning("Dropping malformed typing event: %r", data)
            return
        session = self._socket.session
        if session is not None and payload.sender_id == session.user_id:
            return
        self._typing_handlers.emit(
            TypingSignal(
                sender_id=payload.sender_id,
                is_typing=is_typing,
                conversation_id=payload.conversation_id,
                display_name=payload.display_name,
            )
        )

    def _route_error(self, data: dict[str, Any]) -> None:
        try:
            payload = ServerErrorPayload.model_validate(data)
        except PydanticValidationError:
            payload = ServerErrorPayload()
        logger.warning("Chat server reported an error: %s", payload.message)
        self._error_handlers.emit(ServerNotice(message=payload.message))
