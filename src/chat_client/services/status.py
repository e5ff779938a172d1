"""Connection health as seen by the UI layer."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable

from chat_client.application.handlers import HandlerSet
from chat_client.domain.entities.connection_state import ConnectionState
from chat_client.domain.value_objects.enums import LinkStatus

logger = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState], None]


class ConnectionStatusModel:
    """Holds the single ConnectionState of a transport.

    The state only changes through the transition methods below; each change
    publishes a new immutable snapshot to subscribers.
    """

    def __init__(self, max_attempts: int = 5) -> None:
        self._state = ConnectionState(max_attempts=max_attempts)
        self._listeners: HandlerSet[StateListener] = HandlerSet("connection state")

    @property
    def state(self) -> ConnectionState:
        return self._state

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.add(listener)

    def unsubscribe(self, listener: StateListener) -> None:
        self._listeners.discard(listener)

    def connecting(self) -> None:
        if self._state.status in (LinkStatus.RECONNECTING, LinkStatus.CONNECTING):
            return
        self._set(status=LinkStatus.CONNECTING, attempt=0, last_error=None)

    def connected(self) -> None:
        self._set(status=LinkStatus.CONNECTED, attempt=0, last_error=None)

    def link_failed(self, error: str) -> None:
        """A connect attempt failed or a live link dropped."""
        if self._state.status in (LinkStatus.RECONNECTING, LinkStatus.FAILED):
            self._set(last_error=error)
            return
        self._set(status=LinkStatus.DISCONNECTED, attempt=0, last_error=error)

    def reconnecting(self, attempt: int, error: str | None = None) -> None:
        self._set(
            status=LinkStatus.RECONNECTING,
            attempt=attempt,
            last_error=error if error is not None else self._state.last_error,
        )

    def failed(self, error: str) -> None:
        self._set(status=LinkStatus.FAILED, last_error=error)

    def disconnected(self) -> None:
        """Deliberate teardown; clears any reconnection progress."""
        self._set(status=LinkStatus.DISCONNECTED, attempt=0, last_error=None)

    def _set(self, **changes: object) -> None:
        new_state = replace(self._state, **changes)
        if new_state == self._state:
            return
        logger.debug("Connection state %s -> %s", self._state.status, new_state.status)
        self._state = new_state
        self._listeners.emit(new_state)
