"""Connection lifecycle with bounded exponential-backoff reconnection."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable

from chat_client.application.exceptions import (
    AuthenticationError,
    ChatError,
    NotConnectedError,
    ReconnectionFailedError,
    TransportError,
)
from chat_client.application.handlers import HandlerSet
from chat_client.application.ports.auth import TokenProvider
from chat_client.application.ports.clock import Clock
from chat_client.domain.value_objects.enums import ReconnectPhase
from chat_client.infrastructure.ws.protocol import LINK_LOST
from chat_client.infrastructure.ws.socket import TransportSocket
from chat_client.services.status import ConnectionStatusModel

logger = logging.getLogger(__name__)

ResumeHook = Callable[[], Awaitable[None]]
ErrorListener = Callable[[ChatError], None]
ResumeErrorListener = Callable[[Exception], None]


class ReconnectionController:
    """Idle -> Connecting -> Connected, and Reconnecting after an unexpected drop.

    The delay before reconnection attempt ``n`` (1-indexed) is
    ``base_delay * 2 ** (n - 1)``. After ``max_attempts`` consecutive
    failures the controller is Failed and stays there until ``reset()``.
    ``disconnect()`` bumps the epoch, so a backoff timer or attempt that
    was already scheduled has no effect once it wakes up.
    """

    def __init__(
        self,
        socket: TransportSocket,
        tokens: TokenProvider,
        status: ConnectionStatusModel,
        clock: Clock,
        *,
        base_delay: float = 1.0,
        max_attempts: int = 5,
        resume: ResumeHook | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._socket = socket
        self._tokens = tokens
        self._status = status
        self._clock = clock
        self._base_delay = base_delay
        self._max_attempts = max_attempts
        self._resume_hook = resume

        self._phase = ReconnectPhase.IDLE
        self._attempt = 0
        self._epoch = 0
        self._task: asyncio.Task[None] | None = None
        self._terminal_error: ChatError | None = None
        self._failure_listeners: HandlerSet[ErrorListener] = HandlerSet("reconnection failure")
        self._resume_error_listeners: HandlerSet[ResumeErrorListener] = HandlerSet("resume error")

        socket.on(LINK_LOST, self._on_link_lost)

    @property
    def phase(self) -> ReconnectPhase:
        return self._phase

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def terminal_error(self) -> ChatError | None:
        return self._terminal_error

    def set_resume_hook(self, hook: ResumeHook | None) -> None:
        self._resume_hook = hook

    def on_failure(self, listener: ErrorListener) -> None:
        self._failure_listeners.add(listener)

    def off_failure(self, listener: ErrorListener) -> None:
        self._failure_listeners.discard(listener)

    def on_resume_error(self, listener: ResumeErrorListener) -> None:
        self._resume_error_listeners.add(listener)

    def off_resume_error(self, listener: ResumeErrorListener) -> None:
        self._resume_error_listeners.discard(listener)

    def backoff_delay(self, attempt: int) -> float:
        return self._base_delay * 2 ** (attempt - 1)

    async def connect(self) -> None:
        """Open the link, backing off and retrying on transport failures.

        Returns once connected. Raises ``AuthenticationError`` at once, or the
        terminal ``ReconnectionFailedError`` after ``max_attempts`` retries.
        """
        if self._phase == ReconnectPhase.FAILED:
            raise ReconnectionFailedError("Reconnection gave up; call reset() before connecting again")
        if self._phase == ReconnectPhase.CONNECTED and self._socket.connected:
            return

        await self._cancel_pending()
        epoch = self._epoch
        self._phase = ReconnectPhase.CONNECTING
        try:
            token = await self._tokens.get_token()
            await self._socket.connect(token)
        except TransportError as exc:
            if epoch != self._epoch:
                raise
            logger.warning("Initial connection failed: %s", exc.detail)
            await self._retry_initial(exc.detail)
            return
        except BaseException:
            if epoch == self._epoch:
                self._phase = ReconnectPhase.IDLE
            raise
        if epoch != self._epoch:
            return
        self._attempt = 0
        self._phase = ReconnectPhase.CONNECTED

    async def _retry_initial(self, last_error: str) -> None:
        self._epoch += 1
        epoch = self._epoch
        self._phase = ReconnectPhase.RECONNECTING
        task = asyncio.create_task(self._reconnect_loop(epoch, last_error), name="chat-reconnect")
        self._task = task
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is None or not current.cancelling():
                raise NotConnectedError("Connection attempt cancelled by disconnect()") from None
            if epoch == self._epoch:
                self._epoch += 1
                self._task = None
                self._phase = ReconnectPhase.IDLE
                self._status.disconnected()
            raise
        if self._phase == ReconnectPhase.FAILED and self._terminal_error is not None:
            raise self._terminal_error
        if self._phase != ReconnectPhase.CONNECTED:
            raise NotConnectedError("Connection attempt cancelled by disconnect()")

    async def disconnect(self) -> None:
        """Manual teardown: cancels any scheduled attempt and goes Idle."""
        await self._cancel_pending()
        await self._socket.disconnect()
        self._phase = ReconnectPhase.IDLE
        self._attempt = 0

    async def reset(self) -> None:
        """Leave the terminal Failed state so ``connect()`` may be called again."""
        await self._cancel_pending()
        self._terminal_error = None
        self._phase = ReconnectPhase.IDLE
        self._attempt = 0
        self._status.disconnected()

    async def _cancel_pending(self) -> None:
        self._epoch += 1
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _on_link_lost(self, data: dict[str, Any]) -> None:
        if self._phase != ReconnectPhase.CONNECTED:
            return
        self._epoch += 1
        self._phase = ReconnectPhase.RECONNECTING
        self._task = asyncio.create_task(
            self._reconnect_loop(self._epoch, str(data.get("reason", ""))),
            name="chat-reconnect",
        )

    async def _reconnect_loop(self, epoch: int, last_error: str) -> None:
        for attempt in range(1, self._max_attempts + 1):
            self._attempt = attempt
            delay = self.backoff_delay(attempt)
            self._status.reconnecting(attempt, last_error or None)
            logger.info(
                "Reconnecting in %.1fs (attempt %d/%d)", delay, attempt, self._max_attempts,
            )
            await self._clock.sleep(delay)
            if epoch != self._epoch:
                return

            try:
                token = await self._tokens.get_token()
                # status stays Reconnecting until the resume hook has run
                await self._socket.connect(token, announce=False)
            except AuthenticationError as exc:
                if epoch == self._epoch:
                    self._give_up(exc)
                return
            except TransportError as exc:
                if epoch != self._epoch:
                    return
                last_error = exc.detail
                logger.warning("Reconnection attempt %d failed: %s", attempt, exc.detail)
                continue
            except Exception as exc:
                if epoch != self._epoch:
                    return
                last_error = str(exc) or type(exc).__name__
                logger.warning("Reconnection attempt %d failed", attempt, exc_info=exc)
                continue

            if epoch != self._epoch:
                return
            await self._resume(epoch)
            if epoch != self._epoch:
                return
            if not self._socket.connected:
                last_error = "Connection lost while resuming"
                logger.warning("Reconnection attempt %d dropped during resume", attempt)
                continue
            self._attempt = 0
            self._phase = ReconnectPhase.CONNECTED
            self._task = None
            self._status.connected()
            logger.info("Reconnected after %d attempt(s)", attempt)
            return

        self._give_up(
            ReconnectionFailedError(
                f"Unable to reconnect after {self._max_attempts} attempts: {last_error}"
            )
        )

    async def _resume(self, epoch: int) -> None:
        if self._resume_hook is None:
            return
        try:
            await self._resume_hook()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if epoch != self._epoch:
                return
            # the link itself is up; resume failures are reported on their own
            logger.warning("Resume after reconnect failed: %s", exc)
            self._resume_error_listeners.emit(exc)

    def _give_up(self, error: ChatError) -> None:
        self._phase = ReconnectPhase.FAILED
        self._terminal_error = error
        self._task = None
        self._status.failed(error.detail)
        logger.error("Giving up on chat connection: %s", error.detail)
        self._failure_listeners.emit(error)
