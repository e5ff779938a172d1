from __future__ import annotations

import asyncio

import pytest

from chat_client.application.exceptions import (
    AuthenticationError,
    ChatError,
    NotConnectedError,
    ReconnectionFailedError,
)
from chat_client.domain.entities.connection_state import ConnectionState
from chat_client.domain.value_objects.enums import LinkStatus, ReconnectPhase
from chat_client.services.reconnection import ReconnectionController
from tests.conftest import TOKEN, FakeClock, wait_until


@pytest.fixture
def controller(socket, tokens, status, clock) -> ReconnectionController:
    return ReconnectionController(socket, tokens, status, clock, base_delay=1.0, max_attempts=5)


def test_backoff_doubles_from_base_delay(socket, tokens, status, clock):
    controller = ReconnectionController(socket, tokens, status, clock, base_delay=0.5, max_attempts=3)

    assert [controller.backoff_delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]


@pytest.mark.asyncio
async def test_initial_connect_backs_off_then_fails_with_one_terminal_error(controller, server, status, clock):
    failures: list[ChatError] = []
    controller.on_failure(failures.append)
    server.fail_connects = 100

    with pytest.raises(ReconnectionFailedError) as exc_info:
        await controller.connect()
    await asyncio.sleep(0.01)

    assert clock.sleeps == [1.0, 2.0, 4.0, 8.0, 16.0]
    assert server.connect_calls == 6
    assert failures == [exc_info.value]
    assert controller.phase == ReconnectPhase.FAILED
    assert status.state.status == LinkStatus.FAILED


@pytest.mark.asyncio
async def test_initial_connect_recovers_after_transient_failures(controller, server, status, clock):
    server.fail_connects = 2

    await controller.connect()

    assert clock.sleeps == [1.0, 2.0]
    assert server.connect_calls == 3
    assert controller.phase == ReconnectPhase.CONNECTED
    assert status.state == ConnectionState(status=LinkStatus.CONNECTED, max_attempts=5)
    await controller.disconnect()


@pytest.mark.asyncio
async def test_initial_connect_with_rejected_token_is_not_retried(controller, server, clock):
    server.reject_token = True

    with pytest.raises(AuthenticationError):
        await controller.connect()

    assert server.connect_calls == 1
    assert clock.sleeps == []
    assert controller.phase == ReconnectPhase.IDLE


@pytest.mark.asyncio
async def test_disconnect_stops_initial_connect_retries(socket, tokens, status, server):
    clock = FakeClock(hold=True)
    controller = ReconnectionController(socket, tokens, status, clock, base_delay=1.0, max_attempts=5)
    server.fail_connects = 100

    connecting = asyncio.create_task(controller.connect())
    await wait_until(lambda: clock.waiting == 1)
    await controller.disconnect()
    clock.release()

    with pytest.raises(NotConnectedError):
        await connecting
    assert server.connect_calls == 1
    assert controller.phase == ReconnectPhase.IDLE
    assert status.state.status == LinkStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts_with_one_terminal_error(controller, server, status, clock):
    failures: list[ChatError] = []
    controller.on_failure(failures.append)
    await controller.connect()

    server.fail_connects = 100
    server.current.drop(1006, "network down")
    await wait_until(lambda: controller.phase == ReconnectPhase.FAILED)
    await asyncio.sleep(0.01)

    assert clock.sleeps == [1.0, 2.0, 4.0, 8.0, 16.0]
    assert server.connect_calls == 6
    assert len(failures) == 1
    assert isinstance(failures[0], ReconnectionFailedError)
    assert controller.terminal_error is failures[0]
    assert status.state.status == LinkStatus.FAILED

    with pytest.raises(ReconnectionFailedError):
        await controller.connect()
    assert server.connect_calls == 6


@pytest.mark.asyncio
async def test_reset_allows_connecting_again(controller, server, status):
    await controller.connect()
    server.fail_connects = 100
    server.current.drop()
    await wait_until(lambda: controller.phase == ReconnectPhase.FAILED)

    await controller.reset()
    assert status.state.status == LinkStatus.DISCONNECTED
    assert controller.terminal_error is None

    server.fail_connects = 0
    await controller.connect()
    assert controller.phase == ReconnectPhase.CONNECTED
    assert status.state.status == LinkStatus.CONNECTED
    await controller.disconnect()


@pytest.mark.asyncio
async def test_recovers_after_transient_failures(controller, server, status, clock):
    await controller.connect()

    server.fail_connects = 2
    server.current.drop()
    await wait_until(lambda: server.connect_calls == 4 and controller.phase == ReconnectPhase.CONNECTED)

    assert clock.sleeps == [1.0, 2.0, 4.0]
    assert controller.attempt == 0
    assert status.state == ConnectionState(status=LinkStatus.CONNECTED, max_attempts=5)
    await controller.disconnect()


@pytest.mark.asyncio
async def test_disconnect_during_backoff_cancels_the_pending_attempt(socket, tokens, status, server):
    clock = FakeClock(hold=True)
    controller = ReconnectionController(socket, tokens, status, clock, base_delay=1.0, max_attempts=5)
    await controller.connect()

    server.current.drop()
    await wait_until(lambda: clock.waiting == 1)
    assert status.state.status == LinkStatus.RECONNECTING

    await controller.disconnect()
    clock.release()
    await asyncio.sleep(0.01)

    assert server.connect_calls == 1
    assert controller.phase == ReconnectPhase.IDLE
    assert status.state.status == LinkStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_rejected_token_during_reconnect_is_terminal(controller, server, status, clock):
    failures: list[ChatError] = []
    controller.on_failure(failures.append)
    await controller.connect()

    server.reject_token = True
    server.current.drop()
    await wait_until(lambda: controller.phase == ReconnectPhase.FAILED)

    assert clock.sleeps == [1.0]
    assert server.connect_calls == 2
    assert len(failures) == 1
    assert isinstance(failures[0], AuthenticationError)
    assert status.state.status == LinkStatus.FAILED


@pytest.mark.asyncio
async def test_resume_runs_before_the_controller_reports_connected(controller, server):
    phases: list[ReconnectPhase] = []

    async def resume() -> None:
        phases.append(controller.phase)

    controller.set_resume_hook(resume)
    await controller.connect()
    assert phases == []

    server.current.drop()
    await wait_until(lambda: len(phases) == 1 and controller.phase == ReconnectPhase.CONNECTED)

    assert phases == [ReconnectPhase.RECONNECTING]
    await controller.disconnect()


@pytest.mark.asyncio
async def test_resume_failure_is_reported_without_dropping_the_link(controller, server, status):
    errors: list[Exception] = []

    async def resume() -> None:
        raise RuntimeError("rejoin failed")

    controller.set_resume_hook(resume)
    controller.on_resume_error(errors.append)
    await controller.connect()

    server.current.drop()
    await wait_until(lambda: len(errors) == 1)
    await wait_until(lambda: controller.phase == ReconnectPhase.CONNECTED)

    assert str(errors[0]) == "rejoin failed"
    assert status.state.status == LinkStatus.CONNECTED
    await controller.disconnect()


@pytest.mark.asyncio
async def test_status_reports_connected_only_after_resume(controller, server, status):
    seen: list[LinkStatus] = []

    async def resume() -> None:
        seen.append(status.state.status)

    controller.set_resume_hook(resume)
    await controller.connect()

    server.current.drop()
    await wait_until(lambda: len(seen) == 1 and controller.phase == ReconnectPhase.CONNECTED)

    assert seen == [LinkStatus.RECONNECTING]
    assert status.state.status == LinkStatus.CONNECTED
    await controller.disconnect()


class FlakyTokens:
    """Serves one token, then fails the way a locked keystore would."""

    def __init__(self) -> None:
        self.calls = 0

    async def get_token(self) -> str:
        self.calls += 1
        if self.calls > 1:
            raise RuntimeError("keystore locked")
        return TOKEN


@pytest.mark.asyncio
async def test_unexpected_token_provider_error_counts_as_a_failed_attempt(socket, status, clock, server):
    controller = ReconnectionController(socket, FlakyTokens(), status, clock, base_delay=1.0, max_attempts=5)
    failures: list[ChatError] = []
    controller.on_failure(failures.append)
    await controller.connect()

    server.current.drop()
    await wait_until(lambda: controller.phase == ReconnectPhase.FAILED)

    assert clock.sleeps == [1.0, 2.0, 4.0, 8.0, 16.0]
    assert server.connect_calls == 1
    assert len(failures) == 1
    assert isinstance(failures[0], ReconnectionFailedError)
    assert "keystore locked" in failures[0].detail
    assert status.state.status == LinkStatus.FAILED
