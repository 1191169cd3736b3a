from __future__ import annotations

import asyncio
import contextlib
from datetime import UTC, datetime, timedelta

import pytest

from pydevtwin.exceptions import TwinAuthError, TwinConnectivityError
from pydevtwin.scheduler import LoopStatus, Poller, PollLoop, PollSpec

T0 = datetime(2026, 1, 1, tzinfo=UTC)


class _GatedFetch:
    """Fetch whose calls block until released one by one."""

    def __init__(self) -> None:
        self.calls = 0
        self.gates: list[asyncio.Future[object]] = []

    async def __call__(self) -> object:
        self.calls += 1
        gate: asyncio.Future[object] = asyncio.get_running_loop().create_future()
        self.gates.append(gate)
        return await gate


def _loop(name: str, fetch, handled: list[object], **kwargs) -> PollLoop[object]:  # type: ignore[no-untyped-def]
    # A long interval keeps the timer from ticking on its own during a test.
    return PollLoop(PollSpec(name, 3600.0, initial_delay_seconds=3600.0), fetch=fetch, handle=handled.append, **kwargs)


@pytest.mark.asyncio
async def test_tick_skipped_while_call_in_flight() -> None:
    fetch = _GatedFetch()
    handled: list[object] = []
    poller = Poller([_loop("twin", fetch, handled)])
    poller.start()

    first = poller.tick("twin")
    await asyncio.sleep(0)
    assert poller.tick("twin") is None
    assert poller.tick("twin") is None
    assert fetch.calls == 1
    assert poller.status("twin").skipped_ticks == 2
    assert poller.status("twin").in_flight

    fetch.gates[0].set_result("doc-1")
    assert first is not None
    await first
    assert handled == ["doc-1"]
    assert not poller.status("twin").in_flight

    second = poller.tick("twin")
    assert second is not None
    await asyncio.sleep(0)
    assert fetch.calls == 2
    await poller.stop()


@pytest.mark.asyncio
async def test_loops_are_independent() -> None:
    twin_fetch = _GatedFetch()
    telemetry_fetch = _GatedFetch()
    twin_handled: list[object] = []
    telemetry_handled: list[object] = []
    poller = Poller([_loop("twin", twin_fetch, twin_handled), _loop("telemetry", telemetry_fetch, telemetry_handled)])
    poller.start()

    twin_task = poller.tick("twin")
    telemetry_task = poller.tick("telemetry")
    await asyncio.sleep(0)

    # Telemetry completes first even though twin was started first.
    telemetry_fetch.gates[0].set_result("readings")
    assert telemetry_task is not None
    await telemetry_task
    assert telemetry_handled == ["readings"]
    assert twin_handled == []

    twin_fetch.gates[0].set_result("doc")
    assert twin_task is not None
    await twin_task
    assert twin_handled == ["doc"]
    await poller.stop()


@pytest.mark.asyncio
async def test_errors_are_swallowed_without_touching_state() -> None:
    errors: list[Exception] = []

    async def _failing() -> object:
        raise TwinConnectivityError("connection refused")

    handled: list[object] = []
    loop = _loop("telemetry", _failing, handled, on_error=errors.append, clock=lambda: T0)
    poller = Poller([loop])
    poller.start()

    task = poller.tick("telemetry")
    assert task is not None
    await task

    status = poller.status("telemetry")
    assert handled == []
    assert isinstance(status.last_error, TwinConnectivityError)
    assert status.last_error_at == T0
    assert len(errors) == 1
    assert poller.is_running
    assert poller.fatal_error is None
    await poller.stop()


@pytest.mark.asyncio
async def test_auth_error_stops_every_loop() -> None:
    fatal: list[TwinAuthError] = []

    async def _rejected() -> object:
        raise TwinAuthError("HTTP 401", status_code=401)

    other = _GatedFetch()
    poller = Poller(
        [_loop("twin", _rejected, []), _loop("telemetry", other, [])],
        on_fatal=fatal.append,
    )
    poller.start()
    other_task = poller.tick("telemetry")
    await asyncio.sleep(0)

    task = poller.tick("twin")
    assert task is not None
    await task

    assert not poller.is_running
    assert isinstance(poller.fatal_error, TwinAuthError)
    assert fatal == [poller.fatal_error]
    assert other_task is not None
    with contextlib.suppress(asyncio.CancelledError):
        await other_task
    assert other_task.cancelled()
    await asyncio.wait_for(poller.wait_stopped(), 1.0)
    assert poller.tick("telemetry") is None
    await poller.stop()


@pytest.mark.asyncio
async def test_late_result_after_stop_is_discarded() -> None:
    handled: list[object] = []
    release = asyncio.Event()

    async def _stubborn() -> object:
        # Behaves like a transport that completes despite being cancelled.
        try:
            await release.wait()
        except asyncio.CancelledError:
            pass
        return "late"

    loop = _loop("twin", _stubborn, handled)
    poller = Poller([loop])
    poller.start()
    poller.tick("twin")
    await asyncio.sleep(0)

    loop.halt()
    release.set()
    await asyncio.sleep(0.01)

    assert handled == []
    assert loop.status.last_success_at is None
    await poller.stop()


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_call() -> None:
    fetch = _GatedFetch()
    poller = Poller([_loop("twin", fetch, [])])
    poller.start()
    task = poller.tick("twin")
    await asyncio.sleep(0)

    await poller.stop()

    assert task is not None
    assert task.cancelled()
    assert not poller.is_running


@pytest.mark.asyncio
async def test_timer_ticks_at_fixed_interval() -> None:
    calls = 0

    async def _fetch() -> object:
        nonlocal calls
        calls += 1
        return calls

    handled: list[object] = []
    poller = Poller([PollLoop(PollSpec("telemetry", 0.01), fetch=_fetch, handle=handled.append)])
    poller.start()
    await asyncio.sleep(0.2)
    await poller.stop()

    assert calls >= 3
    assert handled[:3] == [1, 2, 3]


def test_duplicate_loop_names_rejected() -> None:
    async def _fetch() -> object:
        return None

    with pytest.raises(ValueError):
        Poller([_loop("twin", _fetch, []), _loop("twin", _fetch, [])])


def test_loop_status_staleness() -> None:
    status = LoopStatus(name="twin")
    assert status.is_stale(T0, timedelta(seconds=10))

    status.last_success_at = T0
    assert not status.is_stale(T0 + timedelta(seconds=10), timedelta(seconds=10))
    assert status.is_stale(T0 + timedelta(seconds=11), timedelta(seconds=10))


@pytest.mark.asyncio
async def test_fail_halts_loops_from_outside() -> None:
    fatal: list[TwinAuthError] = []
    fetch = _GatedFetch()
    poller = Poller([_loop("twin", fetch, [])], on_fatal=fatal.append)
    poller.start()
    in_flight = poller.tick("twin")
    await asyncio.sleep(0)

    error = TwinAuthError("HTTP 401", status_code=401)
    poller.fail(error)

    assert not poller.is_running
    assert poller.fatal_error is error
    assert fatal == [error]
    assert in_flight is not None
    with contextlib.suppress(asyncio.CancelledError):
        await in_flight
    assert in_flight.cancelled()
    await asyncio.wait_for(poller.wait_stopped(), 1.0)
