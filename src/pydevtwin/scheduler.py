"""Polling scheduler for the twin document and the telemetry query.

Design principles:
- One fixed-interval timer per loop; ticks keep their cadence no matter
  how long a call takes.
- At most one call in flight per loop: a tick that finds the previous call
  still running is skipped.
- Failures are logged and swallowed; the next tick simply tries again.
  Rejected credentials are the exception and stop every loop.
- Teardown cancels timers and in-flight calls, and a result that arrives
  after teardown is discarded before it can touch any state.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Generic, TypeVar

from pydevtwin.exceptions import TwinAuthError
from pydevtwin.models._base import utcnow

_logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PollSpec:
    """Declarative definition of a polling schedule.

    Parameters
    ----------
    name : str
        Loop name used in logs and for :meth:`Poller.tick`.
    interval_seconds : float
        Seconds between ticks.
    initial_delay_seconds : float
        Seconds to wait before the first tick.
    """

    name: str
    interval_seconds: float
    initial_delay_seconds: float = 0.0


@dataclass
class LoopStatus:
    """Observable health of one loop (the "stale data" indicator)."""

    name: str
    in_flight: bool = False
    last_success_at: datetime | None = None
    last_error: Exception | None = None
    last_error_at: datetime | None = None
    skipped_ticks: int = 0

    def is_stale(self, now: datetime, max_age: timedelta) -> bool:
        if self.last_success_at is None:
            return True
        return now - self.last_success_at > max_age


class PollLoop(Generic[T]):
    """A single periodic fetch feeding one result handler."""

    def __init__(
        self,
        spec: PollSpec,
        *,
        fetch: Callable[[], Awaitable[T]],
        handle: Callable[[T], None],
        on_error: Callable[[Exception], None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.spec = spec
        self.status = LoopStatus(name=spec.name)
        self._fetch = fetch
        self._handle = handle
        self._on_error = on_error
        self._clock = clock
        self._on_fatal: Callable[[TwinAuthError], None] | None = None
        self._alive = False
        self._generation = 0
        self._timer: asyncio.Task[None] | None = None
        self._call: asyncio.Task[None] | None = None

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def is_running(self) -> bool:
        return self._alive

    def bind_fatal(self, callback: Callable[[TwinAuthError], None]) -> None:
        self._on_fatal = callback

    def start(self) -> None:
        if self._alive:
            return
        self._alive = True
        self._generation += 1
        self._timer = asyncio.create_task(self._run_timer(), name=f"pydevtwin-{self.name}-timer")

    def tick(self) -> asyncio.Task[None] | None:
        """Start one call unless a call for this loop is still in flight."""
        if not self._alive:
            return None
        if self._call is not None and not self._call.done():
            self.status.skipped_ticks += 1
            _logger.debug("%s poll still in flight; skipping tick", self.name)
            return None
        generation = self._generation
        self.status.in_flight = True
        self._call = asyncio.create_task(self._run_call(generation), name=f"pydevtwin-{self.name}-call")
        return self._call

    def halt(self) -> None:
        """Stop synchronously: no further ticks, late results discarded."""
        self._alive = False
        self._generation += 1
        self.status.in_flight = False
        current = asyncio.current_task()
        for task in (self._timer, self._call):
            if task is not None and task is not current and not task.done():
                task.cancel()

    async def stop(self) -> None:
        self.halt()
        current = asyncio.current_task()
        for task in (self._timer, self._call):
            if task is None or task is current:
                continue
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._timer = None
        self._call = None

    def _is_current(self, generation: int) -> bool:
        return self._alive and generation == self._generation

    async def _run_timer(self) -> None:
        delay = max(self.spec.initial_delay_seconds, 0.0)
        if delay:
            await asyncio.sleep(delay)
        interval = max(self.spec.interval_seconds, 0.01)
        while self._alive:
            self.tick()
            await asyncio.sleep(interval)

    async def _run_call(self, generation: int) -> None:
        try:
            result = await self._fetch()
        except asyncio.CancelledError:
            raise
        except TwinAuthError as exc:
            if not self._is_current(generation):
                return
            self._record_error(exc)
            _logger.error("%s poll rejected credentials: %s", self.name, exc)
            if self._on_fatal is not None:
                self._on_fatal(exc)
            return
        except Exception as exc:
            if not self._is_current(generation):
                return
            self._record_error(exc)
            _logger.warning("%s poll failed: %s", self.name, exc)
            _logger.debug("%s poll failure detail", self.name, exc_info=True)
            if self._on_error is not None:
                try:
                    self._on_error(exc)
                except Exception:
                    _logger.debug("%s error hook failed", self.name, exc_info=True)
            return

        if not self._is_current(generation):
            _logger.debug("Discarding late %s result after teardown", self.name)
            return
        self.status.in_flight = False
        try:
            self._handle(result)
        except Exception:
            _logger.warning("%s result handler failed", self.name, exc_info=True)
            return
        self.status.last_success_at = self._clock()
        self.status.last_error = None

    def _record_error(self, exc: Exception) -> None:
        self.status.in_flight = False
        self.status.last_error = exc
        self.status.last_error_at = self._clock()


class Poller:
    """Owns the independent polling loops of one session.

    The loops share nothing: results of different loops may complete in
    any order.  A loop reporting rejected credentials halts all of them and
    the error is kept in :attr:`fatal_error`.
    """

    def __init__(
        self,
        loops: Iterable[PollLoop[Any]],
        *,
        on_fatal: Callable[[TwinAuthError], None] | None = None,
    ) -> None:
        self._loops: dict[str, PollLoop[Any]] = {}
        for loop in loops:
            if loop.name in self._loops:
                raise ValueError(f"duplicate poll loop name {loop.name!r}")
            loop.bind_fatal(self.fail)
            self._loops[loop.name] = loop
        self._on_fatal = on_fatal
        self._fatal_error: TwinAuthError | None = None
        self._stopped = asyncio.Event()
        self._stopped.set()

    @property
    def loops(self) -> dict[str, PollLoop[Any]]:
        return dict(self._loops)

    @property
    def fatal_error(self) -> TwinAuthError | None:
        return self._fatal_error

    @property
    def is_running(self) -> bool:
        return any(loop.is_running for loop in self._loops.values())

    def status(self, name: str) -> LoopStatus:
        return self._loops[name].status

    def start(self) -> None:
        """Start all loops (idempotent)."""
        if self.is_running:
            return
        self._fatal_error = None
        self._stopped.clear()
        for loop in self._loops.values():
            loop.start()

    def tick(self, name: str) -> asyncio.Task[None] | None:
        """Run one tick of loop *name* now."""
        return self._loops[name].tick()

    async def stop(self) -> None:
        """Cancel timers and in-flight calls of every loop."""
        for loop in self._loops.values():
            await loop.stop()
        self._stopped.set()

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    def fail(self, exc: TwinAuthError) -> None:
        """Halt every loop because credentials were rejected."""
        if self._fatal_error is None:
            self._fatal_error = exc
        for loop in self._loops.values():
            loop.halt()
        self._stopped.set()
        if self._on_fatal is not None:
            try:
                self._on_fatal(exc)
            except Exception:
                _logger.debug("on_fatal callback failed", exc_info=True)
