"""High-level async client for a polled device twin."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import aiohttp

from pydevtwin._api import telemetry as _telemetry_api
from pydevtwin._api import twin as _twin_api
from pydevtwin._transport import JsonTransport, Transport
from pydevtwin.commands import CommandDispatcher
from pydevtwin.config import DevTwinConfig
from pydevtwin.exceptions import DevTwinError, TwinAuthError
from pydevtwin.models._base import utcnow
from pydevtwin.models.commands import FieldRule, FieldStatus, PendingCommand
from pydevtwin.models.telemetry import RawReading
from pydevtwin.models.twin import TwinAck, TwinDocument
from pydevtwin.scheduler import Poller, PollLoop, PollSpec
from pydevtwin.session import Credentials, TokenProvider
from pydevtwin.state.events import FieldTransition
from pydevtwin.state.reconciler import Reconciler
from pydevtwin.state.telemetry_store import TelemetryStore
from pydevtwin.state.twin_cache import TwinCache
from pydevtwin.state.view_window import ViewWindow

_logger = logging.getLogger(__name__)

TWIN_LOOP = "twin"
TELEMETRY_LOOP = "telemetry"


@dataclass
class _SettleWaiter:
    """A pending :meth:`DevTwinClient.wait_for_settled` call."""

    field_name: str
    future: asyncio.Future[FieldStatus]
    created_at: float = field(default_factory=time.monotonic)


class DevTwinClient:
    """Async client for one device: twin commands plus telemetry.

    Usage::

        async with DevTwinClient(config, token_provider=get_token) as client:
            client.start_polling()
            await client.set_pump(True)
            status = await client.wait_for_settled("pump")
    """

    def __init__(
        self,
        config: DevTwinConfig,
        *,
        token_provider: TokenProvider,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        rules: Mapping[str, FieldRule] | None = None,
        clock: Callable[[], datetime] = utcnow,
        on_transition: Callable[[FieldTransition], None] | None = None,
    ) -> None:
        config.validate()
        self._config = config
        self._token_provider = token_provider
        self._external_session = session is not None
        self._http_session = session
        self._external_transport = transport is not None
        self._transport: Transport | None = transport
        self._clock = clock
        self._credentials: Credentials | None = None
        self._credentials_lock = asyncio.Lock()
        self._waiters: list[_SettleWaiter] = []

        self._cache = TwinCache(clock=clock)
        self._reconciler = Reconciler(
            self._cache,
            convergence_timeout=timedelta(seconds=config.convergence_timeout),
            clock=clock,
        )
        self._reconciler.add_listener(self._resolve_waiters)
        if on_transition is not None:
            self._reconciler.add_listener(on_transition)
        self._dispatcher = CommandDispatcher(self._reconciler, self._write_desired, rules=rules, clock=clock)
        self._telemetry = TelemetryStore(config.telemetry_metrics, clock=clock)
        self._view = ViewWindow()

        self._poller = Poller(
            [
                PollLoop(
                    PollSpec(TWIN_LOOP, config.twin_poll_interval),
                    fetch=self.fetch_twin,
                    handle=self._handle_twin,
                    on_error=self._handle_twin_error,
                    clock=clock,
                ),
                PollLoop(
                    PollSpec(TELEMETRY_LOOP, config.telemetry_interval),
                    fetch=self.fetch_telemetry,
                    handle=self._telemetry.ingest,
                    clock=clock,
                ),
            ],
            on_fatal=self._handle_fatal,
        )

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> DevTwinClient:
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = JsonTransport(self._config, self._http_session, self.ensure_credentials)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Stop polling, fail convergence waiters, and release the HTTP session."""
        await self._poller.stop()
        self._cancel_waiters()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if not self._external_transport:
            self._transport = None

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def ensure_credentials(self) -> Credentials:
        """Return cached bearer credentials, asking the provider when expired."""
        async with self._credentials_lock:
            if self._credentials is not None and not self._credentials.is_expired:
                return self._credentials
            token = await self._token_provider()
            ttl = self._config.credentials_ttl if self._config.credentials_ttl > 0 else float("inf")
            self._credentials = Credentials(access_token=token, ttl=ttl)
            _logger.debug("Obtained bearer credentials (ttl=%s)", ttl)
            return self._credentials

    def invalidate_credentials(self) -> None:
        """Force the next request to ask the token provider again."""
        self._credentials = None

    # ------------------------------------------------------------------
    # Read-side state
    # ------------------------------------------------------------------

    @property
    def config(self) -> DevTwinConfig:
        return self._config

    @property
    def twin(self) -> TwinCache:
        return self._cache

    @property
    def reconciler(self) -> Reconciler:
        return self._reconciler

    @property
    def dispatcher(self) -> CommandDispatcher:
        return self._dispatcher

    @property
    def telemetry(self) -> TelemetryStore:
        return self._telemetry

    @property
    def view(self) -> ViewWindow:
        return self._view

    @property
    def poller(self) -> Poller:
        return self._poller

    def field_status(self, field_name: str) -> FieldStatus:
        return self._reconciler.status(field_name)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise DevTwinError("Client not initialized. Use 'async with DevTwinClient(...) as client:'")
        return self._transport

    async def _write_desired(self, delta: dict[str, Any]) -> TwinAck:
        return await _twin_api.update_twin(self._config, self._require_transport(), self._config.thing_name, delta)

    def _handle_twin(self, document: TwinDocument) -> None:
        self._reconciler.apply(document)
        self._reconciler.expire()

    def _handle_twin_error(self, exc: Exception) -> None:
        # Expiry is driven by the twin cadence whether or not the poll worked.
        self._reconciler.expire()

    def _handle_fatal(self, exc: TwinAuthError) -> None:
        _logger.error("Polling stopped: %s", exc)
        self.invalidate_credentials()
        self._cancel_waiters(exc)

    def _resolve_waiters(self, transition: FieldTransition) -> None:
        if not transition.settled:
            return
        remaining: list[_SettleWaiter] = []
        for waiter in self._waiters:
            if waiter.future.done():
                continue
            if waiter.field_name != transition.field:
                remaining.append(waiter)
                continue
            waiter.future.set_result(self._reconciler.status(transition.field))
        self._waiters = remaining

    def _cancel_waiters(self, exc: BaseException | None = None) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if waiter.future.done():
                continue
            if exc is None:
                waiter.future.cancel()
            else:
                waiter.future.set_exception(exc)

    # ------------------------------------------------------------------
    # Fetch / refresh
    # ------------------------------------------------------------------

    async def fetch_twin(self) -> TwinDocument:
        """GetTwin without touching local state."""
        return await _twin_api.get_twin(self._config, self._require_transport(), self._config.thing_name)

    async def fetch_telemetry(self) -> list[RawReading]:
        """QueryLatest without touching local state."""
        return await _telemetry_api.query_latest(
            self._config,
            self._require_transport(),
            self._config.device_id,
            self._config.telemetry_limit,
        )

    async def refresh_twin(self) -> list[FieldTransition]:
        """Fetch the twin once, reconcile, and expire overdue commands."""
        document = await self.fetch_twin()
        transitions = self._reconciler.apply(document)
        transitions.extend(self._reconciler.expire())
        return transitions

    async def refresh_telemetry(self) -> TelemetryStore:
        """Fetch telemetry once and replace the stored series."""
        self._telemetry.ingest(await self.fetch_telemetry())
        return self._telemetry

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def start_polling(self) -> None:
        self._require_transport()
        self._poller.start()

    async def stop_polling(self) -> None:
        await self._poller.stop()

    def raise_for_failure(self) -> None:
        """Re-raise the error that stopped polling, if any."""
        if self._poller.fatal_error is not None:
            raise self._poller.fatal_error

    async def run(self) -> None:
        """Poll until stopped; raises if polling ended on rejected credentials."""
        self.start_polling()
        await self._poller.wait_stopped()
        self.raise_for_failure()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def dispatch(self, field_name: str, value: Any) -> PendingCommand:
        """Validate, mark Pending, and write ``desired[field_name] = value``."""
        self._require_transport()
        try:
            return await self._dispatcher.dispatch(field_name, value)
        except TwinAuthError as exc:
            self._poller.fail(exc)
            raise

    async def set_pump(self, on: bool) -> PendingCommand:
        return await self.dispatch("pump", "ON" if on else "OFF")

    async def toggle_pump(self) -> PendingCommand:
        self._require_transport()
        try:
            return await self._dispatcher.toggle("pump")
        except TwinAuthError as exc:
            self._poller.fail(exc)
            raise

    async def set_interval(self, seconds: int) -> PendingCommand:
        """Ask the device to report every *seconds* seconds."""
        return await self.dispatch("interval", seconds)

    async def request_reset(self) -> PendingCommand:
        return await self.dispatch("reset", True)

    async def wait_for_settled(self, field_name: str, timeout: float | None = None) -> FieldStatus | None:
        """Wait until *field_name* leaves Pending.

        Parameters
        ----------
        field_name
            Twin field to watch.
        timeout
            Seconds to wait.  Defaults to the convergence timeout plus one
            twin poll interval, which is enough for the field to either
            converge or expire while polling runs.

        Returns
        -------
        FieldStatus or None
            The field's status once Converged or Expired (or rolled back),
            the current status if nothing is pending, or ``None`` when
            *timeout* elapses first.

        Raises
        ------
        TwinAuthError
            Polling stopped on rejected credentials while waiting.
        """
        status = self._reconciler.status(field_name)
        if not status.is_loading:
            return status
        effective_timeout = (
            timeout if timeout is not None else self._config.convergence_timeout + self._config.twin_poll_interval
        )
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[FieldStatus] = loop.create_future()
        waiter = _SettleWaiter(field_name=field_name, future=fut)
        self._waiters.append(waiter)
        try:
            return await asyncio.wait_for(fut, effective_timeout)
        except TimeoutError:
            return None
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
