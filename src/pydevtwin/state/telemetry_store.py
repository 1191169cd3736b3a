"""Time-ordered telemetry series for the chart and metric cards."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

from pydevtwin.ingestion.telemetry import normalize_readings
from pydevtwin.models._base import utcnow
from pydevtwin.models.telemetry import RawReading, TelemetryPoint, TelemetryStatus

_logger = logging.getLogger(__name__)


class TelemetryStore:
    """Holds the series returned by the most recent telemetry query.

    Each :meth:`ingest` replaces the series; nothing accumulates across
    queries.  ``latest`` survives an empty batch so the last known values
    stay visible through a transient gap.
    """

    def __init__(
        self,
        metrics: Sequence[str],
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._metrics = tuple(metrics)
        self._clock = clock
        self._series: tuple[TelemetryPoint, ...] = ()
        self._latest: TelemetryPoint | None = None
        self._last_ingested_at: datetime | None = None

    @property
    def metrics(self) -> tuple[str, ...]:
        return self._metrics

    def ingest(self, raw_points: Iterable[RawReading | Mapping[str, Any]]) -> None:
        """Normalize, sort and store a batch, replacing the previous series."""
        points = normalize_readings(raw_points, self._metrics)
        self._series = tuple(points)
        if points:
            self._latest = points[-1]
        else:
            _logger.debug("Empty telemetry batch; keeping latest point")
        self._last_ingested_at = self._clock()

    @property
    def series(self) -> tuple[TelemetryPoint, ...]:
        """Read-only ordered view of the current series."""
        return self._series

    @property
    def latest(self) -> TelemetryPoint | None:
        return self._latest

    @property
    def last_ingested_at(self) -> datetime | None:
        return self._last_ingested_at

    @property
    def status(self) -> TelemetryStatus:
        return TelemetryStatus.ONLINE if self._latest is not None else TelemetryStatus.WAITING

    def latest_value(self, metric: str) -> float | None:
        if self._latest is None:
            return None
        return self._latest.value(metric)

    def metric_series(self, metric: str) -> list[tuple[int, float | None]]:
        """``(timestamp, value)`` pairs for a single metric (sparklines)."""
        return [(point.timestamp_seconds, point.value(metric)) for point in self._series]

    def extent(self) -> tuple[int, int] | None:
        """Smallest and largest timestamp in the series."""
        if not self._series:
            return None
        return self._series[0].timestamp_seconds, self._series[-1].timestamp_seconds

    def __len__(self) -> int:
        return len(self._series)
