"""Telemetry ingestion: raw query rows to ordered points."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from pydevtwin.ingestion.normalize import millis_to_seconds
from pydevtwin.models.telemetry import RawReading, TelemetryPoint

_logger = logging.getLogger(__name__)


def parse_reading(row: RawReading | Mapping[str, Any]) -> RawReading | None:
    """Validate a single row; invalid rows are logged and dropped."""
    if isinstance(row, RawReading):
        return row
    try:
        return RawReading.model_validate(dict(row))
    except (ValidationError, TypeError, ValueError) as exc:
        _logger.warning("Dropping malformed telemetry row: %s", exc)
        return None


def to_point(reading: RawReading, metrics: Sequence[str]) -> TelemetryPoint:
    return TelemetryPoint(
        timestamp_seconds=millis_to_seconds(reading.timestamp_ms),
        metrics={name: reading.metric(name) for name in metrics},
    )


def normalize_readings(
    rows: Iterable[RawReading | Mapping[str, Any]],
    metrics: Sequence[str],
) -> list[TelemetryPoint]:
    """Normalize rows to whole-second points sorted ascending by timestamp.

    The service returns rows in no particular order.  ``sorted`` is stable,
    so rows sharing a timestamp keep their original query order.
    """
    points: list[TelemetryPoint] = []
    for row in rows:
        reading = parse_reading(row)
        if reading is None:
            continue
        points.append(to_point(reading, metrics))
    return sorted(points, key=lambda point: point.timestamp_seconds)
