"""Telemetry reading models."""

from __future__ import annotations

import enum
import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pydevtwin.ingestion.normalize import safe_float
from pydevtwin.models._base import TwinBaseModel


class TelemetryStatus(enum.StrEnum):
    """Device liveness as shown next to the metric cards."""

    ONLINE = "online"
    WAITING = "waiting"


class RawReading(TwinBaseModel):
    """One row returned by ``latestReadings``.

    Metric columns are not declared: they are whatever the query selected
    and are read back with :meth:`metric`.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    device_id: str | None = Field(default=None, alias="deviceId")
    timestamp_ms: int | float

    @field_validator("timestamp_ms", mode="before")
    @classmethod
    def _reject_bool(cls, value: Any) -> Any:
        # Lax int validation would otherwise read True as 1 ms.
        if isinstance(value, bool):
            raise ValueError("timestamp_ms must be numeric")
        return value

    @field_validator("timestamp_ms")
    @classmethod
    def _finite_non_negative(cls, value: int | float) -> int | float:
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError("timestamp_ms must be finite")
        if value < 0:
            raise ValueError("timestamp_ms must be non-negative")
        return value

    def metric(self, name: str) -> float | None:
        extra = self.model_extra or {}
        return safe_float(extra.get(name))


class TelemetryPoint(BaseModel):
    """A normalized point: whole-second timestamp plus metric values."""

    model_config = ConfigDict(frozen=True)

    timestamp_seconds: int
    metrics: dict[str, float | None] = Field(default_factory=dict)

    def value(self, metric: str) -> float | None:
        return self.metrics.get(metric)

    def as_row(self) -> dict[str, Any]:
        """Flat ``{"timestamp": ..., <metric>: ...}`` row for charting."""
        return {"timestamp": self.timestamp_seconds, **self.metrics}
