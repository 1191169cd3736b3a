"""Chart window and drag-to-zoom selection.

The window only decides what is rendered; it never filters what the
telemetry store holds.  Bounds are either timestamps or the full-extent
sentinels, which are resolved against the series at render time so a
later, wider fetch shows up without re-committing.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from pydevtwin._constants import DATA_MAX, DATA_MIN
from pydevtwin.models.telemetry import TelemetryPoint

LeftBound = int | Literal["dataMin"]
RightBound = int | Literal["dataMax"]


@dataclass(slots=True)
class Selection:
    """In-progress drag; never persisted."""

    anchor: int | None = None
    cursor: int | None = None

    @property
    def is_active(self) -> bool:
        return self.anchor is not None

    def ordered(self) -> tuple[int, int] | None:
        """Endpoints in ascending order, or ``None`` when degenerate."""
        if self.anchor is None or self.cursor is None or self.anchor == self.cursor:
            return None
        return min(self.anchor, self.cursor), max(self.anchor, self.cursor)


@dataclass(slots=True)
class ViewWindow:
    """Displayed time range plus the current selection."""

    left: LeftBound = DATA_MIN
    right: RightBound = DATA_MAX
    selection: Selection = field(default_factory=Selection)

    @property
    def is_full_extent(self) -> bool:
        return self.left == DATA_MIN and self.right == DATA_MAX

    def begin_selection(self, ts: int) -> None:
        self.selection = Selection(anchor=ts)

    def update_selection(self, ts: int) -> None:
        # Moves without a pressed anchor are plain hovering.
        if not self.selection.is_active:
            return
        self.selection.cursor = ts

    def commit_selection(self) -> bool:
        """Zoom to the selection.

        A degenerate selection (missing endpoint or zero width) is
        discarded and leaves the window unchanged.  Returns whether the
        window changed.
        """
        bounds = self.selection.ordered()
        self.selection = Selection()
        if bounds is None:
            return False
        self.left, self.right = bounds
        return True

    def cancel_selection(self) -> None:
        self.selection = Selection()

    def reset(self) -> None:
        self.left = DATA_MIN
        self.right = DATA_MAX

    def selection_range(self) -> tuple[int, int] | None:
        """Range to highlight while dragging."""
        return self.selection.ordered()

    def resolve(self, series: Sequence[TelemetryPoint]) -> tuple[int, int] | None:
        """Numeric bounds for *series*, or ``None`` when there is nothing to show.

        Sentinels become the series min/max.  A committed window is clamped
        to the data; if the data no longer overlaps it at all, the full
        extent is shown instead.
        """
        if not series:
            return None
        data_lo = series[0].timestamp_seconds
        data_hi = series[-1].timestamp_seconds
        lo = data_lo if self.left == DATA_MIN else max(int(self.left), data_lo)
        hi = data_hi if self.right == DATA_MAX else min(int(self.right), data_hi)
        if lo > hi:
            return data_lo, data_hi
        return lo, hi

    def visible_points(self, series: Sequence[TelemetryPoint]) -> list[TelemetryPoint]:
        bounds = self.resolve(series)
        if bounds is None:
            return []
        lo, hi = bounds
        return [point for point in series if lo <= point.timestamp_seconds <= hi]
