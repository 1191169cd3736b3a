"""Last-known twin document.

Refreshed wholesale from each successful poll; never patched field by field.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydevtwin.models._base import utcnow
from pydevtwin.models.twin import TwinDocument
from pydevtwin.state.policy import MISSING, is_in_sync


class TwinCache:
    """Cached ``{desired, reported}`` snapshot for the device."""

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._document: TwinDocument | None = None
        self._desired: dict[str, Any] = {}
        self._reported: dict[str, Any] = {}
        self._updated_at: datetime | None = None

    def replace(self, document: TwinDocument) -> None:
        self._document = document
        self._desired = document.desired.as_dict()
        self._reported = document.reported.as_dict()
        self._updated_at = self._clock()

    @property
    def document(self) -> TwinDocument | None:
        return self._document

    @property
    def updated_at(self) -> datetime | None:
        return self._updated_at

    @property
    def version(self) -> int | None:
        return self._document.version if self._document is not None else None

    def desired(self, field: str) -> Any:
        """Desired value, or :data:`MISSING` when the field is absent."""
        return self._desired.get(field, MISSING)

    def reported(self, field: str) -> Any:
        """Reported value, or :data:`MISSING` when the field is absent."""
        return self._reported.get(field, MISSING)

    def field_names(self) -> set[str]:
        return set(self._desired) | set(self._reported)

    def is_converged(self, field: str) -> bool:
        return is_in_sync(self.desired(field), self.reported(field))

    def convergence(self) -> dict[str, bool]:
        """Convergence flag for every known field."""
        return {name: self.is_converged(name) for name in sorted(self.field_names())}

    def age_seconds(self, now: datetime | None = None) -> float | None:
        if self._updated_at is None:
            return None
        current = now if now is not None else self._clock()
        return (current - self._updated_at).total_seconds()
