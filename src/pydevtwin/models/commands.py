"""Command models: field rules, pending commands and per-field status.

Field rules give the dispatcher a consistent "validate → normalize →
execute" flow: a value is checked and canonicalized before anything is
written to ``desired``.
"""

from __future__ import annotations

import enum
import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pydevtwin.exceptions import TwinValidationError
from pydevtwin.models._base import JsonScalar, ensure_utc

_INTEGER_TEXT = re.compile(r"^[+-]?\d+$")
_TRUE_TEXT = frozenset({"1", "true", "yes", "y", "on"})
_FALSE_TEXT = frozenset({"0", "false", "no", "n", "off"})


class FieldState(enum.StrEnum):
    """Reconciliation state of a single twin field."""

    IDLE = "idle"
    PENDING = "pending"
    CONVERGED = "converged"
    EXPIRED = "expired"
    """No confirmation received before the convergence timeout."""


# ------------------------------------------------------------------
# Field rules
# ------------------------------------------------------------------


class FieldRule(BaseModel):
    """Base class for per-field validation rules."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_default=True,
    )

    def coerce(self, field: str, value: Any) -> JsonScalar:
        """Return the canonical value or raise :class:`TwinValidationError`."""
        raise NotImplementedError


class ChoiceRule(FieldRule):
    """One of a fixed set of strings, matched case-insensitively."""

    choices: tuple[str, ...]

    @field_validator("choices")
    @classmethod
    def _at_least_one(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("choices must be non-empty")
        return value

    def coerce(self, field: str, value: Any) -> JsonScalar:
        if isinstance(value, str):
            wanted = value.strip().upper()
            for choice in self.choices:
                if choice.upper() == wanted:
                    return choice
        raise TwinValidationError(
            f"{field} must be one of {', '.join(self.choices)}, got {value!r}",
            field=field,
        )

    def other(self, current: Any) -> str:
        """The next choice after *current* (wraps around; first choice if unknown)."""
        if current in self.choices:
            index = self.choices.index(current)
            return self.choices[(index + 1) % len(self.choices)]
        return self.choices[0]


class IntegerRule(FieldRule):
    """Whole number within optional bounds (e.g. a sampling interval >= 1)."""

    minimum: int | None = 1
    maximum: int | None = None

    def coerce(self, field: str, value: Any) -> JsonScalar:
        parsed: int | None = None
        if isinstance(value, bool):
            parsed = None
        elif isinstance(value, int):
            parsed = value
        elif isinstance(value, float) and value.is_integer():
            parsed = int(value)
        elif isinstance(value, str) and _INTEGER_TEXT.match(value.strip()):
            parsed = int(value.strip())
        if parsed is None:
            raise TwinValidationError(f"{field} must be an integer, got {value!r}", field=field)
        if self.minimum is not None and parsed < self.minimum:
            raise TwinValidationError(f"{field} must be >= {self.minimum}, got {parsed}", field=field)
        if self.maximum is not None and parsed > self.maximum:
            raise TwinValidationError(f"{field} must be <= {self.maximum}, got {parsed}", field=field)
        return parsed


class BooleanRule(FieldRule):
    """``True``/``False``, also accepting the usual textual spellings."""

    def coerce(self, field: str, value: Any) -> JsonScalar:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in _TRUE_TEXT:
                return True
            if normalized in _FALSE_TEXT:
                return False
        raise TwinValidationError(f"{field} must be a boolean, got {value!r}", field=field)


DEFAULT_FIELD_RULES: Mapping[str, FieldRule] = {
    "pump": ChoiceRule(choices=("ON", "OFF")),
    "interval": IntegerRule(minimum=1),
    "reset": BooleanRule(),
}
"""Rules for the fields the reference firmware understands."""


# ------------------------------------------------------------------
# Pending commands and status
# ------------------------------------------------------------------


class PendingCommand(BaseModel):
    """A command written to ``desired`` and not yet confirmed by ``reported``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    field: str
    target_value: JsonScalar
    issued_at: datetime
    generation: int = Field(..., ge=1, description="Monotonic per-dispatcher command counter")

    @field_validator("issued_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class FieldStatus(BaseModel):
    """What the UI needs to render one field."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    field: str
    state: FieldState = FieldState.IDLE
    desired: Any = None
    reported: Any = None
    pending: PendingCommand | None = None
    changed_at: datetime | None = None

    @property
    def display_value(self) -> Any:
        """The device-confirmed value; never the optimistic one."""
        return self.reported

    @property
    def is_loading(self) -> bool:
        return self.state is FieldState.PENDING

    @property
    def is_unconfirmed(self) -> bool:
        return self.state is FieldState.EXPIRED
