"""Field transition events.

The reconciler emits one event per state change of a twin field.  Only the
reconciler creates them; listeners and convergence waiters consume them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pydevtwin.models._base import ensure_utc, utcnow
from pydevtwin.models.commands import FieldState


class FieldTransition(BaseModel):
    """A state change of one field."""

    model_config = ConfigDict(frozen=True)

    field: str = Field(..., description="Twin field name")
    previous: FieldState
    current: FieldState
    target_value: Any = None
    generation: int | None = None
    observed_at: datetime = Field(default_factory=utcnow)

    @field_validator("field")
    @classmethod
    def _normalize_field(cls, value: str) -> str:
        name = value.strip()
        if not name:
            raise ValueError("field must be non-empty")
        return name

    @field_validator("observed_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def settled(self) -> bool:
        """Whether the field left Pending with this transition."""
        return self.previous is FieldState.PENDING and self.current is not FieldState.PENDING
