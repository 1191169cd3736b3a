"""Twin (shadow) document models.

The twin service returns a document shaped like::

    {
        "state": {
            "desired": {"pump": "ON", "interval": 10},
            "reported": {"pump": "OFF", "interval": 10}
        },
        "version": 42,
        "timestamp": 1771000000
    }

Known device fields are typed explicit optionals on :class:`DeviceState`;
unknown fields are kept as extras so newer firmware does not break parsing.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pydevtwin.exceptions import MalformedTwinError
from pydevtwin.models._base import TwinBaseModel


class DeviceState(BaseModel):
    """One side (``desired`` or ``reported``) of the twin document."""

    model_config = ConfigDict(frozen=True, extra="allow")

    pump: Literal["ON", "OFF"] | None = None
    """Pump relay."""

    interval: Annotated[int, Field(strict=True, ge=1)] | None = None
    """Sensor sampling interval in seconds."""

    reset: Annotated[bool, Field(strict=True)] | None = None
    """Reboot request flag."""

    @field_validator("interval", mode="before")
    @classmethod
    def _integral_float_interval(cls, value: Any) -> Any:
        # JSON encoders may send 10.0 for 10; anything else falls through to strict validation.
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value

    def as_dict(self) -> dict[str, Any]:
        """Fields present on this side, known and extra alike."""
        return self.model_dump(exclude_none=True)


class TwinDocument(TwinBaseModel):
    """Snapshot of the server-held ``{desired, reported}`` pair."""

    desired: DeviceState = Field(default_factory=DeviceState)
    reported: DeviceState = Field(default_factory=DeviceState)
    version: int | None = None
    timestamp: int | None = None

    @classmethod
    def from_api(cls, payload: Any) -> TwinDocument:
        """Parse a twin service response.

        Raises :class:`MalformedTwinError` instead of silently dropping
        fields when the payload does not have the expected shape.
        """
        if not isinstance(payload, dict):
            raise MalformedTwinError(f"twin payload must be an object, got {type(payload).__name__}")
        state = payload.get("state") or {}
        if not isinstance(state, dict):
            raise MalformedTwinError(f"twin 'state' must be an object, got {type(state).__name__}")
        try:
            return cls.model_validate(
                {
                    "desired": state.get("desired") or {},
                    "reported": state.get("reported") or {},
                    "version": payload.get("version"),
                    "timestamp": payload.get("timestamp"),
                    "raw": payload,
                }
            )
        except ValidationError as exc:
            raise MalformedTwinError(f"twin payload failed validation: {exc}") from exc

    def field_names(self) -> set[str]:
        return set(self.desired.as_dict()) | set(self.reported.as_dict())


class TwinAck(TwinBaseModel):
    """Acknowledgement of a ``desired`` update."""

    desired: dict[str, Any] = Field(default_factory=dict)
    version: int | None = None
    timestamp: int | None = None

    @classmethod
    def from_api(cls, payload: Any) -> TwinAck:
        if not isinstance(payload, dict):
            return cls(raw={})
        state = payload.get("state")
        desired = state.get("desired") if isinstance(state, dict) else None
        try:
            return cls.model_validate(
                {
                    "desired": desired if isinstance(desired, dict) else {},
                    "version": payload.get("version"),
                    "timestamp": payload.get("timestamp"),
                    "raw": payload,
                }
            )
        except ValidationError as exc:
            raise MalformedTwinError(f"twin update acknowledgement failed validation: {exc}") from exc
