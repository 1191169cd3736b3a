"""Data models for twin and telemetry payloads."""

from pydevtwin.models._base import JsonScalar, TwinBaseModel
from pydevtwin.models.commands import (
    DEFAULT_FIELD_RULES,
    BooleanRule,
    ChoiceRule,
    FieldRule,
    FieldState,
    FieldStatus,
    IntegerRule,
    PendingCommand,
)
from pydevtwin.models.telemetry import RawReading, TelemetryPoint, TelemetryStatus
from pydevtwin.models.twin import DeviceState, TwinAck, TwinDocument

__all__ = [
    "DEFAULT_FIELD_RULES",
    "BooleanRule",
    "ChoiceRule",
    "DeviceState",
    "FieldRule",
    "FieldState",
    "FieldStatus",
    "IntegerRule",
    "JsonScalar",
    "PendingCommand",
    "RawReading",
    "TelemetryPoint",
    "TelemetryStatus",
    "TwinAck",
    "TwinBaseModel",
    "TwinDocument",
]
