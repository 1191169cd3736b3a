"""pydevtwin - Async Python client for a polled device twin with live telemetry."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pydevtwin")
except PackageNotFoundError:
    __version__ = "0+local"
from pydevtwin.client import DevTwinClient
from pydevtwin.commands import CommandDispatcher
from pydevtwin.config import DevTwinConfig
from pydevtwin.exceptions import (
    DevTwinError,
    DispatchError,
    MalformedTwinError,
    TwinAuthError,
    TwinConfigError,
    TwinConnectivityError,
    TwinNotFoundError,
    TwinServiceError,
    TwinTransportError,
    TwinValidationError,
)
from pydevtwin.models import (
    DeviceState,
    FieldState,
    FieldStatus,
    PendingCommand,
    RawReading,
    TelemetryPoint,
    TelemetryStatus,
    TwinAck,
    TwinDocument,
)
from pydevtwin.scheduler import LoopStatus, Poller, PollLoop, PollSpec
from pydevtwin.session import Credentials, TokenProvider
from pydevtwin.state.events import FieldTransition
from pydevtwin.state.reconciler import Reconciler
from pydevtwin.state.telemetry_store import TelemetryStore
from pydevtwin.state.twin_cache import TwinCache
from pydevtwin.state.view_window import Selection, ViewWindow

__all__ = [
    "CommandDispatcher",
    "Credentials",
    "DevTwinClient",
    "DevTwinConfig",
    "DevTwinError",
    "DeviceState",
    "DispatchError",
    "FieldState",
    "FieldStatus",
    "FieldTransition",
    "LoopStatus",
    "MalformedTwinError",
    "PendingCommand",
    "PollLoop",
    "PollSpec",
    "Poller",
    "RawReading",
    "Reconciler",
    "Selection",
    "TelemetryPoint",
    "TelemetryStatus",
    "TelemetryStore",
    "TokenProvider",
    "TwinAck",
    "TwinAuthError",
    "TwinCache",
    "TwinConfigError",
    "TwinConnectivityError",
    "TwinDocument",
    "TwinNotFoundError",
    "TwinServiceError",
    "TwinTransportError",
    "TwinValidationError",
    "ViewWindow",
    "__version__",
]
