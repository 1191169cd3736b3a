"""Custom exception hierarchy for pydevtwin."""

from __future__ import annotations

from typing import Any


class DevTwinError(Exception):
    """Base exception for all pydevtwin errors."""


class TwinConfigError(DevTwinError):
    """Invalid or missing configuration."""


class TwinTransportError(DevTwinError):
    """HTTP-level failure talking to the twin or telemetry service."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class TwinConnectivityError(TwinTransportError):
    """Transient network failure (timeout, refused connection, 5xx, garbled body).

    Polling loops swallow this and retry on their next tick.  Command
    dispatch surfaces it to the caller wrapped in :class:`DispatchError`.
    """


class TwinAuthError(TwinTransportError):
    """Credentials were rejected.

    Fatal to the session: never retried silently.
    """


class TwinNotFoundError(TwinTransportError):
    """The thing or its shadow document does not exist."""


class TwinServiceError(DevTwinError):
    """The service answered but rejected the request (application-level error)."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class MalformedTwinError(DevTwinError):
    """Twin payload could not be parsed into a :class:`TwinDocument`."""


class TwinValidationError(DevTwinError, ValueError):
    """User input rejected before any network call."""

    def __init__(self, message: str, *, field: str = "") -> None:
        self.field = field
        super().__init__(message)


class DispatchError(DevTwinError):
    """A command could not be written to ``desired``.

    The optimistic Pending mark has already been rolled back when this is
    raised.  The original failure is available as ``__cause__``.
    """

    def __init__(self, message: str, *, field: str, value: Any) -> None:
        self.field = field
        self.value = value
        super().__init__(message)
