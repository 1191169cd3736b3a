"""Credential state for authenticated service calls."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field, field_validator

#: Default bearer token time-to-live in seconds (1 hour).
DEFAULT_CREDENTIALS_TTL: float = 3600.0

TokenProvider = Callable[[], Awaitable[str]]
"""Async callable returning a bearer token from the external auth provider."""


class Credentials(BaseModel):
    """Bearer credentials obtained from the token provider.

    Parameters
    ----------
    access_token : str
        Token sent as ``Authorization: Bearer <token>``.
    created_at : float
        Monotonic timestamp (``time.monotonic()``) when the token was
        obtained.  Defaults to *now* if not provided.
    ttl : float
        Time-to-live in seconds.  After this period the credentials are
        considered expired and the provider is asked for a new token.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_default=True,
        str_strip_whitespace=True,
    )

    access_token: str
    created_at: float = Field(default_factory=time.monotonic)
    ttl: float = DEFAULT_CREDENTIALS_TTL

    @field_validator("access_token")
    @classmethod
    def _token_non_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("access_token must be non-empty")
        return value

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.access_token}"

    @property
    def is_expired(self) -> bool:
        """Whether the credentials have exceeded their TTL."""
        return (time.monotonic() - self.created_at) >= self.ttl

    @property
    def age(self) -> float:
        """Seconds since the credentials were obtained."""
        return time.monotonic() - self.created_at
