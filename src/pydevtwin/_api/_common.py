"""Shared helpers for the service modules.

This module centralizes:
- building service URLs
- mapping GraphQL error lists to the exception hierarchy

It is internal to pydevtwin and may change at any time.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from pydevtwin._constants import UNAUTHORIZED_ERROR_TYPES
from pydevtwin.config import DevTwinConfig
from pydevtwin.exceptions import TwinAuthError, TwinServiceError


def shadow_url(config: DevTwinConfig, thing_name: str) -> str:
    """URL of the twin (shadow) document for *thing_name*."""
    base = config.twin_base_url.rstrip("/")
    return f"{base}/things/{quote(thing_name, safe='')}/shadow"


def raise_for_graphql_errors(*, endpoint: str, response: dict[str, Any]) -> None:
    """Raise if a GraphQL response carries an ``errors`` list."""
    errors = response.get("errors")
    if not errors:
        return
    if not isinstance(errors, list):
        errors = [errors]

    first = errors[0] if isinstance(errors[0], dict) else {"message": str(errors[0])}
    error_type = str(first.get("errorType") or "")
    message = str(first.get("message") or "unknown error")

    if error_type in UNAUTHORIZED_ERROR_TYPES or "unauthorized" in message.lower():
        raise TwinAuthError(f"{endpoint} rejected credentials: {message}", endpoint=endpoint)
    raise TwinServiceError(
        f"{endpoint} failed: errorType={error_type or '-'} message={message}",
        code=error_type,
        endpoint=endpoint,
    )
