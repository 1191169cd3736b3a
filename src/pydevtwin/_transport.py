"""HTTP/JSON transport with bearer authentication and error mapping."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol

import aiohttp

from pydevtwin._constants import (
    AUTH_STATUS_CODES,
    NOT_FOUND_STATUS_CODES,
    TRANSIENT_STATUS_CODES,
    USER_AGENT,
)
from pydevtwin._redact import redact_for_log
from pydevtwin.config import DevTwinConfig
from pydevtwin.exceptions import (
    TwinAuthError,
    TwinConnectivityError,
    TwinNotFoundError,
    TwinServiceError,
)
from pydevtwin.session import Credentials

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the service modules.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`JsonTransport`) concrete.
    """

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        payload: Mapping[str, Any] | None = None,
    ) -> Any: ...


class JsonTransport:
    """aiohttp transport sending JSON bodies with a bearer token."""

    def __init__(
        self,
        config: DevTwinConfig,
        http_session: aiohttp.ClientSession,
        credentials: Callable[[], Awaitable[Credentials]],
    ) -> None:
        self._config = config
        self._http = http_session
        self._credentials = credentials
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        payload: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises
        ------
        TwinAuthError
            HTTP 401/403.
        TwinNotFoundError
            HTTP 404.
        TwinConnectivityError
            Network failure, timeout, throttling/5xx, or a body that is not JSON.
        TwinServiceError
            Any other non-2xx status.
        """
        creds = await self._credentials()
        headers: dict[str, str] = {
            "accept": "application/json",
            "authorization": creds.authorization_header,
            "user-agent": USER_AGENT,
        }
        body: str | None = None
        if payload is not None:
            headers["content-type"] = "application/json; charset=UTF-8"
            body = json.dumps(payload, separators=(",", ":"))

        _logger.debug("%s %s", method, url)
        if self._config.api_trace_enabled:
            _logger.debug(
                "request trace %s %s headers=%s payload=%s",
                method,
                url,
                redact_for_log(headers),
                redact_for_log(payload),
            )

        try:
            async with self._http.request(method, url, data=body, headers=headers, timeout=self._timeout) as resp:
                status = resp.status
                text = await resp.text()
        except aiohttp.ClientError as exc:
            raise TwinConnectivityError(f"Request to {url} failed: {exc}", endpoint=url) from exc
        except TimeoutError as exc:
            raise TwinConnectivityError(f"Request to {url} timed out", endpoint=url) from exc

        if status in AUTH_STATUS_CODES:
            raise TwinAuthError(f"HTTP {status} from {url}: credentials rejected", status_code=status, endpoint=url)
        if status in NOT_FOUND_STATUS_CODES:
            raise TwinNotFoundError(f"HTTP {status} from {url}: {text[:200]}", status_code=status, endpoint=url)
        if status in TRANSIENT_STATUS_CODES or status >= 500:
            raise TwinConnectivityError(f"HTTP {status} from {url}: {text[:200]}", status_code=status, endpoint=url)
        if not 200 <= status < 300:
            raise TwinServiceError(f"HTTP {status} from {url}: {text[:200]}", code=str(status), endpoint=url)

        if not text.strip():
            return {}
        try:
            result = json.loads(text)
        except json.JSONDecodeError as exc:
            raise TwinConnectivityError(
                f"Invalid JSON from {url}: {text[:200]}",
                status_code=status,
                endpoint=url,
            ) from exc

        if self._config.api_trace_enabled:
            _logger.debug("response trace %s %s status=%d body=%s", method, url, status, redact_for_log(result))
        return result
