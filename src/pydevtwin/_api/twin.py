"""Twin (shadow) service endpoints.

Endpoints:
  - GET  /things/{thing}/shadow (GetTwin)
  - POST /things/{thing}/shadow (UpdateTwin, merges into ``desired``)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydevtwin._api._common import shadow_url
from pydevtwin._transport import Transport
from pydevtwin.config import DevTwinConfig
from pydevtwin.models.twin import TwinAck, TwinDocument

_logger = logging.getLogger(__name__)


def build_update_payload(desired_delta: Mapping[str, Any]) -> dict[str, Any]:
    """Body for an update: only ``desired`` is ever written."""
    return {"state": {"desired": dict(desired_delta)}}


async def get_twin(
    config: DevTwinConfig,
    transport: Transport,
    thing_name: str,
) -> TwinDocument:
    """Fetch the current ``{desired, reported}`` document.

    Raises
    ------
    TwinConnectivityError
        Transient network failure.
    TwinNotFoundError
        The thing or its shadow does not exist.
    MalformedTwinError
        The body does not parse as a twin document.
    """
    response = await transport.request_json("GET", shadow_url(config, thing_name))
    return TwinDocument.from_api(response)


async def update_twin(
    config: DevTwinConfig,
    transport: Transport,
    thing_name: str,
    desired_delta: Mapping[str, Any],
) -> TwinAck:
    """Merge *desired_delta* into the server-side ``desired`` map."""
    if not desired_delta:
        raise ValueError("desired_delta must name at least one field")
    _logger.debug("Updating desired for %s: %s", thing_name, sorted(desired_delta))
    response = await transport.request_json(
        "POST",
        shadow_url(config, thing_name),
        payload=build_update_payload(desired_delta),
    )
    return TwinAck.from_api(response)
