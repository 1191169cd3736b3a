"""Telemetry query endpoint (GraphQL ``latestReadings``)."""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

from pydevtwin._api._common import raise_for_graphql_errors
from pydevtwin._constants import LATEST_READINGS_QUERY_NAME
from pydevtwin._transport import Transport
from pydevtwin.config import DevTwinConfig
from pydevtwin.exceptions import TwinConfigError, TwinServiceError
from pydevtwin.ingestion.telemetry import parse_reading
from pydevtwin.models.telemetry import RawReading

_GRAPHQL_NAME = re.compile(r"^[_A-Za-z][_0-9A-Za-z]*$")


def build_latest_readings_query(metrics: Sequence[str]) -> str:
    """GraphQL document selecting ``deviceId``, ``timestamp_ms`` and *metrics*."""
    for name in metrics:
        if not _GRAPHQL_NAME.match(name):
            raise TwinConfigError(f"metric name {name!r} is not a valid GraphQL field name")
    selection = "\n".join(f"      {name}" for name in ("deviceId", "timestamp_ms", *metrics))
    return (
        "query LatestReadings($deviceId: String!, $limit: Int) {\n"
        f"  {LATEST_READINGS_QUERY_NAME}(deviceId: $deviceId, limit: $limit) {{\n"
        f"{selection}\n"
        "  }\n"
        "}\n"
    )


async def query_latest(
    config: DevTwinConfig,
    transport: Transport,
    device_id: str,
    limit: int,
) -> list[RawReading]:
    """Return up to *limit* most recent readings, in whatever order the service uses.

    Raises
    ------
    TwinConnectivityError
        Transient network failure.
    TwinAuthError
        The bearer token was rejected (HTTP or GraphQL level).
    TwinServiceError
        Any other GraphQL error.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    endpoint = config.telemetry_url
    body: dict[str, Any] = {
        "query": build_latest_readings_query(config.telemetry_metrics),
        "variables": {"deviceId": device_id, "limit": limit},
    }
    response = await transport.request_json("POST", endpoint, payload=body)
    if not isinstance(response, dict):
        raise TwinServiceError(f"{endpoint} returned a non-object body", endpoint=endpoint)
    raise_for_graphql_errors(endpoint=endpoint, response=response)

    data = response.get("data") or {}
    rows = data.get(LATEST_READINGS_QUERY_NAME) if isinstance(data, dict) else None
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise TwinServiceError(f"{endpoint} {LATEST_READINGS_QUERY_NAME} is not a list", endpoint=endpoint)

    readings: list[RawReading] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        reading = parse_reading(row)
        if reading is not None:
            readings.append(reading)
    return readings
