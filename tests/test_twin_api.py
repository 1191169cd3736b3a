from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from pydevtwin._api.twin import build_update_payload, get_twin, update_twin
from pydevtwin.config import DevTwinConfig
from pydevtwin.exceptions import MalformedTwinError, TwinNotFoundError


class _FakeTransport:
    """Records requests and replays canned responses (or raises them)."""

    def __init__(self, *responses: Any) -> None:
        self._responses = list(responses)
        self.requests: list[tuple[str, str, Mapping[str, Any] | None]] = []

    async def request_json(self, method: str, url: str, *, payload: Mapping[str, Any] | None = None) -> Any:
        self.requests.append((method, url, payload))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def config() -> DevTwinConfig:
    return DevTwinConfig(thing_name="pump 01", device_id="pump-01", twin_base_url="http://twin.local/")


@pytest.mark.asyncio
async def test_get_twin_parses_shadow_document(config: DevTwinConfig) -> None:
    transport = _FakeTransport(
        {
            "state": {
                "desired": {"pump": "ON", "interval": 10},
                "reported": {"pump": "OFF", "interval": 10, "firmware": "1.2.0"},
            },
            "version": 7,
            "timestamp": 1771000000,
        }
    )

    doc = await get_twin(config, transport, config.thing_name)

    assert transport.requests == [("GET", "http://twin.local/things/pump%2001/shadow", None)]
    assert doc.desired.pump == "ON"
    assert doc.reported.interval == 10
    assert doc.reported.as_dict()["firmware"] == "1.2.0"
    assert doc.version == 7
    assert doc.field_names() == {"pump", "interval", "firmware"}
    assert doc.raw["version"] == 7


@pytest.mark.asyncio
async def test_get_twin_without_reported_side(config: DevTwinConfig) -> None:
    transport = _FakeTransport({"state": {"desired": {"pump": "OFF"}}, "version": 1})

    doc = await get_twin(config, transport, config.thing_name)

    assert doc.reported.as_dict() == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"state": "broken"},
        {"state": {"desired": {"pump": "MAYBE"}}},
        {"state": {"reported": {"interval": 0}}},
        {"state": {"reported": {"interval": "10"}}},
        {"state": {"desired": {"reset": 1}}},
    ],
)
async def test_get_twin_rejects_malformed_documents(config: DevTwinConfig, payload: Any) -> None:
    with pytest.raises(MalformedTwinError):
        await get_twin(config, _FakeTransport(payload), config.thing_name)


@pytest.mark.asyncio
async def test_get_twin_propagates_not_found(config: DevTwinConfig) -> None:
    transport = _FakeTransport(TwinNotFoundError("HTTP 404", status_code=404))

    with pytest.raises(TwinNotFoundError):
        await get_twin(config, transport, config.thing_name)


@pytest.mark.asyncio
async def test_update_twin_writes_desired_only(config: DevTwinConfig) -> None:
    transport = _FakeTransport({"state": {"desired": {"pump": "ON"}}, "version": 8, "timestamp": 1771000005})

    ack = await update_twin(config, transport, config.thing_name, {"pump": "ON"})

    method, url, payload = transport.requests[0]
    assert method == "POST"
    assert url == "http://twin.local/things/pump%2001/shadow"
    assert payload == {"state": {"desired": {"pump": "ON"}}}
    assert ack.desired == {"pump": "ON"}
    assert ack.version == 8


@pytest.mark.asyncio
async def test_update_twin_accepts_empty_acknowledgement(config: DevTwinConfig) -> None:
    ack = await update_twin(config, _FakeTransport({}), config.thing_name, {"interval": 5})

    assert ack.version is None
    assert ack.desired == {}


@pytest.mark.asyncio
async def test_update_twin_requires_a_field(config: DevTwinConfig) -> None:
    with pytest.raises(ValueError):
        await update_twin(config, _FakeTransport(), config.thing_name, {})


def test_build_update_payload_never_touches_reported() -> None:
    assert build_update_payload({"reset": True}) == {"state": {"desired": {"reset": True}}}
