"""Owner lookup client against a mocked HTTP transport."""

from __future__ import annotations

import httpx
import pytest

from deal_monitor.config import AppConfig
from deal_monitor.enrichment import OwnerLookupClient, OwnerLookupError, format_full_address
from deal_monitor.schemas import ExtractionResult

_LOOKUP_URL = "https://lookup.example.com/owner"


def _make_config(**overrides) -> AppConfig:
    values = {
        "email_username": "deals@example.com",
        "email_password": "secret",
        "gemini_api_key": "test-key",
        "owner_lookup_url": _LOOKUP_URL,
        "owner_lookup_timeout_sec": 3,
    }
    values.update(overrides)
    return AppConfig(_env_file=None, **values)


def _extraction(**overrides) -> ExtractionResult:
    values = {
        "property_street_address": "123 Main St",
        "property_city": "Denver",
        "property_state": "CO",
        "property_zip": "80202",
    }
    values.update(overrides)
    return ExtractionResult(**values)


class _Recorder:
    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._response


def _client(handler, **overrides) -> OwnerLookupClient:
    return OwnerLookupClient(_make_config(**overrides), transport=httpx.MockTransport(handler))


def test_lookup_returns_owner_name():
    recorder = _Recorder(httpx.Response(200, json={"result": {"owner_name": "Jane Doe"}}))

    with _client(recorder) as client:
        result = client.lookup(_extraction())

    assert result.owner_name == "Jane Doe"
    request = recorder.requests[0]
    assert request.method == "GET"
    assert str(request.url).startswith(_LOOKUP_URL)
    assert request.url.params["fullAddress"] == "123 Main St, Denver, CO 80202"


@pytest.mark.parametrize("payload", [{}, {"result": {}}, {"result": None}, {"result": {"owner_name": "  "}}])
def test_missing_owner_name_is_none(payload):
    with _client(_Recorder(httpx.Response(200, json=payload))) as client:
        assert client.lookup(_extraction()).owner_name is None


def test_non_200_raises():
    with _client(_Recorder(httpx.Response(404, text="no such parcel"))) as client:
        with pytest.raises(OwnerLookupError, match="404"):
            client.lookup(_extraction())


def test_non_json_body_raises():
    with _client(_Recorder(httpx.Response(200, text="<html>oops</html>"))) as client:
        with pytest.raises(OwnerLookupError):
            client.lookup(_extraction())


def test_transport_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with _client(handler) as client:
        with pytest.raises(OwnerLookupError):
            client.lookup(_extraction())


def test_no_street_address_skips_the_call():
    recorder = _Recorder(httpx.Response(200, json={"result": {"owner_name": "Jane Doe"}}))

    with _client(recorder) as client:
        result = client.lookup(_extraction(property_street_address=None))

    assert result.owner_name is None
    assert recorder.requests == []


def test_disabled_lookup_skips_the_call():
    recorder = _Recorder(httpx.Response(200, json={"result": {"owner_name": "Jane Doe"}}))

    with _client(recorder, owner_lookup_url="") as client:
        result = client.lookup(_extraction())

    assert result.owner_name is None
    assert recorder.requests == []


def test_format_full_address():
    assert format_full_address(_extraction()) == "123 Main St, Denver, CO 80202"
    assert format_full_address(_extraction(property_city=None, property_zip=None)) == "123 Main St, CO"
    assert format_full_address(_extraction(property_street_address="  ")) is None
