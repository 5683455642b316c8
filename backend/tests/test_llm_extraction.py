"""Gemini extraction client against a mocked HTTP transport."""

from __future__ import annotations

import json

import httpx
import pytest

from deal_monitor.config import AppConfig
from deal_monitor.extraction.llm import (
    ExtractionHTTPError,
    ExtractionStatus,
    ExtractionTransportError,
    GeminiExtractionClient,
    build_prompt,
    parse_model_output,
    strip_code_fences,
)

_DEAL_JSON = json.dumps(
    {
        "senderName": "Mike Seller",
        "senderPhoneNumber": "303-555-0100",
        "propertyStreetAddress": "123 Main St",
        "propertyCity": "Denver",
        "propertyState": "CO",
        "propertyZip": "80202",
        "bedrooms": 3,
        "bathrooms": 2,
        "askingPrice": "$450,000",
        "providedARV": 610000,
        "closingDate": "2026-03-15",
    }
)


def _make_config(**overrides) -> AppConfig:
    values = {
        "email_username": "deals@example.com",
        "email_password": "secret",
        "gemini_api_key": "test-key",
        "gemini_model": "gemini-test",
        "gemini_base_url": "https://gemini.example.com/v1beta",
        "gemini_timeout_sec": 3,
    }
    values.update(overrides)
    return AppConfig(_env_file=None, **values)


def _envelope(text: str, finish_reason: str = "STOP") -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": finish_reason}]}


def _client(handler, **overrides) -> GeminiExtractionClient:
    return GeminiExtractionClient(_make_config(**overrides), transport=httpx.MockTransport(handler))


# ── Client ────────────────────────────────────────────────


def test_extract_parses_fenced_model_output():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_envelope(f"```json\n{_DEAL_JSON}\n```"))

    with _client(handler) as client:
        outcome = client.extract("Off-market 3/2 at 123 Main St, asking $450,000")

    assert outcome.status is ExtractionStatus.EXTRACTED
    assert outcome.result is not None
    assert outcome.result.sender_name == "Mike Seller"
    assert outcome.result.asking_price == 450000
    assert outcome.result.bathrooms == 2.0
    assert outcome.truncated is False

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/v1beta/models/gemini-test:generateContent"
    assert request.headers["x-goog-api-key"] == "test-key"
    assert "test-key" not in str(request.url)
    sent = json.loads(request.content)
    assert "123 Main St" in sent["contents"][0]["parts"][0]["text"]


def test_http_error_is_a_hard_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="internal error " + "x" * 2000)

    with _client(handler) as client:
        with pytest.raises(ExtractionHTTPError) as exc_info:
            client.extract("body")

    assert exc_info.value.status_code == 500
    assert len(exc_info.value.body) == 500


def test_transport_error_is_a_hard_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler) as client:
        with pytest.raises(ExtractionTransportError):
            client.extract("body")


@pytest.mark.parametrize(
    "response, reason",
    [
        (httpx.Response(200, text="<html>not json</html>"), "invalid_envelope"),
        (httpx.Response(200, json={"candidates": []}), "no_candidate_text"),
        (httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}), "no_candidate_text"),
        (httpx.Response(200, json=_envelope("", finish_reason="MAX_TOKENS")), "no_candidate_text"),
        (httpx.Response(200, json=_envelope("Sorry, I cannot help with that.")), "invalid_model_output"),
        (httpx.Response(200, json=_envelope('["not", "an", "object"]')), "invalid_model_output"),
    ],
)
def test_malformed_responses_are_soft_failures(response, reason):
    with _client(lambda request: response) as client:
        outcome = client.extract("body")

    assert outcome.status is ExtractionStatus.EMPTY
    assert outcome.result is None
    assert outcome.reason == reason


def test_uncoercible_field_keeps_the_rest_of_the_deal():
    reply = json.dumps({"propertyStreetAddress": "123 Main St", "askingPrice": "make an offer", "bedrooms": 3})

    with _client(lambda request: httpx.Response(200, json=_envelope(reply))) as client:
        outcome = client.extract("body")

    assert outcome.status is ExtractionStatus.EXTRACTED
    assert outcome.result is not None
    assert outcome.result.property_street_address == "123 Main St"
    assert outcome.result.bedrooms == 3
    assert outcome.result.asking_price is None


def test_long_body_is_truncated_but_instructions_survive():
    instructions = "Extract the deal fields as JSON."
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content)["contents"][0]["parts"][0]["text"])
        return httpx.Response(200, json=_envelope(_DEAL_JSON))

    with _client(handler, extraction_prompt=instructions, max_prompt_chars=300) as client:
        outcome = client.extract("y" * 5000)

    assert outcome.status is ExtractionStatus.EXTRACTED
    assert outcome.truncated is True
    prompt = captured[0]
    assert len(prompt) <= 300
    assert prompt.startswith(instructions)
    assert "--- EMAIL BODY START (TRUNCATED) ---" in prompt
    assert prompt.endswith("--- EMAIL BODY END ---")


# ── Prompt and parsing helpers ────────────────────────────


def test_build_prompt_short_body_is_unchanged():
    prompt = build_prompt("Do it.", "short body", 1000)

    assert prompt.truncated is False
    assert prompt.text == "Do it.\n\n--- EMAIL BODY START ---\nshort body\n--- EMAIL BODY END ---"


def test_build_prompt_cuts_only_the_body():
    prompt = build_prompt("Do it.", "z" * 500, 200)

    assert prompt.truncated is True
    assert len(prompt.text) == 200
    assert prompt.text.startswith("Do it.\n\n--- EMAIL BODY START (TRUNCATED) ---\nzzz")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('```json\n{"a": 1}\n```', '{"a": 1}'),
        ('```\n{"a": 1}\n```', '{"a": 1}'),
        ('```JSON\n{"a": 1}', '{"a": 1}'),
        ('  ```json\n{"a": 1}\n```  \n', '{"a": 1}'),
    ],
)
def test_strip_code_fences(raw, expected):
    assert strip_code_fences(raw) == expected


def test_strip_code_fences_leaves_plain_text_alone():
    raw = '  {"a": 1}\n'
    assert strip_code_fences(raw) == raw


def test_fenced_and_plain_output_parse_the_same():
    fenced = parse_model_output(f"```json\n{_DEAL_JSON}\n```")
    plain = parse_model_output(_DEAL_JSON)

    assert fenced is not None
    assert fenced == plain


def test_bad_fields_are_nulled_not_fatal():
    result = parse_model_output(
        '{"propertyStreetAddress": "123 Main St", "propertyCity": "Denver", '
        '"askingPrice": 450000, "lotSize": "0.25 acres", "closingDate": "TBD"}'
    )

    assert result is not None
    assert result.property_street_address == "123 Main St"
    assert result.property_city == "Denver"
    assert result.asking_price == 450000
    assert result.lot_size is None
    assert result.closing_date is None


def test_non_object_output_is_still_rejected():
    assert parse_model_output("42") is None
    assert parse_model_output("no json here") is None
