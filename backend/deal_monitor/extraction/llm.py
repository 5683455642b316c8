"""Gemini-based field extraction over the ``generateContent`` REST endpoint."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol

import httpx
import structlog
from pydantic import ValidationError

from deal_monitor.config import AppConfig
from deal_monitor.extraction.prompts import frame_prompt
from deal_monitor.schemas import ExtractionResult

logger = structlog.get_logger(__name__)

_ERROR_BODY_LIMIT = 500

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?[ \t]*\r?\n?", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\r?\n?```$")


# ── Errors ────────────────────────────────────────────────


class ExtractionError(RuntimeError):
    """Hard extraction failure: the message is abandoned for this run."""


class ExtractionHTTPError(ExtractionError):
    """Gemini answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body[:_ERROR_BODY_LIMIT]
        super().__init__(f"Gemini API error ({status_code}): {self.body}")


class ExtractionTransportError(ExtractionError):
    """No response at all: DNS, connect, read timeout and similar."""


# ── Results ───────────────────────────────────────────────


class ExtractionStatus(str, Enum):
    EXTRACTED = "extracted"
    EMPTY = "empty"  # soft failure: nothing usable came back
    FAILED = "failed"  # hard failure, set by the pipeline from an ExtractionError


@dataclass(frozen=True)
class ExtractionOutcome:
    """Tagged result of one extraction attempt."""

    status: ExtractionStatus
    result: Optional[ExtractionResult] = None
    reason: str = ""
    truncated: bool = False

    @classmethod
    def extracted(cls, result: ExtractionResult, *, truncated: bool = False) -> "ExtractionOutcome":
        return cls(ExtractionStatus.EXTRACTED, result=result, truncated=truncated)

    @classmethod
    def empty(cls, reason: str, *, truncated: bool = False) -> "ExtractionOutcome":
        return cls(ExtractionStatus.EMPTY, reason=reason, truncated=truncated)

    @classmethod
    def failed(cls, error: Exception) -> "ExtractionOutcome":
        return cls(ExtractionStatus.FAILED, reason=str(error))


class Extractor(Protocol):
    """Anything that turns an email body into an ExtractionOutcome."""

    def extract(self, body: str) -> ExtractionOutcome: ...


# ── Prompt building ───────────────────────────────────────


@dataclass(frozen=True)
class ExtractionPrompt:
    text: str
    truncated: bool = False


def build_prompt(instructions: str, body: str, max_chars: int) -> ExtractionPrompt:
    """Combine instructions and body, cutting only the body when over *max_chars*."""
    full = frame_prompt(instructions, body, truncated=False)
    if len(full) <= max_chars:
        return ExtractionPrompt(full)
    budget = max(max_chars - len(frame_prompt(instructions, "", truncated=True)), 0)
    return ExtractionPrompt(frame_prompt(instructions, body[:budget], truncated=True), truncated=True)


# ── Response parsing ──────────────────────────────────────


def strip_code_fences(text: str) -> str:
    """Remove one leading ```json (or ```) fence and one trailing ``` fence.

    Text without fences is returned unchanged.
    """
    stripped = text.strip()
    opening = _FENCE_OPEN_RE.match(stripped)
    closing = _FENCE_CLOSE_RE.search(stripped)
    if not opening and not closing:
        return text
    start = opening.end() if opening else 0
    end = closing.start() if closing and closing.start() >= start else len(stripped)
    return stripped[start:end].strip()


def candidate_text(envelope: Any) -> Optional[str]:
    """Walk ``candidates[0].content.parts[0].text``; None when any step is missing."""
    try:
        text = envelope["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) and text else None


def _finish_reason(envelope: Any) -> Optional[str]:
    try:
        return envelope["candidates"][0].get("finishReason")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None


def parse_model_output(text: str) -> Optional[ExtractionResult]:
    """Parse the model's JSON answer; None when it is not a JSON object.

    A field whose value cannot be coerced to its type (``"0.25 acres"`` for
    the lot size, ``"TBD"`` for the closing date) is dropped to None and
    named in a warning; the rest of the deal is kept.
    """
    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.warning("gemini_output_not_json", error=str(exc), raw_text=text[:_ERROR_BODY_LIMIT])
        return None
    if not isinstance(parsed, dict):
        logger.warning("gemini_output_not_object", kind=type(parsed).__name__)
        return None
    try:
        return ExtractionResult.model_validate(parsed)
    except ValidationError as exc:
        rejected = {str(e["loc"][0]) for e in exc.errors() if e["loc"]}
        logger.warning(
            "gemini_output_fields_nulled",
            fields=sorted(rejected),
            values={key: parsed.get(key) for key in sorted(rejected)},
        )

    kept = {key: value for key, value in parsed.items() if key not in rejected}
    try:
        return ExtractionResult.model_validate(kept)
    except ValidationError as exc:
        logger.warning(
            "gemini_output_schema_mismatch",
            fields=[".".join(str(p) for p in e["loc"]) for e in exc.errors()],
            raw_text=text[:_ERROR_BODY_LIMIT],
        )
        return None


# ── Client ────────────────────────────────────────────────


class GeminiExtractionClient:
    """Extract deal fields from email text with a single Gemini call per message."""

    def __init__(self, config: AppConfig, transport: httpx.BaseTransport | None = None) -> None:
        self._config = config
        self._client = httpx.Client(timeout=config.gemini_timeout_sec, transport=transport)

    def __enter__(self) -> "GeminiExtractionClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def extract(self, body: str) -> ExtractionOutcome:
        """Send *body* with the fixed instructions and parse the reply.

        Raises:
            ExtractionHTTPError: Gemini returned a non-2xx status.
            ExtractionTransportError: no response was received.
        """
        cfg = self._config
        prompt = build_prompt(cfg.extraction_prompt, body, cfg.max_prompt_chars)
        if prompt.truncated:
            logger.warning(
                "gemini_prompt_truncated",
                body_chars=len(body),
                prompt_chars=len(prompt.text),
                limit=cfg.max_prompt_chars,
            )

        payload = {"contents": [{"parts": [{"text": prompt.text}]}]}
        try:
            response = self._client.post(
                cfg.gemini_endpoint,
                json=payload,
                headers={"x-goog-api-key": cfg.gemini_api_key.get_secret_value()},
            )
        except httpx.RequestError as exc:
            logger.error("gemini_request_failed", model=cfg.gemini_model, error=str(exc))
            raise ExtractionTransportError(f"Network error calling Gemini API: {exc}") from exc

        if not response.is_success:
            logger.error(
                "gemini_http_error",
                status_code=response.status_code,
                body=response.text[:_ERROR_BODY_LIMIT],
            )
            raise ExtractionHTTPError(response.status_code, response.text)

        try:
            envelope = response.json()
        except ValueError as exc:
            logger.warning("gemini_envelope_not_json", error=str(exc), body=response.text[:_ERROR_BODY_LIMIT])
            return ExtractionOutcome.empty("invalid_envelope", truncated=prompt.truncated)

        text = candidate_text(envelope)
        if text is None:
            # finishReason other than STOP usually means a safety block or token limit
            logger.warning(
                "gemini_no_text",
                finish_reason=_finish_reason(envelope),
                body=response.text[:_ERROR_BODY_LIMIT],
            )
            return ExtractionOutcome.empty("no_candidate_text", truncated=prompt.truncated)

        result = parse_model_output(text)
        if result is None:
            return ExtractionOutcome.empty("invalid_model_output", truncated=prompt.truncated)
        return ExtractionOutcome.extracted(result, truncated=prompt.truncated)
