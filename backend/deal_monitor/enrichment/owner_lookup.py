"""Property owner lookup keyed by the extracted postal address."""

from __future__ import annotations

import re
from typing import Any, Optional, Protocol

import httpx
import structlog

from deal_monitor.config import AppConfig
from deal_monitor.schemas import ExtractionResult, OwnerLookupResult

logger = structlog.get_logger(__name__)


class OwnerLookupError(RuntimeError):
    """The lookup service could not be reached or answered with an error."""


class OwnerLookup(Protocol):
    def lookup(self, extraction: ExtractionResult) -> OwnerLookupResult: ...


def format_full_address(extraction: ExtractionResult) -> Optional[str]:
    """Build ``"street, city, state zip"``; None without a street address."""
    street = (extraction.property_street_address or "").strip()
    if not street:
        return None
    state_zip = " ".join(
        p for p in ((extraction.property_state or "").strip(), (extraction.property_zip or "").strip()) if p
    )
    parts = [street, (extraction.property_city or "").strip(), state_zip]
    address = ", ".join(p for p in parts if p)
    return re.sub(r"\s+", " ", address)


def _owner_name(payload: Any) -> Optional[str]:
    result = payload.get("result") if isinstance(payload, dict) else None
    name = result.get("owner_name") if isinstance(result, dict) else None
    if isinstance(name, str) and name.strip():
        return name.strip()
    return None


class OwnerLookupClient:
    """HTTP client for the owner lookup service (``GET ?fullAddress=...``)."""

    def __init__(self, config: AppConfig, transport: httpx.BaseTransport | None = None) -> None:
        self._config = config
        self._client = httpx.Client(
            timeout=config.owner_lookup_timeout_sec,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def __enter__(self) -> "OwnerLookupClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def lookup(self, extraction: ExtractionResult) -> OwnerLookupResult:
        """Return the owner of the extracted property.

        A missing address, a disabled service or a response without an owner
        name all yield ``owner_name=None``.

        Raises:
            OwnerLookupError: non-200 status, no response, or a non-JSON body.
        """
        cfg = self._config
        if not cfg.owner_lookup_enabled:
            return OwnerLookupResult()

        full_address = format_full_address(extraction)
        if full_address is None:
            logger.info("owner_lookup_skipped_no_address")
            return OwnerLookupResult()

        try:
            response = self._client.get(cfg.owner_lookup_url, params={"fullAddress": full_address})
        except httpx.RequestError as exc:
            raise OwnerLookupError(f"Owner lookup request failed: {exc}") from exc

        if response.status_code != 200:
            raise OwnerLookupError(
                f"Owner lookup failed ({response.status_code}): {response.text[:500]}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise OwnerLookupError(f"Owner lookup returned non-JSON body: {response.text[:500]}") from exc

        owner_name = _owner_name(payload)
        logger.info("owner_lookup_done", address=full_address, found=owner_name is not None)
        return OwnerLookupResult(owner_name=owner_name)
