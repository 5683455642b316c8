"""Pydantic schemas for extracted deal data and the combined sheet record."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Tokens models emit when they mean "not found"
_NULL_TOKENS = {"", "null", "none", "n/a", "na", "not found", "unknown", "-"}

# "$450,000", "450K", "1.2m", "2,100", "+325k"
_AMOUNT_RE = re.compile(r"^\+?\$?\s*([0-9][0-9,]*(?:\.[0-9]+)?)\s*([kKmM])?\s*\+?$")
_MULTIPLIERS = {"k": 1_000, "m": 1_000_000}


def parse_number(value: Any) -> Any:
    """Turn loosely formatted numbers into floats, leaving anything else untouched."""
    if isinstance(value, str):
        match = _AMOUNT_RE.match(value.strip())
        if not match:
            return value
        number = float(match.group(1).replace(",", ""))
        suffix = (match.group(2) or "").lower()
        return number * _MULTIPLIERS.get(suffix, 1)
    return value


# ── Extraction ────────────────────────────────────────────


class ExtractionResult(BaseModel):
    """Structured fields Gemini pulls out of one wholesaler email.

    Every field is optional: anything the model could not find stays None.
    JSON keys are the camelCase names the extraction prompt asks for.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        coerce_numbers_to_str=True,
    )

    sender_name: Optional[str] = Field(None, alias="senderName")
    sender_phone_number: Optional[str] = Field(None, alias="senderPhoneNumber")
    property_street_address: Optional[str] = Field(None, alias="propertyStreetAddress")
    property_city: Optional[str] = Field(None, alias="propertyCity")
    property_state: Optional[str] = Field(None, alias="propertyState")
    property_zip: Optional[str] = Field(None, alias="propertyZip")
    bedrooms: Optional[int] = Field(None, alias="bedrooms")
    bathrooms: Optional[float] = Field(None, alias="bathrooms")
    garage_spaces: Optional[int] = Field(None, alias="garageSpaces")
    square_footage: Optional[int] = Field(None, alias="squareFootage")
    lot_size: Optional[int] = Field(None, alias="lotSize")
    year_built: Optional[int] = Field(None, alias="yearBuilt")
    earnest_money: Optional[int] = Field(None, alias="earnestMoney")
    closing_date: Optional[date] = Field(None, alias="closingDate")
    asking_price: Optional[int] = Field(None, alias="askingPrice")
    provided_arv: Optional[int] = Field(None, alias="providedARV")
    source_url: Optional[str] = Field(None, alias="sourceURL")
    notes: Optional[str] = Field(None, alias="notes")

    @field_validator("*", mode="before")
    @classmethod
    def _null_tokens(cls, v: Any) -> Any:
        if isinstance(v, str):
            stripped = v.strip()
            if stripped.lower() in _NULL_TOKENS:
                return None
            return stripped
        return v

    @field_validator(
        "bedrooms",
        "garage_spaces",
        "square_footage",
        "lot_size",
        "year_built",
        "earnest_money",
        "asking_price",
        "provided_arv",
        mode="before",
    )
    @classmethod
    def _whole_number(cls, v: Any) -> Any:
        v = parse_number(v)
        if isinstance(v, float):
            return round(v)
        return v

    @field_validator("bathrooms", mode="before")
    @classmethod
    def _bathrooms(cls, v: Any) -> Any:
        return parse_number(v)

    @field_validator("closing_date", mode="before")
    @classmethod
    def _iso_date(cls, v: Any) -> Any:
        # Models sometimes answer with a full timestamp
        if isinstance(v, str) and len(v) > 10 and v[10] in ("T", " "):
            return v[:10]
        return v

    def to_fields(self) -> dict[str, Any]:
        """Field mapping keyed by the camelCase JSON names."""
        return self.model_dump(by_alias=True)


# ── Enrichment ────────────────────────────────────────────


class OwnerLookupResult(BaseModel):
    """Owner lookup response reduced to what the sheet needs."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    owner_name: Optional[str] = Field(None, alias="ownerName")

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


# ── Combined record ───────────────────────────────────────


@dataclass(frozen=True)
class CombinedRecord:
    """One sheet row: merged deal fields plus the source email's metadata."""

    fields: Mapping[str, Any]
    email_date: Optional[datetime]
    sender: str
    subject: str
    logged_at: datetime

    def get(self, key: str) -> Any:
        return self.fields.get(key)


def assemble_record(
    extraction: ExtractionResult,
    enrichment: Optional[OwnerLookupResult],
    *,
    email_date: Optional[datetime],
    sender: str,
    subject: str,
    logged_at: datetime,
) -> CombinedRecord:
    """Shallow-merge extraction and enrichment fields; enrichment wins on collision."""
    fields: dict[str, Any] = dict(extraction.to_fields())
    fields.update((enrichment or OwnerLookupResult()).to_fields())
    return CombinedRecord(
        fields=fields,
        email_date=email_date,
        sender=sender,
        subject=subject,
        logged_at=logged_at,
    )
