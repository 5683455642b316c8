"""Email MIME parsing: header decoding, date parsing, plain-text body extraction."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from email.header import decode_header, make_header
from email.message import Message
from email.utils import parsedate_to_datetime
from typing import List, Optional

from bs4 import BeautifulSoup


@dataclass(frozen=True)
class ParsedEmailData:
    """Structured output from parsing a raw email.Message."""

    subject: str
    sender: str
    date_raw: str
    date_dt: Optional[datetime]
    body_text: str
    message_id: Optional[str] = None  # Standard Message-ID header

    @property
    def has_body(self) -> bool:
        return bool(self.body_text and self.body_text.strip())


# ── Noise detection tokens ────────────────────────────────
_NOISE_TOKENS = [
    "color:",
    "font-",
    "px",
    "{",
    "}",
    "margin",
    "padding",
    "z-index",
    "mso-",
    "a:visited",
]


def is_noise_text(text: str, threshold: int = 3) -> bool:
    """Return True if *text* looks like CSS / HTML junk rather than real content."""
    lowered = text.lower()
    hits = sum(1 for tok in _NOISE_TOKENS if tok in lowered)
    return hits >= threshold


# ── MIME helpers ──────────────────────────────────────────


def decode_mime_text(value: Optional[str]) -> str:
    """Decode a MIME-encoded header value to a plain string."""
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value))).strip()
    except Exception:
        return value.strip()


def parse_date(date_raw: str) -> Optional[datetime]:
    """Parse a raw email date into a timezone-aware datetime, or None."""
    if not date_raw:
        return None
    try:
        return parsedate_to_datetime(date_raw)
    except (TypeError, ValueError):
        return None


# ── Body extraction ───────────────────────────────────────


def _html_to_text(html: str) -> str:
    """Strip HTML tags and return readable text."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text("\n", strip=True)


def _decode_part(part: Message) -> str:
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def extract_body_text(msg: Message) -> str:
    """Extract the best plain-text representation of the email body.

    Wholesaler blasts are often HTML-only; the text/plain part wins when it
    exists and is not CSS leftovers.
    """
    plain_parts: List[str] = []
    html_parts: List[str] = []

    parts = msg.walk() if msg.is_multipart() else [msg]
    for part in parts:
        if part.is_multipart():
            continue
        ctype = part.get_content_type()
        cdisp = str(part.get("Content-Disposition", "")).lower()
        if "attachment" in cdisp or ctype not in ("text/plain", "text/html"):
            continue
        text = _decode_part(part)
        if ctype == "text/html":
            html_parts.append(_html_to_text(text))
        else:
            plain_parts.append(text)

    plain_text = "\n".join(plain_parts)
    html_text = "\n".join(html_parts)

    if plain_text.strip() and not is_noise_text(plain_text):
        return plain_text
    return html_text if html_text.strip() else plain_text


# ── Top-level parser ─────────────────────────────────────


def _extract_message_id(msg: Message) -> Optional[str]:
    raw = msg.get("Message-ID", "") or msg.get("Message-Id", "")
    cleaned = str(raw).strip().strip("<>").strip()
    return cleaned or None


def parse_email_message(msg: Message) -> ParsedEmailData:
    """Parse a stdlib ``email.Message`` into a structured ``ParsedEmailData``."""
    date_raw = decode_mime_text(msg.get("Date", ""))
    return ParsedEmailData(
        subject=decode_mime_text(msg.get("Subject", "")),
        sender=decode_mime_text(msg.get("From", "")),
        date_raw=date_raw,
        date_dt=parse_date(date_raw),
        body_text=extract_body_text(msg),
        message_id=_extract_message_id(msg),
    )
