"""MIME parsing of wholesaler emails."""

from __future__ import annotations

import email
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from deal_monitor.email.parser import (
    extract_body_text,
    is_noise_text,
    parse_date,
    parse_email_message,
)


def _alternative(plain: str, html: str) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = "Off-market 3/2 in Denver"
    msg["From"] = "Deals <deals@wholesaler.example>"
    msg["Date"] = "Fri, 27 Feb 2026 10:00:00 +0000"
    msg["Message-ID"] = "<abc123@wholesaler.example>"
    msg.attach(MIMEText(plain, "plain"))
    msg.attach(MIMEText(html, "html"))
    return msg


def test_plain_part_wins_when_clean():
    msg = _alternative("123 Main St, asking $450,000", "<p>HTML version</p>")

    parsed = parse_email_message(msg)

    assert parsed.body_text.strip() == "123 Main St, asking $450,000"
    assert parsed.subject == "Off-market 3/2 in Denver"
    assert parsed.sender == "Deals <deals@wholesaler.example>"
    assert parsed.message_id == "abc123@wholesaler.example"
    assert parsed.date_dt is not None and parsed.date_dt.tzinfo is not None
    assert parsed.has_body


def test_css_noise_in_plain_part_falls_back_to_html():
    msg = _alternative(
        "color: #333; font-size: 12px; margin: 0; padding: 0",
        "<style>p {color: red}</style><p>3 bed 2 bath</p><script>track()</script>",
    )

    body = extract_body_text(msg)

    assert "3 bed 2 bath" in body
    assert "track()" not in body
    assert "color: red" not in body


def test_html_only_message():
    msg = email.message_from_string(
        "Subject: Deal\r\nContent-Type: text/html; charset=utf-8\r\n\r\n<div>Asking <b>$200k</b></div>"
    )

    assert "Asking" in extract_body_text(msg)
    assert "$200k" in extract_body_text(msg)


def test_attachments_are_ignored():
    msg = MIMEMultipart()
    msg.attach(MIMEText("See attached comps", "plain"))
    attachment = MIMEApplication(b"%PDF-1.4", Name="comps.pdf")
    attachment["Content-Disposition"] = 'attachment; filename="comps.pdf"'
    msg.attach(attachment)

    assert extract_body_text(msg).strip() == "See attached comps"


def test_encoded_subject_is_decoded():
    msg = email.message_from_string("Subject: =?utf-8?q?Caf=C3=A9_deal?=\r\n\r\nbody")

    assert parse_email_message(msg).subject == "Café deal"


def test_whitespace_body_has_no_body():
    msg = email.message_from_string("Subject: Empty\r\n\r\n   \r\n")

    assert not parse_email_message(msg).has_body


def test_parse_date():
    assert parse_date("not a date") is None
    assert parse_date("") is None
    parsed = parse_date("Fri, 27 Feb 2026 10:00:00 -0700")
    assert parsed is not None and parsed.utcoffset() is not None


def test_is_noise_text():
    assert is_noise_text("font-family: Arial; color: #000; margin: 4px")
    assert not is_noise_text("Great deal, 3 bed 2 bath, call me")
