"""Helpers for parsing raw RFC 822 messages into internal models."""

from __future__ import annotations

import html
from datetime import datetime
from email import message_from_bytes, policy
from email.message import EmailMessage
from email.utils import getaddresses, parsedate_to_datetime

from email_event_extractor.models import IncomingMessage


def _clean_header(value: object) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _clean_message_id(value: object) -> str | None:
    s = _clean_header(value)
    if s is None:
        return None
    # In-Reply-To may hold several ids; the first is the direct parent.
    return s.split()[0]


def _parse_from(value: str | None) -> tuple[str | None, str | None]:
    if not value:
        return None, None
    # getaddresses returns list[(name, addr)]
    for name, addr in getaddresses([value]):
        if addr:
            return addr, (name or None)
    return None, None


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _body_part(message: EmailMessage, subtype: str) -> str | None:
    part = message.get_body(preferencelist=(subtype,))
    if part is None:
        return None
    try:
        content = part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        content = payload.decode("utf-8", errors="replace")
    return content if isinstance(content, str) else None


def parse_raw_message(uid: str, raw: bytes) -> IncomingMessage:
    """Convert raw RFC 822 bytes to an IncomingMessage.

    Missing or unparseable headers become None; the pipeline decides what a
    missing field means. A message with only a plain-text body gets an escaped
    HTML rendition of it.

    Args:
        uid: Transport sequence number of the message.
        raw: Message source.

    Returns:
        IncomingMessage: Parsed message.
    """

    message = message_from_bytes(raw, policy=policy.default)
    assert isinstance(message, EmailMessage)

    sender_email, sender_name = _parse_from(_clean_header(message.get("From")))
    subject = message.get("Subject")

    text = _body_part(message, "plain")
    html_body = _body_part(message, "html")
    if not html_body and text:
        html_body = "<pre>" + html.escape(text) + "</pre>"

    return IncomingMessage(
        uid=uid,
        message_id=_clean_message_id(message.get("Message-ID")),
        in_reply_to_id=_clean_message_id(message.get("In-Reply-To")),
        sender_email=sender_email,
        sender_name=sender_name,
        subject=str(subject).strip() if subject is not None else None,
        html=html_body,
        text=text,
        received_at=_parse_date(_clean_header(message.get("Date"))),
    )
