"""Prompt contracts for screening and extracting events from messages."""

from __future__ import annotations


PROMPT_VERSION = "event-extract-v3"


def _bounded(body: str, max_chars: int) -> str:
    body = (body or "").strip()
    if len(body) > max_chars:
        body = body[:max_chars]
    return body


def build_screening_prompt(*, subject: str, body: str, max_chars: int = 20_000) -> str:
    """Build the stage-1 prompt: does this message announce an event?

    Args:
        subject: Message subject.
        body: Cleaned plain-text body.
        max_chars: Body truncation bound.

    Returns:
        Prompt string requesting ``{"is_event": bool}``.
    """

    return (
        "You read campus mailing-list messages and decide whether they announce an event "
        "that people can attend (a talk, performance, meeting, party, sale, study break, etc.).\n\n"
        "Return ONLY valid JSON. No markdown. No code fences. No commentary.\n"
        'Schema: {"is_event": true|false}\n\n'
        "Answer false for job postings, lost-and-found, surveys and housing offers "
        "unless a specific gathering with a date is announced.\n\n"
        f"Subject: {subject.strip()}\n"
        "Body:\n"
        "---\n"
        f"{_bounded(body, max_chars)}\n"
        "---\n"
    )


def build_extraction_prompt(
    *,
    subject: str,
    body: str,
    reference_time_iso: str,
    max_chars: int = 20_000,
) -> str:
    """Build the stage-2 prompt that requests every event in the message.

    The reference time lets the model resolve relative dates ("this Friday").

    Args:
        subject: Message subject.
        body: Cleaned plain-text body.
        reference_time_iso: When the message was received (ISO-8601).
        max_chars: Body truncation bound.

    Returns:
        Prompt string requesting ``{"events": [...]}``.
    """

    return (
        "You extract calendar events from campus mailing-list messages.\n\n"
        "Return ONLY valid JSON. No markdown. No code fences. No commentary.\n"
        'Schema: {"events": [{"title": string, "date_time": string, "location": string, '
        '"organizer": string, "duration_minutes": integer}]}\n\n'
        "Rules:\n"
        "- date_time is local time in ISO-8601 (YYYY-MM-DDTHH:MM). If no start time is given, "
        "use the date alone (YYYY-MM-DD).\n"
        "- location is the room or building as written; use \"unknown\" if absent.\n"
        "- organizer is the club, office or person running the event; use \"unknown\" if absent.\n"
        "- duration_minutes defaults to 60 when no end time is given.\n"
        "- title is short and human readable; do not include the date in it.\n"
        "- If a message lists the same event on several dates, emit one event per date.\n"
        '- If there is no event, return {"events": []}.\n\n'
        f"The message was received at {reference_time_iso}.\n"
        f"Subject: {subject.strip()}\n"
        "Body:\n"
        "---\n"
        f"{_bounded(body, max_chars)}\n"
        "---\n"
    )
