"""Event extraction using Ollama.

Failures never raise out of :meth:`EventExtractor.extract`; they are returned as
an :class:`ExtractionFailed` outcome so the pipeline can decide whether to retry
the message on a later run.
"""

from __future__ import annotations

import json
import re
from datetime import date, datetime
from typing import Optional

import structlog
from pydantic import BaseModel, ValidationError

from email_event_extractor.config import Settings
from email_event_extractor.exceptions import OllamaConnectionError, OllamaInferenceError
from email_event_extractor.extraction.models import (
    CandidateEvent,
    ExtractedEvent,
    ExtractedEvents,
    ExtractionFailed,
    ExtractionOutcome,
    ExtractionRejected,
    ExtractionResponse,
    FailureKind,
    RejectionLevel,
    ScreeningResponse,
)
from email_event_extractor.extraction.prompt import build_extraction_prompt, build_screening_prompt
from email_event_extractor.ollama.client import OllamaClient

logger = structlog.get_logger()


_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.S)


def _extract_json_object(raw: str) -> dict:
    """Extract the first JSON object from a raw model response."""

    raw = (raw or "").strip()
    if not raw:
        raise ValueError("empty model response")

    # Fast path: direct JSON.
    try:
        obj = json.loads(raw)
        if isinstance(obj, dict):
            return obj
    except json.JSONDecodeError:
        pass

    # Tolerant path: find {...} region.
    m = _JSON_OBJECT_RE.search(raw)
    if not m:
        raise ValueError("model response did not contain a JSON object")

    obj = json.loads(m.group(0))
    if not isinstance(obj, dict):
        raise ValueError("extracted JSON was not an object")
    return obj


def parse_event_datetime(value: str) -> datetime | None:
    """Parse an ISO-8601 date or date-time into a naive local datetime.

    A bare date is an all-day event and maps to midnight.
    """

    s = (value or "").strip()
    if not s:
        return None
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(s[:10]), datetime.min.time())
        except ValueError:
            return None
    return parsed.replace(tzinfo=None)


def _clean_str(v: str | None, default: str) -> str:
    if v is None:
        return default
    s = str(v).strip()
    return s or default


def normalize_event(event: ExtractedEvent) -> CandidateEvent | None:
    """Normalize a model-provided event, or return None if it has no usable date."""

    when = parse_event_datetime(event.date_time)
    if when is None:
        return None
    return CandidateEvent(
        title=event.title.strip(),
        date_time=when,
        location=_clean_str(event.location, "unknown"),
        organizer=_clean_str(event.organizer, "unknown"),
        duration_minutes=event.duration_minutes if event.duration_minutes is not None else 60,
    )


class EventExtractor:
    """Two-stage extraction oracle backed by Ollama."""

    def __init__(
        self,
        client: Optional[OllamaClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        from email_event_extractor.config import get_settings

        self.settings = settings or get_settings()
        self.client = client or OllamaClient(self.settings)

    async def extract(self, subject: str, body_text: str, reference_time: datetime) -> ExtractionOutcome:
        """Extract candidate events from a message.

        Args:
            subject: Message subject.
            body_text: Cleaned plain-text body.
            reference_time: When the message was received.

        Returns:
            ExtractedEvents, ExtractionRejected or ExtractionFailed.
        """
        try:
            screening = await self._ask(
                build_screening_prompt(
                    subject=subject,
                    body=body_text,
                    max_chars=self.settings.max_body_chars,
                ),
                self.settings.screening_model,
                ScreeningResponse,
            )
            if not screening.is_event:
                return ExtractionRejected(level=RejectionLevel.SCREENING)

            response = await self._ask(
                build_extraction_prompt(
                    subject=subject,
                    body=body_text,
                    reference_time_iso=reference_time.isoformat(),
                    max_chars=self.settings.max_body_chars,
                ),
                self.settings.extraction_model,
                ExtractionResponse,
            )
        except OllamaConnectionError as e:
            logger.warning("extraction_network_error", subject=subject, error=str(e))
            return ExtractionFailed(kind=FailureKind.NETWORK, detail=str(e))
        except (OllamaInferenceError, ValueError, ValidationError) as e:
            # ValidationError subclasses ValueError; JSONDecodeError too.
            logger.warning("extraction_malformed_response", subject=subject, error=str(e))
            return ExtractionFailed(kind=FailureKind.MALFORMED, detail=str(e))

        if not response.events:
            return ExtractionRejected(level=RejectionLevel.EXTRACTION)

        candidates = []
        for raw_event in response.events:
            candidate = normalize_event(raw_event)
            if candidate is None:
                logger.warning("extracted_event_without_date", title=raw_event.title, date_time=raw_event.date_time)
                continue
            candidates.append(candidate)

        if not candidates:
            return ExtractionFailed(kind=FailureKind.MALFORMED, detail="no event had a usable date")
        return ExtractedEvents(events=candidates)

    async def _ask(self, prompt: str, model: str, schema: type[BaseModel]):
        raw = await self.client.generate(prompt, model=model)
        return schema.model_validate(_extract_json_object(raw))
