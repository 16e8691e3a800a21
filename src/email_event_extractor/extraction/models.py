"""Models for event extraction.

The LLM response contract is kept small and tolerant: the model may omit
optional fields, which are defaulted during normalization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union

from pydantic import BaseModel, Field


class ScreeningResponse(BaseModel):
    """Stage-1 response."""

    is_event: bool


class ExtractedEvent(BaseModel):
    """One event as returned by the stage-2 model."""

    title: str = Field(min_length=1)
    date_time: str = Field(description="ISO-8601 date or date-time")
    location: str | None = None
    organizer: str | None = None
    duration_minutes: int | None = Field(default=None, ge=0)


class ExtractionResponse(BaseModel):
    """Stage-2 response."""

    events: list[ExtractedEvent] = Field(default_factory=list)


class CandidateEvent(BaseModel):
    """Normalized event candidate handed to the merge engine."""

    title: str
    date_time: datetime
    location: str = "unknown"
    organizer: str = "unknown"
    duration_minutes: int = 60


class RejectionLevel(str, Enum):
    """Which stage decided the message is not an event."""

    SCREENING = "screening"
    EXTRACTION = "extraction"


class FailureKind(str, Enum):
    NETWORK = "network"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class ExtractedEvents:
    events: list[CandidateEvent] = field(default_factory=list)


@dataclass(frozen=True)
class ExtractionRejected:
    level: RejectionLevel


@dataclass(frozen=True)
class ExtractionFailed:
    kind: FailureKind
    detail: str = ""


ExtractionOutcome = Union[ExtractedEvents, ExtractionRejected, ExtractionFailed]
