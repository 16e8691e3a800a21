"""Terminal and deferred states of a single message's pipeline."""

from __future__ import annotations

from enum import Enum

from email_event_extractor.extraction.models import RejectionLevel


class OutcomeCategory(str, Enum):
    """How an outcome affects later runs."""

    PERMANENT_SKIP = "permanent_skip"  # tombstoned, never fetched again
    DEFERRED = "deferred"  # left unprocessed until its thread root is stored
    TRANSIENT = "transient"  # left unprocessed, retried next run
    SEMANTIC_REJECTION = "semantic_rejection"  # retried only after an extractor version change
    SUCCESS = "success"


class ProcessOutcome(str, Enum):
    """Result of processing one message."""

    MALFORMED = "malformed"
    IGNORED_NOT_RELEVANT = "ignored_not_relevant"
    ROOT_NOT_FOUND = "root_not_found"
    REJECTED_BY_SCREENING = "extraction_rejected_screening"
    REJECTED_BY_EXTRACTION = "extraction_rejected_extraction"
    EXTRACTION_TRANSIENT_ERROR = "extraction_transient_error"
    EXTRACTION_MALFORMED_RESPONSE = "extraction_malformed_response"
    ALREADY_PROCESSED_SAME_VERSION = "already_processed_same_version"
    PROCESSED_WITH_EVENTS = "processed_with_events"
    INTERNAL_ERROR = "internal_error"

    @classmethod
    def rejected(cls, level: RejectionLevel) -> "ProcessOutcome":
        if level == RejectionLevel.SCREENING:
            return cls.REJECTED_BY_SCREENING
        return cls.REJECTED_BY_EXTRACTION

    @property
    def category(self) -> OutcomeCategory:
        return _CATEGORIES[self]


_CATEGORIES: dict[ProcessOutcome, OutcomeCategory] = {
    ProcessOutcome.MALFORMED: OutcomeCategory.PERMANENT_SKIP,
    ProcessOutcome.IGNORED_NOT_RELEVANT: OutcomeCategory.PERMANENT_SKIP,
    ProcessOutcome.ROOT_NOT_FOUND: OutcomeCategory.DEFERRED,
    ProcessOutcome.REJECTED_BY_SCREENING: OutcomeCategory.SEMANTIC_REJECTION,
    ProcessOutcome.REJECTED_BY_EXTRACTION: OutcomeCategory.SEMANTIC_REJECTION,
    ProcessOutcome.EXTRACTION_TRANSIENT_ERROR: OutcomeCategory.TRANSIENT,
    ProcessOutcome.EXTRACTION_MALFORMED_RESPONSE: OutcomeCategory.TRANSIENT,
    ProcessOutcome.ALREADY_PROCESSED_SAME_VERSION: OutcomeCategory.SUCCESS,
    ProcessOutcome.PROCESSED_WITH_EVENTS: OutcomeCategory.SUCCESS,
    ProcessOutcome.INTERNAL_ERROR: OutcomeCategory.TRANSIENT,
}
