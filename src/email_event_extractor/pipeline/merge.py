"""Duplicate detection and reconciliation of extracted events.

The same event is often announced several times: reminders, corrections,
cross-posts with a slightly different title. A new candidate is compared with
the events stored under the nearest title labels. When the two look like the
same event, the one from the earlier-received message wins.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import structlog

from email_event_extractor.extraction.models import CandidateEvent
from email_event_extractor.models import Event, EventSource
from email_event_extractor.store import EventStore
from email_event_extractor.utils import as_utc
from email_event_extractor.vector import EmbeddingIndex

logger = structlog.get_logger()

UNKNOWN_LOCATION = "unknown"


class MergeDecision(str, Enum):
    INSERT = "insert"
    SUPERSEDE = "supersede"
    KEEP_EXISTING = "keep_existing"


@dataclass(frozen=True)
class MergeResult:
    decision: MergeDecision
    event: Event


def is_all_day(value: datetime) -> bool:
    return value.hour == 0 and value.minute == 0


def dates_compatible(a: datetime, b: datetime) -> bool:
    """Same instant, or one side is all-day and both fall on the same weekday.

    Only the weekday is compared for all-day events, not the calendar date.
    """
    if a == b:
        return True
    return (is_all_day(a) or is_all_day(b)) and a.weekday() == b.weekday()


def locations_compatible(a: str, b: str) -> bool:
    la, lb = a.lower(), b.lower()
    if la == UNKNOWN_LOCATION or lb == UNKNOWN_LOCATION:
        return True
    return la in lb or lb in la


def compare_events(
    candidate: CandidateEvent,
    candidate_received_at: datetime,
    stored: Event,
) -> MergeDecision | None:
    """Decide how ``candidate`` relates to ``stored``.

    Returns:
        None if the two are different events, KEEP_EXISTING if the stored event
        came from an earlier-or-equal message, SUPERSEDE otherwise.
    """
    if not dates_compatible(candidate.date_time, stored.date_time):
        return None
    if not locations_compatible(candidate.location, stored.location):
        return None
    if stored.anchor_received_at is None:
        return None
    if as_utc(stored.anchor_received_at) <= as_utc(candidate_received_at):
        return MergeDecision.KEEP_EXISTING
    return MergeDecision.SUPERSEDE


class MergeEngine:
    """Inserts candidate events, merging them into similar stored events.

    Merges are serialized: the neighbour query, the comparison and the store
    and index writes that follow run under one lock. Only embedding happens
    outside it.
    """

    def __init__(self, store: EventStore, index: EmbeddingIndex, embedder, neighbor_count: int = 3) -> None:
        self.store = store
        self.index = index
        self.embedder = embedder
        self.neighbor_count = neighbor_count
        self._lock = asyncio.Lock()

    async def merge_or_insert(
        self,
        candidate: CandidateEvent,
        anchor_message_id: str,
        received_at: datetime,
        text: str = "",
    ) -> MergeResult:
        """Store ``candidate`` unless a similar event already covers it.

        Args:
            candidate: Normalized event from the extractor.
            anchor_message_id: Root of the thread the candidate came from.
            received_at: When the message carrying the candidate was received.
            text: Supporting message text stored with the event.

        Returns:
            The decision and the stored event it applies to.
        """
        vector = await self.embedder.embed(candidate.title)
        new_event = Event(
            title=candidate.title,
            date_time=candidate.date_time,
            location=candidate.location,
            organizer=candidate.organizer,
            duration_minutes=candidate.duration_minutes,
            source=EventSource.BROADCAST_EMAIL,
            text=text,
            anchor_message_id=anchor_message_id,
        )

        async with self._lock:
            return await self._merge_locked(candidate, received_at, new_event, vector)

    async def _merge_locked(
        self,
        candidate: CandidateEvent,
        received_at: datetime,
        new_event: Event,
        vector: list[float],
    ) -> MergeResult:
        for label, score in await self.index.nearest_neighbors(vector, self.neighbor_count):
            entry = await self.index.get(label)
            if entry is None:
                continue
            for event_id in sorted(entry.event_ids):
                stored = await self.store.get_event(event_id)
                if stored is None:
                    logger.warning("embedding_references_missing_event", label=label, event_id=event_id)
                    continue

                decision = compare_events(candidate, received_at, stored)
                if decision is None:
                    continue

                if decision == MergeDecision.KEEP_EXISTING:
                    logger.info(
                        "event_merged_into_existing",
                        title=candidate.title,
                        existing_id=event_id,
                        existing_title=stored.title,
                        similarity=score,
                    )
                    return MergeResult(MergeDecision.KEEP_EXISTING, stored)

                updated = await self.store.update_event(event_id, new_event)
                await self.index.detach(label, event_id)
                await self.index.attach(candidate.title, vector, event_id)
                logger.info(
                    "event_superseded",
                    title=candidate.title,
                    event_id=event_id,
                    previous_title=stored.title,
                    similarity=score,
                )
                return MergeResult(MergeDecision.SUPERSEDE, updated)

        inserted = await self.store.insert_event(new_event)
        assert inserted.id is not None
        await self.index.attach(candidate.title, vector, inserted.id)
        logger.info("event_inserted", title=candidate.title, event_id=inserted.id, anchor=new_event.anchor_message_id)
        return MergeResult(MergeDecision.INSERT, inserted)

    async def forget(self, events: list[Event]) -> None:
        """Detach ``events`` from the index before they are deleted from the store."""
        async with self._lock:
            for event in events:
                if event.id is not None:
                    await self.index.detach(event.title, event.id)
