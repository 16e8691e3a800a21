"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import format_datetime

import pytest
from qdrant_client import QdrantClient

from email_event_extractor.config import Settings
from email_event_extractor.extraction.models import (
    CandidateEvent,
    ExtractedEvents,
    ExtractionRejected,
    RejectionLevel,
)
from email_event_extractor.models import IncomingMessage, Message, MessageStatus, Sender
from email_event_extractor.pipeline import MergeEngine, PipelineRunner
from email_event_extractor.store import EventStore
from email_event_extractor.vector import DeterministicEmbedder, EmbeddingIndex

VECTOR_SIZE = 32
SIGNATURE = "Bcc'd to all dorms, apologies for the spam."


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_incoming(
    message_id: str | None,
    *,
    uid: str | None = None,
    subject: str | None = "Study break",
    body: str | None = None,
    in_reply_to_id: str | None = None,
    received_at: datetime | None = None,
    sender_email: str | None = "club@example.edu",
) -> IncomingMessage:
    html = body if body is not None else f"<p>Free food in the lounge!</p><p>{SIGNATURE}</p>"
    return IncomingMessage(
        uid=uid or f"uid-{message_id}",
        message_id=message_id,
        in_reply_to_id=in_reply_to_id,
        sender_email=sender_email,
        sender_name="Example Club" if sender_email else None,
        subject=subject,
        html=html,
        received_at=received_at or utc(2024, 2, 20, 12, 0),
    )


def make_message(
    message_id: str,
    *,
    received_at: datetime | None = None,
    in_reply_to_id: str | None = None,
    status: MessageStatus = MessageStatus.PROCESSED,
    extractor_version: str | None = "v1",
) -> Message:
    return Message(
        message_id=message_id,
        scraped_by="scraper@example.edu",
        uid=f"uid-{message_id}",
        sender=Sender(email="club@example.edu", name="Example Club"),
        subject=f"Subject of {message_id}",
        body=f"<p>{SIGNATURE}</p>",
        received_at=received_at or utc(2024, 2, 20, 12, 0),
        in_reply_to_id=in_reply_to_id,
        status=status,
        extractor_version=extractor_version,
    )


def make_raw(
    *,
    message_id: str | None = "<a1@example.edu>",
    subject: str | None = "Study break tonight",
    body: str = f"Free food at 9pm in the lounge.\n\n{SIGNATURE}",
    html: str | None = None,
    sender: str | None = "Example Club <club@example.edu>",
    date: datetime | None = None,
    in_reply_to: str | None = None,
) -> bytes:
    msg = EmailMessage()
    if message_id is not None:
        msg["Message-ID"] = message_id
    if sender is not None:
        msg["From"] = sender
    if subject is not None:
        msg["Subject"] = subject
    msg["Date"] = format_datetime(date or utc(2024, 2, 20, 12, 0))
    if in_reply_to is not None:
        msg["In-Reply-To"] = in_reply_to
    msg.set_content(body)
    if html is not None:
        msg.add_alternative(html, subtype="html")
    return msg.as_bytes()


def candidate(
    title: str = "Study break",
    date_time: datetime | None = None,
    location: str = "Lounge",
) -> CandidateEvent:
    return CandidateEvent(
        title=title,
        date_time=date_time or datetime(2024, 2, 23, 21, 0),
        location=location,
        organizer="Example Club",
        duration_minutes=60,
    )


class FakeExtractor:
    """Extraction oracle returning scripted outcomes keyed by subject."""

    def __init__(self, outcomes=None, default=None, delays=None) -> None:
        self.outcomes = outcomes or {}
        self.default = default or ExtractionRejected(level=RejectionLevel.EXTRACTION)
        self.delays = delays or {}
        self.calls: list[str] = []

    async def extract(self, subject, body_text, reference_time):
        self.calls.append(subject)
        delay = self.delays.get(subject, 0)
        if delay:
            await asyncio.sleep(delay)
        outcome = self.outcomes.get(subject, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeSource:
    """Mailbox source backed by a dict of uid -> raw bytes."""

    def __init__(self, messages: dict[str, bytes]) -> None:
        self.messages = messages
        self.fetched: list[str] = []

    async def list_candidate_ids(self, since):
        return list(self.messages)

    async def fetch_raw(self, message_uid):
        self.fetched.append(message_uid)
        return self.messages[message_uid]


class RecordingStore(EventStore):
    """EventStore that records every write, in order."""

    def __init__(self, db_path) -> None:
        super().__init__(db_path)
        self.writes: list[tuple[str, object]] = []

    async def upsert_message(self, message):
        self.writes.append(("upsert_message", message.message_id))
        await super().upsert_message(message)

    async def mark_processed(self, message_id, version):
        self.writes.append(("mark_processed", message_id))
        await super().mark_processed(message_id, version)

    async def ignore(self, ignored):
        self.writes.append(("ignore", ignored.uid))
        await super().ignore(ignored)

    async def insert_event(self, event):
        self.writes.append(("insert_event", event.title))
        return await super().insert_event(event)

    async def update_event(self, event_id, event):
        self.writes.append(("update_event", event_id))
        return await super().update_event(event_id, event)

    async def delete_events_for_anchor(self, anchor_message_id):
        self.writes.append(("delete_events_for_anchor", anchor_message_id))
        return await super().delete_events_for_anchor(anchor_message_id)


def events_outcome(*events: CandidateEvent) -> ExtractedEvents:
    return ExtractedEvents(events=list(events))


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings for tests: local store, deterministic vectors, in-memory Qdrant."""
    return Settings(
        scraper_identity="scraper@example.edu",
        database_path=tmp_path / "events.sqlite3",
        allow_deterministic_vectors=True,
        embedding_dimensions=VECTOR_SIZE,
        qdrant_location=":memory:",
        screening_model="screen-test",
        extraction_model="extract-test",
        log_level="DEBUG",
    )


@pytest.fixture
def store(tmp_path) -> RecordingStore:
    s = RecordingStore(tmp_path / "events.sqlite3")
    s.initialize()
    return s


@pytest.fixture
def index() -> EmbeddingIndex:
    idx = EmbeddingIndex(QdrantClient(location=":memory:"), "test_event_titles", VECTOR_SIZE)
    idx.ensure_collection()
    return idx


@pytest.fixture
def embedder() -> DeterministicEmbedder:
    return DeterministicEmbedder(VECTOR_SIZE)


@pytest.fixture
def merge_engine(store, index, embedder) -> MergeEngine:
    return MergeEngine(store, index, embedder, neighbor_count=3)


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def runner(settings, store, extractor, merge_engine) -> PipelineRunner:
    return PipelineRunner(
        settings=settings,
        source=FakeSource({}),
        store=store,
        extractor=extractor,
        merge_engine=merge_engine,
    )
