"""Unit tests for the event merge engine."""

import asyncio
from datetime import datetime

import pytest
import pytest_asyncio
from conftest import (
    VECTOR_SIZE,
    FakeExtractor,
    FakeSource,
    candidate,
    events_outcome,
    make_incoming,
    make_message,
    utc,
)

from email_event_extractor.pipeline import MergeDecision, MergeEngine, PipelineRunner, ProcessOutcome
from email_event_extractor.pipeline.merge import dates_compatible, is_all_day, locations_compatible
from email_event_extractor.vector import DeterministicEmbedder

EARLY = utc(2024, 2, 20, 9, 0)
LATE = utc(2024, 2, 22, 9, 0)


@pytest_asyncio.fixture
async def anchors(store):
    await store.upsert_message(make_message("<early@x>", received_at=EARLY))
    await store.upsert_message(make_message("<late@x>", received_at=LATE))


class TestCompatibility:
    def test_all_day_means_midnight(self) -> None:
        assert is_all_day(datetime(2024, 3, 1)) is True
        assert is_all_day(datetime(2024, 3, 1, 0, 30)) is False

    def test_equal_dates_are_compatible(self) -> None:
        assert dates_compatible(datetime(2024, 3, 1, 18), datetime(2024, 3, 1, 18)) is True

    def test_all_day_matches_any_time_on_same_weekday(self) -> None:
        assert dates_compatible(datetime(2024, 3, 1), datetime(2024, 3, 1, 18)) is True
        # A week later is the same weekday, so it still matches.
        assert dates_compatible(datetime(2024, 3, 8), datetime(2024, 3, 1, 18)) is True
        assert dates_compatible(datetime(2024, 3, 2), datetime(2024, 3, 1, 18)) is False

    def test_different_times_are_not_compatible(self) -> None:
        assert dates_compatible(datetime(2024, 3, 1, 17), datetime(2024, 3, 1, 18)) is False

    def test_unknown_location_is_a_wildcard(self) -> None:
        assert locations_compatible("Unknown", "Building 10") is True
        assert locations_compatible("Lobby", "unknown") is True

    def test_substring_locations_are_compatible(self) -> None:
        assert locations_compatible("Building 10", "building 10, room 250") is True
        assert locations_compatible("Gym", "Lounge") is False


@pytest.mark.asyncio
async def test_first_candidate_is_inserted_and_indexed(anchors, merge_engine, index) -> None:
    result = await merge_engine.merge_or_insert(candidate("Study break"), "<early@x>", EARLY)

    assert result.decision == MergeDecision.INSERT
    assert result.event.id is not None
    entry = await index.get("Study break")
    assert entry is not None
    assert entry.event_ids == frozenset({result.event.id})


@pytest.mark.asyncio
async def test_same_candidate_twice_keeps_existing(anchors, merge_engine, store) -> None:
    first = await merge_engine.merge_or_insert(candidate("Study break"), "<early@x>", EARLY)
    second = await merge_engine.merge_or_insert(candidate("Study break"), "<early@x>", EARLY)

    assert second.decision == MergeDecision.KEEP_EXISTING
    assert second.event.id == first.event.id
    assert store.stats().total_events == 1


@pytest.mark.asyncio
async def test_later_duplicate_keeps_earlier_event(anchors, merge_engine) -> None:
    stored = await merge_engine.merge_or_insert(
        candidate("Lecture", datetime(2024, 3, 1), "Unknown"), "<early@x>", EARLY
    )

    result = await merge_engine.merge_or_insert(
        candidate("Lecture Series", datetime(2024, 3, 1, 18, 0), "Building 10"), "<late@x>", LATE
    )

    assert result.decision == MergeDecision.KEEP_EXISTING
    assert result.event.id == stored.event.id
    assert result.event.title == "Lecture"


@pytest.mark.asyncio
async def test_earlier_duplicate_supersedes_stored_event(anchors, merge_engine, store, index) -> None:
    stored = await merge_engine.merge_or_insert(
        candidate("Lecture Series", datetime(2024, 3, 1, 18, 0), "Building 10"), "<late@x>", LATE
    )

    result = await merge_engine.merge_or_insert(
        candidate("Lecture", datetime(2024, 3, 1), "Unknown"), "<early@x>", EARLY
    )

    assert result.decision == MergeDecision.SUPERSEDE
    assert result.event.id == stored.event.id
    assert result.event.title == "Lecture"
    assert result.event.anchor_message_id == "<early@x>"
    assert store.stats().total_events == 1
    assert await index.get("Lecture Series") is None
    assert (await index.get("Lecture")).event_ids == frozenset({stored.event.id})


@pytest.mark.asyncio
async def test_supersede_keeps_other_ids_under_new_label(anchors, merge_engine, index) -> None:
    other = await merge_engine.merge_or_insert(
        candidate("Lecture", datetime(2024, 3, 5, 12, 0), "Hall A"), "<early@x>", EARLY
    )
    stored = await merge_engine.merge_or_insert(
        candidate("Lecture Series", datetime(2024, 3, 1, 18, 0), "Building 10"), "<late@x>", LATE
    )

    await merge_engine.merge_or_insert(candidate("Lecture", datetime(2024, 3, 1), "Unknown"), "<early@x>", EARLY)

    assert (await index.get("Lecture")).event_ids == frozenset({other.event.id, stored.event.id})


@pytest.mark.asyncio
async def test_incompatible_location_inserts_second_event(anchors, merge_engine, store) -> None:
    await merge_engine.merge_or_insert(candidate("Study break", location="Lounge"), "<early@x>", EARLY)
    result = await merge_engine.merge_or_insert(candidate("Study break", location="Gym"), "<late@x>", LATE)

    assert result.decision == MergeDecision.INSERT
    assert store.stats().total_events == 2


@pytest.mark.asyncio
async def test_index_entry_for_missing_event_is_skipped(anchors, merge_engine, index, embedder) -> None:
    await index.attach("Study break", await embedder.embed("Study break"), 999)

    result = await merge_engine.merge_or_insert(candidate("Study break"), "<early@x>", EARLY)

    assert result.decision == MergeDecision.INSERT
    assert (await index.get("Study break")).event_ids == frozenset({999, result.event.id})


@pytest.mark.asyncio
async def test_forget_detaches_events(anchors, merge_engine, index) -> None:
    result = await merge_engine.merge_or_insert(candidate("Study break"), "<early@x>", EARLY)

    await merge_engine.forget([result.event])

    assert await index.get("Study break") is None


class _SlowEmbedder(DeterministicEmbedder):
    """Suspends on every call, like an embedder waiting on the network."""

    async def embed(self, text: str) -> list[float]:
        await asyncio.sleep(0.01)
        return await super().embed(text)


@pytest.fixture
def slow_merge_engine(store, index) -> MergeEngine:
    return MergeEngine(store, index, _SlowEmbedder(VECTOR_SIZE), neighbor_count=3)


@pytest.mark.asyncio
async def test_concurrent_cross_posts_store_one_event(settings, store, index, slow_merge_engine) -> None:
    extractor = FakeExtractor(
        outcomes={
            "Study break (dorm A)": events_outcome(candidate("Study break")),
            "Study break (dorm B)": events_outcome(candidate("Study break")),
        }
    )
    runner = PipelineRunner(
        settings=settings,
        source=FakeSource({}),
        store=store,
        extractor=extractor,
        merge_engine=slow_merge_engine,
    )
    first = make_incoming("<a@x>", subject="Study break (dorm A)", received_at=utc(2024, 2, 20, 9, 0))
    second = make_incoming("<b@x>", subject="Study break (dorm B)", received_at=utc(2024, 2, 20, 10, 0))

    outcomes = await runner.process_messages([first, second])

    assert outcomes == [ProcessOutcome.PROCESSED_WITH_EVENTS] * 2
    events = store.list_events(limit=10)
    assert len(events) == 1
    assert events[0].anchor_message_id == "<a@x>"
    assert (await index.get("Study break")).event_ids == frozenset({events[0].id})


@pytest.mark.asyncio
async def test_concurrent_supersedes_keep_earliest_under_one_label(store, index, slow_merge_engine) -> None:
    await store.upsert_message(make_message("<early1@x>", received_at=utc(2024, 2, 20, 9, 0)))
    await store.upsert_message(make_message("<early2@x>", received_at=utc(2024, 2, 20, 10, 0)))
    await store.upsert_message(make_message("<late@x>", received_at=utc(2024, 2, 20, 12, 0)))
    stored = await slow_merge_engine.merge_or_insert(
        candidate("Lecture", datetime(2024, 3, 1, 18, 0), "Building 10"), "<late@x>", utc(2024, 2, 20, 12, 0)
    )

    await asyncio.gather(
        slow_merge_engine.merge_or_insert(
            candidate("Lecture A", datetime(2024, 3, 1), "Unknown"), "<early1@x>", utc(2024, 2, 20, 9, 0)
        ),
        slow_merge_engine.merge_or_insert(
            candidate("Lecture B", datetime(2024, 3, 1), "Unknown"), "<early2@x>", utc(2024, 2, 20, 10, 0)
        ),
    )

    event = await store.get_event(stored.event.id)
    assert store.stats().total_events == 1
    assert event.anchor_message_id == "<early1@x>"
    assert event.title == "Lecture A"
    assert (await index.get("Lecture A")).event_ids == frozenset({stored.event.id})
    assert await index.get("Lecture B") is None
    assert await index.get("Lecture") is None
