"""One pipeline run over the recent mailbox.

A run has three phases:

1. Collect: list candidate ids, drop the ones already ignored or processed by
   the current extractor, reuse stored copies of messages processed by an older
   extractor and fetch the rest.
2. Construct: sort messages by received time and create their tasks one by
   one, registering each with the coordinator before the next is created. No
   task runs during this phase.
3. Execute: await all tasks and tally their outcomes.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import structlog

from email_event_extractor.config import Settings
from email_event_extractor.exceptions import MailboxError
from email_event_extractor.mailbox.parsing import parse_raw_message
from email_event_extractor.models import IncomingMessage
from email_event_extractor.pipeline.coordinator import ThreadOrderingCoordinator, ThreadTaskHandle
from email_event_extractor.pipeline.merge import MergeEngine
from email_event_extractor.pipeline.outcomes import ProcessOutcome
from email_event_extractor.pipeline.processor import MessageProcessor
from email_event_extractor.pipeline.roots import RootResolver
from email_event_extractor.store import EventStore
from email_event_extractor.utils import as_utc

logger = structlog.get_logger()


@dataclass
class RunSummary:
    """Outcome counts of one run."""

    counts: Counter = field(default_factory=Counter)
    skipped_fetches: int = 0

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def count(self, outcome: ProcessOutcome) -> int:
        return self.counts.get(outcome, 0)


def _received_key(incoming: IncomingMessage) -> datetime:
    if incoming.received_at is None:
        return datetime.max.replace(tzinfo=timezone.utc)
    return as_utc(incoming.received_at)


class PipelineRunner:
    """Wires the collaborators together and runs the pipeline."""

    def __init__(
        self,
        *,
        settings: Settings,
        source,
        store: EventStore,
        extractor,
        merge_engine: MergeEngine,
    ) -> None:
        self.settings = settings
        self.source = source
        self.store = store
        self.extractor = extractor
        self.merge_engine = merge_engine

    async def run(self, lookback_days: int | None = None, now: datetime | None = None) -> RunSummary:
        """Process every unseen message received within the lookback window."""
        days = lookback_days if lookback_days is not None else self.settings.lookback_days
        since = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        scraper = self.settings.scraper_identity
        version = self.settings.extractor_version

        candidate_ids = await self.source.list_candidate_ids(since)
        ignored = await self.store.ignored_uids(scraper, since)
        processed = await self.store.processed_uids(scraper, version, since)
        seen = ignored | processed
        unseen = [uid for uid in candidate_ids if uid not in seen]
        logger.info(
            "pipeline_run_started",
            unseen=len(unseen),
            candidates=len(candidate_ids),
            lookback_days=days,
            extractor_version=version,
        )

        summary = RunSummary()
        if not unseen:
            return summary

        stored = await self.store.stale_messages(scraper, version, since)
        stored_uids = {m.uid for m in stored}
        messages = [m.to_incoming() for m in stored]

        for uid in unseen:
            if uid in stored_uids:
                continue
            try:
                raw = await self.source.fetch_raw(uid)
            except MailboxError as exc:
                logger.warning("message_fetch_failed", uid=uid, error=str(exc))
                summary.skipped_fetches += 1
                continue
            try:
                messages.append(parse_raw_message(uid, raw))
            except Exception as exc:  # noqa: BLE001
                logger.exception("message_parse_failed", uid=uid, error=str(exc))
                summary.skipped_fetches += 1

        outcomes = await self.process_messages(messages)
        summary.counts.update(outcomes)

        logger.info(
            "pipeline_run_summary",
            total=summary.total,
            skipped_fetches=summary.skipped_fetches,
            **{outcome.value: n for outcome, n in sorted(summary.counts.items())},
        )
        return summary

    async def process_messages(self, messages: list[IncomingMessage]) -> list[ProcessOutcome]:
        """Process ``messages`` concurrently, replies after their parents."""
        coordinator = ThreadOrderingCoordinator()
        processor = MessageProcessor(
            scraper_identity=self.settings.scraper_identity,
            extractor_version=self.settings.extractor_version,
            store=self.store,
            resolver=RootResolver(self.store, coordinator, self.settings.max_root_depth),
            extractor=self.extractor,
            merge_engine=self.merge_engine,
        )

        tasks: list[asyncio.Task] = []
        for incoming in sorted(messages, key=_received_key):
            handle = coordinator.register(incoming.message_id or f"uid:{incoming.uid}")
            tasks.append(asyncio.create_task(self._run_one(coordinator, processor, incoming, handle)))

        results = await asyncio.gather(*tasks, return_exceptions=True)
        outcomes = []
        for result in results:
            if isinstance(result, BaseException):
                logger.error("message_task_crashed", error=str(result))
                outcomes.append(ProcessOutcome.INTERNAL_ERROR)
            else:
                outcomes.append(result)
        return outcomes

    async def _run_one(
        self,
        coordinator: ThreadOrderingCoordinator,
        processor: MessageProcessor,
        incoming: IncomingMessage,
        handle: ThreadTaskHandle,
    ) -> ProcessOutcome:
        try:
            return await processor.process(incoming, handle)
        finally:
            coordinator.resolve(handle)
