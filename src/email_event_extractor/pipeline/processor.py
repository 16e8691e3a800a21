"""Per-message pipeline.

validate → classify → resolve thread root → mark processing → invalidate
stale events → extract → merge → mark processed.

Every exit path returns a :class:`ProcessOutcome`; nothing raises out of
:meth:`MessageProcessor.process`.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from email_event_extractor.classifier import is_relevant
from email_event_extractor.extraction.models import (
    ExtractedEvents,
    ExtractionFailed,
    ExtractionRejected,
    FailureKind,
)
from email_event_extractor.models import IgnoredMessage, IncomingMessage, Message, MessageStatus, Sender
from email_event_extractor.pipeline.coordinator import ThreadTaskHandle
from email_event_extractor.pipeline.merge import MergeEngine
from email_event_extractor.pipeline.outcomes import ProcessOutcome
from email_event_extractor.pipeline.roots import RootResolver, RootStatus
from email_event_extractor.store import EventStore
from email_event_extractor.text import html_to_text, remove_artifacts
from email_event_extractor.utils import as_utc

logger = structlog.get_logger()


class MessageProcessor:
    """Runs one message through the pipeline."""

    def __init__(
        self,
        *,
        scraper_identity: str,
        extractor_version: str,
        store: EventStore,
        resolver: RootResolver,
        extractor,
        merge_engine: MergeEngine,
    ) -> None:
        self.scraper_identity = scraper_identity
        self.extractor_version = extractor_version
        self.store = store
        self.resolver = resolver
        self.extractor = extractor
        self.merge_engine = merge_engine

    async def process(self, incoming: IncomingMessage, handle: ThreadTaskHandle | None = None) -> ProcessOutcome:
        """Process ``incoming`` and return its outcome."""
        try:
            outcome = await self._process(incoming, handle)
        except Exception as exc:  # noqa: BLE001 - one message must never abort the run
            logger.exception(
                "message_processing_failed",
                uid=incoming.uid,
                message_id=incoming.message_id,
                error=str(exc),
            )
            return ProcessOutcome.INTERNAL_ERROR
        logger.debug("message_processed", uid=incoming.uid, message_id=incoming.message_id, outcome=outcome.value)
        return outcome

    async def _process(self, incoming: IncomingMessage, handle: ThreadTaskHandle | None) -> ProcessOutcome:
        received_at = as_utc(incoming.received_at or datetime.now(timezone.utc))

        async def ignore_forever() -> None:
            await self.store.ignore(
                IgnoredMessage(scraped_by=self.scraper_identity, uid=incoming.uid, received_at=received_at)
            )

        message_id = incoming.message_id
        if (
            not message_id
            or not incoming.sender_email
            or not incoming.html
            or incoming.subject is None
        ):
            await ignore_forever()
            return ProcessOutcome.MALFORMED

        prior = await self.store.get_message(message_id)
        if prior is not None and prior.uid != incoming.uid:
            logger.warning("duplicate_message_id", message_id=message_id, uid=incoming.uid, stored_uid=prior.uid)
            await ignore_forever()
            return ProcessOutcome.MALFORMED
        if prior is not None and prior.is_processed_with(self.extractor_version):
            return ProcessOutcome.ALREADY_PROCESSED_SAME_VERSION

        text = remove_artifacts(incoming.text or html_to_text(incoming.html))
        if not is_relevant(text):
            await ignore_forever()
            return ProcessOutcome.IGNORED_NOT_RELEVANT

        resolution = await self.resolver.resolve_root(message_id, incoming.in_reply_to_id, waiter=handle)
        if resolution.status == RootStatus.CYCLE:
            await ignore_forever()
            return ProcessOutcome.MALFORMED
        if resolution.status == RootStatus.NOT_FOUND:
            return ProcessOutcome.ROOT_NOT_FOUND
        root_id = resolution.root_message_id
        assert root_id is not None

        logger.info("processing_message", subject=incoming.subject, uid=incoming.uid, root=root_id)

        await self.store.upsert_message(
            Message(
                message_id=message_id,
                scraped_by=self.scraper_identity,
                uid=incoming.uid,
                sender=Sender(email=incoming.sender_email, name=incoming.sender_name or incoming.sender_email),
                subject=incoming.subject,
                body=incoming.html,
                received_at=received_at,
                in_reply_to_id=incoming.in_reply_to_id,
                status=MessageStatus.PROCESSING,
                extractor_version=self.extractor_version,
            )
        )

        anchored = await self.store.events_for_anchor(root_id)
        if anchored:
            root = await self.store.get_message(root_id)
            if root is not None and root.is_processed_with(self.extractor_version):
                await self.store.mark_processed(message_id, self.extractor_version)
                return ProcessOutcome.ALREADY_PROCESSED_SAME_VERSION
            # Built by an older extractor: rebuild from scratch.
            await self.merge_engine.forget(anchored)
            deleted = await self.store.delete_events_for_anchor(root_id)
            logger.info("stale_events_deleted", root=root_id, count=deleted)

        outcome = await self.extractor.extract(incoming.subject, text, received_at)

        if isinstance(outcome, ExtractionFailed):
            if outcome.kind == FailureKind.NETWORK:
                return ProcessOutcome.EXTRACTION_TRANSIENT_ERROR
            return ProcessOutcome.EXTRACTION_MALFORMED_RESPONSE
        if isinstance(outcome, ExtractionRejected):
            await self.store.mark_processed(message_id, self.extractor_version)
            return ProcessOutcome.rejected(outcome.level)
        assert isinstance(outcome, ExtractedEvents)

        if outcome.events:
            logger.info("events_found", subject=incoming.subject, count=len(outcome.events))
        for candidate in outcome.events:
            await self.merge_engine.merge_or_insert(candidate, root_id, received_at, text)

        await self.store.mark_processed(message_id, self.extractor_version)
        return ProcessOutcome.PROCESSED_WITH_EVENTS
