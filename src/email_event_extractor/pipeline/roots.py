"""Reply-chain root resolution.

Events extracted from any message in a thread are anchored to the thread's
first message. The root is found by following In-Reply-To links backwards
through the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import structlog

from email_event_extractor.pipeline.coordinator import ThreadOrderingCoordinator, ThreadTaskHandle
from email_event_extractor.store import EventStore

logger = structlog.get_logger()


class RootStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    CYCLE = "cycle"


@dataclass(frozen=True)
class RootResolution:
    status: RootStatus
    root_message_id: str | None = None
    depth: int = 0


class RootResolver:
    """Walks reply chains through the store."""

    def __init__(
        self,
        store: EventStore,
        coordinator: ThreadOrderingCoordinator,
        max_depth: int = 64,
    ) -> None:
        self.store = store
        self.coordinator = coordinator
        self.max_depth = max_depth

    async def resolve_root(
        self,
        message_id: str,
        in_reply_to_id: str | None,
        *,
        waiter: ThreadTaskHandle | None = None,
    ) -> RootResolution:
        """Find the root of the thread ``message_id`` belongs to.

        If the immediate parent is being processed in this run, this waits for
        it to finish first, so the parent is stored (or known to be absent)
        before the chain is walked.

        Args:
            message_id: The message being processed.
            in_reply_to_id: Its parent, if any.
            waiter: The calling task's coordinator handle.

        Returns:
            FOUND with the root id, NOT_FOUND if some ancestor is not stored
            (or the chain is deeper than ``max_depth``), or CYCLE.
        """
        if not in_reply_to_id:
            return RootResolution(RootStatus.FOUND, message_id, 0)
        if in_reply_to_id == message_id:
            return RootResolution(RootStatus.CYCLE)

        await self.coordinator.wait_for(in_reply_to_id, waiter=waiter)

        visited = {message_id}
        current_id = in_reply_to_id
        depth = 0
        while True:
            if current_id in visited:
                logger.warning("reply_chain_cycle", message_id=message_id, at=current_id)
                return RootResolution(RootStatus.CYCLE, depth=depth)
            visited.add(current_id)

            depth += 1
            if depth > self.max_depth:
                logger.warning("reply_chain_too_deep", message_id=message_id, max_depth=self.max_depth)
                return RootResolution(RootStatus.NOT_FOUND, depth=depth)

            parent = await self.store.get_message(current_id)
            if parent is None:
                return RootResolution(RootStatus.NOT_FOUND, depth=depth)
            if not parent.in_reply_to_id:
                return RootResolution(RootStatus.FOUND, parent.message_id, depth)
            current_id = parent.in_reply_to_id
