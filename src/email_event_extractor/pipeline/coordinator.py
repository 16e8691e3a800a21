"""Per-run registry of in-flight message tasks.

A reply must not write to the store before its parent's task has finished,
whatever way that task finished. Every task registers a one-shot handle when
it is constructed and resolves it when it exits; a reply waits on its parent's
handle.

A reply waits on its parent whether the parent was constructed before or
after it; a Date header is not a reliable order. The coordinator records what
each waiting task is blocked on and refuses any wait that would close a cycle
of tasks waiting on each other, so a reply-chain loop inside one run degrades
to an unordered pair instead of a deadlock.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger()


@dataclass(eq=False)
class ThreadTaskHandle:
    """One-shot completion signal for one message task."""

    message_id: str
    sequence: int
    _done: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def resolved(self) -> bool:
        return self._done.is_set()

    async def wait(self) -> None:
        await self._done.wait()


class ThreadOrderingCoordinator:
    """Registry of :class:`ThreadTaskHandle` objects for one pipeline run.

    Create a fresh coordinator per run; nothing here is persisted.
    """

    def __init__(self) -> None:
        self._handles: dict[str, list[ThreadTaskHandle]] = {}
        self._blocked_on: dict[ThreadTaskHandle, list[ThreadTaskHandle]] = {}
        self._next_sequence = 0

    def register(self, message_id: str) -> ThreadTaskHandle:
        """Register a task for ``message_id``.

        Must be called synchronously while constructing the task, before the
        task can run, so that later-constructed tasks see the handle.
        """
        handle = ThreadTaskHandle(message_id=message_id, sequence=self._next_sequence)
        self._next_sequence += 1
        self._handles.setdefault(message_id, []).append(handle)
        return handle

    def resolve(self, handle: ThreadTaskHandle) -> None:
        """Signal that the task owning ``handle`` has reached a terminal state."""
        handle._done.set()

    def is_registered(self, message_id: str) -> bool:
        return message_id in self._handles

    async def wait_for(self, parent_message_id: str, *, waiter: ThreadTaskHandle | None = None) -> None:
        """Suspend until every task registered for ``parent_message_id`` has resolved.

        Returns immediately when the parent is not part of this run. With a
        ``waiter``, handles that are themselves (directly or transitively)
        waiting on the waiter are skipped.
        """
        pending = [
            h
            for h in self._handles.get(parent_message_id, ())
            if not h.resolved and h is not waiter
        ]
        if waiter is not None:
            skipped = [h for h in pending if self._reaches(h, waiter)]
            if skipped:
                logger.warning(
                    "parent_task_wait_skipped",
                    parent_message_id=parent_message_id,
                    waiter=waiter.message_id,
                    reason="wait_cycle",
                )
                pending = [h for h in pending if h not in skipped]
        if not pending:
            return

        logger.debug(
            "waiting_for_parent_task",
            parent_message_id=parent_message_id,
            waiter=waiter.message_id if waiter is not None else None,
        )
        if waiter is not None:
            self._blocked_on[waiter] = pending
        try:
            for handle in pending:
                await handle.wait()
        finally:
            if waiter is not None:
                self._blocked_on.pop(waiter, None)

    def _reaches(self, start: ThreadTaskHandle, target: ThreadTaskHandle) -> bool:
        """True if ``start`` is blocked, directly or through other tasks, on ``target``."""
        stack = [start]
        seen: set[int] = set()
        while stack:
            handle = stack.pop()
            if handle is target:
                return True
            if id(handle) in seen:
                continue
            seen.add(id(handle))
            stack.extend(h for h in self._blocked_on.get(handle, ()) if not h.resolved)
        return False
