"""Ordering-aware, deduplicating extraction pipeline.

One asyncio task per message. Replies wait for their parent's task, events are
anchored to the root of their reply thread, and near-duplicate events are
merged through a nearest-neighbour search over event titles.
"""

from .coordinator import ThreadOrderingCoordinator, ThreadTaskHandle
from .merge import MergeDecision, MergeEngine, MergeResult
from .outcomes import OutcomeCategory, ProcessOutcome
from .processor import MessageProcessor
from .roots import RootResolution, RootResolver, RootStatus
from .runner import PipelineRunner, RunSummary

__all__ = [
    "MergeDecision",
    "MergeEngine",
    "MergeResult",
    "MessageProcessor",
    "OutcomeCategory",
    "PipelineRunner",
    "ProcessOutcome",
    "RootResolution",
    "RootResolver",
    "RootStatus",
    "RunSummary",
    "ThreadOrderingCoordinator",
    "ThreadTaskHandle",
]
