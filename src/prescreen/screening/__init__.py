"""Batch screening against the bureau gateway."""

from prescreen.screening.fill_missing import MissingBureauFiller, MissingBureaus
from prescreen.screening.orchestrator import BatchOrchestrator, RecordSubmitter
from prescreen.screening.retry_queue import RetryQueueManager

__all__ = [
    "BatchOrchestrator",
    "MissingBureauFiller",
    "MissingBureaus",
    "RecordSubmitter",
    "RetryQueueManager",
]
