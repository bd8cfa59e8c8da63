"""Application services public API."""

from bulk_transfer_engine.application.services.batch_planner import BatchPlanner
from bulk_transfer_engine.application.services.checkpoint_ledger import CheckpointLedger
from bulk_transfer_engine.application.services.memory_optimized_transfer import (
    MemoryOptimizedTransferService,
)
from bulk_transfer_engine.application.services.progress_notifier import ProgressNotifier
from bulk_transfer_engine.application.services.retry_policy import (
    BackoffPolicy,
    call_with_backoff,
    is_retryable_error,
)
from bulk_transfer_engine.application.services.streaming_enumerator import (
    EnumeratorOptions,
    StreamingEnumerator,
    collect_entries,
)
from bulk_transfer_engine.application.services.transfer_orchestrator import TransferOrchestrator

__all__ = [
    "BackoffPolicy",
    "BatchPlanner",
    "CheckpointLedger",
    "EnumeratorOptions",
    "MemoryOptimizedTransferService",
    "ProgressNotifier",
    "StreamingEnumerator",
    "TransferOrchestrator",
    "call_with_backoff",
    "collect_entries",
    "is_retryable_error",
]
