"""Domain package public API."""

from bulk_transfer_engine.domain.checkpoint_models import (
    CheckpointState,
    FailedTransferItem,
    TaskInfo,
    TransferItem,
    TransferOptions,
    TransferOptionsUpdate,
    TransferStats,
)
from bulk_transfer_engine.domain.entities import (
    BatchJobRequest,
    FileEntry,
    JobStatusSnapshot,
    ListingPage,
    TransferBatch,
)
from bulk_transfer_engine.domain.errors import (
    BackendError,
    BatchTimeoutError,
    CheckpointCorruptedError,
    CheckpointNotFoundError,
    CheckpointStorageError,
    EnumerationError,
    TransferConflictError,
    TransferEngineError,
    TransferNotFoundError,
    TransferValidationError,
)
from bulk_transfer_engine.domain.ports import (
    CheckpointStore,
    ProgressCallback,
    ProgressPublisher,
    TransferBackend,
)
from bulk_transfer_engine.domain.transfer_types import (
    EntryType,
    JobStatus,
    SyncPolicy,
    TransferState,
)

__all__ = [
    "BackendError",
    "BatchJobRequest",
    "BatchTimeoutError",
    "CheckpointCorruptedError",
    "CheckpointNotFoundError",
    "CheckpointState",
    "CheckpointStorageError",
    "CheckpointStore",
    "EntryType",
    "EnumerationError",
    "FailedTransferItem",
    "FileEntry",
    "JobStatus",
    "JobStatusSnapshot",
    "ListingPage",
    "ProgressCallback",
    "ProgressPublisher",
    "SyncPolicy",
    "TaskInfo",
    "TransferBackend",
    "TransferBatch",
    "TransferConflictError",
    "TransferEngineError",
    "TransferItem",
    "TransferNotFoundError",
    "TransferOptions",
    "TransferOptionsUpdate",
    "TransferState",
    "TransferStats",
    "TransferValidationError",
]
