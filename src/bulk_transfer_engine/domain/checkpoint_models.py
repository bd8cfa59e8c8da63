"""Serialized checkpoint record for resumable transfers."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from bulk_transfer_engine.domain.errors import TransferValidationError
from bulk_transfer_engine.domain.transfer_types import SyncPolicy, TransferState

_CHECKPOINT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def utc_now() -> datetime:
    """Return the current UTC timestamp."""

    return datetime.now(tz=UTC)


def validate_checkpoint_id(checkpoint_id: str) -> str:
    """Reject ids that cannot be used as storage keys."""

    if not _CHECKPOINT_ID_PATTERN.fullmatch(checkpoint_id):
        raise TransferValidationError(f"Invalid checkpoint id {checkpoint_id!r}.")
    return checkpoint_id


class CheckpointModel(BaseModel):
    """Base model for persisted checkpoint payloads."""

    model_config = ConfigDict(extra="forbid")


class TransferItem(CheckpointModel):
    """Immutable source/destination pair for one file."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    source_path: str
    destination_path: str
    size: int = Field(default=0, ge=0)
    checksum: str | None = None


class FailedTransferItem(CheckpointModel):
    """Transfer item whose last attempt failed."""

    item: TransferItem
    error_message: str
    retry_count: int = Field(default=0, ge=0)
    last_attempt: datetime = Field(default_factory=utc_now)


class TaskInfo(CheckpointModel):
    """Endpoints, roots and timestamps of a transfer."""

    source_endpoint_id: str
    destination_endpoint_id: str
    source_base_path: str
    destination_base_path: str
    label: str
    start_time: datetime = Field(default_factory=utc_now)
    last_updated: datetime = Field(default_factory=utc_now)


class TransferOptions(CheckpointModel):
    """Options fixed at creation time and stored with the checkpoint."""

    batch_size: int = Field(default=100, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_seconds: float = Field(default=30.0, ge=0)
    checkpoint_interval_seconds: float = Field(default=60.0, gt=0)
    sync_level: SyncPolicy = SyncPolicy.CHECKSUM
    verify_checksum: bool = True
    preserve_mtime: bool = True
    encrypt: bool = True
    delete_destination_extra: bool = False
    max_concurrent_tasks: int = Field(default=4, ge=1)
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    poll_timeout_seconds: float | None = Field(default=None, gt=0)
    show_hidden: bool = True
    max_depth: int = Field(default=-1, ge=-1)
    label: str | None = None


class TransferOptionsUpdate(CheckpointModel):
    """Subset of options that may be overridden when resuming."""

    max_retries: int | None = Field(default=None, ge=0)
    retry_delay_seconds: float | None = Field(default=None, ge=0)
    checkpoint_interval_seconds: float | None = Field(default=None, gt=0)
    max_concurrent_tasks: int | None = Field(default=None, ge=1)
    poll_interval_seconds: float | None = Field(default=None, gt=0)
    poll_timeout_seconds: float | None = Field(default=None, gt=0)

    def apply(self, options: TransferOptions) -> TransferOptions:
        """Return ``options`` with every explicitly set field replaced."""

        return options.model_copy(update=self.model_dump(exclude_none=True))


class TransferStats(CheckpointModel):
    """Aggregate counters kept consistent with the item buckets."""

    total_items: int = 0
    total_bytes: int = 0
    completed_items: int = 0
    completed_bytes: int = 0
    failed_items: int = 0
    failed_bytes: int = 0
    attempted_retry_items: int = 0
    remaining_items: int = 0
    remaining_bytes: int = 0

    @classmethod
    def from_buckets(
        cls,
        pending: Iterable[TransferItem],
        completed: Iterable[TransferItem],
        failed: Iterable[FailedTransferItem],
        retry_counts: Mapping[str, int] | None = None,
    ) -> TransferStats:
        """Compute counters from scratch."""

        pending_sizes = [item.size for item in pending]
        completed_sizes = [item.size for item in completed]
        failed_sizes = [failure.item.size for failure in failed]
        return cls(
            total_items=len(pending_sizes) + len(completed_sizes) + len(failed_sizes),
            total_bytes=sum(pending_sizes) + sum(completed_sizes) + sum(failed_sizes),
            completed_items=len(completed_sizes),
            completed_bytes=sum(completed_sizes),
            failed_items=len(failed_sizes),
            failed_bytes=sum(failed_sizes),
            attempted_retry_items=len(retry_counts or {}),
            remaining_items=len(pending_sizes),
            remaining_bytes=sum(pending_sizes),
        )


class CheckpointState(CheckpointModel):
    """Complete durable record of one resumable transfer."""

    checkpoint_id: str = Field(pattern=_CHECKPOINT_ID_PATTERN.pattern)
    state: TransferState = TransferState.PLANNING
    task_info: TaskInfo
    transfer_options: TransferOptions = Field(default_factory=TransferOptions)
    pending_items: list[TransferItem] = Field(default_factory=list)
    completed_items: list[TransferItem] = Field(default_factory=list)
    failed_items: list[FailedTransferItem] = Field(default_factory=list)
    current_tasks: list[str] = Field(default_factory=list)
    retry_counts: dict[str, int] = Field(default_factory=dict)
    stats: TransferStats = Field(default_factory=TransferStats)
    last_error: str | None = None

    @model_validator(mode="after")
    def validate_stats(self) -> CheckpointState:
        """Reject records whose counters disagree with their buckets."""

        expected = TransferStats.from_buckets(
            self.pending_items,
            self.completed_items,
            self.failed_items,
            self.retry_counts,
        )
        if self.stats != expected:
            raise ValueError(
                "Checkpoint stats do not match item buckets "
                f"(stored={self.stats.model_dump()}, expected={expected.model_dump()})."
            )
        return self

    @property
    def is_finished(self) -> bool:
        """Nothing is pending and no job is outstanding."""

        return not self.pending_items and not self.current_tasks

    def retryable_failures(self) -> list[FailedTransferItem]:
        """Failed items still within the retry budget."""

        budget = self.transfer_options.max_retries
        return [failure for failure in self.failed_items if failure.retry_count < budget]

    def touch(self) -> None:
        """Refresh the last-updated timestamp."""

        self.task_info.last_updated = utc_now()


__all__ = [
    "CheckpointModel",
    "CheckpointState",
    "FailedTransferItem",
    "TaskInfo",
    "TransferItem",
    "TransferOptions",
    "TransferOptionsUpdate",
    "TransferStats",
    "utc_now",
    "validate_checkpoint_id",
]
