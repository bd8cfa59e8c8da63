"""Result objects and management API payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bulk_transfer_engine.domain.checkpoint_models import (
    CheckpointState,
    TransferOptions,
    TransferOptionsUpdate,
)
from bulk_transfer_engine.domain.transfer_types import SyncPolicy, TransferState


@dataclass(slots=True, frozen=True)
class TransferResult:
    """Summary returned by a resume run."""

    checkpoint_id: str
    state: TransferState
    total_items: int
    completed_items: int
    failed_items: int
    remaining_items: int
    completed_bytes: int = 0
    total_bytes: int = 0
    error: str | None = None

    @property
    def completed(self) -> bool:
        """Every item was transferred."""

        return self.state is TransferState.COMPLETED

    @classmethod
    def from_state(cls, state: CheckpointState) -> TransferResult:
        """Build a result from a checkpoint snapshot."""

        stats = state.stats
        return cls(
            checkpoint_id=state.checkpoint_id,
            state=state.state,
            total_items=stats.total_items,
            completed_items=stats.completed_items,
            failed_items=stats.failed_items,
            remaining_items=stats.remaining_items,
            completed_bytes=stats.completed_bytes,
            total_bytes=stats.total_bytes,
            error=state.last_error,
        )


@dataclass(slots=True, frozen=True)
class MemoryOptimizedOptions:
    """Options for a single-pass streaming transfer."""

    batch_size: int = 100
    max_concurrent_tasks: int = 4
    label: str | None = None
    sync_level: SyncPolicy = SyncPolicy.CHECKSUM
    verify_checksum: bool = True
    preserve_mtime: bool = True
    encrypt: bool = True
    max_retries: int = 3
    show_hidden: bool = True
    max_depth: int = -1
    wait_for_completion: bool = True
    poll_interval_seconds: float = 5.0
    poll_timeout_seconds: float | None = None


@dataclass(slots=True)
class MemoryTransferStatus:
    """In-memory mirror of a streaming transfer's progress."""

    transfer_id: str
    label: str
    running: bool = True
    job_ids: list[str] = field(default_factory=list)
    files_submitted: int = 0
    bytes_submitted: int = 0
    files_transferred: int = 0
    bytes_transferred: int = 0
    failed_files: int = 0
    errors: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class MemoryOptimizedResult:
    """Outcome of a streaming transfer."""

    transfer_id: str
    job_ids: tuple[str, ...]
    files_submitted: int
    bytes_submitted: int
    files_transferred: int
    bytes_transferred: int
    failed_files: int
    elapsed_seconds: float
    errors: tuple[str, ...] = ()


class ApiModel(BaseModel):
    """Base model for management API payloads."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, alias_generator=to_camel)


class ApiTransferOptions(ApiModel):
    """Transfer options accepted on creation; unset fields keep defaults."""

    batch_size: int | None = Field(default=None, ge=1)
    max_retries: int | None = Field(default=None, ge=0)
    retry_delay_seconds: float | None = Field(default=None, ge=0)
    checkpoint_interval_seconds: float | None = Field(default=None, gt=0)
    sync_level: SyncPolicy | None = None
    verify_checksum: bool | None = None
    preserve_mtime: bool | None = None
    encrypt: bool | None = None
    delete_destination_extra: bool | None = None
    max_concurrent_tasks: int | None = Field(default=None, ge=1)
    poll_interval_seconds: float | None = Field(default=None, gt=0)
    poll_timeout_seconds: float | None = Field(default=None, gt=0)
    show_hidden: bool | None = None
    max_depth: int | None = Field(default=None, ge=-1)

    def apply(self, defaults: TransferOptions) -> TransferOptions:
        """Overlay explicitly set fields on ``defaults``."""

        return defaults.model_copy(update=self.model_dump(exclude_none=True))


class CreateTransferRequest(ApiModel):
    """Request body for creating a resumable transfer."""

    source_endpoint_id: str = Field(min_length=1)
    source_path: str = Field(min_length=1)
    destination_endpoint_id: str = Field(min_length=1)
    destination_path: str = Field(min_length=1)
    label: str | None = None
    options: ApiTransferOptions = Field(default_factory=ApiTransferOptions)


class ResumeTransferRequest(ApiModel):
    """Optional overrides applied when resuming."""

    max_retries: int | None = Field(default=None, ge=0)
    retry_delay_seconds: float | None = Field(default=None, ge=0)
    checkpoint_interval_seconds: float | None = Field(default=None, gt=0)
    max_concurrent_tasks: int | None = Field(default=None, ge=1)
    poll_interval_seconds: float | None = Field(default=None, gt=0)
    poll_timeout_seconds: float | None = Field(default=None, gt=0)
    timeout_seconds: float | None = Field(default=None, gt=0)

    def to_update(self) -> TransferOptionsUpdate:
        """Return checkpoint option overrides."""

        return TransferOptionsUpdate(
            **self.model_dump(exclude_none=True, exclude={"timeout_seconds"})
        )


class TransferStatsResponse(ApiModel):
    """Counters exposed by status endpoints."""

    total_items: int
    total_bytes: int
    completed_items: int
    completed_bytes: int
    failed_items: int
    failed_bytes: int
    attempted_retry_items: int
    remaining_items: int
    remaining_bytes: int


class TransferSummaryResponse(ApiModel):
    """Status of one resumable transfer."""

    checkpoint_id: str
    state: TransferState
    running: bool
    label: str
    source_endpoint_id: str
    source_path: str
    destination_endpoint_id: str
    destination_path: str
    start_time: datetime
    last_updated: datetime
    current_tasks: list[str]
    last_error: str | None = None
    stats: TransferStatsResponse

    @classmethod
    def from_state(cls, state: CheckpointState, *, running: bool) -> TransferSummaryResponse:
        """Build a summary from a checkpoint snapshot."""

        info = state.task_info
        return cls(
            checkpoint_id=state.checkpoint_id,
            state=state.state,
            running=running,
            label=info.label,
            source_endpoint_id=info.source_endpoint_id,
            source_path=info.source_base_path,
            destination_endpoint_id=info.destination_endpoint_id,
            destination_path=info.destination_base_path,
            start_time=info.start_time,
            last_updated=info.last_updated,
            current_tasks=list(state.current_tasks),
            last_error=state.last_error,
            stats=TransferStatsResponse(**state.stats.model_dump()),
        )


class TransferListResponse(ApiModel):
    """Collection wrapper for stored checkpoint ids."""

    checkpoint_ids: list[str]


class TransferAcceptedResponse(ApiModel):
    """Acknowledgement for asynchronous operations."""

    checkpoint_id: str
    status_path: str


class StreamingTransferRequest(ApiModel):
    """Request body for a memory-optimized streaming transfer."""

    source_endpoint_id: str = Field(min_length=1)
    source_path: str = Field(min_length=1)
    destination_endpoint_id: str = Field(min_length=1)
    destination_path: str = Field(min_length=1)
    label: str | None = None
    batch_size: int = Field(default=100, ge=1)
    max_concurrent_tasks: int = Field(default=4, ge=1)
    sync_level: SyncPolicy = SyncPolicy.CHECKSUM
    verify_checksum: bool = True
    preserve_mtime: bool = True
    encrypt: bool = True
    max_retries: int = Field(default=3, ge=0)
    show_hidden: bool = True

    def to_options(self, *, poll_interval_seconds: float) -> MemoryOptimizedOptions:
        """Return service options."""

        return MemoryOptimizedOptions(
            batch_size=self.batch_size,
            max_concurrent_tasks=self.max_concurrent_tasks,
            label=self.label,
            sync_level=self.sync_level,
            verify_checksum=self.verify_checksum,
            preserve_mtime=self.preserve_mtime,
            encrypt=self.encrypt,
            max_retries=self.max_retries,
            show_hidden=self.show_hidden,
            poll_interval_seconds=poll_interval_seconds,
        )


class StreamingTransferAcceptedResponse(ApiModel):
    """Acknowledgement for a started streaming transfer."""

    transfer_id: str
    status_path: str


class StreamingTransferStatusResponse(ApiModel):
    """Status of a memory-optimized streaming transfer."""

    transfer_id: str
    label: str
    running: bool
    job_ids: list[str]
    files_submitted: int
    bytes_submitted: int
    files_transferred: int
    bytes_transferred: int
    failed_files: int
    errors: list[str]
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def from_status(cls, status: MemoryTransferStatus) -> StreamingTransferStatusResponse:
        """Build a response from the in-memory status mirror."""

        return cls(
            transfer_id=status.transfer_id,
            label=status.label,
            running=status.running,
            job_ids=list(status.job_ids),
            files_submitted=status.files_submitted,
            bytes_submitted=status.bytes_submitted,
            files_transferred=status.files_transferred,
            bytes_transferred=status.bytes_transferred,
            failed_files=status.failed_files,
            errors=list(status.errors),
            started_at=status.started_at,
            finished_at=status.finished_at,
        )


__all__ = [
    "ApiModel",
    "ApiTransferOptions",
    "CreateTransferRequest",
    "MemoryOptimizedOptions",
    "MemoryOptimizedResult",
    "MemoryTransferStatus",
    "ResumeTransferRequest",
    "StreamingTransferAcceptedResponse",
    "StreamingTransferRequest",
    "StreamingTransferStatusResponse",
    "TransferAcceptedResponse",
    "TransferListResponse",
    "TransferResult",
    "TransferStatsResponse",
    "TransferSummaryResponse",
]
