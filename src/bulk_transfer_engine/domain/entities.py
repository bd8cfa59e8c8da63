"""Domain entities produced by enumeration, planning and job tracking."""

from __future__ import annotations

from dataclasses import dataclass, field

from bulk_transfer_engine.domain.checkpoint_models import TransferItem
from bulk_transfer_engine.domain.transfer_types import EntryType, JobStatus


@dataclass(slots=True, frozen=True)
class FileEntry:
    """One entry discovered while walking the source tree."""

    path: str
    name: str
    entry_type: EntryType
    size: int = 0
    last_modified: str | None = None
    checksum: str | None = None
    depth: int = 1

    @property
    def is_dir(self) -> bool:
        """Return whether the entry is a directory."""

        return self.entry_type is EntryType.DIR


@dataclass(slots=True, frozen=True)
class ListingPage:
    """One page returned by the backend listing primitive."""

    entries: list[FileEntry] = field(default_factory=list)
    next_page_token: str | None = None


@dataclass(slots=True, frozen=True)
class TransferBatch:
    """Group of transfer items submitted as one backend job."""

    sequence: int
    items: tuple[TransferItem, ...]

    @property
    def total_bytes(self) -> int:
        """Sum of item sizes."""

        return sum(item.size for item in self.items)

    def __len__(self) -> int:
        return len(self.items)


@dataclass(slots=True, frozen=True)
class BatchJobRequest:
    """Parameters of one batch job submission."""

    source_endpoint_id: str
    destination_endpoint_id: str
    label: str
    items: tuple[TransferItem, ...]
    sync_level: int = 3
    verify_checksum: bool = True
    preserve_mtime: bool = True
    encrypt: bool = True
    delete_destination_extra: bool = False


@dataclass(slots=True, frozen=True)
class JobStatusSnapshot:
    """Status of a submitted job as reported by the backend."""

    job_id: str
    status: str
    files_transferred: int = 0
    bytes_transferred: int = 0
    files_failed: int = 0
    nice_status: str | None = None

    @property
    def job_status(self) -> JobStatus | None:
        """Parsed status, ``None`` when the backend reported something unexpected."""

        return JobStatus.parse(self.status)


__all__ = [
    "BatchJobRequest",
    "FileEntry",
    "JobStatusSnapshot",
    "ListingPage",
    "TransferBatch",
]
