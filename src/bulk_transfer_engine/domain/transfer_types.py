"""Transfer enums shared across the engine."""

from enum import IntEnum, StrEnum


class SyncPolicy(IntEnum):
    """How the backend decides whether a destination file must be rewritten."""

    EXISTS = 0
    SIZE = 1
    MTIME = 2
    CHECKSUM = 3


class EntryType(StrEnum):
    """Kind of a listed filesystem entry."""

    FILE = "file"
    DIR = "dir"


class JobStatus(StrEnum):
    """Status values reported for a submitted batch job."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value: str) -> "JobStatus | None":
        """Return the matching status or ``None`` for unexpected values."""

        try:
            return cls(value.upper())
        except ValueError:
            return None


class TransferState(StrEnum):
    """Lifecycle of a resumable transfer."""

    PLANNING = "PLANNING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


IN_PROGRESS_JOB_STATUSES = frozenset({JobStatus.ACTIVE, JobStatus.INACTIVE})

__all__ = [
    "EntryType",
    "IN_PROGRESS_JOB_STATUSES",
    "JobStatus",
    "SyncPolicy",
    "TransferState",
]
