"""Domain ports (interfaces) implemented by infrastructure adapters."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar, runtime_checkable

from bulk_transfer_engine.domain.checkpoint_models import CheckpointState
from bulk_transfer_engine.domain.entities import BatchJobRequest, JobStatusSnapshot, ListingPage

PayloadT = TypeVar("PayloadT")

ProgressCallback = Callable[[PayloadT], Awaitable[None] | None]


class CheckpointStore(Protocol):
    """Durable keyed storage for checkpoint records."""

    async def save(self, state: CheckpointState) -> None:
        """Persist the full record, replacing any previous version atomically."""

    async def load(self, checkpoint_id: str) -> CheckpointState:
        """Return the stored record or raise ``CheckpointNotFoundError``."""

    async def list_checkpoints(self) -> list[str]:
        """Return every stored checkpoint id."""

    async def delete(self, checkpoint_id: str) -> None:
        """Remove the record or raise ``CheckpointNotFoundError``."""


class TransferBackend(Protocol):
    """External service that lists directories and runs batch copy jobs."""

    async def list_directory(
        self,
        endpoint_id: str,
        path: str,
        *,
        show_hidden: bool = True,
        page_token: str | None = None,
    ) -> ListingPage:
        """Return one page of directory entries."""

    async def submit_batch_job(self, request: BatchJobRequest) -> str:
        """Submit a batch job and return its id."""

    async def get_job_status(self, job_id: str) -> JobStatusSnapshot:
        """Return current job status."""

    async def close(self) -> None:
        """Release client resources."""


@runtime_checkable
class ProgressPublisher(Protocol):
    """Publishes checkpoint progress to an external channel."""

    async def publish_progress(self, state: CheckpointState) -> None:
        """Publish a progress snapshot."""

    def close(self) -> None:
        """Release connections held by the publisher."""


__all__ = [
    "CheckpointStore",
    "ProgressCallback",
    "ProgressPublisher",
    "TransferBackend",
]
