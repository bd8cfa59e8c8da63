"""Test doubles shared by engine tests."""

from __future__ import annotations

import asyncio
import posixpath
from collections.abc import Callable, Mapping
from typing import Union

from bulk_transfer_engine.domain.checkpoint_models import (
    CheckpointState,
    FailedTransferItem,
    TaskInfo,
    TransferItem,
    TransferOptions,
    TransferStats,
)
from bulk_transfer_engine.domain.entities import (
    BatchJobRequest,
    FileEntry,
    JobStatusSnapshot,
    ListingPage,
)
from bulk_transfer_engine.domain.errors import BackendError, BackendErrorCode
from bulk_transfer_engine.domain.ports import TransferBackend
from bulk_transfer_engine.domain.transfer_types import EntryType, TransferState

TreeLayout = Mapping[str, Union[int, "TreeLayout"]]


def build_tree(root: str, layout: TreeLayout) -> dict[str, list[FileEntry]]:
    """Turn ``{"a.txt": 10, "sub": {"c.txt": 30}}`` into per-directory listings."""

    listings: dict[str, list[FileEntry]] = {root: []}
    for name, value in layout.items():
        path = posixpath.join(root, name)
        if isinstance(value, int):
            listings[root].append(
                FileEntry(path=name, name=name, entry_type=EntryType.FILE, size=value)
            )
        else:
            listings[root].append(FileEntry(path=name, name=name, entry_type=EntryType.DIR))
            listings.update(build_tree(path, value))
    return listings


class FakeTransferBackend(TransferBackend):
    """In-memory backend with scripted listings and job outcomes."""

    def __init__(
        self,
        listings: dict[str, list[FileEntry]] | None = None,
        *,
        page_size: int | None = None,
        outcome_for: Callable[[BatchJobRequest], list[str]] | None = None,
        list_delay_seconds: float = 0.0,
    ) -> None:
        self.listings = listings or {}
        self.page_size = page_size
        self.outcome_for = outcome_for or (lambda request: ["SUCCEEDED"])
        self.list_delay_seconds = list_delay_seconds
        self.list_failures: dict[str, Exception] = {}
        self.submit_errors: list[Exception] = []
        self.status_errors: list[Exception] = []
        self.list_calls: list[str] = []
        self.submitted: list[BatchJobRequest] = []
        self.status_calls = 0
        self.closed = False
        self._scripts: dict[str, list[str]] = {}

    @property
    def submitted_paths(self) -> list[str]:
        return [item.source_path for request in self.submitted for item in request.items]

    @property
    def total_calls(self) -> int:
        return len(self.list_calls) + len(self.submitted) + self.status_calls

    async def list_directory(
        self,
        endpoint_id: str,
        path: str,
        *,
        show_hidden: bool = True,
        page_token: str | None = None,
    ) -> ListingPage:
        self.list_calls.append(path)
        if self.list_delay_seconds:
            await asyncio.sleep(self.list_delay_seconds)
        else:
            await asyncio.sleep(0)
        if path in self.list_failures:
            raise self.list_failures[path]
        if path not in self.listings:
            raise BackendError(
                f"Path {path} not found",
                status_code=404,
                code=BackendErrorCode.RESOURCE_NOT_FOUND.value,
            )
        entries = self.listings[path]
        if self.page_size is None:
            return ListingPage(entries=list(entries))
        start = int(page_token or 0)
        end = start + self.page_size
        next_token = str(end) if end < len(entries) else None
        return ListingPage(entries=list(entries[start:end]), next_page_token=next_token)

    async def submit_batch_job(self, request: BatchJobRequest) -> str:
        await asyncio.sleep(0)
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        self.submitted.append(request)
        job_id = f"job-{len(self.submitted)}"
        self._scripts[job_id] = list(self.outcome_for(request))
        return job_id

    async def get_job_status(self, job_id: str) -> JobStatusSnapshot:
        self.status_calls += 1
        await asyncio.sleep(0)
        if self.status_errors:
            raise self.status_errors.pop(0)
        script = self._scripts[job_id]
        status = script.pop(0) if len(script) > 1 else script[0]
        return JobStatusSnapshot(job_id=job_id, status=status)

    async def close(self) -> None:
        self.closed = True


def make_item(name: str, size: int = 10) -> TransferItem:
    return TransferItem(source_path=f"/src/{name}", destination_path=f"/dst/{name}", size=size)


def make_state(
    checkpoint_id: str = "checkpoint-1",
    *,
    pending: list[TransferItem] | None = None,
    completed: list[TransferItem] | None = None,
    failed: list[FailedTransferItem] | None = None,
    retry_counts: dict[str, int] | None = None,
    current_tasks: list[str] | None = None,
    state: TransferState = TransferState.RUNNING,
    options: TransferOptions | None = None,
) -> CheckpointState:
    """Build a consistent checkpoint record."""

    pending = pending or []
    completed = completed or []
    failed = failed or []
    retry_counts = retry_counts or {}
    return CheckpointState(
        checkpoint_id=checkpoint_id,
        state=state,
        task_info=TaskInfo(
            source_endpoint_id="ep-src",
            destination_endpoint_id="ep-dst",
            source_base_path="/src",
            destination_base_path="/dst",
            label="nightly",
        ),
        transfer_options=options or TransferOptions(),
        pending_items=pending,
        completed_items=completed,
        failed_items=failed,
        current_tasks=current_tasks or [],
        retry_counts=retry_counts,
        stats=TransferStats.from_buckets(pending, completed, failed, retry_counts),
    )


__all__ = ["FakeTransferBackend", "build_tree", "make_item", "make_state"]
