from __future__ import annotations

import asyncio

import pytest
from fakes import FakeTransferBackend, build_tree

from bulk_transfer_engine.application.services import (
    BackoffPolicy,
    MemoryOptimizedTransferService,
)
from bulk_transfer_engine.domain.entities import BatchJobRequest
from bulk_transfer_engine.domain.errors import (
    BackendError,
    EnumerationError,
    TransferNotFoundError,
)
from bulk_transfer_engine.domain.monitoring_models import (
    MemoryOptimizedOptions,
    MemoryTransferStatus,
)

TREE = {"a.txt": 10, "b.txt": 20, "sub": {"c.txt": 30}}
FAST_BACKOFF = BackoffPolicy(max_tries=2, base_delay_seconds=0, max_delay_seconds=0, jitter=False)


def _service(backend: FakeTransferBackend, **kwargs: object) -> MemoryOptimizedTransferService:
    return MemoryOptimizedTransferService(
        backend, backoff_policy=FAST_BACKOFF, **kwargs  # type: ignore[arg-type]
    )


def test_streaming_transfer_submits_every_batch() -> None:
    backend = FakeTransferBackend(
        build_tree("/src", TREE), outcome_for=lambda request: ["ACTIVE", "SUCCEEDED"]
    )
    service = _service(backend)
    options = MemoryOptimizedOptions(batch_size=2, poll_interval_seconds=0.01, label="stream")

    result = asyncio.run(service.transfer("ep-src", "/src", "ep-dst", "/dst", options))

    assert result.files_submitted == 3
    assert result.bytes_submitted == 60
    assert result.files_transferred == 3
    assert result.bytes_transferred == 60
    assert result.failed_files == 0
    assert sorted(result.job_ids) == ["job-1", "job-2"]
    assert sorted(backend.submitted_paths) == ["/src/a.txt", "/src/b.txt", "/src/sub/c.txt"]
    assert all(request.label == "stream (Batch)" for request in backend.submitted)
    status = service.get_status(result.transfer_id)
    assert status.running is False
    assert status.finished_at is not None


def test_streaming_transfer_retries_failed_jobs_then_gives_up() -> None:
    def outcome(request: BatchJobRequest) -> list[str]:
        if request.items[0].source_path.endswith("a.txt"):
            return ["FAILED"]
        return ["SUCCEEDED"]

    backend = FakeTransferBackend(build_tree("/src", {"a.txt": 1, "b.txt": 2}), outcome_for=outcome)
    service = _service(backend)
    options = MemoryOptimizedOptions(batch_size=1, max_retries=2, poll_interval_seconds=0.01)

    result = asyncio.run(service.transfer("ep-src", "/src", "ep-dst", "/dst", options))

    assert backend.submitted_paths.count("/src/a.txt") == 3
    assert result.failed_files == 1
    assert result.files_transferred == 1
    assert len(result.errors) == 1
    assert "FAILED" in result.errors[0]


def test_streaming_transfer_without_waiting_only_submits() -> None:
    backend = FakeTransferBackend(build_tree("/src", TREE))
    service = _service(backend)
    options = MemoryOptimizedOptions(batch_size=10, wait_for_completion=False)

    result = asyncio.run(service.transfer("ep-src", "/src", "ep-dst", "/dst", options))

    assert result.job_ids == ("job-1",)
    assert result.files_submitted == 3
    assert result.files_transferred == 0
    assert backend.status_calls == 0
    statuses = asyncio.run(service.list_job_statuses(result))
    assert statuses["job-1"].status == "SUCCEEDED"


def test_streaming_transfer_counts_rejected_batch_as_failed_not_submitted() -> None:
    backend = FakeTransferBackend(build_tree("/src", TREE))
    backend.submit_errors.append(BackendError("bad request", status_code=400))
    service = _service(backend)
    options = MemoryOptimizedOptions(batch_size=10, poll_interval_seconds=0.01)

    result = asyncio.run(service.transfer("ep-src", "/src", "ep-dst", "/dst", options))

    assert result.job_ids == ()
    assert result.files_submitted == 0
    assert result.bytes_submitted == 0
    assert result.failed_files == 3
    assert "submission failed" in result.errors[0]


def test_streaming_transfer_raises_enumeration_failure() -> None:
    backend = FakeTransferBackend(build_tree("/src", TREE))
    backend.list_failures["/src/sub"] = BackendError("denied", status_code=403)
    service = _service(backend)

    async def scenario() -> MemoryTransferStatus:
        with pytest.raises(EnumerationError):
            await service.transfer("ep-src", "/src", "ep-dst", "/dst", transfer_id="t-1")
        return service.get_status("t-1")

    status = asyncio.run(scenario())

    assert status.running is False
    assert any("/src/sub" in error for error in status.errors)


def test_streaming_progress_callback_and_background_start() -> None:
    backend = FakeTransferBackend(build_tree("/src", TREE))
    updates: list[MemoryTransferStatus] = []

    async def callback(status: MemoryTransferStatus) -> None:
        updates.append(status)

    service = _service(backend, progress_callback=callback)

    async def scenario() -> MemoryTransferStatus:
        transfer_id = await service.start_transfer(
            "ep-src",
            "/src",
            "ep-dst",
            "/dst",
            MemoryOptimizedOptions(batch_size=1, poll_interval_seconds=0.01),
        )
        while service.get_status(transfer_id).running:
            await asyncio.sleep(0.01)
        await service.shutdown()
        return service.get_status(transfer_id)

    status = asyncio.run(scenario())

    assert status.files_transferred == 3
    assert len(status.job_ids) == 3
    assert updates[-1].running is False
    assert updates[-1].files_transferred == 3


def test_status_tracking_is_bounded_and_unknown_ids_raise() -> None:
    backend = FakeTransferBackend({"/src": []})
    service = _service(backend, max_tracked_transfers=2)

    async def scenario() -> list[str]:
        ids = []
        for _ in range(3):
            result = await service.transfer("ep-src", "/src", "ep-dst", "/dst")
            ids.append(result.transfer_id)
        return ids

    first, second, third = asyncio.run(scenario())

    with pytest.raises(TransferNotFoundError):
        service.get_status(first)
    assert service.get_status(second).running is False
    assert service.get_status(third).files_submitted == 0
