"""Single-pass streaming transfers without durable checkpoints."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections import OrderedDict
from uuid import uuid4

from bulk_transfer_engine.application.services.batch_planner import BatchPlanner
from bulk_transfer_engine.application.services.progress_notifier import ProgressNotifier
from bulk_transfer_engine.application.services.retry_policy import (
    BackoffPolicy,
    call_with_backoff,
)
from bulk_transfer_engine.application.services.streaming_enumerator import (
    EnumeratorOptions,
    StreamingEnumerator,
)
from bulk_transfer_engine.domain.checkpoint_models import utc_now
from bulk_transfer_engine.domain.entities import (
    BatchJobRequest,
    JobStatusSnapshot,
    TransferBatch,
)
from bulk_transfer_engine.domain.errors import (
    BatchTimeoutError,
    TransferEngineError,
    TransferNotFoundError,
)
from bulk_transfer_engine.domain.monitoring_models import (
    MemoryOptimizedOptions,
    MemoryOptimizedResult,
    MemoryTransferStatus,
)
from bulk_transfer_engine.domain.ports import ProgressCallback, TransferBackend
from bulk_transfer_engine.domain.transfer_types import IN_PROGRESS_JOB_STATUSES, JobStatus

logger = logging.getLogger(__name__)


class MemoryOptimizedTransferService:
    """Stream entries straight into batch jobs, tracking progress only in memory.

    Memory use is bounded by the enumerator buffer plus one queued batch per
    worker. Nothing survives a crash; use ``TransferOrchestrator`` when the
    transfer must be resumable.
    """

    def __init__(
        self,
        backend: TransferBackend,
        *,
        backoff_policy: BackoffPolicy | None = None,
        enumeration_concurrency: int = 4,
        max_tracked_transfers: int = 1000,
        progress_callback: ProgressCallback[MemoryTransferStatus] | None = None,
    ) -> None:
        self._backend = backend
        self._backoff_policy = backoff_policy or BackoffPolicy()
        self._enumeration_concurrency = enumeration_concurrency
        self._max_tracked_transfers = max_tracked_transfers
        self._progress_callback = progress_callback
        self._statuses: OrderedDict[str, MemoryTransferStatus] = OrderedDict()
        self._background_tasks: set[asyncio.Task[MemoryOptimizedResult]] = set()

    async def shutdown(self) -> None:
        """Cancel background transfers."""

        for task in list(self._background_tasks):
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    def get_status(self, transfer_id: str) -> MemoryTransferStatus:
        """Return a copy of the in-memory status mirror."""

        status = self._statuses.get(transfer_id)
        if status is None:
            raise TransferNotFoundError(f"Streaming transfer {transfer_id} not found.")
        return _copy_status(status)

    async def start_transfer(
        self,
        source_endpoint_id: str,
        source_path: str,
        destination_endpoint_id: str,
        destination_path: str,
        options: MemoryOptimizedOptions | None = None,
    ) -> str:
        """Run ``transfer`` in the background and return its transfer id."""

        options = options or MemoryOptimizedOptions()
        transfer_id = uuid4().hex
        self._begin(transfer_id, options)
        task = asyncio.create_task(
            self.transfer(
                source_endpoint_id,
                source_path,
                destination_endpoint_id,
                destination_path,
                options,
                transfer_id=transfer_id,
            )
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)
        return transfer_id

    async def transfer(
        self,
        source_endpoint_id: str,
        source_path: str,
        destination_endpoint_id: str,
        destination_path: str,
        options: MemoryOptimizedOptions | None = None,
        *,
        progress_callback: ProgressCallback[MemoryTransferStatus] | None = None,
        transfer_id: str | None = None,
    ) -> MemoryOptimizedResult:
        """Enumerate, batch, submit and wait in one pass."""

        options = options or MemoryOptimizedOptions()
        status = self._begin(transfer_id or uuid4().hex, options)
        transfer_id = status.transfer_id
        label = status.label
        notifier: ProgressNotifier[MemoryTransferStatus] = ProgressNotifier(
            progress_callback or self._progress_callback
        )

        try:
            enumerator = StreamingEnumerator(
                self._backend,
                source_endpoint_id,
                source_path,
                EnumeratorOptions(
                    show_hidden=options.show_hidden,
                    max_depth=options.max_depth,
                    concurrency=self._enumeration_concurrency,
                ),
                backoff_policy=self._backoff_policy,
            )
            planner = BatchPlanner(enumerator.root_path, destination_path, options.batch_size)
        except TransferEngineError as exc:
            status.running = False
            status.finished_at = utc_now()
            status.errors.append(str(exc))
            raise
        batches: asyncio.Queue[TransferBatch | None] = asyncio.Queue(
            maxsize=options.max_concurrent_tasks
        )

        def request_for(batch: TransferBatch) -> BatchJobRequest:
            return BatchJobRequest(
                source_endpoint_id=source_endpoint_id,
                destination_endpoint_id=destination_endpoint_id,
                label=f"{label} (Batch)",
                items=batch.items,
                sync_level=int(options.sync_level),
                verify_checksum=options.verify_checksum,
                preserve_mtime=options.preserve_mtime,
                encrypt=options.encrypt,
            )

        async def worker() -> None:
            while True:
                batch = await batches.get()
                if batch is None:
                    return
                await self._run_batch(batch, request_for(batch), status, options, notifier)

        loop = asyncio.get_running_loop()
        started = loop.time()
        workers = [asyncio.create_task(worker()) for _ in range(options.max_concurrent_tasks)]
        try:
            async with enumerator:
                async for batch in planner.batches(enumerator):
                    await batches.put(batch)
            for _ in workers:
                await batches.put(None)
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        finally:
            status.running = False
            status.finished_at = utc_now()
            if enumerator.error is not None:
                status.errors.append(str(enumerator.error))
            notifier.notify(_copy_status(status))
            await notifier.aclose()

        enumerator.raise_for_error()
        result = MemoryOptimizedResult(
            transfer_id=transfer_id,
            job_ids=tuple(status.job_ids),
            files_submitted=status.files_submitted,
            bytes_submitted=status.bytes_submitted,
            files_transferred=status.files_transferred,
            bytes_transferred=status.bytes_transferred,
            failed_files=status.failed_files,
            elapsed_seconds=loop.time() - started,
            errors=tuple(status.errors),
        )
        logger.info(
            "Streaming transfer %s finished: %s jobs, %s/%s files transferred, %s failed.",
            transfer_id,
            len(result.job_ids),
            result.files_transferred,
            result.files_submitted,
            result.failed_files,
        )
        return result

    async def list_job_statuses(
        self, result: MemoryOptimizedResult
    ) -> dict[str, JobStatusSnapshot]:
        """Fetch current backend status for every job of ``result``."""

        async def fetch(job_id: str) -> JobStatusSnapshot:
            async def call() -> JobStatusSnapshot:
                return await self._backend.get_job_status(job_id)

            return await call_with_backoff(call, self._backoff_policy)

        snapshots = await asyncio.gather(*(fetch(job_id) for job_id in result.job_ids))
        return {snapshot.job_id: snapshot for snapshot in snapshots}

    async def _run_batch(
        self,
        batch: TransferBatch,
        request: BatchJobRequest,
        status: MemoryTransferStatus,
        options: MemoryOptimizedOptions,
        notifier: ProgressNotifier[MemoryTransferStatus],
    ) -> None:
        async def submit() -> str:
            return await self._backend.submit_batch_job(request)

        error = "no attempt made"
        submitted = False
        for attempt in range(options.max_retries + 1):
            try:
                job_id = await call_with_backoff(submit, self._backoff_policy)
            except TransferEngineError as exc:
                error = f"Batch {batch.sequence} submission failed: {exc}"
                break
            if not submitted:
                submitted = True
                status.files_submitted += len(batch)
                status.bytes_submitted += batch.total_bytes
            status.job_ids.append(job_id)
            if not options.wait_for_completion:
                notifier.notify(_copy_status(status))
                return

            try:
                outcome = await self._wait_for_job(job_id, options)
            except TransferEngineError as exc:
                error = str(exc)
            else:
                if outcome.job_status is JobStatus.SUCCEEDED:
                    status.files_transferred += len(batch)
                    status.bytes_transferred += batch.total_bytes
                    notifier.notify(_copy_status(status))
                    return
                error = f"Job {job_id} ended with status {outcome.status}."
            logger.warning(
                "Batch %s attempt %s of %s failed: %s",
                batch.sequence,
                attempt + 1,
                options.max_retries + 1,
                error,
            )

        status.failed_files += len(batch)
        status.errors.append(error)
        notifier.notify(_copy_status(status))

    async def _wait_for_job(
        self, job_id: str, options: MemoryOptimizedOptions
    ) -> JobStatusSnapshot:
        loop = asyncio.get_running_loop()
        started = loop.time()

        async def fetch() -> JobStatusSnapshot:
            return await self._backend.get_job_status(job_id)

        while True:
            snapshot = await call_with_backoff(fetch, self._backoff_policy)
            if snapshot.job_status not in IN_PROGRESS_JOB_STATUSES:
                return snapshot
            timeout = options.poll_timeout_seconds
            if timeout is not None and loop.time() - started >= timeout:
                raise BatchTimeoutError(f"Job {job_id} did not finish within {timeout:.1f}s.")
            await asyncio.sleep(options.poll_interval_seconds)

    def _begin(self, transfer_id: str, options: MemoryOptimizedOptions) -> MemoryTransferStatus:
        status = self._statuses.get(transfer_id)
        if status is None:
            label = options.label or f"Memory-Optimized Transfer {utc_now():%Y-%m-%d %H:%M:%S}"
            status = MemoryTransferStatus(
                transfer_id=transfer_id, label=label, started_at=utc_now()
            )
            self._track(status)
        return status

    def _track(self, status: MemoryTransferStatus) -> None:
        self._statuses[status.transfer_id] = status
        while len(self._statuses) > self._max_tracked_transfers:
            oldest_id, oldest = next(iter(self._statuses.items()))
            if oldest.running:
                break
            del self._statuses[oldest_id]

    def _on_background_done(self, task: asyncio.Task[MemoryOptimizedResult]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background streaming transfer failed.", exc_info=exc)


def _copy_status(status: MemoryTransferStatus) -> MemoryTransferStatus:
    return dataclasses.replace(status, job_ids=list(status.job_ids), errors=list(status.errors))


__all__ = ["MemoryOptimizedTransferService"]
