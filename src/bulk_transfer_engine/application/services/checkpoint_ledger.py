"""Single owner of a live checkpoint's buckets and counters."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from bulk_transfer_engine.domain.checkpoint_models import (
    CheckpointState,
    FailedTransferItem,
    TransferItem,
    TaskInfo,
    TransferOptions,
    TransferStats,
    utc_now,
)
from bulk_transfer_engine.domain.transfer_types import TransferState


class CheckpointLedger:
    """Mutate checkpoint buckets in small atomic transactions.

    Items stay in the pending bucket while their job runs and leave it only
    when the job outcome is known, so a saved snapshot always lists every
    unconfirmed item as pending. Counters are updated incrementally and
    always equal the bucket sizes.
    """

    def __init__(self, state: CheckpointState) -> None:
        self._lock = asyncio.Lock()
        self._checkpoint_id = state.checkpoint_id
        self._task_info = state.task_info.model_copy()
        self._options = state.transfer_options
        self._state = state.state
        self._last_error = state.last_error
        self._pending: dict[TransferItem, None] = dict.fromkeys(state.pending_items)
        self._completed: list[TransferItem] = list(state.completed_items)
        self._failed: dict[TransferItem, FailedTransferItem] = {
            failure.item: failure.model_copy() for failure in state.failed_items
        }
        self._retry_counts = dict(state.retry_counts)
        self._current_tasks: dict[str, tuple[TransferItem, ...]] = {
            job_id: () for job_id in state.current_tasks
        }
        self._in_flight: set[TransferItem] = set()
        self._stats = state.stats.model_copy()

    @property
    def checkpoint_id(self) -> str:
        """Id of the owned checkpoint."""

        return self._checkpoint_id

    @property
    def task_info(self) -> TaskInfo:
        """Endpoints, roots and label of the transfer."""

        return self._task_info

    @property
    def options(self) -> TransferOptions:
        """Options in effect for this run."""

        return self._options

    @property
    def state(self) -> TransferState:
        """Current lifecycle state."""

        return self._state

    async def set_options(self, options: TransferOptions) -> None:
        """Replace the options in effect."""

        async with self._lock:
            self._options = options

    async def set_state(self, state: TransferState, error: str | None = None) -> None:
        """Move to ``state``, recording ``error`` when given."""

        async with self._lock:
            self._state = state
            if error is not None:
                self._last_error = error

    async def discard_stale_tasks(self) -> list[str]:
        """Forget job ids recorded by a previous process; their items are still pending."""

        async with self._lock:
            stale = [job_id for job_id, items in self._current_tasks.items() if not items]
            for job_id in stale:
                del self._current_tasks[job_id]
            return stale

    async def take_batch(self, limit: int) -> tuple[TransferItem, ...]:
        """Reserve up to ``limit`` pending items that no job currently holds."""

        async with self._lock:
            batch: list[TransferItem] = []
            for item in self._pending:
                if item in self._in_flight:
                    continue
                batch.append(item)
                if len(batch) == limit:
                    break
            self._in_flight.update(batch)
            return tuple(batch)

    async def release(self, items: Iterable[TransferItem]) -> None:
        """Return reserved items to the pending pool untouched."""

        async with self._lock:
            self._in_flight.difference_update(items)

    async def record_job(self, job_id: str, items: tuple[TransferItem, ...]) -> None:
        """Track a submitted job."""

        async with self._lock:
            self._current_tasks[job_id] = items

    async def complete(self, job_id: str | None, items: Iterable[TransferItem]) -> None:
        """Move items from pending to completed."""

        async with self._lock:
            self._forget_job(job_id)
            for item in items:
                self._in_flight.discard(item)
                if item not in self._pending:
                    continue
                del self._pending[item]
                self._completed.append(item)
                self._stats.remaining_items -= 1
                self._stats.remaining_bytes -= item.size
                self._stats.completed_items += 1
                self._stats.completed_bytes += item.size

    async def fail(self, job_id: str | None, items: Iterable[TransferItem], error: str) -> None:
        """Move items from pending to failed with their current retry count."""

        async with self._lock:
            self._forget_job(job_id)
            now = utc_now()
            for item in items:
                self._in_flight.discard(item)
                if item not in self._pending:
                    continue
                del self._pending[item]
                self._failed[item] = FailedTransferItem(
                    item=item,
                    error_message=error,
                    retry_count=self._retry_counts.get(item.source_path, 0),
                    last_attempt=now,
                )
                self._stats.remaining_items -= 1
                self._stats.remaining_bytes -= item.size
                self._stats.failed_items += 1
                self._stats.failed_bytes += item.size

    async def requeue_retryable(self) -> int:
        """Move failures within the retry budget back to pending; return how many moved."""

        async with self._lock:
            budget = self._options.max_retries
            retryable = [
                failure for failure in self._failed.values() if failure.retry_count < budget
            ]
            for failure in retryable:
                item = failure.item
                del self._failed[item]
                self._pending[item] = None
                self._retry_counts[item.source_path] = failure.retry_count + 1
                self._stats.failed_items -= 1
                self._stats.failed_bytes -= item.size
                self._stats.remaining_items += 1
                self._stats.remaining_bytes += item.size
            self._stats.attempted_retry_items = len(self._retry_counts)
            return len(retryable)

    async def has_schedulable_items(self) -> bool:
        """Whether pending items exist that no job holds."""

        async with self._lock:
            return len(self._pending) > len(self._in_flight)

    async def has_retryable_failures(self) -> bool:
        """Whether a failed item is still within the retry budget."""

        async with self._lock:
            budget = self._options.max_retries
            return any(failure.retry_count < budget for failure in self._failed.values())

    async def stats(self) -> TransferStats:
        """Copy of the current counters."""

        async with self._lock:
            return self._stats.model_copy()

    async def snapshot(self, *, touch: bool = False) -> CheckpointState:
        """Return a consistent, independent copy of the full record."""

        async with self._lock:
            if touch:
                self._task_info.last_updated = utc_now()
            return CheckpointState.model_construct(
                checkpoint_id=self._checkpoint_id,
                state=self._state,
                task_info=self._task_info.model_copy(),
                transfer_options=self._options.model_copy(),
                pending_items=list(self._pending),
                completed_items=list(self._completed),
                failed_items=[failure.model_copy() for failure in self._failed.values()],
                current_tasks=list(self._current_tasks),
                retry_counts=dict(self._retry_counts),
                stats=self._stats.model_copy(),
                last_error=self._last_error,
            )

    def _forget_job(self, job_id: str | None) -> None:
        if job_id is not None:
            self._current_tasks.pop(job_id, None)


__all__ = ["CheckpointLedger"]
