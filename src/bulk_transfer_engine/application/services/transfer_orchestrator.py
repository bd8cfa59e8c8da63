"""Resumable transfer orchestration."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from uuid import uuid4

from bulk_transfer_engine.application.services.batch_planner import BatchPlanner
from bulk_transfer_engine.application.services.checkpoint_ledger import CheckpointLedger
from bulk_transfer_engine.application.services.progress_notifier import ProgressNotifier
from bulk_transfer_engine.application.services.retry_policy import (
    BackoffPolicy,
    call_with_backoff,
)
from bulk_transfer_engine.application.services.streaming_enumerator import (
    EnumeratorOptions,
    StreamingEnumerator,
)
from bulk_transfer_engine.domain.checkpoint_models import (
    CheckpointState,
    TaskInfo,
    TransferItem,
    TransferOptions,
    TransferOptionsUpdate,
    TransferStats,
    utc_now,
    validate_checkpoint_id,
)
from bulk_transfer_engine.domain.entities import BatchJobRequest, JobStatusSnapshot
from bulk_transfer_engine.domain.errors import (
    BatchTimeoutError,
    CheckpointNotFoundError,
    TransferConflictError,
    TransferEngineError,
)
from bulk_transfer_engine.domain.monitoring_models import TransferResult
from bulk_transfer_engine.domain.ports import CheckpointStore, ProgressCallback, TransferBackend
from bulk_transfer_engine.domain.transfer_types import (
    IN_PROGRESS_JOB_STATUSES,
    JobStatus,
    TransferState,
)

logger = logging.getLogger(__name__)

_MAX_RETRY_ROUND_DELAY_SECONDS = 600.0


def default_label() -> str:
    """Label used when the caller does not provide one."""

    return f"Resumable Transfer {utc_now():%Y-%m-%d %H:%M:%S}"


@dataclass(slots=True)
class _Session:
    """Live state of one running resume."""

    checkpoint_id: str
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    save_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    ledger: CheckpointLedger | None = None
    notifier: ProgressNotifier[CheckpointState] | None = None
    cancelled: bool = False
    fatal_error: str | None = None
    storage_error: Exception | None = None

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def fail(self, message: str) -> None:
        if self.fatal_error is None:
            self.fatal_error = message
        self.stop_event.set()


class TransferOrchestrator:
    """Plan, run, checkpoint and resume bulk transfers."""

    def __init__(
        self,
        checkpoint_store: CheckpointStore,
        backend: TransferBackend,
        *,
        default_options: TransferOptions | None = None,
        backoff_policy: BackoffPolicy | None = None,
        enumeration_concurrency: int = 4,
        progress_interval_seconds: float = 5.0,
        progress_callback: ProgressCallback[CheckpointState] | None = None,
    ) -> None:
        self._store = checkpoint_store
        self._backend = backend
        self._default_options = default_options or TransferOptions()
        self._backoff_policy = backoff_policy or BackoffPolicy()
        self._enumeration_concurrency = enumeration_concurrency
        self._progress_interval_seconds = progress_interval_seconds
        self._progress_callback = progress_callback
        self._sessions: dict[str, _Session] = {}
        self._background_tasks: set[asyncio.Task[TransferResult]] = set()

    @property
    def default_options(self) -> TransferOptions:
        """Options applied when ``create`` receives none."""

        return self._default_options

    async def startup(self) -> None:
        """Start service; runs are started explicitly by ``resume``."""

        logger.info("Transfer orchestrator started.")

    async def shutdown(self) -> None:
        """Stop live runs gracefully, keeping their checkpoints resumable."""

        for session in self._sessions.values():
            session.stop_event.set()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        await self._backend.close()
        logger.info("Transfer orchestrator stopped.")

    async def create(
        self,
        source_endpoint_id: str,
        source_path: str,
        destination_endpoint_id: str,
        destination_path: str,
        *,
        options: TransferOptions | None = None,
        label: str | None = None,
    ) -> str:
        """Enumerate the source tree and persist a new checkpoint; return its id."""

        options = options or self._default_options
        label = label or options.label or default_label()
        checkpoint_id = uuid4().hex
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

        pending: list[TransferItem] = []
        async with enumerator:
            async for batch in planner.batches(enumerator):
                pending.extend(batch.items)
        enumerator.raise_for_error()

        state = CheckpointState(
            checkpoint_id=checkpoint_id,
            state=TransferState.RUNNING if pending else TransferState.COMPLETED,
            task_info=TaskInfo(
                source_endpoint_id=source_endpoint_id,
                destination_endpoint_id=destination_endpoint_id,
                source_base_path=enumerator.root_path,
                destination_base_path=destination_path,
                label=label,
            ),
            transfer_options=options.model_copy(update={"label": label}),
            pending_items=pending,
            stats=TransferStats.from_buckets(pending, [], []),
        )
        await self._store.save(state)
        logger.info(
            "Created checkpoint %s with %s files (%s bytes) from %s directories.",
            checkpoint_id,
            planner.total_files,
            planner.total_bytes,
            enumerator.directories_listed,
        )
        return checkpoint_id

    async def resume(
        self,
        checkpoint_id: str,
        *,
        options_update: TransferOptionsUpdate | None = None,
        progress_callback: ProgressCallback[CheckpointState] | None = None,
        timeout_seconds: float | None = None,
    ) -> TransferResult:
        """Drive a checkpoint to completion, failure, stop or cancellation."""

        session = self._claim(checkpoint_id)
        try:
            state = await self._store.load(checkpoint_id)
            return await self._run(
                session, state, options_update, progress_callback, timeout_seconds
            )
        finally:
            self._sessions.pop(checkpoint_id, None)

    async def start_resume(
        self,
        checkpoint_id: str,
        *,
        options_update: TransferOptionsUpdate | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        """Validate the checkpoint and run ``resume`` in the background."""

        session = self._claim(checkpoint_id)
        try:
            state = await self._store.load(checkpoint_id)
        except BaseException:
            self._sessions.pop(checkpoint_id, None)
            raise

        async def run() -> TransferResult:
            try:
                return await self._run(session, state, options_update, None, timeout_seconds)
            finally:
                self._sessions.pop(checkpoint_id, None)

        task = asyncio.create_task(run())
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)

    async def status(self, checkpoint_id: str) -> CheckpointState:
        """Return the live snapshot of a running transfer, else the stored record."""

        validate_checkpoint_id(checkpoint_id)
        session = self._sessions.get(checkpoint_id)
        if session is not None and session.ledger is not None:
            return await session.ledger.snapshot()
        return await self._store.load(checkpoint_id)

    def is_running(self, checkpoint_id: str) -> bool:
        """Whether a resume is live for ``checkpoint_id``."""

        return checkpoint_id in self._sessions

    async def list_checkpoints(self) -> list[str]:
        """Return stored checkpoint ids."""

        return await self._store.list_checkpoints()

    async def stop(self, checkpoint_id: str) -> None:
        """Ask a live run to stop gracefully; its checkpoint stays resumable."""

        session = self._sessions.get(checkpoint_id)
        if session is None:
            raise CheckpointNotFoundError(f"No running transfer for checkpoint {checkpoint_id}.")
        session.stop_event.set()

    async def cancel(self, checkpoint_id: str) -> None:
        """Abort any live run and delete the checkpoint."""

        validate_checkpoint_id(checkpoint_id)
        session = self._sessions.get(checkpoint_id)
        if session is None:
            await self._store.delete(checkpoint_id)
            logger.info("Cancelled checkpoint %s.", checkpoint_id)
            return

        session.cancelled = True
        session.stop_event.set()
        async with session.save_lock:
            try:
                await self._store.delete(checkpoint_id)
            except CheckpointNotFoundError:
                logger.info("Checkpoint %s was not stored yet when cancelled.", checkpoint_id)
        logger.info("Cancelled running checkpoint %s.", checkpoint_id)

    def _claim(self, checkpoint_id: str) -> _Session:
        validate_checkpoint_id(checkpoint_id)
        if checkpoint_id in self._sessions:
            raise TransferConflictError(f"Checkpoint {checkpoint_id} is already running.")
        session = _Session(checkpoint_id=checkpoint_id)
        self._sessions[checkpoint_id] = session
        return session

    def _on_background_done(self, task: asyncio.Task[TransferResult]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background transfer run failed.", exc_info=exc)
            return
        result = task.result()
        logger.info(
            "Background run of %s ended in %s (%s/%s items completed).",
            result.checkpoint_id,
            result.state.value,
            result.completed_items,
            result.total_items,
        )

    async def _run(
        self,
        session: _Session,
        state: CheckpointState,
        options_update: TransferOptionsUpdate | None,
        progress_callback: ProgressCallback[CheckpointState] | None,
        timeout_seconds: float | None,
    ) -> TransferResult:
        if state.is_finished and not state.retryable_failures():
            settled = _settled(state)
            if settled.state is not state.state:
                async with session.save_lock:
                    if not session.cancelled:
                        await self._store.save(settled)
            logger.info(
                "Checkpoint %s has no outstanding work; it is %s.",
                state.checkpoint_id,
                settled.state.value,
            )
            return TransferResult.from_state(settled)

        ledger = CheckpointLedger(state)
        session.ledger = ledger
        if options_update is not None:
            await ledger.set_options(options_update.apply(ledger.options))
        stale = await ledger.discard_stale_tasks()
        if stale:
            logger.info(
                "Discarded %s job ids left by an earlier run of %s; their items stay pending.",
                len(stale),
                session.checkpoint_id,
            )
        requeued = await ledger.requeue_retryable()
        if requeued:
            logger.info("Re-queued %s failed items of %s.", requeued, session.checkpoint_id)
        await ledger.set_state(TransferState.RUNNING)
        await self._save(session)

        notifier: ProgressNotifier[CheckpointState] = ProgressNotifier(
            progress_callback or self._progress_callback
        )
        session.notifier = notifier
        try:
            ticker = asyncio.create_task(self._checkpoint_ticker(session, notifier))
            deadline = None
            if timeout_seconds is not None:
                deadline = asyncio.get_running_loop().call_later(
                    timeout_seconds, session.stop_event.set
                )
            try:
                await self._drain(session)
            finally:
                if deadline is not None:
                    deadline.cancel()
                ticker.cancel()
                await asyncio.gather(ticker, return_exceptions=True)

            if session.storage_error is not None:
                raise session.storage_error
            if session.cancelled:
                await ledger.set_state(TransferState.CANCELLED)
                snapshot = await ledger.snapshot()
                notifier.notify(snapshot)
                return TransferResult.from_state(snapshot)

            await self._finalize(session)
            await self._save(session)
            snapshot = await ledger.snapshot()
            notifier.notify(snapshot)
        finally:
            await notifier.aclose()

        result = TransferResult.from_state(snapshot)
        logger.info(
            "Run of %s ended in %s: %s completed, %s failed, %s remaining.",
            result.checkpoint_id,
            result.state.value,
            result.completed_items,
            result.failed_items,
            result.remaining_items,
        )
        return result

    async def _finalize(self, session: _Session) -> None:
        assert session.ledger is not None
        ledger = session.ledger
        if session.fatal_error is not None:
            await ledger.set_state(TransferState.FAILED, session.fatal_error)
            return
        stats = await ledger.stats()
        if stats.remaining_items > 0:
            logger.info(
                "Run of %s stopped with %s items pending.",
                session.checkpoint_id,
                stats.remaining_items,
            )
            return
        if stats.failed_items == 0:
            await ledger.set_state(TransferState.COMPLETED)
        elif stats.completed_items == 0:
            await ledger.set_state(
                TransferState.FAILED, f"All {stats.failed_items} items failed."
            )
        else:
            await ledger.set_state(
                TransferState.RUNNING,
                f"{stats.failed_items} items exhausted their retry budget.",
            )

    async def _drain(self, session: _Session) -> None:
        assert session.ledger is not None
        ledger = session.ledger
        retry_round = 0
        while True:
            await self._run_pending(session)
            if session.stopping or not await ledger.has_retryable_failures():
                return
            retry_round += 1
            delay = min(
                ledger.options.retry_delay_seconds * 2 ** (retry_round - 1),
                _MAX_RETRY_ROUND_DELAY_SECONDS,
            )
            logger.info(
                "Retry round %s for %s starts in %.1fs.",
                retry_round,
                session.checkpoint_id,
                delay,
            )
            if await self._wait_for_stop(session, delay):
                return
            await ledger.requeue_retryable()
            await self._save(session)

    async def _run_pending(self, session: _Session) -> None:
        assert session.ledger is not None
        workers = [
            asyncio.create_task(self._batch_worker(session))
            for _ in range(session.ledger.options.max_concurrent_tasks)
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

    async def _batch_worker(self, session: _Session) -> None:
        assert session.ledger is not None
        ledger = session.ledger
        while not session.stopping:
            items = await ledger.take_batch(ledger.options.batch_size)
            if not items:
                return
            await self._process_batch(session, items)

    async def _process_batch(self, session: _Session, items: tuple[TransferItem, ...]) -> None:
        assert session.ledger is not None
        ledger = session.ledger
        options = ledger.options
        request = self._build_request(ledger, items)

        async def submit() -> str:
            return await self._backend.submit_batch_job(request)

        try:
            job_id = await call_with_backoff(submit, self._backoff_policy)
        except TransferEngineError as exc:
            await ledger.release(items)
            logger.error(
                "Submitting %s items of %s failed: %s", len(items), session.checkpoint_id, exc
            )
            session.fail(f"Batch submission failed: {exc}")
            return
        await ledger.record_job(job_id, items)
        logger.info(
            "Submitted job %s with %s items for %s.", job_id, len(items), session.checkpoint_id
        )

        try:
            outcome = await self._wait_for_job(session, job_id, options)
        except BatchTimeoutError as exc:
            await ledger.fail(job_id, items, str(exc))
            logger.warning("%s", exc)
            return
        except TransferEngineError as exc:
            await ledger.fail(job_id, items, f"Status polling for job {job_id} failed: {exc}")
            logger.warning("Status polling for job %s failed: %s", job_id, exc)
            return

        if outcome is None:
            await ledger.release(items)
            return

        status = outcome.job_status
        if status is JobStatus.SUCCEEDED:
            await ledger.complete(job_id, items)
        elif status is JobStatus.FAILED:
            reason = outcome.nice_status or outcome.status
            await ledger.fail(job_id, items, f"Job {job_id} failed: {reason}")
        elif status is JobStatus.CANCELLED:
            await ledger.fail(job_id, items, f"Job {job_id} was cancelled by the backend.")
        else:
            await ledger.fail(job_id, items, f"Unexpected task status: {outcome.status}")

        if session.notifier is not None and session.notifier.enabled:
            session.notifier.notify(await ledger.snapshot())
        if (await ledger.stats()).remaining_items == 0:
            await self._save(session)

    def _build_request(
        self, ledger: CheckpointLedger, items: tuple[TransferItem, ...]
    ) -> BatchJobRequest:
        info = ledger.task_info
        options = ledger.options
        return BatchJobRequest(
            source_endpoint_id=info.source_endpoint_id,
            destination_endpoint_id=info.destination_endpoint_id,
            label=f"{info.label} (Batch)",
            items=items,
            sync_level=int(options.sync_level),
            verify_checksum=options.verify_checksum,
            preserve_mtime=options.preserve_mtime,
            encrypt=options.encrypt,
            delete_destination_extra=options.delete_destination_extra,
        )

    async def _wait_for_job(
        self,
        session: _Session,
        job_id: str,
        options: TransferOptions,
    ) -> JobStatusSnapshot | None:
        """Poll until the job is terminal; ``None`` when the run is stopping."""

        loop = asyncio.get_running_loop()
        started = loop.time()

        async def fetch() -> JobStatusSnapshot:
            return await self._backend.get_job_status(job_id)

        while True:
            if session.stopping:
                return None
            snapshot = await call_with_backoff(fetch, self._backoff_policy)
            if snapshot.job_status not in IN_PROGRESS_JOB_STATUSES:
                return snapshot
            timeout = options.poll_timeout_seconds
            if timeout is not None and loop.time() - started >= timeout:
                raise BatchTimeoutError(
                    f"Job {job_id} did not finish within {timeout:.1f}s "
                    f"(last status {snapshot.status})."
                )
            if await self._wait_for_stop(session, options.poll_interval_seconds):
                return None

    async def _checkpoint_ticker(
        self,
        session: _Session,
        notifier: ProgressNotifier[CheckpointState],
    ) -> None:
        assert session.ledger is not None
        ledger = session.ledger
        loop = asyncio.get_running_loop()
        last_save = loop.time()
        interval = min(self._progress_interval_seconds, ledger.options.checkpoint_interval_seconds)
        while True:
            await asyncio.sleep(interval)
            try:
                if loop.time() - last_save >= ledger.options.checkpoint_interval_seconds:
                    await self._save(session)
                    last_save = loop.time()
                if notifier.enabled:
                    notifier.notify(await ledger.snapshot())
            except TransferEngineError as exc:
                logger.exception("Periodic checkpoint save for %s failed.", session.checkpoint_id)
                session.storage_error = exc
                session.stop_event.set()
                return

    async def _save(self, session: _Session) -> None:
        assert session.ledger is not None
        async with session.save_lock:
            if session.cancelled:
                return
            snapshot = await session.ledger.snapshot(touch=True)
            await self._store.save(snapshot)

    async def _wait_for_stop(self, session: _Session, delay: float) -> bool:
        try:
            await asyncio.wait_for(session.stop_event.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True


def _settled(state: CheckpointState) -> CheckpointState:
    """Terminal form of a checkpoint with no pending items and no jobs in flight."""

    stats = state.stats
    if stats.failed_items == 0:
        return state.model_copy(update={"state": TransferState.COMPLETED})
    if stats.completed_items == 0:
        return state.model_copy(
            update={
                "state": TransferState.FAILED,
                "last_error": state.last_error or f"All {stats.failed_items} items failed.",
            }
        )
    return state


__all__ = ["TransferOrchestrator", "default_label"]
