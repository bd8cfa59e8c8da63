from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest
from fakes import FakeTransferBackend, build_tree, make_item, make_state

from bulk_transfer_engine.application.services import BackoffPolicy, TransferOrchestrator
from bulk_transfer_engine.domain.checkpoint_models import (
    CheckpointState,
    FailedTransferItem,
    TransferOptions,
    TransferOptionsUpdate,
)
from bulk_transfer_engine.domain.entities import BatchJobRequest
from bulk_transfer_engine.domain.errors import (
    BackendError,
    CheckpointNotFoundError,
    EnumerationError,
    TransferConflictError,
)
from bulk_transfer_engine.domain.transfer_types import SyncPolicy, TransferState
from bulk_transfer_engine.infrastructure.checkpoints import InMemoryCheckpointStore

TREE = {"a.txt": 10, "b.txt": 20, "sub": {"c.txt": 30}}
FAST_BACKOFF = BackoffPolicy(max_tries=3, base_delay_seconds=0, max_delay_seconds=0, jitter=False)
FAST_OPTIONS = TransferOptions(
    batch_size=2,
    retry_delay_seconds=0,
    poll_interval_seconds=0.01,
    checkpoint_interval_seconds=0.05,
)


def _orchestrator(
    backend: FakeTransferBackend,
    store: InMemoryCheckpointStore | None = None,
    **kwargs: object,
) -> TransferOrchestrator:
    return TransferOrchestrator(
        store or InMemoryCheckpointStore(),
        backend,
        default_options=FAST_OPTIONS,
        backoff_policy=FAST_BACKOFF,
        progress_interval_seconds=0.02,
        **kwargs,  # type: ignore[arg-type]
    )


def _fail_paths(*paths: str) -> Callable[[BatchJobRequest], list[str]]:
    def outcome(request: BatchJobRequest) -> list[str]:
        if any(item.source_path in paths for item in request.items):
            return ["ACTIVE", "FAILED"]
        return ["ACTIVE", "SUCCEEDED"]

    return outcome


def test_create_persists_pending_checkpoint() -> None:
    backend = FakeTransferBackend(build_tree("/src", TREE))
    store = InMemoryCheckpointStore()
    orchestrator = _orchestrator(backend, store)

    checkpoint_id = asyncio.run(
        orchestrator.create("ep-src", "/src", "ep-dst", "/dst", label="nightly")
    )
    state = asyncio.run(store.load(checkpoint_id))

    assert state.state is TransferState.RUNNING
    assert state.task_info.label == "nightly"
    assert state.transfer_options.label == "nightly"
    assert sorted(item.destination_path for item in state.pending_items) == [
        "/dst/a.txt",
        "/dst/b.txt",
        "/dst/sub/c.txt",
    ]
    assert state.stats.total_items == 3
    assert state.stats.total_bytes == 60
    assert state.stats.remaining_bytes == 60
    assert backend.submitted == []


def test_create_uses_default_label_and_handles_empty_source() -> None:
    backend = FakeTransferBackend({"/empty": []})
    store = InMemoryCheckpointStore()
    orchestrator = _orchestrator(backend, store)

    checkpoint_id = asyncio.run(orchestrator.create("ep-src", "/empty", "ep-dst", "/dst"))
    state = asyncio.run(store.load(checkpoint_id))

    assert state.state is TransferState.COMPLETED
    assert state.task_info.label.startswith("Resumable Transfer ")
    result = asyncio.run(orchestrator.resume(checkpoint_id))
    assert result.completed
    assert backend.submitted == []


def test_create_propagates_enumeration_failure_without_saving() -> None:
    backend = FakeTransferBackend(build_tree("/src", TREE))
    backend.list_failures["/src/sub"] = BackendError("denied", status_code=403)
    store = InMemoryCheckpointStore()
    orchestrator = _orchestrator(backend, store)

    with pytest.raises(EnumerationError):
        asyncio.run(orchestrator.create("ep-src", "/src", "ep-dst", "/dst"))
    assert asyncio.run(store.list_checkpoints()) == []


def test_resume_transfers_everything_and_completes() -> None:
    backend = FakeTransferBackend(build_tree("/src", TREE))
    store = InMemoryCheckpointStore()
    orchestrator = _orchestrator(backend, store)

    async def scenario() -> CheckpointState:
        checkpoint_id = await orchestrator.create("ep-src", "/src", "ep-dst", "/dst")
        result = await orchestrator.resume(checkpoint_id)
        assert result.completed
        assert result.completed_items == 3
        assert result.completed_bytes == 60
        return await store.load(checkpoint_id)

    state = asyncio.run(scenario())

    assert state.state is TransferState.COMPLETED
    assert state.pending_items == []
    assert state.current_tasks == []
    assert len(state.completed_items) == 3
    assert sorted(len(request.items) for request in backend.submitted) == [1, 2]
    request = backend.submitted[0]
    assert request.label.endswith(" (Batch)")
    assert request.sync_level == int(SyncPolicy.CHECKSUM)
    assert request.source_endpoint_id == "ep-src"
    assert request.destination_endpoint_id == "ep-dst"


def test_resume_of_finished_checkpoint_is_idempotent() -> None:
    backend = FakeTransferBackend()
    store = InMemoryCheckpointStore()
    state = make_state(
        completed=[make_item("a"), make_item("b")],
        failed=[FailedTransferItem(item=make_item("c"), error_message="x", retry_count=3)],
    )
    asyncio.run(store.save(state))
    saves_before = store.save_count

    result = asyncio.run(_orchestrator(backend, store).resume(state.checkpoint_id))

    assert result.completed_items == 2
    assert result.failed_items == 1
    assert result.state is TransferState.RUNNING
    assert backend.total_calls == 0
    assert store.save_count == saves_before


def test_resume_settles_drained_checkpoint_left_running() -> None:
    backend = FakeTransferBackend()
    store = InMemoryCheckpointStore()
    state = make_state(completed=[make_item("a"), make_item("b")])
    asyncio.run(store.save(state))
    orchestrator = _orchestrator(backend, store)

    first = asyncio.run(orchestrator.resume(state.checkpoint_id))
    saves_after_first = store.save_count
    second = asyncio.run(orchestrator.resume(state.checkpoint_id))

    assert first.completed
    assert second.completed
    assert first.completed_items == 2
    assert asyncio.run(store.load(state.checkpoint_id)).state is TransferState.COMPLETED
    assert store.save_count == saves_after_first
    assert backend.total_calls == 0


def test_resume_marks_drained_checkpoint_failed_when_nothing_completed() -> None:
    store = InMemoryCheckpointStore()
    state = make_state(
        failed=[FailedTransferItem(item=make_item("a"), error_message="x", retry_count=3)],
    )
    asyncio.run(store.save(state))

    result = asyncio.run(_orchestrator(FakeTransferBackend(), store).resume(state.checkpoint_id))

    assert result.state is TransferState.FAILED
    assert result.error == "All 1 items failed."


def test_resume_after_crash_requeues_failures_and_counts_retries() -> None:
    backend = FakeTransferBackend()
    store = InMemoryCheckpointStore()
    state = make_state(
        pending=[make_item("p1"), make_item("p2")],
        completed=[make_item("c1"), make_item("c2")],
        failed=[FailedTransferItem(item=make_item("f1"), error_message="x", retry_count=0)],
        current_tasks=["job-from-previous-process"],
        options=TransferOptions(batch_size=100, retry_delay_seconds=0, poll_interval_seconds=0.01),
    )
    asyncio.run(store.save(state))

    result = asyncio.run(_orchestrator(backend, store).resume(state.checkpoint_id))
    saved = asyncio.run(store.load(state.checkpoint_id))

    assert sorted(backend.submitted_paths) == ["/src/f1", "/src/p1", "/src/p2"]
    assert len(backend.submitted) == 1
    assert result.completed
    assert saved.retry_counts == {"/src/f1": 1}
    assert saved.current_tasks == []
    assert len(saved.completed_items) == 5


def test_failed_items_are_retried_until_budget_is_exhausted() -> None:
    backend = FakeTransferBackend(
        build_tree("/src", {"good.txt": 1, "bad.txt": 2}),
        outcome_for=_fail_paths("/src/bad.txt"),
    )
    store = InMemoryCheckpointStore()
    orchestrator = _orchestrator(backend, store)
    options = FAST_OPTIONS.model_copy(update={"batch_size": 1, "max_retries": 2})

    async def scenario() -> CheckpointState:
        checkpoint_id = await orchestrator.create(
            "ep-src", "/src", "ep-dst", "/dst", options=options
        )
        result = await orchestrator.resume(checkpoint_id)
        assert result.failed_items == 1
        assert result.completed_items == 1
        return await store.load(checkpoint_id)

    state = asyncio.run(scenario())

    assert backend.submitted_paths.count("/src/bad.txt") == 3
    assert backend.submitted_paths.count("/src/good.txt") == 1
    assert state.state is TransferState.RUNNING
    assert state.last_error == "1 items exhausted their retry budget."
    assert state.retry_counts == {"/src/bad.txt": 2}
    assert state.failed_items[0].retry_count == 2
    assert "FAILED" in state.failed_items[0].error_message


def test_all_items_failing_marks_transfer_failed() -> None:
    backend = FakeTransferBackend(
        build_tree("/src", {"a": 1}), outcome_for=lambda request: ["FAILED"]
    )
    orchestrator = _orchestrator(backend)
    options = FAST_OPTIONS.model_copy(update={"max_retries": 0})

    async def scenario() -> TransferState:
        checkpoint_id = await orchestrator.create(
            "ep-src", "/src", "ep-dst", "/dst", options=options
        )
        return (await orchestrator.resume(checkpoint_id)).state

    assert asyncio.run(scenario()) is TransferState.FAILED
    assert len(backend.submitted) == 1


def test_permanent_submission_error_fails_run_and_keeps_items_pending() -> None:
    backend = FakeTransferBackend(build_tree("/src", TREE))
    store = InMemoryCheckpointStore()
    orchestrator = _orchestrator(backend, store)

    async def scenario() -> CheckpointState:
        checkpoint_id = await orchestrator.create("ep-src", "/src", "ep-dst", "/dst")
        backend.submit_errors.extend(
            [BackendError("bad endpoint", status_code=400, code="BadRequest")] * 10
        )
        result = await orchestrator.resume(checkpoint_id)
        assert result.state is TransferState.FAILED
        return await store.load(checkpoint_id)

    state = asyncio.run(scenario())

    assert state.state is TransferState.FAILED
    assert "bad endpoint" in (state.last_error or "")
    assert state.stats.remaining_items == 3
    assert state.failed_items == []


def test_transient_submission_errors_are_retried() -> None:
    backend = FakeTransferBackend(build_tree("/src", {"a": 1}))
    orchestrator = _orchestrator(backend)

    async def scenario() -> bool:
        checkpoint_id = await orchestrator.create("ep-src", "/src", "ep-dst", "/dst")
        backend.submit_errors.append(BackendError("rate limit", status_code=429))
        return (await orchestrator.resume(checkpoint_id)).completed

    assert asyncio.run(scenario())
    assert len(backend.submitted) == 1


def test_poll_timeout_fails_batch() -> None:
    backend = FakeTransferBackend(
        build_tree("/src", {"slow": 1}), outcome_for=lambda request: ["ACTIVE"]
    )
    store = InMemoryCheckpointStore()
    orchestrator = _orchestrator(backend, store)
    options = FAST_OPTIONS.model_copy(update={"max_retries": 0, "poll_timeout_seconds": 0.05})

    async def scenario() -> CheckpointState:
        checkpoint_id = await orchestrator.create(
            "ep-src", "/src", "ep-dst", "/dst", options=options
        )
        await orchestrator.resume(checkpoint_id)
        return await store.load(checkpoint_id)

    state = asyncio.run(scenario())

    assert state.state is TransferState.FAILED
    assert "did not finish" in state.failed_items[0].error_message


def test_stop_keeps_checkpoint_resumable() -> None:
    backend = FakeTransferBackend(
        build_tree("/src", TREE), outcome_for=lambda request: ["ACTIVE"]
    )
    store = InMemoryCheckpointStore()
    orchestrator = _orchestrator(backend, store)

    async def scenario() -> CheckpointState:
        checkpoint_id = await orchestrator.create("ep-src", "/src", "ep-dst", "/dst")
        run = asyncio.create_task(orchestrator.resume(checkpoint_id))
        while not backend.submitted:
            await asyncio.sleep(0.01)
        assert orchestrator.is_running(checkpoint_id)
        with pytest.raises(TransferConflictError):
            await orchestrator.resume(checkpoint_id)
        await orchestrator.stop(checkpoint_id)
        result = await run
        assert result.state is TransferState.RUNNING
        assert not orchestrator.is_running(checkpoint_id)
        return await store.load(checkpoint_id)

    state = asyncio.run(scenario())

    assert state.stats.remaining_items == 3
    assert state.current_tasks
    assert set(state.current_tasks) <= {"job-1", "job-2"}


def test_stop_of_idle_checkpoint_is_not_found() -> None:
    orchestrator = _orchestrator(FakeTransferBackend())

    with pytest.raises(CheckpointNotFoundError):
        asyncio.run(orchestrator.stop("nothing-running"))


def test_cancel_deletes_checkpoint_of_running_transfer() -> None:
    backend = FakeTransferBackend(
        build_tree("/src", TREE), outcome_for=lambda request: ["ACTIVE"]
    )
    store = InMemoryCheckpointStore()
    orchestrator = _orchestrator(backend, store)

    async def scenario() -> str:
        checkpoint_id = await orchestrator.create("ep-src", "/src", "ep-dst", "/dst")
        run = asyncio.create_task(orchestrator.resume(checkpoint_id))
        while not backend.submitted:
            await asyncio.sleep(0.01)
        await orchestrator.cancel(checkpoint_id)
        result = await run
        assert result.state is TransferState.CANCELLED
        await asyncio.sleep(0.1)
        return checkpoint_id

    checkpoint_id = asyncio.run(scenario())

    assert asyncio.run(store.list_checkpoints()) == []
    with pytest.raises(CheckpointNotFoundError):
        asyncio.run(orchestrator.status(checkpoint_id))
    with pytest.raises(CheckpointNotFoundError):
        asyncio.run(orchestrator.resume(checkpoint_id))


def test_cancel_of_unknown_checkpoint_is_not_found() -> None:
    orchestrator = _orchestrator(FakeTransferBackend())

    with pytest.raises(CheckpointNotFoundError):
        asyncio.run(orchestrator.cancel("unknown"))


def test_status_returns_live_snapshot_while_running() -> None:
    backend = FakeTransferBackend(
        build_tree("/src", {"a": 1, "b": 2}),
        outcome_for=lambda request: ["ACTIVE"],
    )
    store = InMemoryCheckpointStore()
    orchestrator = _orchestrator(backend, store)

    async def scenario() -> CheckpointState:
        checkpoint_id = await orchestrator.create("ep-src", "/src", "ep-dst", "/dst")
        run = asyncio.create_task(orchestrator.resume(checkpoint_id))
        while not backend.submitted:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.01)
        live = await orchestrator.status(checkpoint_id)
        await orchestrator.stop(checkpoint_id)
        await run
        return live

    live = asyncio.run(scenario())

    assert live.current_tasks == ["job-1"]
    assert live.state is TransferState.RUNNING


def test_progress_callback_receives_final_snapshot() -> None:
    backend = FakeTransferBackend(build_tree("/src", TREE))
    snapshots: list[CheckpointState] = []

    async def callback(state: CheckpointState) -> None:
        snapshots.append(state)

    orchestrator = _orchestrator(backend)

    async def scenario() -> None:
        checkpoint_id = await orchestrator.create("ep-src", "/src", "ep-dst", "/dst")
        await orchestrator.resume(checkpoint_id, progress_callback=callback)

    asyncio.run(scenario())

    assert snapshots
    assert snapshots[-1].state is TransferState.COMPLETED
    assert snapshots[-1].stats.completed_items == 3


def test_progress_callback_fires_for_every_finished_batch() -> None:
    files = {f"f{index}.txt": 1 for index in range(6)}
    backend = FakeTransferBackend(build_tree("/src", files))
    snapshots: list[CheckpointState] = []
    orchestrator = TransferOrchestrator(
        InMemoryCheckpointStore(),
        backend,
        default_options=TransferOptions(
            batch_size=1,
            max_concurrent_tasks=1,
            retry_delay_seconds=0,
            poll_interval_seconds=0.01,
            checkpoint_interval_seconds=3600,
        ),
        backoff_policy=FAST_BACKOFF,
        progress_interval_seconds=3600,
        progress_callback=snapshots.append,
    )

    async def scenario() -> None:
        checkpoint_id = await orchestrator.create("ep-src", "/src", "ep-dst", "/dst")
        await orchestrator.resume(checkpoint_id)

    asyncio.run(scenario())

    assert len(backend.submitted) == 6
    assert len(snapshots) >= 6
    seen = {snapshot.stats.completed_items for snapshot in snapshots}
    assert seen >= {1, 2, 3, 4, 5, 6}


def test_resume_overrides_options_and_honors_timeout() -> None:
    backend = FakeTransferBackend(
        build_tree("/src", TREE), outcome_for=lambda request: ["ACTIVE"]
    )
    store = InMemoryCheckpointStore()
    orchestrator = _orchestrator(backend, store)

    async def scenario() -> CheckpointState:
        checkpoint_id = await orchestrator.create("ep-src", "/src", "ep-dst", "/dst")
        result = await orchestrator.resume(
            checkpoint_id,
            options_update=TransferOptionsUpdate(max_concurrent_tasks=1, max_retries=9),
            timeout_seconds=0.1,
        )
        assert result.state is TransferState.RUNNING
        return await store.load(checkpoint_id)

    state = asyncio.run(scenario())

    assert state.transfer_options.max_retries == 9
    assert state.transfer_options.max_concurrent_tasks == 1
    assert len(backend.submitted) == 1


def test_background_resume_and_list() -> None:
    backend = FakeTransferBackend(build_tree("/src", TREE))
    store = InMemoryCheckpointStore()
    orchestrator = _orchestrator(backend, store)

    async def scenario() -> CheckpointState:
        checkpoint_id = await orchestrator.create("ep-src", "/src", "ep-dst", "/dst")
        assert await orchestrator.list_checkpoints() == [checkpoint_id]
        await orchestrator.start_resume(checkpoint_id)
        while orchestrator.is_running(checkpoint_id):
            await asyncio.sleep(0.01)
        await orchestrator.shutdown()
        return await store.load(checkpoint_id)

    state = asyncio.run(scenario())

    assert state.state is TransferState.COMPLETED
    assert backend.closed


def test_start_resume_of_missing_checkpoint_raises_and_releases_claim() -> None:
    orchestrator = _orchestrator(FakeTransferBackend())

    with pytest.raises(CheckpointNotFoundError):
        asyncio.run(orchestrator.start_resume("missing"))
    assert not orchestrator.is_running("missing")
