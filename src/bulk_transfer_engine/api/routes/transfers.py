"""Management routes for resumable and streaming transfers."""

from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Response

from bulk_transfer_engine.api.dependencies import (
    get_streaming_service,
    get_transfer_orchestrator,
)
from bulk_transfer_engine.application.services import (
    MemoryOptimizedTransferService,
    TransferOrchestrator,
)
from bulk_transfer_engine.domain.checkpoint_models import CheckpointState
from bulk_transfer_engine.domain.errors import (
    CheckpointStorageError,
    EnumerationError,
    TransferConflictError,
    TransferNotFoundError,
    TransferValidationError,
)
from bulk_transfer_engine.domain.monitoring_models import (
    CreateTransferRequest,
    ResumeTransferRequest,
    StreamingTransferAcceptedResponse,
    StreamingTransferRequest,
    StreamingTransferStatusResponse,
    TransferAcceptedResponse,
    TransferListResponse,
    TransferSummaryResponse,
)

router = APIRouter(tags=["transfers"])


def _raise_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, TransferNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, TransferValidationError):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, TransferConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, EnumerationError):
        raise HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, CheckpointStorageError):
        raise HTTPException(status_code=503, detail=str(exc))
    raise HTTPException(status_code=500, detail="Unexpected transfer error")


@router.post("/transfers", response_model=TransferSummaryResponse, status_code=201)
async def create_transfer(
    request: CreateTransferRequest,
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
) -> TransferSummaryResponse:
    """Enumerate the source and persist a new checkpoint."""

    try:
        checkpoint_id = await orchestrator.create(
            request.source_endpoint_id,
            request.source_path,
            request.destination_endpoint_id,
            request.destination_path,
            options=request.options.apply(orchestrator.default_options),
            label=request.label,
        )
        state = await orchestrator.status(checkpoint_id)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return TransferSummaryResponse.from_state(state, running=False)


@router.get("/transfers", response_model=TransferListResponse, status_code=200)
async def list_transfers(
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
) -> TransferListResponse:
    """List stored checkpoint ids."""

    try:
        return TransferListResponse(checkpoint_ids=await orchestrator.list_checkpoints())
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


@router.get("/transfers/{id}", response_model=TransferSummaryResponse, status_code=200)
async def get_transfer(
    id: str = Path(...),
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
) -> TransferSummaryResponse:
    """Return state and counters of one transfer."""

    try:
        state = await orchestrator.status(id)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return TransferSummaryResponse.from_state(state, running=orchestrator.is_running(id))


@router.get("/transfers/{id}/checkpoint", response_model=CheckpointState, status_code=200)
async def get_transfer_checkpoint(
    id: str = Path(...),
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
) -> CheckpointState:
    """Return the full checkpoint record including item buckets."""

    try:
        return await orchestrator.status(id)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


@router.post(
    "/transfers/{id}/resume",
    response_model=TransferAcceptedResponse,
    status_code=202,
)
async def resume_transfer(
    response: Response,
    id: str = Path(...),
    request: ResumeTransferRequest | None = Body(default=None),
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
) -> TransferAcceptedResponse:
    """Start resuming a transfer in the background."""

    request = request or ResumeTransferRequest()
    try:
        await orchestrator.start_resume(
            id,
            options_update=request.to_update(),
            timeout_seconds=request.timeout_seconds,
        )
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    status_path = f"/transfers/{id}"
    response.headers["Location"] = status_path
    return TransferAcceptedResponse(checkpoint_id=id, status_path=status_path)


@router.post("/transfers/{id}/stop", response_model=TransferAcceptedResponse, status_code=202)
async def stop_transfer(
    id: str = Path(...),
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
) -> TransferAcceptedResponse:
    """Ask a running transfer to stop; it stays resumable."""

    try:
        await orchestrator.stop(id)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return TransferAcceptedResponse(checkpoint_id=id, status_path=f"/transfers/{id}")


@router.delete("/transfers/{id}", status_code=204)
async def cancel_transfer(
    id: str = Path(...),
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
) -> Response:
    """Cancel a transfer and delete its checkpoint."""

    try:
        await orchestrator.cancel(id)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return Response(status_code=204)


@router.post(
    "/streaming-transfers",
    response_model=StreamingTransferAcceptedResponse,
    status_code=202,
)
async def start_streaming_transfer(
    request: StreamingTransferRequest,
    response: Response,
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
    service: MemoryOptimizedTransferService = Depends(get_streaming_service),
) -> StreamingTransferAcceptedResponse:
    """Start a memory-optimized transfer without a checkpoint."""

    try:
        transfer_id = await service.start_transfer(
            request.source_endpoint_id,
            request.source_path,
            request.destination_endpoint_id,
            request.destination_path,
            request.to_options(
                poll_interval_seconds=orchestrator.default_options.poll_interval_seconds
            ),
        )
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    status_path = f"/streaming-transfers/{transfer_id}"
    response.headers["Location"] = status_path
    return StreamingTransferAcceptedResponse(transfer_id=transfer_id, status_path=status_path)


@router.get(
    "/streaming-transfers/{id}",
    response_model=StreamingTransferStatusResponse,
    status_code=200,
)
async def get_streaming_transfer(
    id: str = Path(...),
    service: MemoryOptimizedTransferService = Depends(get_streaming_service),
) -> StreamingTransferStatusResponse:
    """Return the in-memory status of a streaming transfer."""

    try:
        status = service.get_status(id)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return StreamingTransferStatusResponse.from_status(status)


__all__ = ["router"]
