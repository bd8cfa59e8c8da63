"""Health check routes."""

from fastapi import APIRouter, Depends, HTTPException

from bulk_transfer_engine.api.dependencies import get_transfer_orchestrator
from bulk_transfer_engine.application.services import TransferOrchestrator
from bulk_transfer_engine.domain.errors import CheckpointStorageError

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    """Liveness probe."""

    return {"status": "ok"}


@router.get("/readyz")
async def readyz(
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
) -> dict[str, object]:
    """Readiness probe; fails when the checkpoint store is unreachable."""

    try:
        checkpoint_ids = await orchestrator.list_checkpoints()
    except CheckpointStorageError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"status": "ready", "checkpoints": len(checkpoint_ids)}


__all__ = ["router"]
