"""No-op progress publisher."""

from __future__ import annotations

from bulk_transfer_engine.domain.checkpoint_models import CheckpointState
from bulk_transfer_engine.domain.ports import ProgressPublisher


class NoopProgressPublisher(ProgressPublisher):
    """No-op implementation for environments without event streaming."""

    async def publish_progress(self, state: CheckpointState) -> None:
        _ = state

    def close(self) -> None:
        return None


__all__ = ["NoopProgressPublisher"]
