"""In-memory checkpoint store."""

from __future__ import annotations

import asyncio

from bulk_transfer_engine.domain.checkpoint_models import CheckpointState, validate_checkpoint_id
from bulk_transfer_engine.domain.errors import CheckpointNotFoundError
from bulk_transfer_engine.domain.ports import CheckpointStore


class InMemoryCheckpointStore(CheckpointStore):
    """Simple store for local development and tests.

    Records are kept serialized so callers never share mutable state with
    the store.
    """

    def __init__(self) -> None:
        self._records: dict[str, str] = {}
        self._lock = asyncio.Lock()
        self.save_count = 0

    async def save(self, state: CheckpointState) -> None:
        """Persist a serialized copy."""

        validate_checkpoint_id(state.checkpoint_id)
        payload = state.model_dump_json()
        async with self._lock:
            self._records[state.checkpoint_id] = payload
            self.save_count += 1

    async def load(self, checkpoint_id: str) -> CheckpointState:
        """Return a fresh copy of the stored record."""

        async with self._lock:
            payload = self._records.get(validate_checkpoint_id(checkpoint_id))
        if payload is None:
            raise CheckpointNotFoundError(f"Checkpoint {checkpoint_id} not found.")
        return CheckpointState.model_validate_json(payload)

    async def list_checkpoints(self) -> list[str]:
        """Return stored ids."""

        async with self._lock:
            return sorted(self._records)

    async def delete(self, checkpoint_id: str) -> None:
        """Remove a record."""

        async with self._lock:
            if self._records.pop(validate_checkpoint_id(checkpoint_id), None) is None:
                raise CheckpointNotFoundError(f"Checkpoint {checkpoint_id} not found.")


__all__ = ["InMemoryCheckpointStore"]
