"""Checkpoint store writing one JSON file per checkpoint."""

from __future__ import annotations

import asyncio
import contextlib
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from bulk_transfer_engine.domain.checkpoint_models import CheckpointState, validate_checkpoint_id
from bulk_transfer_engine.domain.errors import (
    CheckpointCorruptedError,
    CheckpointNotFoundError,
    CheckpointStorageError,
)
from bulk_transfer_engine.domain.ports import CheckpointStore

DEFAULT_CHECKPOINT_DIRECTORY = Path.home() / ".bulk-transfer" / "checkpoints"
_SUFFIX = ".json"
_TEMP_PREFIX = ".tmp-"


class FileCheckpointStore(CheckpointStore):
    """Store checkpoints as ``<id>.json`` files in a private directory.

    Writes go to a temporary file in the same directory which is fsynced and
    renamed over the target, so a crash never leaves a half-written record.
    """

    def __init__(self, directory: str | Path | None = None) -> None:
        self._directory = (
            Path(directory) if directory is not None else DEFAULT_CHECKPOINT_DIRECTORY
        )

    @property
    def directory(self) -> Path:
        """Directory holding checkpoint files."""

        return self._directory

    async def save(self, state: CheckpointState) -> None:
        """Atomically replace the checkpoint file."""

        validate_checkpoint_id(state.checkpoint_id)
        payload = state.model_dump_json(indent=2)
        try:
            await asyncio.to_thread(self._write, state.checkpoint_id, payload)
        except OSError as exc:
            raise CheckpointStorageError(
                f"Failed to save checkpoint {state.checkpoint_id}: {exc}"
            ) from exc

    async def load(self, checkpoint_id: str) -> CheckpointState:
        """Read and validate a checkpoint file."""

        path = self._path(checkpoint_id)
        try:
            payload = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError as exc:
            raise CheckpointNotFoundError(f"Checkpoint {checkpoint_id} not found.") from exc
        except OSError as exc:
            raise CheckpointStorageError(
                f"Failed to read checkpoint {checkpoint_id}: {exc}"
            ) from exc
        try:
            return CheckpointState.model_validate_json(payload)
        except ValidationError as exc:
            raise CheckpointCorruptedError(
                f"Checkpoint {checkpoint_id} is corrupted: {exc}"
            ) from exc

    async def list_checkpoints(self) -> list[str]:
        """Return ids of stored checkpoints."""

        try:
            return await asyncio.to_thread(self._list)
        except OSError as exc:
            raise CheckpointStorageError(f"Failed to list checkpoints: {exc}") from exc

    async def delete(self, checkpoint_id: str) -> None:
        """Remove a checkpoint file."""

        path = self._path(checkpoint_id)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError as exc:
            raise CheckpointNotFoundError(f"Checkpoint {checkpoint_id} not found.") from exc
        except OSError as exc:
            raise CheckpointStorageError(
                f"Failed to delete checkpoint {checkpoint_id}: {exc}"
            ) from exc

    def _path(self, checkpoint_id: str) -> Path:
        return self._directory / f"{validate_checkpoint_id(checkpoint_id)}{_SUFFIX}"

    def _write(self, checkpoint_id: str, payload: str) -> None:
        self._directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            prefix=f"{_TEMP_PREFIX}{checkpoint_id}-",
            suffix=_SUFFIX,
            dir=self._directory,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(temp_name, 0o600)
            os.replace(temp_name, self._path(checkpoint_id))
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(temp_name)
            raise

    def _list(self) -> list[str]:
        if not self._directory.exists():
            return []
        return sorted(
            path.name.removesuffix(_SUFFIX)
            for path in self._directory.iterdir()
            if path.is_file()
            and path.name.endswith(_SUFFIX)
            and not path.name.startswith(_TEMP_PREFIX)
        )


__all__ = ["DEFAULT_CHECKPOINT_DIRECTORY", "FileCheckpointStore"]
