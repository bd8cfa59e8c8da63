"""PostgreSQL checkpoint store."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from pydantic import ValidationError

from bulk_transfer_engine.domain.checkpoint_models import CheckpointState, validate_checkpoint_id
from bulk_transfer_engine.domain.errors import (
    CheckpointCorruptedError,
    CheckpointNotFoundError,
    CheckpointStorageError,
)
from bulk_transfer_engine.domain.ports import CheckpointStore


class PostgresCheckpointStore(CheckpointStore):
    """Checkpoint store keeping one JSONB row per checkpoint."""

    def __init__(
        self,
        dsn: str,
        min_pool_size: int = 1,
        max_pool_size: int = 10,
    ) -> None:
        self._dsn = dsn
        self._min_pool_size = min_pool_size
        self._max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()

    async def save(self, state: CheckpointState) -> None:
        """Upsert the record in a single statement."""

        validate_checkpoint_id(state.checkpoint_id)
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                INSERT INTO transfer_checkpoints (checkpoint_id, state, payload, updated_at)
                VALUES ($1, $2, $3::jsonb, NOW())
                ON CONFLICT (checkpoint_id) DO UPDATE
                SET state = EXCLUDED.state,
                    payload = EXCLUDED.payload,
                    updated_at = NOW()
                """,
                state.checkpoint_id,
                state.state.value,
                state.model_dump_json(),
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise CheckpointStorageError(
                f"Failed to save checkpoint {state.checkpoint_id}: {exc}"
            ) from exc

    async def load(self, checkpoint_id: str) -> CheckpointState:
        """Return the stored record."""

        validate_checkpoint_id(checkpoint_id)
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                "SELECT payload FROM transfer_checkpoints WHERE checkpoint_id = $1",
                checkpoint_id,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise CheckpointStorageError(
                f"Failed to read checkpoint {checkpoint_id}: {exc}"
            ) from exc
        if row is None:
            raise CheckpointNotFoundError(f"Checkpoint {checkpoint_id} not found.")
        try:
            return CheckpointState.model_validate(self._decode_json_field(row["payload"]))
        except (ValidationError, ValueError) as exc:
            raise CheckpointCorruptedError(
                f"Checkpoint {checkpoint_id} is corrupted: {exc}"
            ) from exc

    async def list_checkpoints(self) -> list[str]:
        """Return stored ids."""

        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                "SELECT checkpoint_id FROM transfer_checkpoints ORDER BY checkpoint_id ASC"
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise CheckpointStorageError(f"Failed to list checkpoints: {exc}") from exc
        return [str(row["checkpoint_id"]) for row in rows]

    async def delete(self, checkpoint_id: str) -> None:
        """Remove a record."""

        validate_checkpoint_id(checkpoint_id)
        pool = await self._get_pool()
        try:
            result = await pool.execute(
                "DELETE FROM transfer_checkpoints WHERE checkpoint_id = $1",
                checkpoint_id,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise CheckpointStorageError(
                f"Failed to delete checkpoint {checkpoint_id}: {exc}"
            ) from exc
        if result == "DELETE 0":
            raise CheckpointNotFoundError(f"Checkpoint {checkpoint_id} not found.")

    async def close(self) -> None:
        """Close the connection pool."""

        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool

        async with self._pool_lock:
            if self._pool is None:
                try:
                    pool = await asyncpg.create_pool(
                        dsn=self._dsn,
                        min_size=self._min_pool_size,
                        max_size=self._max_pool_size,
                    )
                    await self._ensure_schema(pool)
                except (asyncpg.PostgresError, OSError) as exc:
                    raise CheckpointStorageError(
                        f"Failed to connect to checkpoint database: {exc}"
                    ) from exc
                self._pool = pool
        assert self._pool is not None
        return self._pool

    async def _ensure_schema(self, pool: asyncpg.Pool) -> None:
        await pool.execute(
            """
            CREATE TABLE IF NOT EXISTS transfer_checkpoints (
                checkpoint_id TEXT PRIMARY KEY,
                state TEXT NOT NULL,
                payload JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )

    def _decode_json_field(self, value: object) -> Any:
        if isinstance(value, str):
            return json.loads(value)
        return value


__all__ = ["PostgresCheckpointStore"]
