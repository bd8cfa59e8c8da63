"""Checkpoint store implementations."""

from bulk_transfer_engine.infrastructure.checkpoints.file_checkpoint_store import (
    DEFAULT_CHECKPOINT_DIRECTORY,
    FileCheckpointStore,
)
from bulk_transfer_engine.infrastructure.checkpoints.in_memory_checkpoint_store import (
    InMemoryCheckpointStore,
)
from bulk_transfer_engine.infrastructure.checkpoints.postgres_checkpoint_store import (
    PostgresCheckpointStore,
)
from bulk_transfer_engine.infrastructure.checkpoints.s3_checkpoint_store import (
    S3CheckpointStore,
)

__all__ = [
    "DEFAULT_CHECKPOINT_DIRECTORY",
    "FileCheckpointStore",
    "InMemoryCheckpointStore",
    "PostgresCheckpointStore",
    "S3CheckpointStore",
]
