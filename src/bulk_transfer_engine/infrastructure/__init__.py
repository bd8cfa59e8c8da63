"""Infrastructure layer public API."""

from bulk_transfer_engine.infrastructure.backends import HttpTransferBackend
from bulk_transfer_engine.infrastructure.checkpoints import (
    FileCheckpointStore,
    InMemoryCheckpointStore,
    PostgresCheckpointStore,
    S3CheckpointStore,
)
from bulk_transfer_engine.infrastructure.events import (
    MqttProgressPublisher,
    NoopProgressPublisher,
)

__all__ = [
    "FileCheckpointStore",
    "HttpTransferBackend",
    "InMemoryCheckpointStore",
    "MqttProgressPublisher",
    "NoopProgressPublisher",
    "PostgresCheckpointStore",
    "S3CheckpointStore",
]
