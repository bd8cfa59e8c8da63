"""Application bootstrap/wiring."""

import asyncio
import logging
from dataclasses import dataclass

from bulk_transfer_engine.application.services import (
    BackoffPolicy,
    MemoryOptimizedTransferService,
    TransferOrchestrator,
)
from bulk_transfer_engine.config import CheckpointBackend, Settings
from bulk_transfer_engine.domain.checkpoint_models import TransferOptions
from bulk_transfer_engine.domain.ports import CheckpointStore, ProgressPublisher, TransferBackend
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

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TransferServices:
    """Service graph sharing one backend client."""

    orchestrator: TransferOrchestrator
    streaming: MemoryOptimizedTransferService
    publisher: ProgressPublisher

    async def startup(self) -> None:
        """Start services."""

        await self.orchestrator.startup()

    async def shutdown(self) -> None:
        """Stop services, close the shared backend, then the progress publisher."""

        await self.streaming.shutdown()
        await self.orchestrator.shutdown()
        await asyncio.to_thread(self.publisher.close)


def _build_checkpoint_store(settings: Settings) -> CheckpointStore:
    if settings.checkpoint_backend == CheckpointBackend.POSTGRES:
        if settings.postgres_dsn is None:
            raise ValueError(
                "BTE_POSTGRES_DSN is required when BTE_CHECKPOINT_BACKEND=postgres."
            )
        return PostgresCheckpointStore(
            dsn=settings.postgres_dsn,
            min_pool_size=settings.postgres_pool_min_size,
            max_pool_size=settings.postgres_pool_max_size,
        )
    if settings.checkpoint_backend == CheckpointBackend.S3:
        if settings.checkpoint_s3_bucket is None:
            raise ValueError(
                "BTE_CHECKPOINT_S3_BUCKET is required when BTE_CHECKPOINT_BACKEND=s3."
            )
        return S3CheckpointStore(
            bucket=settings.checkpoint_s3_bucket,
            prefix=settings.checkpoint_s3_prefix,
            region_name=settings.aws_region,
        )
    if settings.checkpoint_backend == CheckpointBackend.IN_MEMORY:
        return InMemoryCheckpointStore()
    return FileCheckpointStore(settings.checkpoint_directory)


def _build_progress_publisher(settings: Settings) -> ProgressPublisher:
    if settings.progress_events_mqtt_enabled:
        if settings.progress_events_mqtt_host is None:
            raise ValueError(
                "BTE_PROGRESS_EVENTS_MQTT_HOST is required when "
                "BTE_PROGRESS_EVENTS_MQTT_ENABLED=true."
            )
        return MqttProgressPublisher(
            instance_id=settings.instance_id,
            broker_host=settings.progress_events_mqtt_host,
            broker_port=settings.progress_events_mqtt_port,
            topic_prefix=settings.progress_events_mqtt_topic_prefix,
            qos=settings.progress_events_mqtt_qos,
            username=settings.progress_events_mqtt_username,
            password=settings.progress_events_mqtt_password,
        )
    return NoopProgressPublisher()


def _build_backend(settings: Settings) -> TransferBackend:
    if not settings.transfer_api_token:
        logger.warning("BTE_TRANSFER_API_TOKEN is not set; backend calls are unauthenticated.")
    return HttpTransferBackend(
        base_url=settings.transfer_api_base_url,
        access_token=settings.transfer_api_token,
        timeout_seconds=settings.transfer_api_timeout_seconds,
        page_size=settings.transfer_api_page_size,
    )


def default_transfer_options(settings: Settings) -> TransferOptions:
    """Transfer options derived from settings."""

    return TransferOptions(
        batch_size=settings.default_batch_size,
        max_retries=settings.default_max_retries,
        retry_delay_seconds=settings.default_retry_delay_seconds,
        checkpoint_interval_seconds=settings.default_checkpoint_interval_seconds,
        sync_level=settings.default_sync_level,
        max_concurrent_tasks=settings.default_max_concurrent_tasks,
        poll_interval_seconds=settings.default_poll_interval_seconds,
        poll_timeout_seconds=settings.default_poll_timeout_seconds,
    )


def build_transfer_services(
    settings: Settings,
    *,
    checkpoint_store: CheckpointStore | None = None,
    backend: TransferBackend | None = None,
) -> TransferServices:
    """Create the service graph from settings."""

    backend = backend or _build_backend(settings)
    backoff_policy = BackoffPolicy(
        max_tries=settings.backend_retry_max_tries,
        base_delay_seconds=settings.backend_retry_base_delay_seconds,
        max_delay_seconds=settings.backend_retry_max_delay_seconds,
    )
    publisher = _build_progress_publisher(settings)
    orchestrator = TransferOrchestrator(
        checkpoint_store=checkpoint_store or _build_checkpoint_store(settings),
        backend=backend,
        default_options=default_transfer_options(settings),
        backoff_policy=backoff_policy,
        enumeration_concurrency=settings.enumeration_concurrency,
        progress_interval_seconds=settings.progress_interval_seconds,
        progress_callback=(
            None if isinstance(publisher, NoopProgressPublisher) else publisher.publish_progress
        ),
    )
    streaming = MemoryOptimizedTransferService(
        backend=backend,
        backoff_policy=backoff_policy,
        enumeration_concurrency=settings.enumeration_concurrency,
    )
    logger.info(
        "Built transfer services with %s checkpoint store.",
        settings.checkpoint_backend.value,
    )
    return TransferServices(orchestrator=orchestrator, streaming=streaming, publisher=publisher)


__all__ = ["TransferServices", "build_transfer_services", "default_transfer_options"]
