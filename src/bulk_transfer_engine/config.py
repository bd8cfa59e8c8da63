"""Application settings."""

from enum import StrEnum

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bulk_transfer_engine.domain.transfer_types import SyncPolicy


class CheckpointBackend(StrEnum):
    """Available persistence adapters for checkpoints."""

    FILE = "file"
    IN_MEMORY = "in_memory"
    POSTGRES = "postgres"
    S3 = "s3"


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "Bulk Transfer Engine"
    api_prefix: str = ""
    instance_id: str = "bulk-transfer-local"
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"
    checkpoint_backend: CheckpointBackend = CheckpointBackend.FILE
    checkpoint_directory: str | None = None
    postgres_dsn: str | None = None
    postgres_pool_min_size: int = 1
    postgres_pool_max_size: int = 10
    checkpoint_s3_bucket: str | None = None
    checkpoint_s3_prefix: str = "checkpoints"
    aws_region: str = "us-east-1"
    transfer_api_base_url: str = "https://transfer.api.globus.org/v0.10"
    transfer_api_token: str | None = None
    transfer_api_timeout_seconds: float = 30.0
    transfer_api_page_size: int | None = None
    default_batch_size: int = 100
    default_max_retries: int = 3
    default_retry_delay_seconds: float = 30.0
    default_checkpoint_interval_seconds: float = 60.0
    default_sync_level: SyncPolicy = SyncPolicy.CHECKSUM
    default_max_concurrent_tasks: int = 4
    default_poll_interval_seconds: float = 5.0
    default_poll_timeout_seconds: float | None = None
    enumeration_concurrency: int = 4
    progress_interval_seconds: float = 5.0
    backend_retry_max_tries: int = 5
    backend_retry_base_delay_seconds: float = 1.0
    backend_retry_max_delay_seconds: float = 60.0
    progress_events_mqtt_enabled: bool = False
    progress_events_mqtt_host: str | None = None
    progress_events_mqtt_port: int = 1883
    progress_events_mqtt_username: str | None = None
    progress_events_mqtt_password: str | None = None
    progress_events_mqtt_topic_prefix: str = "bulk-transfer"
    progress_events_mqtt_qos: int = 0

    @model_validator(mode="after")
    def validate_backend_settings(self) -> "Settings":
        """Ensure backend-specific settings are valid."""

        if self.checkpoint_backend == CheckpointBackend.POSTGRES and not self.postgres_dsn:
            raise ValueError(
                "BTE_POSTGRES_DSN is required when BTE_CHECKPOINT_BACKEND=postgres."
            )
        if self.checkpoint_backend == CheckpointBackend.S3 and not self.checkpoint_s3_bucket:
            raise ValueError(
                "BTE_CHECKPOINT_S3_BUCKET is required when BTE_CHECKPOINT_BACKEND=s3."
            )
        if self.postgres_pool_min_size < 1:
            raise ValueError("BTE_POSTGRES_POOL_MIN_SIZE must be >= 1.")
        if self.postgres_pool_max_size < self.postgres_pool_min_size:
            raise ValueError(
                "BTE_POSTGRES_POOL_MAX_SIZE must be >= BTE_POSTGRES_POOL_MIN_SIZE."
            )
        if self.progress_events_mqtt_enabled and not self.progress_events_mqtt_host:
            raise ValueError(
                "BTE_PROGRESS_EVENTS_MQTT_HOST is required when "
                "BTE_PROGRESS_EVENTS_MQTT_ENABLED=true."
            )
        if self.progress_events_mqtt_port < 1:
            raise ValueError("BTE_PROGRESS_EVENTS_MQTT_PORT must be >= 1.")
        if self.progress_events_mqtt_qos not in {0, 1, 2}:
            raise ValueError("BTE_PROGRESS_EVENTS_MQTT_QOS must be one of 0, 1, 2.")
        if self.transfer_api_timeout_seconds <= 0:
            raise ValueError("BTE_TRANSFER_API_TIMEOUT_SECONDS must be > 0.")
        if self.transfer_api_page_size is not None and self.transfer_api_page_size < 1:
            raise ValueError("BTE_TRANSFER_API_PAGE_SIZE must be >= 1.")
        if self.default_batch_size < 1:
            raise ValueError("BTE_DEFAULT_BATCH_SIZE must be >= 1.")
        if self.default_max_retries < 0:
            raise ValueError("BTE_DEFAULT_MAX_RETRIES must be >= 0.")
        if self.default_retry_delay_seconds < 0:
            raise ValueError("BTE_DEFAULT_RETRY_DELAY_SECONDS must be >= 0.")
        if self.default_checkpoint_interval_seconds <= 0:
            raise ValueError("BTE_DEFAULT_CHECKPOINT_INTERVAL_SECONDS must be > 0.")
        if self.default_max_concurrent_tasks < 1:
            raise ValueError("BTE_DEFAULT_MAX_CONCURRENT_TASKS must be >= 1.")
        if self.default_poll_interval_seconds <= 0:
            raise ValueError("BTE_DEFAULT_POLL_INTERVAL_SECONDS must be > 0.")
        if self.default_poll_timeout_seconds is not None and self.default_poll_timeout_seconds <= 0:
            raise ValueError("BTE_DEFAULT_POLL_TIMEOUT_SECONDS must be > 0.")
        if self.enumeration_concurrency < 1:
            raise ValueError("BTE_ENUMERATION_CONCURRENCY must be >= 1.")
        if self.progress_interval_seconds <= 0:
            raise ValueError("BTE_PROGRESS_INTERVAL_SECONDS must be > 0.")
        if self.backend_retry_max_tries < 1:
            raise ValueError("BTE_BACKEND_RETRY_MAX_TRIES must be >= 1.")
        if self.backend_retry_base_delay_seconds < 0:
            raise ValueError("BTE_BACKEND_RETRY_BASE_DELAY_SECONDS must be >= 0.")
        if self.backend_retry_max_delay_seconds < self.backend_retry_base_delay_seconds:
            raise ValueError(
                "BTE_BACKEND_RETRY_MAX_DELAY_SECONDS must be >= "
                "BTE_BACKEND_RETRY_BASE_DELAY_SECONDS."
            )
        return self

    model_config = SettingsConfigDict(env_prefix="BTE_", extra="ignore")


__all__ = ["CheckpointBackend", "Settings"]
