"""Progress publisher implementations."""

from bulk_transfer_engine.infrastructure.events.mqtt_progress_publisher import (
    MqttProgressPublisher,
)
from bulk_transfer_engine.infrastructure.events.noop_progress_publisher import (
    NoopProgressPublisher,
)

__all__ = ["MqttProgressPublisher", "NoopProgressPublisher"]
