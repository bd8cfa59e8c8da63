from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from fakes import make_item, make_state

from bulk_transfer_engine.domain.ports import ProgressPublisher
from bulk_transfer_engine.infrastructure.events import (
    MqttProgressPublisher,
    NoopProgressPublisher,
)


class FakeMqttClient:
    """Records published messages."""

    def __init__(self) -> None:
        self.published: list[tuple[str, str, int]] = []
        self.stopped = False
        self.disconnected = False

    def publish(self, topic: str, payload: str, qos: int) -> Any:
        self.published.append((topic, payload, qos))
        return None

    def loop_stop(self) -> None:
        self.stopped = True

    def disconnect(self) -> None:
        self.disconnected = True


def test_mqtt_publisher_sends_progress_payload() -> None:
    client = FakeMqttClient()
    publisher = MqttProgressPublisher(
        instance_id="node-1",
        broker_host="broker.local",
        topic_prefix="/transfers-root/",
        qos=1,
        client=client,
    )
    state = make_state(pending=[make_item("a", 30)], completed=[make_item("b", 10)])

    asyncio.run(publisher.publish_progress(state))
    publisher.close()

    topic, raw, qos = client.published[0]
    payload = json.loads(raw)
    assert topic == "transfers-root/node-1/transfers/checkpoint-1/progress"
    assert qos == 1
    assert payload["checkpointId"] == "checkpoint-1"
    assert payload["state"] == "RUNNING"
    assert payload["completedItems"] == 1
    assert payload["remainingItems"] == 1
    assert payload["percentComplete"] == 25.0
    assert client.stopped and client.disconnected


def test_mqtt_publisher_handles_empty_transfers() -> None:
    client = FakeMqttClient()
    publisher = MqttProgressPublisher("node-1", "broker.local", client=client)
    state = make_state()

    asyncio.run(publisher.publish_progress(state))

    assert json.loads(client.published[0][1])["percentComplete"] is None


def test_mqtt_publisher_validates_arguments() -> None:
    with pytest.raises(ValueError):
        MqttProgressPublisher("node-1", " ", client=FakeMqttClient())
    with pytest.raises(ValueError):
        MqttProgressPublisher("node-1", "broker.local", qos=3, client=FakeMqttClient())


def test_noop_publisher_satisfies_port() -> None:
    publisher = NoopProgressPublisher()

    asyncio.run(publisher.publish_progress(make_state()))

    assert isinstance(publisher, ProgressPublisher)
