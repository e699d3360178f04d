from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from conftest import uplink
from indoor_locator_server.config_manager import ConfigManager
from indoor_locator_server.fix_store import InMemoryFixStore
from indoor_locator_server.mqtt_processor import MQTTDataProcessor, device_id_from_topic
from indoor_locator_server.processor import UplinkProcessor


READINGS = {
    "AA:00:00:00:00:01": "-87dBm",
    "AA:00:00:00:00:02": "-93dBm",
    "AA:00:00:00:00:03": "-91dBm",
    "AA:00:00:00:00:04": "-94dBm",
}


@pytest.fixture
def mqtt_processor(tmp_path, beacon_store):
    config = ConfigManager(str(tmp_path / "config.yaml"))
    processor = UplinkProcessor(beacon_store=beacon_store, fix_store=InMemoryFixStore())
    return MQTTDataProcessor(config, processor)


def test_device_id_from_topic() -> None:
    assert device_id_from_topic("v3/my-app@ttn/devices/tag-3/up") == "tag-3"
    assert device_id_from_topic("sensors/tag-3") is None


def test_on_message_persists_fix(mqtt_processor) -> None:
    msg = SimpleNamespace(topic="v3/app/devices/tag-1/up", payload=json.dumps(uplink(READINGS)).encode())

    mqtt_processor.on_message(None, None, msg)

    assert len(mqtt_processor.processor.get_device_data("tag-1")) == 1


def test_device_id_falls_back_to_topic(mqtt_processor) -> None:
    payload = uplink(READINGS)
    del payload["end_device_ids"]["device_id"]

    record = mqtt_processor.handle_payload("v3/app/devices/tag-5/up", json.dumps(payload).encode())

    assert record is not None
    assert record.device_id == "tag-5"


@pytest.mark.parametrize("payload", [b"\xff\xfe", b"{not json", b"[1, 2]"])
def test_undecodable_payload_is_ignored(mqtt_processor, payload) -> None:
    assert mqtt_processor.handle_payload("v3/app/devices/tag-1/up", payload) is None


def test_on_connect_subscribes_to_uplink_topic(mqtt_processor) -> None:
    subscribed = []
    client = SimpleNamespace(subscribe=subscribed.append)

    mqtt_processor.on_connect(client, None, None, 0)

    assert subscribed == ["v3/+/devices/+/up"]
