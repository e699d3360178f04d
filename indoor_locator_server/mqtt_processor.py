from __future__ import annotations

import json
import logging
import threading
from typing import Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from .config_manager import ConfigManager
from .fix_store import CsvFixStore
from .models import FixRecord
from .processor import UplinkProcessor


logger = logging.getLogger(__name__)


def device_id_from_topic(topic: str) -> Optional[str]:
    """``v3/<app>/devices/<device_id>/up`` -> ``<device_id>``."""
    parts = topic.strip("/").split("/")
    if "devices" in parts:
        idx = parts.index("devices")
        if idx + 1 < len(parts):
            return parts[idx + 1]
    return None


class MQTTDataProcessor:
    def __init__(self, config_manager: ConfigManager, processor: Optional[UplinkProcessor] = None):
        # one report at a time per process; the fix store read/write is not atomic
        self.lock = threading.Lock()
        self.config_manager = config_manager
        self.processor = processor or UplinkProcessor.from_config(
            config_manager, CsvFixStore(config_manager.get_fix_db_path())
        )
        self.client: Optional[mqtt.Client] = None

    # ---------- MQTT ----------
    def start_mqtt_client(self):
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        try:
            mqtt_config = self.config_manager.get_mqtt_config()
            self.client.connect(mqtt_config["ip"], int(mqtt_config["port"]), 60)
            logger.info("Connecting to MQTT broker %s:%s", mqtt_config["ip"], mqtt_config["port"])
            self.client.loop_forever()
        except OSError as e:
            logger.error("MQTT connection error: %s", e)

    def stop_mqtt_client(self):
        if self.client is not None:
            try:
                self.client.disconnect()
                self.client.loop_stop()
                logger.info("MQTT connection closed")
            except Exception as e:
                logger.error("Error while disconnecting from MQTT: %s", e)

    # ---------- MQTT handlers ----------
    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            logger.info("Connected to MQTT broker")
            topic = self.config_manager.get_mqtt_config().get("uplink_topic", "v3/+/devices/+/up")
            client.subscribe(topic)
            logger.info("Subscribed to %s", topic)
        else:
            logger.error("Connection refused: %s", reason_code)

    def handle_payload(self, topic: str, payload: bytes) -> Optional[FixRecord]:
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Undecodable uplink on %s: %s", topic, e)
            return None
        if not isinstance(data, dict):
            logger.warning("Uplink on %s is not a JSON object", topic)
            return None
        device_id = (data.get("end_device_ids") or {}).get("device_id") or device_id_from_topic(topic)
        with self.lock:
            return self.processor.insert_data(device_id, data)

    def on_message(self, client, userdata, msg: MQTTMessage):
        try:
            self.handle_payload(msg.topic, msg.payload)
        except Exception as e:
            # keep the network loop alive; the report is lost
            logger.exception("Error while processing message: %s", e)
