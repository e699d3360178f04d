"""Indoor Locator Server package.

This package provides:
- ConfigManager: YAML-based configuration management
- BeaconStore: CSV beacon registry (pandas)
- PositionEstimator: RSSI-based trilateration with weighted-centroid fallback
- StabilizationFilter: hysteresis between consecutive fixes of a device
- UplinkProcessor: uplink parsing, estimation and fix persistence
- MQTTDataProcessor: MQTT ingestion of uplinks
"""

from .config_manager import ConfigManager, EstimationSettings, RssiModel, StabilizationSettings
from .beacon_store import BeaconStore
from .calculator import PositionEstimator
from .filters import StabilizationFilter
from .fix_store import CsvFixStore, FixStoreError, InMemoryFixStore
from .processor import UplinkProcessor
from .mqtt_processor import MQTTDataProcessor

__all__ = [
    "ConfigManager",
    "EstimationSettings",
    "RssiModel",
    "StabilizationSettings",
    "BeaconStore",
    "PositionEstimator",
    "StabilizationFilter",
    "CsvFixStore",
    "FixStoreError",
    "InMemoryFixStore",
    "UplinkProcessor",
    "MQTTDataProcessor",
]
