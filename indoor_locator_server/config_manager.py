from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable

import yaml

from .models import FloorBounds


logger = logging.getLogger(__name__)


def _env_or_default(env_key: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    v = os.environ.get(env_key)
    if v is not None:
        try:
            return cast(v)
        except Exception:
            return v
    return default


DEFAULT_CONFIG_PATH = _env_or_default(
    "INDOOR_LOCATOR_CONFIG",
    os.path.join(".", "config", "config.yaml"),
)


@dataclass(frozen=True)
class RssiModel:
    """Log-distance path-loss model parameters."""

    tx_power: float = -59.0
    path_loss_exponent: float = 2.8
    max_distance: float = 40.0


@dataclass(frozen=True)
class EstimationSettings:
    floor: FloorBounds = field(default_factory=FloorBounds)
    rssi_model: RssiModel = field(default_factory=RssiModel)
    min_rssi_for_trilateration: float = -90.0
    max_mean_error: float = 5.0
    max_trilateration_readings: int = 5
    determinant_epsilon: float = 1e-6
    centroid_epsilon: float = 1e-6


@dataclass(frozen=True)
class StabilizationSettings:
    min_rssi_change: float = 5.0
    min_position_change: float = 1.5
    # rssi_change >= min_rssi_change * factor accepts regardless of displacement
    rssi_override_factor: float = 2.0


class ConfigManager:
    """Reads and writes the YAML configuration file."""

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or DEFAULT_CONFIG_PATH
        self.default_config = {
            "mqtt": {
                "ip": _env_or_default("LOCATOR_MQTT_IP", "localhost"),
                "port": _env_or_default("LOCATOR_MQTT_PORT", 1883, int),
                "uplink_topic": _env_or_default("LOCATOR_MQTT_UPLINK_TOPIC", "v3/+/devices/+/up"),
            },
            "floor": {
                "width": _env_or_default("LOCATOR_FLOOR_WIDTH", 40.0, float),
                "height": _env_or_default("LOCATOR_FLOOR_HEIGHT", 30.0, float),
            },
            "rssi_model": {
                "tx_power": _env_or_default("LOCATOR_RSSI_TX_POWER", -59.0, float),
                "path_loss_exponent": _env_or_default("LOCATOR_RSSI_PATH_LOSS", 2.8, float),
                "max_distance": _env_or_default("LOCATOR_RSSI_MAX_DISTANCE", 40.0, float),
            },
            "estimation": {
                "min_rssi_for_trilateration": _env_or_default("LOCATOR_MIN_RSSI_FOR_TRILAT", -90.0, float),
                "max_mean_error": _env_or_default("LOCATOR_MAX_MEAN_ERROR", 5.0, float),
                "max_trilateration_readings": _env_or_default("LOCATOR_MAX_TRILAT_READINGS", 5, int),
                "determinant_epsilon": 1e-6,
                "centroid_epsilon": 1e-6,
            },
            "stabilization": {
                "min_rssi_change": _env_or_default("LOCATOR_MIN_RSSI_CHANGE", 5.0, float),
                "min_position_change": _env_or_default("LOCATOR_MIN_POSITION_CHANGE", 1.5, float),
                "rssi_override_factor": _env_or_default("LOCATOR_RSSI_OVERRIDE_FACTOR", 2.0, float),
            },
            "paths": {
                "beacon_db": _env_or_default(
                    "LOCATOR_PATH_BEACON_DB", os.path.join(".", "beacon", "beacons.csv")
                ),
                "fix_db": _env_or_default(
                    "LOCATOR_PATH_FIX_DB", os.path.join(".", "output", "fixes.csv")
                ),
            },
        }
        self.load_config()

    def load_config(self) -> None:
        """Load the config file; write the defaults when it does not exist yet."""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r", encoding="utf-8") as f:
                    self.config = yaml.safe_load(f) or {}
                self._merge_default_config()
            else:
                self.config = copy.deepcopy(self.default_config)
                self.save_config()
        except yaml.YAMLError as e:
            logger.warning("Invalid config file %s, using defaults: %s", self.config_file, e)
            self.config = copy.deepcopy(self.default_config)

    def _merge_default_config(self) -> None:
        def merge_dict(default, current):
            for key, value in default.items():
                if key not in current:
                    current[key] = copy.deepcopy(value)
                elif isinstance(value, dict) and isinstance(current[key], dict):
                    merge_dict(value, current[key])

        merge_dict(self.default_config, self.config)

    def save_config(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    indent=2,
                )
        except OSError as e:
            logger.warning("Could not save config file %s: %s", self.config_file, e)

    # ---------- Accessors ----------
    def get_mqtt_config(self):
        return self.config["mqtt"]

    def get_rssi_model_config(self):
        return self.config["rssi_model"]

    def get_paths(self):
        return self.config.get("paths", {})

    def get_beacon_db_path(self):
        return self.get_paths()["beacon_db"]

    def get_fix_db_path(self):
        return self.get_paths()["fix_db"]

    def get_floor_bounds(self) -> FloorBounds:
        floor = self.config["floor"]
        return FloorBounds(width=float(floor["width"]), height=float(floor["height"]))

    def get_rssi_model(self) -> RssiModel:
        rssi = self.get_rssi_model_config()
        return RssiModel(
            tx_power=float(rssi["tx_power"]),
            path_loss_exponent=float(rssi["path_loss_exponent"]),
            max_distance=float(rssi["max_distance"]),
        )

    def get_estimation_settings(self) -> EstimationSettings:
        est = self.config["estimation"]
        return EstimationSettings(
            floor=self.get_floor_bounds(),
            rssi_model=self.get_rssi_model(),
            min_rssi_for_trilateration=float(est["min_rssi_for_trilateration"]),
            max_mean_error=float(est["max_mean_error"]),
            max_trilateration_readings=int(est["max_trilateration_readings"]),
            determinant_epsilon=float(est["determinant_epsilon"]),
            centroid_epsilon=float(est["centroid_epsilon"]),
        )

    def get_stabilization_settings(self) -> StabilizationSettings:
        stab = self.config["stabilization"]
        return StabilizationSettings(
            min_rssi_change=float(stab["min_rssi_change"]),
            min_position_change=float(stab["min_position_change"]),
            rssi_override_factor=float(stab["rssi_override_factor"]),
        )

