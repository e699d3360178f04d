from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


_BATTERY_RE = re.compile(r"\s*([+-]?\d+)")


class UplinkParseError(ValueError):
    """Raised when an uplink payload carries a value that cannot be parsed."""


@dataclass(frozen=True)
class Position:
    x: float
    y: float


@dataclass(frozen=True)
class FloorBounds:
    width: float = 40.0
    height: float = 30.0

    def clamp(self, x: float, y: float) -> Position:
        x = max(0.0, min(self.width, x))
        y = max(0.0, min(self.height, y))
        return Position(x=float(x), y=float(y))


@dataclass(frozen=True)
class Beacon:
    mac: str
    x: float
    y: float


@dataclass(frozen=True)
class RawReading:
    mac: str
    rssi: int

    @classmethod
    def parse(cls, item: Dict[str, Any]) -> "RawReading":
        """Parse one ``pos_data`` entry, e.g. ``{"mac": "AA:BB", "rssi": "-70dBm"}``."""
        if not isinstance(item, dict):
            raise UplinkParseError(f"reading is not an object: {item!r}")
        mac = item.get("mac")
        if not mac:
            raise UplinkParseError(f"reading without mac: {item!r}")
        return cls(mac=str(mac), rssi=parse_rssi(item.get("rssi")))

    def to_dict(self) -> Dict[str, Any]:
        return {"mac": self.mac, "rssi": f"{self.rssi}dBm"}


def parse_rssi(value: Any) -> int:
    if isinstance(value, bool):
        raise UplinkParseError(f"invalid rssi: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise UplinkParseError(f"invalid rssi: {value!r}")
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if text.lower().endswith("dbm"):
            text = text[:-3].strip()
        try:
            return int(text)
        except ValueError:
            raise UplinkParseError(f"invalid rssi: {value!r}") from None
    raise UplinkParseError(f"invalid rssi: {value!r}")


def parse_battery(value: Any) -> Optional[int]:
    """``"85%"`` -> 85, ``"85.5%"`` -> 85. Returns None for a missing or unparsable value."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    # leading integer part only
    match = _BATTERY_RE.match(str(value))
    return int(match.group(1)) if match else None


@dataclass(frozen=True)
class Reading:
    mac: str
    x: float
    y: float
    rssi: int
    distance: float


class EstimationMethod(Enum):
    TRILATERATION = "trilateration"
    CENTROID_FALLBACK = "centroid_fallback"
    CENTROID_ONLY = "centroid_only"


@dataclass(frozen=True)
class PositionEstimate:
    x: float
    y: float
    method: EstimationMethod
    mean_error: float = math.inf

    @property
    def position(self) -> Position:
        return Position(x=self.x, y=self.y)

    def to_dict(self) -> Dict[str, Any]:
        # JSON has no infinity; an unscored fit is written as null
        return {
            "x": self.x,
            "y": self.y,
            "method": self.method.value,
            "error": self.mean_error if math.isfinite(self.mean_error) else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PositionEstimate":
        error = data.get("error")
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            method=EstimationMethod(data.get("method", EstimationMethod.CENTROID_ONLY.value)),
            mean_error=math.inf if error is None else float(error),
        )


@dataclass(frozen=True)
class AcceptedFix:
    """Last state written for a device: the persisted position and the raw readings of that report."""

    position: PositionEstimate
    source_readings: Tuple[RawReading, ...] = ()


@dataclass(frozen=True)
class FixRecord:
    device_id: str
    device_euid: str
    position: PositionEstimate
    raw_readings: Tuple[RawReading, ...]
    battery: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "device_euid": self.device_euid,
            "battery": self.battery,
            "pos_data": self.position.to_dict(),
            "values": [r.to_dict() for r in self.raw_readings],
            "created_at": self.created_at.isoformat(),
        }

    def to_accepted_fix(self) -> AcceptedFix:
        return AcceptedFix(position=self.position, source_readings=self.raw_readings)


@dataclass(frozen=True)
class ReadingsAccepted:
    readings: Tuple[Reading, ...]


@dataclass(frozen=True)
class ReadingsRejected:
    reason: str
    unknown_macs: Tuple[str, ...] = ()


ReadingsResult = Union[ReadingsAccepted, ReadingsRejected]


@dataclass(frozen=True)
class UplinkMessage:
    """
    Uplink payload in The Things Network v3 layout::

        {"end_device_ids": {"device_id": ..., "dev_eui": ...},
         "uplink_message": {"decoded_payload": {"batt_level": "85%",
                                                "pos_data": [{"mac": ..., "rssi": "-70dBm"}]}}}
    """

    device_id: Optional[str]
    device_euid: Optional[str]
    battery: Optional[int]
    readings: Optional[List[RawReading]]

    @property
    def is_complete(self) -> bool:
        return bool(self.readings) and bool(self.device_euid)

    @classmethod
    def parse(cls, data: Dict[str, Any], device_id: Optional[str] = None) -> "UplinkMessage":
        ids = data.get("end_device_ids") or {}
        decoded = (data.get("uplink_message") or {}).get("decoded_payload") or {}
        pos_data = decoded.get("pos_data")
        if pos_data is not None and not isinstance(pos_data, list):
            raise UplinkParseError(f"pos_data must be a list, got {type(pos_data).__name__}")
        readings = [RawReading.parse(item) for item in pos_data] if pos_data else None
        return cls(
            device_id=device_id or ids.get("device_id"),
            device_euid=ids.get("dev_eui"),
            battery=parse_battery(decoded.get("batt_level")),
            readings=readings,
        )
