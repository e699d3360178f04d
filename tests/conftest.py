from __future__ import annotations

import math
from typing import Dict, List

import pytest

from indoor_locator_server.beacon_store import BeaconStore
from indoor_locator_server.models import Beacon, Reading


def rssi_for_distance(distance: float, tx_power: float = -59.0, n: float = 2.8) -> float:
    return tx_power - 10.0 * n * math.log10(distance)


def make_reading(x: float, y: float, distance: float, rssi: int = -60, mac: str = "") -> Reading:
    return Reading(mac=mac or f"B-{x}-{y}", x=x, y=y, rssi=rssi, distance=distance)


def readings_for(position, beacons, rssi: int = -60) -> List[Reading]:
    """Exact-distance readings from ``position`` to each ``(x, y)`` beacon."""
    px, py = position
    return [make_reading(x, y, math.hypot(px - x, py - y), rssi=rssi) for x, y in beacons]


def uplink(readings: Dict[str, object], dev_eui: str = "70B3D57ED0000001", device_id: str = "tag-1", battery="87%"):
    return {
        "end_device_ids": {"device_id": device_id, "dev_eui": dev_eui},
        "uplink_message": {
            "decoded_payload": {
                "batt_level": battery,
                "pos_data": [{"mac": mac, "rssi": rssi} for mac, rssi in readings.items()],
            }
        },
    }


@pytest.fixture
def beacons() -> List[Beacon]:
    return [
        Beacon(mac="AA:00:00:00:00:01", x=0.0, y=0.0),
        Beacon(mac="AA:00:00:00:00:02", x=20.0, y=0.0),
        Beacon(mac="AA:00:00:00:00:03", x=0.0, y=20.0),
        Beacon(mac="AA:00:00:00:00:04", x=20.0, y=20.0),
    ]


@pytest.fixture
def beacon_store(beacons) -> BeaconStore:
    return BeaconStore.from_beacons(beacons)
