from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, cast

import numpy as np

from .config_manager import EstimationSettings, RssiModel
from .models import (
    Beacon,
    EstimationMethod,
    FloorBounds,
    Position,
    PositionEstimate,
    RawReading,
    Reading,
    ReadingsAccepted,
    ReadingsRejected,
    ReadingsResult,
)


logger = logging.getLogger(__name__)

BeaconLookup = Callable[[str], Optional[Beacon]]


def rssi_to_distance(rssi: float, tx_power: float = -59.0, path_loss_exponent: float = 2.8) -> float:
    """
    Log-distance path-loss model, distance in metres.

    The result is not capped; callers clamp it to the configured maximum.
    """
    exponent = (tx_power - rssi) / (10.0 * path_loss_exponent)
    try:
        return math.pow(10, exponent)
    except OverflowError:
        return math.inf


def build_readings(
    raw_readings: Sequence[RawReading],
    lookup: BeaconLookup,
    model: RssiModel = RssiModel(),
) -> ReadingsResult:
    """Join raw readings with the beacon registry.

    All-or-nothing: a single unknown beacon rejects the whole batch.
    """
    resolved = [(raw, lookup(raw.mac)) for raw in raw_readings]
    unknown = tuple(raw.mac for raw, beacon in resolved if beacon is None)
    if unknown:
        logger.warning("Unknown beacon(s) %s, discarding the whole batch", ", ".join(unknown))
        return ReadingsRejected(reason="unknown beacon", unknown_macs=unknown)

    readings = []
    for raw, beacon in cast(List[Tuple[RawReading, Beacon]], resolved):
        d = rssi_to_distance(raw.rssi, model.tx_power, model.path_loss_exponent)
        readings.append(
            Reading(
                mac=beacon.mac,
                x=beacon.x,
                y=beacon.y,
                rssi=raw.rssi,
                distance=min(d, model.max_distance),
            )
        )
    return ReadingsAccepted(readings=tuple(readings))


def weighted_centroid(
    readings: Sequence[Reading],
    bounds: FloorBounds = FloorBounds(),
    epsilon: float = 1e-6,
) -> Position:
    """Inverse-squared-distance weighted mean of the beacon coordinates, clamped to the floor."""
    if not readings:
        raise ValueError("weighted_centroid needs at least one reading")
    if len(readings) == 1:
        return bounds.clamp(readings[0].x, readings[0].y)
    coords = np.array([(r.x, r.y) for r in readings], dtype=float)
    distances = np.array([r.distance for r in readings], dtype=float)
    # nearer beacons weigh more
    weights = 1.0 / (distances**2 + epsilon)
    x, y = np.average(coords, axis=0, weights=weights)
    return bounds.clamp(float(x), float(y))


@dataclass(frozen=True)
class Trilateration:
    x: float
    y: float
    used: Tuple[Reading, ...]


def trilaterate(
    readings: Sequence[Reading],
    max_readings: int = 5,
    det_epsilon: float = 1e-6,
) -> Optional[Trilateration]:
    """
    Linearised least-squares trilateration (2D).

    The nearest reading is the reference; every other circle is subtracted
    from it, which leaves one linear equation per reading:

        dx * x + dy * y = 0.5 * ((Px² - Rx²) + (Py² - Ry²) + (Rd² - Pd²))

    The normal equations are solved over all of them at once. Returns None
    with fewer than 3 readings or when the 2x2 system is (nearly) singular.
    """
    if len(readings) < 3:
        return None

    used = tuple(sorted(readings, key=lambda r: r.distance)[:max_readings])
    ref, others = used[0], used[1:]

    a = np.array([(p.x - ref.x, p.y - ref.y) for p in others], dtype=float)
    b = np.array(
        [
            0.5 * ((p.x**2 - ref.x**2) + (p.y**2 - ref.y**2) + (ref.distance**2 - p.distance**2))
            for p in others
        ],
        dtype=float,
    )

    ata = a.T @ a
    atb = a.T @ b
    det = ata[0, 0] * ata[1, 1] - ata[0, 1] ** 2
    if abs(det) < det_epsilon:
        return None

    inverse = np.array([[ata[1, 1], -ata[0, 1]], [-ata[0, 1], ata[0, 0]]]) / det
    x, y = inverse @ atb
    return Trilateration(x=float(x), y=float(y), used=used)


def mean_error(position: Optional[Position], readings: Sequence[Reading]) -> float:
    """Mean absolute gap between geometric and measured distance; inf when there is nothing to score."""
    if position is None or not readings:
        return math.inf
    coords = np.array([(r.x, r.y) for r in readings], dtype=float)
    measured = np.array([r.distance for r in readings], dtype=float)
    modelled = np.hypot(coords[:, 0] - position.x, coords[:, 1] - position.y)
    return float(np.mean(np.abs(modelled - measured)))


class PositionEstimator:
    """Chooses between trilateration and the weighted centroid for one report."""

    def __init__(self, settings: Optional[EstimationSettings] = None):
        self.settings = settings or EstimationSettings()

    def build_readings(self, raw_readings: Sequence[RawReading], lookup: BeaconLookup) -> ReadingsResult:
        return build_readings(raw_readings, lookup, self.settings.rssi_model)

    def estimate(self, readings: Sequence[Reading]) -> Optional[PositionEstimate]:
        if not readings:
            return None
        s = self.settings

        centroid = weighted_centroid(readings, s.floor, s.centroid_epsilon)

        strong = [r for r in readings if r.rssi >= s.min_rssi_for_trilateration]
        candidates = strong if len(strong) >= 3 else list(readings)

        trilat: Optional[Position] = None
        error = math.inf
        if len(candidates) >= 3:
            raw = trilaterate(candidates, s.max_trilateration_readings, s.determinant_epsilon)
            if raw is not None:
                trilat = s.floor.clamp(raw.x, raw.y)
                error = mean_error(trilat, candidates)

        if trilat is not None and error <= s.max_mean_error:
            return PositionEstimate(
                x=trilat.x, y=trilat.y, method=EstimationMethod.TRILATERATION, mean_error=error
            )

        method = EstimationMethod.CENTROID_FALLBACK if trilat is not None else EstimationMethod.CENTROID_ONLY
        return PositionEstimate(x=centroid.x, y=centroid.y, method=method, mean_error=error)
