from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

from .config_manager import StabilizationSettings
from .models import AcceptedFix, Position, PositionEstimate, RawReading


logger = logging.getLogger(__name__)


def rssi_change(current: Sequence[RawReading], previous: Sequence[RawReading]) -> float:
    """Mean absolute RSSI delta (dBm) over beacons seen in both batches; inf when none overlap."""
    if not previous:
        return math.inf
    previous_rssi = {r.mac.upper(): r.rssi for r in previous}
    deltas = [
        abs(r.rssi - previous_rssi[r.mac.upper()]) for r in current if r.mac.upper() in previous_rssi
    ]
    if not deltas:
        return math.inf
    return sum(deltas) / len(deltas)


def position_change(new: Optional[Position], old: Optional[Position]) -> float:
    if new is None or old is None:
        return math.inf
    return math.hypot(new.x - old.x, new.y - old.y)


@dataclass(frozen=True)
class StabilizationDecision:
    accepted: bool
    position: PositionEstimate
    rssi_change: float
    position_change: float
    reason: str


class StabilizationFilter:
    """
    Hysteresis on accepted fixes.

    A new estimate replaces the previous fix only when the signal environment
    and the computed position both moved enough, or when the signal moved by
    ``rssi_override_factor`` times the base threshold on its own.
    """

    def __init__(self, settings: Optional[StabilizationSettings] = None):
        self.settings = settings or StabilizationSettings()

    def evaluate(
        self,
        current_readings: Sequence[RawReading],
        estimate: PositionEstimate,
        last_fix: Optional[AcceptedFix],
    ) -> StabilizationDecision:
        if last_fix is None:
            return StabilizationDecision(
                accepted=True,
                position=estimate,
                rssi_change=math.inf,
                position_change=math.inf,
                reason="cold start",
            )

        s = self.settings
        d_rssi = rssi_change(current_readings, last_fix.source_readings)
        d_pos = position_change(estimate.position, last_fix.position.position)
        logger.debug(
            "RSSI change: %.2f dBm (threshold %.2f), position change: %.2f m (threshold %.2f)",
            d_rssi,
            s.min_rssi_change,
            d_pos,
            s.min_position_change,
        )

        if d_rssi >= s.min_rssi_change * s.rssi_override_factor:
            reason = "large rssi change"
        elif d_rssi >= s.min_rssi_change and d_pos >= s.min_position_change:
            reason = "rssi and position change"
        else:
            return StabilizationDecision(
                accepted=False,
                position=last_fix.position,
                rssi_change=d_rssi,
                position_change=d_pos,
                reason="no significant change",
            )
        return StabilizationDecision(
            accepted=True,
            position=estimate,
            rssi_change=d_rssi,
            position_change=d_pos,
            reason=reason,
        )
