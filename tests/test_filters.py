from __future__ import annotations

import math

import pytest

from indoor_locator_server.config_manager import StabilizationSettings
from indoor_locator_server.filters import StabilizationFilter, position_change, rssi_change
from indoor_locator_server.models import (
    AcceptedFix,
    EstimationMethod,
    Position,
    PositionEstimate,
    RawReading,
)


def _readings(*pairs):
    return [RawReading(mac=mac, rssi=rssi) for mac, rssi in pairs]


def _estimate(x: float, y: float) -> PositionEstimate:
    return PositionEstimate(x=x, y=y, method=EstimationMethod.TRILATERATION, mean_error=0.5)


PREVIOUS = _readings(("A", -60), ("B", -70), ("C", -80))
LAST_FIX = AcceptedFix(position=_estimate(10.0, 10.0), source_readings=tuple(PREVIOUS))


def test_rssi_change_averages_common_beacons_case_insensitively() -> None:
    current = _readings(("a", -64), ("B", -76), ("D", -50))

    assert rssi_change(current, PREVIOUS) == pytest.approx(5.0)


def test_rssi_change_without_overlap_is_infinite() -> None:
    assert rssi_change(_readings(("X", -60)), PREVIOUS) == math.inf
    assert rssi_change(PREVIOUS, []) == math.inf


def test_position_change() -> None:
    assert position_change(Position(0, 0), Position(3, 4)) == pytest.approx(5.0)
    assert position_change(None, Position(3, 4)) == math.inf


def test_cold_start_accepts() -> None:
    estimate = _estimate(1.0, 2.0)

    decision = StabilizationFilter().evaluate(PREVIOUS, estimate, None)

    assert decision.accepted
    assert decision.position == estimate


def test_identical_readings_keep_previous_position() -> None:
    for new in (_estimate(10.0, 10.0), _estimate(30.0, 25.0), _estimate(0.0, 0.0)):
        decision = StabilizationFilter().evaluate(PREVIOUS, new, LAST_FIX)

        assert not decision.accepted
        assert decision.position == LAST_FIX.position
        assert decision.rssi_change == 0.0


def test_large_rssi_change_accepts_without_movement() -> None:
    current = _readings(("A", -70), ("B", -80), ("C", -90))

    decision = StabilizationFilter().evaluate(current, _estimate(10.0, 10.0), LAST_FIX)

    assert decision.accepted
    assert decision.rssi_change == pytest.approx(10.0)
    assert decision.position_change == 0.0


def test_moderate_rssi_change_needs_movement() -> None:
    current = _readings(("A", -66), ("B", -76), ("C", -86))
    stabilizer = StabilizationFilter()

    held = stabilizer.evaluate(current, _estimate(10.5, 10.5), LAST_FIX)
    moved = stabilizer.evaluate(current, _estimate(12.0, 10.0), LAST_FIX)

    assert not held.accepted
    assert held.position == LAST_FIX.position
    assert moved.accepted
    assert moved.position == _estimate(12.0, 10.0)


def test_small_rssi_change_holds_even_with_movement() -> None:
    current = _readings(("A", -62), ("B", -72), ("C", -82))

    decision = StabilizationFilter().evaluate(current, _estimate(30.0, 20.0), LAST_FIX)

    assert not decision.accepted


def test_disjoint_beacons_accept() -> None:
    current = _readings(("X", -60), ("Y", -61), ("Z", -62))

    decision = StabilizationFilter().evaluate(current, _estimate(10.0, 10.0), LAST_FIX)

    assert decision.accepted
    assert decision.rssi_change == math.inf


def test_thresholds_are_configurable() -> None:
    current = _readings(("A", -63), ("B", -73), ("C", -83))
    settings = StabilizationSettings(min_rssi_change=1.0, min_position_change=0.5, rssi_override_factor=3.0)

    decision = StabilizationFilter(settings).evaluate(current, _estimate(10.0, 10.0), LAST_FIX)

    # 3 dBm >= 1.0 * 3.0 overrides the missing displacement
    assert decision.accepted
