from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .beacon_store import BeaconStore
from .calculator import PositionEstimator
from .config_manager import ConfigManager
from .filters import StabilizationDecision, StabilizationFilter
from .fix_store import FixStore, FixStoreError
from .models import (
    AcceptedFix,
    FixRecord,
    PositionEstimate,
    RawReading,
    ReadingsRejected,
    UplinkMessage,
    UplinkParseError,
)


logger = logging.getLogger(__name__)


class UplinkProcessor:
    """
    Turns one uplink into a persisted fix record:
    parse -> estimate -> compare with the last fix -> append.

    The last-fix read and the append are not isolated from each other;
    concurrent reports for one device resolve as last-write-wins.
    """

    def __init__(
        self,
        beacon_store: BeaconStore,
        fix_store: FixStore,
        estimator: Optional[PositionEstimator] = None,
        stabilizer: Optional[StabilizationFilter] = None,
        proceed_on_read_failure: bool = True,
    ):
        self.beacon_store = beacon_store
        self.fix_store = fix_store
        self.estimator = estimator or PositionEstimator()
        self.stabilizer = stabilizer or StabilizationFilter()
        self.proceed_on_read_failure = proceed_on_read_failure

    @classmethod
    def from_config(cls, config_manager: ConfigManager, fix_store: FixStore) -> "UplinkProcessor":
        beacon_store = BeaconStore(config_manager)
        beacon_store.load()
        return cls(
            beacon_store=beacon_store,
            fix_store=fix_store,
            estimator=PositionEstimator(config_manager.get_estimation_settings()),
            stabilizer=StabilizationFilter(config_manager.get_stabilization_settings()),
        )

    # ---------- Core processing ----------
    def estimate_position(self, readings: List[RawReading]) -> Optional[PositionEstimate]:
        result = self.estimator.build_readings(readings, self.beacon_store.get)
        if isinstance(result, ReadingsRejected):
            return None
        estimate = self.estimator.estimate(result.readings)
        if estimate is None:
            logger.info("No valid beacons in report")
        return estimate

    def _last_fix(self, device_id: str) -> Optional[AcceptedFix]:
        try:
            return self.fix_store.get_last_fix(device_id)
        except FixStoreError as e:
            if not self.proceed_on_read_failure:
                raise
            logger.error("Reading last fix for %s failed, treating as first report: %s", device_id, e)
            return None

    def stabilize(
        self, device_id: str, readings: List[RawReading], estimate: PositionEstimate
    ) -> StabilizationDecision:
        decision = self.stabilizer.evaluate(readings, estimate, self._last_fix(device_id))
        if decision.accepted:
            logger.info(
                "Device %s: new position (%.2f, %.2f) via %s [%s]",
                device_id,
                estimate.x,
                estimate.y,
                estimate.method.value,
                decision.reason,
            )
        else:
            logger.info(
                "Device %s: keeping previous position (rssi change %.2f dBm, position change %.2f m)",
                device_id,
                decision.rssi_change,
                decision.position_change,
            )
        return decision

    def insert_data(
        self, device_id: Optional[str], payload: Dict[str, Any], dry_run: bool = False
    ) -> Optional[FixRecord]:
        """Process one uplink; returns the record written, or None when the report was skipped."""
        try:
            uplink = UplinkMessage.parse(payload, device_id)
        except UplinkParseError as e:
            logger.warning("Malformed uplink skipped: %s", e)
            return None
        if not uplink.is_complete or not uplink.device_id:
            logger.warning("Uplink without pos data, device id or device euid skipped")
            return None

        readings = uplink.readings or []
        estimate = self.estimate_position(readings)
        if estimate is None:
            logger.info("No estimated position for %s, skipping insert", uplink.device_id)
            return None

        decision = self.stabilize(uplink.device_id, readings, estimate)
        record = FixRecord(
            device_id=uplink.device_id,
            device_euid=str(uplink.device_euid),
            battery=uplink.battery,
            position=decision.position,
            # current readings are always kept for the next comparison
            raw_readings=tuple(readings),
        )
        if not dry_run:
            self.fix_store.append(record)
        return record

    # ---------- Queries ----------
    def get_device_data(self, device_id: str, limit: int = 100) -> List[FixRecord]:
        return self.fix_store.history(device_id, limit)

    def get_device_data_by_date(
        self, device_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[FixRecord]:
        return self.fix_store.history_between(device_id, start, end)

    def get_latest_per_device(self) -> Dict[str, FixRecord]:
        return self.fix_store.latest_per_device()
