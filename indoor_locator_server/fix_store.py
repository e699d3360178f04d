from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from typing import Dict, List, Optional, Protocol

import pandas as pd

from .models import AcceptedFix, FixRecord, PositionEstimate, RawReading


logger = logging.getLogger(__name__)

COLUMNS = ["created_at", "device_id", "device_euid", "battery", "pos_data", "values"]


class FixStoreError(RuntimeError):
    """The fix store could not be read or written."""


class FixStore(Protocol):
    def append(self, record: FixRecord) -> None: ...

    def get_last_fix(self, device_id: str) -> Optional[AcceptedFix]: ...

    def history(self, device_id: str, limit: int = 100) -> List[FixRecord]: ...

    def history_between(
        self, device_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[FixRecord]: ...

    def latest_per_device(self) -> Dict[str, FixRecord]: ...


def _in_window(record: FixRecord, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and record.created_at < start:
        return False
    if end is not None and record.created_at > end:
        return False
    return True


class InMemoryFixStore:
    """List-backed store; records are kept in insertion order."""

    def __init__(self):
        self._records: List[FixRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def append(self, record: FixRecord) -> None:
        self._records.append(record)

    def _newest_first(self, device_id: str) -> List[FixRecord]:
        return [r for r in reversed(self._records) if r.device_id == device_id]

    def get_last_fix(self, device_id: str) -> Optional[AcceptedFix]:
        records = self._newest_first(device_id)
        return records[0].to_accepted_fix() if records else None

    def history(self, device_id: str, limit: int = 100) -> List[FixRecord]:
        return self._newest_first(device_id)[:limit]

    def history_between(
        self, device_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[FixRecord]:
        return [r for r in self._newest_first(device_id) if _in_window(r, start, end)]

    def latest_per_device(self) -> Dict[str, FixRecord]:
        latest: Dict[str, FixRecord] = {}
        for record in reversed(self._records):
            latest.setdefault(record.device_id, record)
        return latest


class CsvFixStore:
    """Append-only CSV of fix records (pandas); position and raw readings are JSON columns."""

    def __init__(self, csv_path: str):
        self.csv_path = csv_path

    # ---- Codec ----
    @staticmethod
    def _to_row(record: FixRecord) -> Dict[str, object]:
        return {
            "created_at": record.created_at.isoformat(),
            "device_id": record.device_id,
            "device_euid": record.device_euid,
            "battery": "" if record.battery is None else record.battery,
            "pos_data": json.dumps(record.position.to_dict()),
            "values": json.dumps([r.to_dict() for r in record.raw_readings]),
        }

    @staticmethod
    def _from_row(row: pd.Series) -> FixRecord:
        battery = row.at["battery"]
        try:
            return FixRecord(
                device_id=str(row.at["device_id"]),
                device_euid=str(row.at["device_euid"]),
                battery=None if pd.isna(battery) or battery == "" else int(float(battery)),
                position=PositionEstimate.from_dict(json.loads(row.at["pos_data"])),
                raw_readings=tuple(RawReading.parse(item) for item in json.loads(row.at["values"])),
                created_at=datetime.fromisoformat(str(row.at["created_at"])),
            )
        except (ValueError, KeyError, TypeError, AttributeError, OverflowError) as e:
            raise FixStoreError(f"corrupt fix record for device {row.at['device_id']!r}: {e}") from e

    # ---- IO ----
    def _is_empty(self) -> bool:
        return not os.path.exists(self.csv_path) or os.path.getsize(self.csv_path) == 0

    def _read(self) -> pd.DataFrame:
        if self._is_empty():
            return pd.DataFrame(columns=COLUMNS)
        try:
            df = pd.read_csv(
                self.csv_path,
                dtype={"device_id": str, "device_euid": str, "battery": str},
                keep_default_na=False,
            )
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise FixStoreError(f"cannot read fix store {self.csv_path}: {e}") from e
        missing = [c for c in COLUMNS if c not in df.columns]
        if missing:
            raise FixStoreError(f"fix store {self.csv_path} is missing columns {missing}")
        return df

    def _device_rows(self, device_id: str) -> pd.DataFrame:
        df = self._read()
        df = df[df["device_id"] == device_id]
        # stable sort keeps append order for equal timestamps
        return df.iloc[::-1].sort_values("created_at", ascending=False, kind="stable")

    def append(self, record: FixRecord) -> None:
        row = pd.DataFrame([self._to_row(record)], columns=COLUMNS)
        try:
            write_header = self._is_empty()
            os.makedirs(os.path.dirname(self.csv_path) or ".", exist_ok=True)
            row.to_csv(self.csv_path, mode="a", header=write_header, index=False, encoding="utf-8")
        except OSError as e:
            raise FixStoreError(f"cannot write fix store {self.csv_path}: {e}") from e

    def get_last_fix(self, device_id: str) -> Optional[AcceptedFix]:
        rows = self._device_rows(device_id)
        if rows.empty:
            return None
        return self._from_row(rows.iloc[0]).to_accepted_fix()

    def history(self, device_id: str, limit: int = 100) -> List[FixRecord]:
        rows = self._device_rows(device_id).head(limit)
        return [self._from_row(row) for _, row in rows.iterrows()]

    def history_between(
        self, device_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[FixRecord]:
        records = [self._from_row(row) for _, row in self._device_rows(device_id).iterrows()]
        return [r for r in records if _in_window(r, start, end)]

    def latest_per_device(self) -> Dict[str, FixRecord]:
        df = self._read()
        if df.empty:
            return {}
        df = df.iloc[::-1].sort_values("created_at", ascending=False, kind="stable")
        df = df.drop_duplicates(subset=["device_id"], keep="first")
        return {str(row.at["device_id"]): self._from_row(row) for _, row in df.iterrows()}
