from __future__ import annotations

import logging
import os
from typing import Dict, Iterable, Optional, cast

import pandas as pd

from .models import Beacon
from .config_manager import ConfigManager


logger = logging.getLogger(__name__)


class BeaconStore:
    """Beacon coordinate registry (pandas + CSV), looked up case-insensitively by mac."""

    def __init__(self, config_manager: Optional[ConfigManager] = None, beacon_file_path: Optional[str] = None):
        # indexed by upper-cased mac
        self._df = pd.DataFrame(columns=["x", "y"])
        self._df.index.name = "mac"
        self._config = config_manager
        self._path = beacon_file_path

    @classmethod
    def from_beacons(cls, beacons: Iterable[Beacon]) -> "BeaconStore":
        """In-memory registry, never written to disk."""
        store = cls()
        rows = [{"mac": b.mac, "x": b.x, "y": b.y} for b in beacons]
        if rows:
            store._df = store._normalize_df(pd.DataFrame(rows))
        return store

    # ---- Utils ----
    @staticmethod
    def _key(mac: str) -> str:
        return mac.strip().upper()

    def _csv_path(self, beacon_file_path: Optional[str] = None) -> str:
        path = beacon_file_path or self._path
        if path is None and self._config is not None:
            path = self._config.get_beacon_db_path()
        if path is None:
            raise ValueError("BeaconStore has no CSV path configured")
        return path

    def _normalize_df(self, df: pd.DataFrame) -> pd.DataFrame:
        if "mac" not in df.columns:
            raise KeyError("beacon CSV is missing the 'mac' column")
        for col in ["x", "y"]:
            if col not in df.columns:
                raise KeyError(f"beacon CSV is missing the '{col}' column")
            df[col] = pd.to_numeric(df[col], errors="coerce")
        invalid = df[df[["x", "y"]].isna().any(axis=1)]
        if not invalid.empty:
            logger.warning("Dropping beacons with invalid coordinates: %s", list(invalid["mac"]))
        df = df.dropna(subset=["x", "y"])
        df = df[["mac", "x", "y"]].copy()
        df["mac"] = df["mac"].astype(str).map(self._key)
        df = df.drop_duplicates(subset=["mac"], keep="last").set_index("mac")
        df = df.astype({"x": "float64", "y": "float64"}, copy=False)
        df.index.name = "mac"
        return df.sort_index()

    # ---- Load/Save ----
    def load(self, beacon_file_path: Optional[str] = None):
        csv_path = self._csv_path(beacon_file_path)
        if not os.path.exists(csv_path):
            logger.warning("Beacon file %s not found, starting with an empty registry", csv_path)
            self._df = pd.DataFrame(columns=["x", "y"])
            self._df.index.name = "mac"
            self.save(csv_path)
            return
        df = pd.read_csv(csv_path, dtype={"mac": str})
        self._df = self._normalize_df(df)
        logger.info("Loaded %d beacons from %s", len(self._df), csv_path)

    def save(self, beacon_file_path: Optional[str] = None):
        csv_path = self._csv_path(beacon_file_path)
        os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
        self._df.to_csv(csv_path, index=True, index_label="mac", encoding="utf-8")

    # ---- CRUD ----
    def add(self, beacon: Beacon):
        # insert or overwrite
        self._df.loc[self._key(beacon.mac)] = [float(beacon.x), float(beacon.y)]
        self._df = self._df.sort_index()
        self.save()

    def update(self, beacon: Beacon) -> bool:
        key = self._key(beacon.mac)
        if key not in self._df.index:
            return False
        self._df.loc[key] = [float(beacon.x), float(beacon.y)]
        self.save()
        return True

    def delete(self, mac: str) -> bool:
        key = self._key(mac)
        if key in self._df.index:
            self._df = self._df.drop(index=key)
            self.save()
            return True
        return False

    # ---- Accessors ----
    def __len__(self) -> int:
        return len(self._df)

    def has(self, mac: str) -> bool:
        return self._key(mac) in self._df.index

    def get(self, mac: str) -> Optional[Beacon]:
        key = self._key(mac)
        if key not in self._df.index:
            return None
        row = cast(pd.Series, self._df.loc[key])
        return Beacon(mac=key, x=float(row.at["x"]), y=float(row.at["y"]))

    def all(self) -> Dict[str, Beacon]:
        result: Dict[str, Beacon] = {}
        for mac_key, row in self._df.iterrows():
            row_s = cast(pd.Series, row)
            mac_str = str(mac_key)
            result[mac_str] = Beacon(mac=mac_str, x=float(row_s.at["x"]), y=float(row_s.at["y"]))
        return result
