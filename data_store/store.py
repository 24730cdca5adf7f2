"""Thread-safe DataFrame store for polled power-supply measurements.

The poller thread appends through DataStore.record(); API handlers read
concurrently, so every access goes through one lock.
"""

import logging
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Optional

import pandas as pd

from data_store.schemas import SCHEMA, update_to_row
from psu_lib.models import PollUpdate

logger = logging.getLogger(__name__)


class DataStore:
    """Thread-safe in-memory DataFrame of measurements.

    Keeps at most max_rows rows; older rows are trimmed after appends.
    """

    def __init__(self, max_rows: int = 100000) -> None:
        """Initialize empty DataFrame store.

        Args:
            max_rows: Maximum rows to keep in memory.
        """
        if max_rows <= 0:
            raise ValueError(f"max_rows must be positive, got {max_rows}")

        self._lock = RLock()
        self._df = pd.DataFrame(columns=list(SCHEMA.keys()))
        self._max_rows = max_rows

    def record(self, update: PollUpdate) -> None:
        """Append a poll update if it carries a measurement.

        Suitable as a PowerSupplySession on_update callback. Failed ticks
        are not recorded.
        """
        if not update.ok:
            return
        self.append_row(update_to_row(update))

    def append_row(self, row: dict) -> None:
        """Append one normalized row and trim to max_rows."""
        with self._lock:
            new_df = pd.DataFrame([row], columns=list(SCHEMA.keys()))
            if self._df.empty:
                self._df = new_df
            else:
                self._df = pd.concat([self._df, new_df], ignore_index=True)

            if len(self._df) > self._max_rows:
                excess = len(self._df) - self._max_rows
                self._df = self._df.iloc[excess:].reset_index(drop=True)
                logger.debug(f"Trimmed {excess} oldest rows, now {len(self._df)} rows")

    def get_dataframe(self) -> pd.DataFrame:
        """Copy of the entire DataFrame."""
        with self._lock:
            return self._df.copy()

    def get_latest(self) -> Optional[dict]:
        """Most recent row as a dictionary, or None if empty."""
        with self._lock:
            if self._df.empty:
                return None
            return self._df.iloc[-1].to_dict()

    def get_stats(self) -> dict:
        """Summary statistics about stored data.

        Returns:
            Dictionary with keys:
                - row_count: Number of measurements
                - start_time / end_time: ISO timestamps (or None)
                - duration_s: Time span of data in seconds
                - mean_voltage / mean_current / max_power: (or None)
        """
        with self._lock:
            if self._df.empty:
                return {
                    "row_count": 0,
                    "start_time": None,
                    "end_time": None,
                    "duration_s": 0.0,
                    "mean_voltage": None,
                    "mean_current": None,
                    "max_power": None,
                }

            timestamps = pd.to_datetime(self._df["timestamp"], format="ISO8601", utc=True)
            start = timestamps.iloc[0]
            end = timestamps.iloc[-1]

            return {
                "row_count": len(self._df),
                "start_time": start.isoformat(),
                "end_time": end.isoformat(),
                "duration_s": (end - start).total_seconds(),
                "mean_voltage": float(self._df["voltage"].astype(float).mean()),
                "mean_current": float(self._df["current"].astype(float).mean()),
                "max_power": float(self._df["power"].astype(float).max()),
            }

    def export_csv(self, path: Optional[str] = None) -> str:
        """Export DataFrame to CSV file.

        Args:
            path: Output file path. If None, generates timestamped filename.

        Returns:
            Absolute path to exported file
        """
        with self._lock:
            if path is None:
                timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
                path = f"psu_data_{timestamp}.csv"

            self._df.to_csv(path, index=False)
            abs_path = str(Path(path).resolve())
            logger.info(f"Exported {len(self._df)} rows to CSV: {abs_path}")
            return abs_path

    def clear(self) -> None:
        """Clear all stored data."""
        with self._lock:
            self._df = pd.DataFrame(columns=list(SCHEMA.keys()))
            logger.debug("DataStore cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._df)
