"""HistoricalWeatherIndex — a time-indexed, read-only weather series.

Backed by a pandas DataFrame with a sorted, unique UTC DatetimeIndex.
Lookups never mutate the frame, so one index is safely shared by every
simulation instance in the process.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

import pandas as pd

REQUIRED_COLUMNS = ("datetime", "temp", "humidity", "windspeed", "conditions")


@dataclass(frozen=True)
class HistoricalRecord:
    """One row of the historical dataset, resolved for a lookup."""

    timestamp: datetime
    temperature: float
    humidity: float
    wind_speed: float
    precipitation: float | None
    conditions: str
    exact: bool
    time_diff_seconds: int


class HistoricalWeatherIndex:
    """Exact / nearest-within-tolerance lookups over historical weather."""

    def __init__(self, frame: pd.DataFrame) -> None:
        if frame.empty:
            raise ValueError("historical weather frame is empty")
        if not isinstance(frame.index, pd.DatetimeIndex):
            raise ValueError("historical weather frame must be indexed by datetime")
        self._frame = frame

    @classmethod
    def from_csv(cls, path: Path) -> HistoricalWeatherIndex:
        """Parse a weather CSV into an index.

        Raises:
            OSError: If the file cannot be read.
            ValueError: If the file is empty, malformed, or lacks columns.
        """
        frame = pd.read_csv(path)
        missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
        if missing:
            raise ValueError(f"weather CSV missing columns: {missing}")

        stamps = pd.to_datetime(frame["datetime"], errors="coerce")
        if stamps.dt.tz is None:
            stamps = stamps.dt.tz_localize("UTC")
        else:
            stamps = stamps.dt.tz_convert("UTC")

        numeric = {
            col: pd.to_numeric(frame[col], errors="coerce")
            for col in ("temp", "humidity", "windspeed")
        }
        precip = (
            pd.to_numeric(frame["precip"], errors="coerce")
            if "precip" in frame.columns
            else float("nan")
        )
        frame = frame.assign(
            datetime=stamps,
            precip=precip,
            conditions=frame["conditions"].fillna("").astype(str).str.strip('"'),
            **numeric,
        ).dropna(subset=["datetime", "temp", "humidity", "windspeed"])

        frame = frame.set_index("datetime").sort_index(kind="mergesort")
        frame = frame[~frame.index.duplicated(keep="first")]
        return cls(frame)

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def start(self) -> datetime:
        return self._frame.index[0].to_pydatetime()

    @property
    def end(self) -> datetime:
        return self._frame.index[-1].to_pydatetime()

    @property
    def record_count(self) -> int:
        return len(self._frame)

    def lookup(self, when: datetime, tolerance: timedelta) -> HistoricalRecord | None:
        """Return the record at *when*, else the nearest one within *tolerance*."""
        target = pd.Timestamp(when)
        target = target.tz_localize("UTC") if target.tzinfo is None else target.tz_convert("UTC")

        positions = self._frame.index.get_indexer(
            [target], method="nearest", tolerance=pd.Timedelta(tolerance)
        )
        pos = int(positions[0])
        if pos < 0:
            return None

        stamp = self._frame.index[pos]
        row = self._frame.iloc[pos]
        diff = abs((stamp - target).total_seconds())
        precipitation = row["precip"]
        return HistoricalRecord(
            timestamp=stamp.to_pydatetime(),
            temperature=float(row["temp"]),
            humidity=float(row["humidity"]),
            wind_speed=float(row["windspeed"]),
            precipitation=None if pd.isna(precipitation) else float(precipitation),
            conditions=str(row["conditions"]),
            exact=diff == 0,
            time_diff_seconds=round(diff),
        )
