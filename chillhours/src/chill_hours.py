"""Chill hours: bucket temperature readings by local hour, count the cold ones.

An hour is a chill hour when at least half of its readings fall inside the
configured range (32-45°F by default). Every hour with at least one reading
counts toward the total, however few readings it has.
"""

import math
import warnings
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Iterable

import pandas as pd

from .ambient import Sample

DEFAULT_MIN_TEMP_F = 32.0
DEFAULT_MAX_TEMP_F = 45.0
CHILL_FRACTION = 0.5
MIN_COVERAGE_PERCENT = 80
MS_PER_DAY = 86_400_000


class CoverageWarning(UserWarning):
    """Readings span too little of the season for the total to be trusted."""


@dataclass(frozen=True)
class ChillConfig:
    min_temp_f: float = DEFAULT_MIN_TEMP_F
    max_temp_f: float = DEFAULT_MAX_TEMP_F
    timezone: str = "UTC"  # hour buckets and calendar days use this zone
    min_coverage_percent: int = MIN_COVERAGE_PERCENT


@dataclass(frozen=True)
class Report:
    total_hours: int
    chill_hours: int
    percent_chill_hours: float
    period_label: str

    @classmethod
    def empty(cls, label: str) -> "Report":
        return cls(total_hours=0, chill_hours=0, percent_chill_hours=0.0, period_label=label)


@dataclass(frozen=True)
class SeasonWindow:
    start: date
    end: date  # inclusive

    @classmethod
    def for_year(cls, start_month: int, year: int) -> "SeasonWindow":
        """Season ending in ``year``.

        Jan-Jun starts run to Dec 31 of the same year; Jul-Dec starts begin in
        the previous year and end the day before the start month comes round.
        """
        if not 1 <= start_month <= 12:
            raise ValueError(f"start_month must be 1-12, got {start_month}")
        if start_month <= 6:
            return cls(date(year, start_month, 1), date(year, 12, 31))
        return cls(
            date(year - 1, start_month, 1),
            date(year, start_month, 1) - timedelta(days=1),
        )

    @property
    def total_days(self) -> int:
        return (self.end - self.start).days

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end

    def label(self) -> str:
        return f"{self.start.isoformat()} to {self.end.isoformat()}"


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def days_between(start_ms: int, end_ms: int) -> int:
    """Whole days between two epoch-ms timestamps, rounded to nearest."""
    return _round_half_up((end_ms - start_ms) / MS_PER_DAY)


def percent(part: int, whole: int) -> float:
    return 100.0 * part / whole if whole > 0 else 0.0


def samples_to_frame(samples: Iterable[Sample], tz: str) -> pd.DataFrame:
    """Build a frame of readings with a tz-aware local ``timestamp``, sorted ascending.

    Readings without a usable temperature are dropped.
    """
    df = pd.DataFrame(
        [(s.timestamp_utc, s.temperature_f) for s in samples],
        columns=["timestamp_utc", "temperature_f"],
    )
    df["timestamp_utc"] = df["timestamp_utc"].astype("int64")
    df["temperature_f"] = pd.to_numeric(df["temperature_f"], errors="coerce")
    df = df.dropna(subset=["temperature_f"])
    df["timestamp"] = pd.to_datetime(df["timestamp_utc"], unit="ms", utc=True).dt.tz_convert(tz)
    return df.sort_values("timestamp_utc", kind="stable").reset_index(drop=True)


def bucket_by_hour(frame: pd.DataFrame, min_temp: float, max_temp: float) -> pd.DataFrame:
    """One row per local (year, month, day, hour) with reading counts and the verdict.

    Columns: samples, in_range, is_chill. The wall-clock hour repeated when
    DST ends shares one bucket.
    """
    local = frame["timestamp"]
    keys = [
        local.dt.year.rename("year"),
        local.dt.month.rename("month"),
        local.dt.day.rename("day"),
        local.dt.hour.rename("hour"),
    ]
    # between() is inclusive on both ends
    grouped = frame["temperature_f"].between(min_temp, max_temp).groupby(keys)
    buckets = pd.DataFrame(
        {
            "samples": grouped.size(),
            "in_range": grouped.sum().astype(int),
        }
    )
    buckets["is_chill"] = buckets["in_range"] / buckets["samples"] >= CHILL_FRACTION
    return buckets


class ChillHourAggregator:
    def __init__(self, config: ChillConfig | None = None):
        self.config = config or ChillConfig()

    def summarize(
        self,
        samples: Iterable[Sample],
        min_temp: float | None = None,
        max_temp: float | None = None,
    ) -> Report:
        """Chill hour report over all readings given."""
        frame = samples_to_frame(samples, self.config.timezone)
        if frame.empty:
            return Report.empty("no data")
        return self._report(frame, min_temp, max_temp)

    def summarize_season(
        self,
        samples: Iterable[Sample],
        season_start_month: int,
        year: int | None = None,
    ) -> Report:
        """Chill hour report limited to the season ending in ``year``.

        Issues a CoverageWarning when the readings span less than
        ``min_coverage_percent`` of the season. Year defaults to the current one.
        """
        tz = self.config.timezone
        if year is None:
            year = pd.Timestamp.now(tz=tz).year
        window = SeasonWindow.for_year(season_start_month, year)

        frame = samples_to_frame(samples, tz)
        if not frame.empty:
            local_dates = frame["timestamp"].dt.date
            frame = frame[(local_dates >= window.start) & (local_dates <= window.end)]

        print(f"  Season {window.label()} ({window.total_days} days): {len(frame)} readings")
        if frame.empty:
            print("  Warning: no readings within the season")
            return Report.empty(f"{window.label()} (no data)")

        first_ms = int(frame["timestamp_utc"].iloc[0])
        last_ms = int(frame["timestamp_utc"].iloc[-1])
        coverage_days = days_between(first_ms, last_ms)
        coverage_percent = _round_half_up(100 * coverage_days / window.total_days)
        print(
            f"  Coverage: {coverage_days} of {window.total_days} days ({coverage_percent}%)"
        )
        if coverage_percent < self.config.min_coverage_percent:
            warnings.warn(
                f"Data covers only {coverage_percent}% of the season "
                f"({coverage_days} of {window.total_days} days); results may be incomplete",
                CoverageWarning,
                stacklevel=2,
            )

        report = self._report(frame, None, None)
        return replace(report, period_label=f"{window.label()} (data: {report.period_label})")

    def _report(
        self, frame: pd.DataFrame, min_temp: float | None, max_temp: float | None
    ) -> Report:
        lo = self.config.min_temp_f if min_temp is None else min_temp
        hi = self.config.max_temp_f if max_temp is None else max_temp
        buckets = bucket_by_hour(frame, lo, hi)

        total_hours = len(buckets)
        chill_hours = int(buckets["is_chill"].sum())
        first = frame["timestamp"].iloc[0]
        last = frame["timestamp"].iloc[-1]
        return Report(
            total_hours=total_hours,
            chill_hours=chill_hours,
            percent_chill_hours=percent(chill_hours, total_hours),
            period_label=f"{first:%Y-%m-%d} to {last:%Y-%m-%d}",
        )
