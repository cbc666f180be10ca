"""
Forecast Counter - live estimate between two data points.

Stored stats only move once per sync, so displays interpolate linearly from
the last observed value toward a predicted next value over a time range:

    estimate = value + (next_value - value) / (range_end - range_start) * (now - range_start)

Pure functions plus a small restartable counter object; no I/O and no
persisted state. Timestamps are epoch milliseconds.
"""

import math
import time
from datetime import datetime, timezone
from typing import Any, Optional

from shared.constants import DAY_MS

MIN_INTERVAL_MS = 100
MAX_INTERVAL_MS = 1000
MAX_UNITS_PER_SECOND = 15
HYSTERESIS_MS = 50

# Share of the last observed dependent growth expected over the next interval
DEPENDENT_GROWTH_FACTOR = 0.8


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _now_ms() -> int:
    return int(time.time() * 1000)


def estimate(
    value: Optional[float],
    next_value: Optional[float],
    range_start: Optional[float],
    range_end: Optional[float],
    now: Optional[float] = None,
) -> Optional[float]:
    """
    Interpolated value at `now`, rounded to the nearest integer.

    Returns None when value is missing. Returns value unchanged when any
    other input is missing or not a finite number, when the range is empty,
    or when now is before range_start. Declining ranges (next_value below
    value) are interpolated the same way as growing ones.
    """
    if value is None:
        return None
    if not all(_is_number(v) for v in (value, next_value, range_start, range_end)):
        return value

    now = _now_ms() if now is None else now
    if not _is_number(now):
        return value

    duration = range_end - range_start
    if duration == 0 or now < range_start:
        return value

    rate = (next_value - value) / duration
    return _round_half_up(value + rate * (now - range_start))


def adaptive_interval_ms(
    value: Optional[float],
    next_value: Optional[float],
    range_start: Optional[float],
    range_end: Optional[float],
) -> int:
    """
    Recompute interval that moves the display about one unit per tick.

    The interval is clamped to [MIN_INTERVAL_MS, MAX_INTERVAL_MS]; once the
    implied rate passes MAX_UNITS_PER_SECOND the floor applies and each tick
    advances by several units. Missing inputs or a flat range tick once a
    second.
    """
    if not all(_is_number(v) for v in (value, next_value, range_start, range_end)):
        return MAX_INTERVAL_MS
    duration = range_end - range_start
    if duration == 0:
        return MAX_INTERVAL_MS

    units_per_second = abs(next_value - value) / duration * 1000
    if units_per_second == 0:
        return MAX_INTERVAL_MS

    units_per_second = min(units_per_second, MAX_UNITS_PER_SECOND)
    interval = 1000 / units_per_second
    return int(max(MIN_INTERVAL_MS, min(MAX_INTERVAL_MS, round(interval))))


class ForecastCounter:
    """
    Restartable counter over one forecast range.

    Pass interval_ms to use a fixed cadence; otherwise the interval adapts
    to the range and ignores changes smaller than HYSTERESIS_MS on restart.
    """

    def __init__(
        self,
        value: Optional[float],
        next_value: Optional[float] = None,
        range_start: Optional[float] = None,
        range_end: Optional[float] = None,
        interval_ms: Optional[int] = None,
    ):
        self._fixed_interval_ms = interval_ms
        self._interval_ms: Optional[int] = None
        self.restart(value, next_value, range_start, range_end)

    def restart(
        self,
        value: Optional[float],
        next_value: Optional[float] = None,
        range_start: Optional[float] = None,
        range_end: Optional[float] = None,
    ) -> None:
        """Reset interpolation from a new baseline."""
        self.value = value
        self.next_value = next_value
        self.range_start = range_start
        self.range_end = range_end

        candidate = adaptive_interval_ms(value, next_value, range_start, range_end)
        if self._interval_ms is None or abs(candidate - self._interval_ms) >= HYSTERESIS_MS:
            self._interval_ms = candidate

    @property
    def interval_ms(self) -> int:
        if self._fixed_interval_ms is not None:
            return self._fixed_interval_ms
        return self._interval_ms

    def current(self, now: Optional[float] = None) -> Optional[float]:
        return estimate(self.value, self.next_value, self.range_start, self.range_end, now)


def npm_download_forecast(record: Optional[dict], now: Optional[int] = None) -> dict:
    """
    Forecast inputs for an npm package or org download count.

    Predicts that the next 24 hours after the last count add tomorrow's
    weekday average.

    Returns:
        Keyword arguments for estimate() / ForecastCounter
    """
    record = record or {}
    now = _now_ms() if now is None else now

    value = record.get("download_count")
    averages = record.get("day_of_week_averages") or []
    weekday = (datetime.fromtimestamp(now / 1000, tz=timezone.utc).weekday() + 1) % 7
    tomorrow = (weekday + 1) % 7
    next_average = averages[tomorrow] if tomorrow < len(averages) else 0

    range_start = record.get("download_count_updated_at") or record.get("updated_at")
    return {
        "value": value,
        "next_value": (value or 0) + (next_average or 0),
        "range_start": range_start,
        "range_end": range_start + DAY_MS if range_start else None,
    }


def github_dependent_forecast(record: Optional[dict]) -> dict:
    """
    Forecast inputs for a repo or owner dependent count.

    Extrapolates DEPENDENT_GROWTH_FACTOR of the growth since the previous
    baseline over an interval as long as the one that produced it. Without
    growth there is nothing to extrapolate and the count stays flat.
    """
    record = record or {}
    value = record.get("dependent_count")
    previous = record.get("dependent_count_previous") or {}
    previous_count = previous.get("count")
    previous_at = previous.get("updated_at")
    updated_at = record.get("dependent_count_updated_at") or record.get("updated_at")

    next_value = None
    if value and previous_count and previous_count < value:
        next_value = _round_half_up(value + (value - previous_count) * DEPENDENT_GROWTH_FACTOR)

    range_end = None
    if updated_at and previous_at:
        range_end = updated_at + updated_at - previous_at

    return {
        "value": value,
        "next_value": next_value,
        "range_start": updated_at,
        "range_end": range_end,
    }
