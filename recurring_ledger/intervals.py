"""Calendar arithmetic for recurring charges.

Month and year steps delegate to :class:`dateutil.relativedelta.relativedelta`,
which clamps overflowing days to the end of the target month (January 31 plus
one month is the last day of February).  That normalisation is accepted as-is;
``subtract_interval`` followed by ``add_interval`` is therefore not always a
round trip for days 29-31.
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from .models import Interval

# Frequencies stored by the legacy charges schema.
_LEGACY_FREQUENCIES: dict[str, tuple[Interval, int]] = {
    "weekly": (Interval.WEEK, 1),
    "monthly": (Interval.MONTH, 1),
    "quarterly": (Interval.MONTH, 3),
    "yearly": (Interval.YEAR, 1),
}


def parse_interval(value: str | Interval) -> Interval:
    if isinstance(value, Interval):
        return value
    try:
        return Interval(str(value).strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown interval {value!r}") from exc


def add_interval(day: date, interval: Interval, every: int) -> date:
    """Move ``day`` by ``every`` units of ``interval``; negative moves backwards.

    ``every`` is not validated here: callers are responsible for rejecting
    non-positive multipliers before they reach the calendar.
    """

    if interval is Interval.DAY:
        return day + timedelta(days=every)
    if interval is Interval.WEEK:
        return day + timedelta(days=7 * every)
    if interval is Interval.MONTH:
        return day + relativedelta(months=every)
    if interval is Interval.YEAR:
        return day + relativedelta(years=every)
    raise ValueError(f"Unknown interval {interval!r}")


def subtract_interval(day: date, interval: Interval, every: int) -> date:
    return add_interval(day, interval, -every)


def frequency_to_interval(frequency: Optional[str]) -> tuple[Interval, int]:
    """Map a legacy ``frequency`` value forward; unknown values mean monthly."""

    return _LEGACY_FREQUENCIES.get(str(frequency or "monthly").strip().lower(), (Interval.MONTH, 1))


def interval_to_frequency(interval: Interval, every: int) -> Optional[str]:
    for frequency, shape in _LEGACY_FREQUENCIES.items():
        if shape == (interval, every):
            return frequency
    return None


__all__ = [
    "add_interval",
    "subtract_interval",
    "parse_interval",
    "frequency_to_interval",
    "interval_to_frequency",
]
