"""Historical currency conversion over a time series of observed rates.

The converter follows a most-recent-known-rate policy: an amount dated ``D`` is
converted with the latest rate observed on or before ``D``.  Future rates are
never used and nothing is interpolated.  When no rate can be found the
converter returns ``None`` rather than ``0`` so callers can flag the gap.
"""
from __future__ import annotations

import math
from bisect import bisect_right
from datetime import date, datetime
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from .models import ExchangeRateObservation

# (date ordinal, rate) pairs, ascending by date.
RateSeries = tuple[tuple[int, float], ...]


def _as_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class FxConverter:
    """Immutable per-pair rate index, built once and queried many times."""

    def __init__(self, series: Mapping[tuple[str, str], RateSeries]) -> None:
        self._series = MappingProxyType(dict(series))

    @classmethod
    def from_observations(cls, observations: Iterable[ExchangeRateObservation]) -> "FxConverter":
        """Group observations by ordered currency pair and sort each series.

        Two observations for the same pair and date collapse into one; the
        later one in ``observations`` wins, matching the storage semantics.
        """

        by_pair: dict[tuple[str, str], dict[int, float]] = {}
        for observation in observations:
            key = (observation.from_currency.upper(), observation.to_currency.upper())
            by_pair.setdefault(key, {})[_as_date(observation.date).toordinal()] = float(observation.rate)
        return cls({key: tuple(sorted(points.items())) for key, points in by_pair.items()})

    @property
    def pairs(self) -> frozenset[tuple[str, str]]:
        return frozenset(self._series)

    def find_rate(self, from_currency: str, to_currency: str, on_date: date | datetime | str) -> Optional[float]:
        """Return the rate to multiply ``from_currency`` amounts by, or ``None``.

        The direct series is preferred.  Only when it does not exist at all is
        the inverse series consulted, and its rate is inverted.
        """

        source = from_currency.upper()
        target = to_currency.upper()
        if source == target:
            return 1.0

        ordinal = _as_date(on_date).toordinal()
        direct = self._series.get((source, target))
        if direct:
            return _latest_on_or_before(direct, ordinal)

        inverse = self._series.get((target, source))
        if not inverse:
            return None
        rate = _latest_on_or_before(inverse, ordinal)
        if rate is None or rate == 0:
            return None
        return 1.0 / rate

    def convert(
        self,
        amount: float,
        from_currency: str,
        to_currency: str,
        on_date: date | datetime | str,
    ) -> Optional[float]:
        """Convert ``amount``; ``None`` means the rate is unknown."""

        if not math.isfinite(amount):
            return None
        rate = self.find_rate(from_currency, to_currency, on_date)
        if rate is None:
            return None
        if rate == 1.0 and from_currency.upper() == to_currency.upper():
            return amount
        return amount * rate


def _latest_on_or_before(series: RateSeries, ordinal: int) -> Optional[float]:
    index = bisect_right(series, (ordinal, math.inf))
    if index == 0:
        return None
    return series[index - 1][1]


__all__ = ["FxConverter", "RateSeries"]
