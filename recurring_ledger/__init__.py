"""Recurring-charge scheduling, idempotent ledger posting and historical FX conversion."""
from __future__ import annotations

from .fx import FxConverter
from .intervals import add_interval, subtract_interval
from .models import (
    AutoPostResult,
    EntryType,
    ExchangeRateObservation,
    Interval,
    LedgerEntry,
    ManualPostResult,
    RecurringCharge,
    ReportingWindow,
)
from .occurrences import enumerate_occurrences

__version__ = "0.1.0"

__all__ = [
    "AutoPostResult",
    "EntryType",
    "ExchangeRateObservation",
    "FxConverter",
    "Interval",
    "LedgerEntry",
    "ManualPostResult",
    "RecurringCharge",
    "ReportingWindow",
    "add_interval",
    "enumerate_occurrences",
    "subtract_interval",
]
