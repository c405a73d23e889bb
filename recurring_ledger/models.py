"""Domain models used by the recurring_ledger backend.

The classes defined here are intentionally lightweight data containers that do
not know anything about persistence or transport concerns.  Keeping the domain
model pure makes it easier to test the scheduling logic in isolation from
SQLite and FastAPI.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from .errors import InvalidChargeError


class Interval(str, Enum):
    """Calendar unit a recurring charge repeats on."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class EntryType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


def _new_id() -> str:
    return str(uuid4())


@dataclass(slots=True)
class RecurringCharge:
    """A user-defined periodic obligation such as a subscription or a bill.

    :attr:`next_due_date` always denotes the next occurrence that has not been
    posted yet.  It is only ever moved forward, either by the auto-post engine
    or by one of the manual posting actions.
    """

    owner: str
    name: str
    amount: float
    currency: str
    interval: Interval
    every: int
    next_due_date: date
    account_id: Optional[str] = None
    category_id: Optional[str] = None
    active: bool = True
    auto_post: bool = False
    id: str = field(default_factory=_new_id)

    def validate(self) -> None:
        """Raise :class:`InvalidChargeError` when the definition is unusable."""

        if not isinstance(self.every, int) or isinstance(self.every, bool) or self.every < 1:
            raise InvalidChargeError(f"'every' must be a positive integer, got {self.every!r}")
        if not self.name.strip():
            raise InvalidChargeError("A recurring charge needs a name")
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise InvalidChargeError(f"Invalid currency code {self.currency!r}")

    @property
    def step(self) -> int:
        return max(1, self.every)

    def describe(self) -> str:
        return f"Subscription: {self.name}"


@dataclass(slots=True)
class LedgerEntry:
    """A single posted financial transaction.

    Entries derived from a recurring charge carry the ``(recurring_charge_id,
    date)`` back-reference, which doubles as the idempotency key enforced by
    the storage layer.
    """

    owner: str
    date: date
    amount: float
    currency: str
    type: EntryType
    account_id: Optional[str] = None
    category_id: Optional[str] = None
    notes: Optional[str] = None
    recurring_charge_id: Optional[str] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=lambda: datetime.now().replace(microsecond=0))

    @property
    def idempotency_key(self) -> Optional[tuple[str, date]]:
        if self.recurring_charge_id is None:
            return None
        return (self.recurring_charge_id, self.date)

    def signed_amount(self) -> float:
        """Return the cash impact: expenses count negative, income positive."""

        magnitude = abs(self.amount)
        return -magnitude if self.type is EntryType.EXPENSE else magnitude


@dataclass(slots=True, frozen=True)
class ExchangeRateObservation:
    """One observed rate: ``amount_in_from * rate == amount_in_to``."""

    date: date
    from_currency: str
    to_currency: str
    rate: float


@dataclass(slots=True, frozen=True)
class ReportingWindow:
    """Half-open calendar range ``[start, end)``."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Window end {self.end} precedes start {self.start}")

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end


@dataclass(slots=True)
class AutoPostResult:
    """Outcome of one auto-post engine invocation."""

    as_of: date
    posted: int = 0
    advanced: int = 0
    skipped: int = 0
    failed: int = 0

    def to_payload(self) -> dict[str, object]:
        return {
            "posted": self.posted,
            "advanced": self.advanced,
            "asOf": self.as_of.isoformat(),
            "skipped": self.skipped,
            "failed": self.failed,
        }


@dataclass(slots=True)
class ManualPostResult:
    """Outcome of a user-triggered posting action for a single charge."""

    charge_id: str
    occurrence_dates: list[date]
    posted: int
    next_due_date: date

    def to_payload(self) -> dict[str, object]:
        return {
            "charge_id": self.charge_id,
            "occurrence_dates": [day.isoformat() for day in self.occurrence_dates],
            "posted": self.posted,
            "next_due_date": self.next_due_date.isoformat(),
        }


__all__ = [
    "Interval",
    "EntryType",
    "RecurringCharge",
    "LedgerEntry",
    "ExchangeRateObservation",
    "ReportingWindow",
    "AutoPostResult",
    "ManualPostResult",
]
