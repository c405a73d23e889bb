"""Enumerate the billing dates of recurring charges inside a reporting window."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from .errors import OccurrenceLimitError
from .intervals import add_interval, subtract_interval
from .models import Interval, RecurringCharge, ReportingWindow

# Upper bound on calendar steps for one enumeration, backwards and forwards
# combined.  A daily charge over a 27 year window still fits.
MAX_STEPS = 10_000


@dataclass(slots=True, frozen=True)
class DueItem:
    """One concrete occurrence of a charge, as shown in upcoming-charge lists."""

    charge_id: str
    name: str
    amount: float
    currency: str
    date: date
    account_id: Optional[str]
    category_id: Optional[str]
    auto_post: bool

    def to_payload(self) -> dict[str, object]:
        return {
            "charge_id": self.charge_id,
            "name": self.name,
            "amount": self.amount,
            "currency": self.currency,
            "date": self.date.isoformat(),
            "account_id": self.account_id,
            "category_id": self.category_id,
            "auto_post": self.auto_post,
        }


def enumerate_occurrences(
    next_due_date: date,
    interval: Interval,
    every: int,
    window: ReportingWindow,
    max_steps: int = MAX_STEPS,
) -> list[date]:
    """Return the ascending occurrence dates of a schedule within ``window``.

    The schedule is anchored on ``next_due_date``: the walk first steps
    backwards until it passes ``window.start``, then forwards to the first
    date on or after it, emitting every date before ``window.end``.  The
    result depends only on the arguments.

    Raises:
        OccurrenceLimitError: when more than ``max_steps`` calendar steps would
            be required, e.g. a daily schedule anchored decades away.
    """

    step = max(1, every)
    steps = 0

    def _tick() -> None:
        nonlocal steps
        steps += 1
        if steps > max_steps:
            raise OccurrenceLimitError(
                f"Enumerating every {step} {interval.value} from {next_due_date} over "
                f"[{window.start}, {window.end}) exceeds {max_steps} steps"
            )

    occurrence = next_due_date
    while occurrence >= window.start:
        _tick()
        occurrence = subtract_interval(occurrence, interval, step)
    occurrence = add_interval(occurrence, interval, step)
    # Anchors before the window never enter the backwards walk.
    while occurrence < window.start:
        _tick()
        occurrence = add_interval(occurrence, interval, step)

    occurrences: list[date] = []
    while occurrence < window.end:
        _tick()
        occurrences.append(occurrence)
        occurrence = add_interval(occurrence, interval, step)
    return occurrences


def occurrences_for_charge(charge: RecurringCharge, window: ReportingWindow) -> list[date]:
    if not charge.active:
        return []
    return enumerate_occurrences(charge.next_due_date, charge.interval, charge.every, window)


def due_items(charges: Iterable[RecurringCharge], window: ReportingWindow) -> list[DueItem]:
    """Expand every active charge into its occurrences, sorted by date."""

    items = [
        DueItem(
            charge_id=charge.id,
            name=charge.name,
            amount=charge.amount,
            currency=charge.currency,
            date=occurrence,
            account_id=charge.account_id,
            category_id=charge.category_id,
            auto_post=charge.auto_post,
        )
        for charge in charges
        for occurrence in occurrences_for_charge(charge, window)
    ]
    items.sort(key=lambda item: (item.date, item.name, item.charge_id))
    return items


__all__ = ["MAX_STEPS", "DueItem", "enumerate_occurrences", "occurrences_for_charge", "due_items"]
