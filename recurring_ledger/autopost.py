"""Auto-post engine: turn due recurring charges into ledger entries.

The engine is a stateless unit of work.  Each :meth:`AutoPostEngine.run`
posts at most one occurrence per due charge and then moves the charge's
schedule one step forward.  Running it again, or concurrently from another
process, never duplicates an entry because the ledger's unique index on
``(recurring_charge_id, date)`` absorbs the collision.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Optional

from .database import SQLiteRepository
from .intervals import add_interval
from .models import AutoPostResult, EntryType, LedgerEntry, RecurringCharge

logger = logging.getLogger(__name__)


def build_entry(charge: RecurringCharge, occurrence: Optional[date] = None) -> LedgerEntry:
    """Ledger entry for one occurrence; defaults to the charge's next due date."""

    return LedgerEntry(
        owner=charge.owner,
        date=occurrence or charge.next_due_date,
        amount=charge.amount,
        currency=charge.currency,
        type=EntryType.EXPENSE,
        account_id=charge.account_id,
        category_id=charge.category_id,
        notes=charge.describe(),
        recurring_charge_id=charge.id,
    )


class AutoPostEngine:
    """Post due auto-post charges and advance their schedules."""

    def __init__(self, repository: SQLiteRepository) -> None:
        self._repository = repository

    def run(self, as_of: Optional[date] = None) -> AutoPostResult:
        """Run one pass for the calendar date ``as_of`` (today by default).

        Entries are dated on each charge's current next due date, not on
        ``as_of``.  A charge that has fallen several intervals behind needs
        several passes to catch up.
        """

        as_of = as_of or date.today()
        result = AutoPostResult(as_of=as_of)

        due: list[RecurringCharge] = self._repository.list_due_charges(as_of)
        result.skipped = self._repository.count_unfunded_due_charges(as_of)
        if result.skipped:
            logger.info("Skipping %d due charge(s) without a funding account", result.skipped)

        if due:
            result.posted = self._repository.post_entries(build_entry(charge) for charge in due)

        for charge in due:
            try:
                next_due = add_interval(charge.next_due_date, charge.interval, charge.step)
                moved = self._repository.advance_charge(charge.id, charge.next_due_date, next_due)
            except (sqlite3.Error, OverflowError, ValueError):
                logger.exception("Failed to advance charge %s past %s", charge.id, charge.next_due_date)
                result.failed += 1
                continue
            if moved:
                result.advanced += 1
            else:
                logger.warning(
                    "Charge %s was no longer due on %s; another run advanced it first",
                    charge.id,
                    charge.next_due_date,
                )

        logger.info(
            "Auto-post as of %s: %d due, %d posted, %d advanced, %d skipped, %d failed",
            as_of.isoformat(),
            len(due),
            result.posted,
            result.advanced,
            result.skipped,
            result.failed,
        )
        return result


__all__ = ["AutoPostEngine", "build_entry"]
