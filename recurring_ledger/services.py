"""High-level application services orchestrating the recurring_ledger backend."""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Iterable, Optional

from .autopost import AutoPostEngine, build_entry
from .config import AppConfig
from .database import SQLiteRepository
from .errors import ChargeNotFoundError, ChargeNotPostableError
from .fx import FxConverter
from .intervals import add_interval, parse_interval
from .models import (
    AutoPostResult,
    EntryType,
    ExchangeRateObservation,
    ManualPostResult,
    RecurringCharge,
    ReportingWindow,
)
from .occurrences import due_items, enumerate_occurrences, occurrences_for_charge

logger = logging.getLogger(__name__)

REPORTING_CURRENCY_KEY = "reporting_currency"


class LedgerService:
    """Coordinates charges, posting, rates and summarisation logic."""

    def __init__(self, config: AppConfig, repository: SQLiteRepository) -> None:
        self._config = config
        self._repository = repository

    # ------------------------------------------------------------------
    # Charges
    # ------------------------------------------------------------------
    def create_charge(self, charge: RecurringCharge) -> RecurringCharge:
        charge.currency = charge.currency.upper()
        charge.interval = parse_interval(charge.interval)
        charge.validate()
        self._repository.insert_charge(charge)
        logger.info("Created recurring charge %s (%s)", charge.id, charge.name)
        return charge

    def list_charges(self, owner: Optional[str] = None) -> list[RecurringCharge]:
        return self._repository.list_charges(owner)

    def get_charge(self, charge_id: str) -> RecurringCharge:
        charge = self._repository.get_charge(charge_id)
        if charge is None:
            raise ChargeNotFoundError(charge_id)
        return charge

    def update_flags(self, charge_id: str, *, active: Optional[bool] = None, auto_post: Optional[bool] = None) -> RecurringCharge:
        if not self._repository.set_charge_flags(charge_id, active=active, auto_post=auto_post):
            raise ChargeNotFoundError(charge_id)
        return self.get_charge(charge_id)

    # ------------------------------------------------------------------
    # Posting workflows
    # ------------------------------------------------------------------
    def run_autopost(self, as_of: Optional[date] = None) -> AutoPostResult:
        return AutoPostEngine(self._repository).run(as_of)

    def charge_now(self, charge_id: str) -> ManualPostResult:
        """Post the charge's next due occurrence immediately and advance it.

        The write goes through the same idempotent insert as the engine, so a
        repeated click re-uses the existing entry instead of adding another.
        """

        charge = self._postable_charge(charge_id)
        occurrence = charge.next_due_date
        posted = self._repository.post_entries([build_entry(charge, occurrence)])
        next_due = self._advance_past(charge, occurrence)
        return ManualPostResult(
            charge_id=charge.id,
            occurrence_dates=[occurrence],
            posted=posted,
            next_due_date=next_due,
        )

    def post_occurrences(self, charge_id: str, occurrences: Iterable[date]) -> ManualPostResult:
        """Post selected occurrences of one charge, e.g. picked from a due list.

        Every date must be an occurrence of the charge's schedule.  The
        schedule moves to one step after the latest posted occurrence, unless
        it is already further ahead.
        """

        charge = self._postable_charge(charge_id)
        dates = sorted(set(occurrences))
        if not dates:
            raise ChargeNotPostableError("No occurrences selected")
        scheduled = set(
            enumerate_occurrences(
                charge.next_due_date,
                charge.interval,
                charge.every,
                ReportingWindow(dates[0], dates[-1] + timedelta(days=1)),
            )
        )
        off_schedule = [day.isoformat() for day in dates if day not in scheduled]
        if off_schedule:
            raise ChargeNotPostableError(
                f"Charge {charge_id!r} has no occurrence on {', '.join(off_schedule)}"
            )
        posted = self._repository.post_entries(build_entry(charge, day) for day in dates)
        next_due = self._advance_past(charge, dates[-1])
        return ManualPostResult(
            charge_id=charge.id,
            occurrence_dates=dates,
            posted=posted,
            next_due_date=next_due,
        )

    def _postable_charge(self, charge_id: str) -> RecurringCharge:
        charge = self.get_charge(charge_id)
        if not charge.active:
            raise ChargeNotPostableError(f"Charge {charge_id!r} is inactive")
        if not charge.account_id:
            raise ChargeNotPostableError(f"Charge {charge_id!r} has no funding account")
        return charge

    def _advance_past(self, charge: RecurringCharge, occurrence: date) -> date:
        target = add_interval(occurrence, charge.interval, charge.step)
        if target <= charge.next_due_date:
            return charge.next_due_date
        if self._repository.advance_charge(charge.id, charge.next_due_date, target):
            return target
        # Someone else moved the schedule in the meantime; report what is stored.
        return self.get_charge(charge.id).next_due_date

    # ------------------------------------------------------------------
    # FX rates
    # ------------------------------------------------------------------
    def record_rates(self, observations: Iterable[ExchangeRateObservation]) -> int:
        return self._repository.upsert_fx_rates(observations)

    def list_rates(self) -> list[ExchangeRateObservation]:
        return self._repository.list_fx_rates()

    def converter(self, up_to: Optional[date] = None) -> FxConverter:
        """Build a fresh converter from the stored rate history."""

        return FxConverter.from_observations(self._repository.list_fx_rates(up_to))

    def convert(self, amount: float, from_currency: str, to_currency: str, on_date: date) -> Optional[float]:
        return self.converter(on_date).convert(amount, from_currency, to_currency, on_date)

    def reporting_currency(self) -> str:
        value = self._repository.get_setting(REPORTING_CURRENCY_KEY, self._config.reporting_currency)
        return (value or self._config.reporting_currency).upper()

    def set_reporting_currency(self, currency: str) -> str:
        self._repository.set_setting(REPORTING_CURRENCY_KEY, currency.upper())
        return currency.upper()

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------
    def upcoming_charges(
        self,
        window: ReportingWindow,
        currency: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> dict[str, object]:
        """List occurrences due in ``window`` with a converted total.

        Occurrences without a usable rate are flagged and left out of the total
        rather than counted at their face value.
        """

        target = (currency or self.reporting_currency()).upper()
        converter = self.converter()
        items: list[dict[str, object]] = []
        total = 0.0
        missing = 0
        for item in due_items(self.list_charges(owner), window):
            converted = converter.convert(item.amount, item.currency, target, item.date)
            payload = item.to_payload()
            payload["converted"] = converted
            payload["fx_missing"] = converted is None
            if converted is None:
                missing += 1
            else:
                total += converted
            items.append(payload)
        return {
            "start": window.start.isoformat(),
            "end": window.end.isoformat(),
            "display_currency": target,
            "items": items,
            "count": len(items),
            "display_total": total,
            "missing_count": missing,
            "fx_missing": missing > 0,
        }

    def occurrences(self, charge_id: str, window: ReportingWindow) -> list[date]:
        return occurrences_for_charge(self.get_charge(charge_id), window)

    def ledger_summary(
        self,
        window: ReportingWindow,
        currency: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> dict[str, object]:
        """Aggregate ledger entries in ``window`` into one reporting currency."""

        target = (currency or self.reporting_currency()).upper()
        converter = self.converter()
        income = 0.0
        expense = 0.0
        missing = 0
        entries = self._repository.list_entries(window, owner=owner)
        for entry in entries:
            converted = converter.convert(abs(entry.amount), entry.currency, target, entry.date)
            if converted is None:
                missing += 1
                continue
            if entry.type is EntryType.EXPENSE:
                expense += converted
            else:
                income += converted
        return {
            "start": window.start.isoformat(),
            "end": window.end.isoformat(),
            "display_currency": target,
            "transaction_count": len(entries),
            "income": income,
            "expense": expense,
            "net": income - expense,
            "missing_count": missing,
            "fx_missing": missing > 0,
        }

    def list_entries(self, window: Optional[ReportingWindow] = None, owner: Optional[str] = None) -> list[dict[str, object]]:
        return [
            {
                "id": entry.id,
                "owner": entry.owner,
                "date": entry.date.isoformat(),
                "amount": entry.amount,
                "signed_amount": entry.signed_amount(),
                "currency": entry.currency,
                "type": entry.type.value,
                "account_id": entry.account_id,
                "category_id": entry.category_id,
                "notes": entry.notes,
                "recurring_charge_id": entry.recurring_charge_id,
                "created_at": entry.created_at.isoformat(),
            }
            for entry in self._repository.list_entries(window, owner=owner)
        ]

    def delete_entry(self, entry_id: str) -> bool:
        return self._repository.delete_entry(entry_id)


def charge_to_payload(charge: RecurringCharge) -> dict[str, object]:
    return {
        "id": charge.id,
        "owner": charge.owner,
        "name": charge.name,
        "amount": charge.amount,
        "currency": charge.currency,
        "interval": charge.interval.value,
        "every": charge.every,
        "next_due_date": charge.next_due_date.isoformat(),
        "account_id": charge.account_id,
        "category_id": charge.category_id,
        "active": charge.active,
        "auto_post": charge.auto_post,
    }
