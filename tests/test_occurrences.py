from __future__ import annotations

from datetime import date

import pytest

from recurring_ledger.errors import OccurrenceLimitError
from recurring_ledger.models import Interval, ReportingWindow
from recurring_ledger.occurrences import due_items, enumerate_occurrences, occurrences_for_charge


def test_monthly_occurrences_span_anchor():
    window = ReportingWindow(date(2024, 1, 1), date(2024, 6, 1))

    result = enumerate_occurrences(date(2024, 3, 5), Interval.MONTH, 1, window)

    assert result == [
        date(2024, 1, 5),
        date(2024, 2, 5),
        date(2024, 3, 5),
        date(2024, 4, 5),
        date(2024, 5, 5),
    ]


def test_window_end_is_exclusive_and_start_inclusive():
    window = ReportingWindow(date(2024, 1, 5), date(2024, 3, 5))

    assert enumerate_occurrences(date(2024, 1, 5), Interval.MONTH, 1, window) == [
        date(2024, 1, 5),
        date(2024, 2, 5),
    ]


def test_anchor_after_window():
    window = ReportingWindow(date(2024, 1, 1), date(2024, 2, 1))

    result = enumerate_occurrences(date(2024, 6, 10), Interval.WEEK, 2, window)

    assert result == [date(2024, 1, 8), date(2024, 1, 22)]


def test_anchor_before_window_only_yields_dates_inside_it():
    window = ReportingWindow(date(2024, 1, 1), date(2024, 3, 1))

    result = enumerate_occurrences(date(2023, 6, 10), Interval.MONTH, 1, window)

    assert result == [date(2024, 1, 10), date(2024, 2, 10)]


def test_every_multiplier():
    window = ReportingWindow(date(2024, 1, 1), date(2024, 2, 1))

    assert enumerate_occurrences(date(2024, 1, 10), Interval.WEEK, 2, window) == [
        date(2024, 1, 10),
        date(2024, 1, 24),
    ]
    assert enumerate_occurrences(date(2024, 1, 10), Interval.DAY, 10, window) == [
        date(2024, 1, 10),
        date(2024, 1, 20),
        date(2024, 1, 30),
    ]


def test_non_positive_every_is_treated_as_one():
    window = ReportingWindow(date(2024, 1, 1), date(2024, 1, 4))

    assert enumerate_occurrences(date(2024, 1, 2), Interval.DAY, 0, window) == [
        date(2024, 1, 1),
        date(2024, 1, 2),
        date(2024, 1, 3),
    ]


def test_month_end_anchor_drifts_when_walking_backwards():
    window = ReportingWindow(date(2024, 1, 1), date(2024, 5, 1))

    result = enumerate_occurrences(date(2024, 3, 31), Interval.MONTH, 1, window)

    assert result == [date(2024, 1, 29), date(2024, 2, 29), date(2024, 3, 29), date(2024, 4, 29)]


def test_yearly_occurrence_outside_window():
    window = ReportingWindow(date(2024, 1, 1), date(2024, 7, 1))

    assert enumerate_occurrences(date(2024, 9, 1), Interval.YEAR, 1, window) == []


def test_empty_window():
    window = ReportingWindow(date(2024, 1, 1), date(2024, 1, 1))

    assert enumerate_occurrences(date(2024, 1, 1), Interval.DAY, 1, window) == []


def test_enumeration_is_deterministic():
    window = ReportingWindow(date(2024, 1, 1), date(2025, 1, 1))

    first = enumerate_occurrences(date(2024, 7, 15), Interval.WEEK, 1, window)
    second = enumerate_occurrences(date(2024, 7, 15), Interval.WEEK, 1, window)

    assert first == second
    assert len(first) == 53


def test_runaway_enumeration_is_rejected():
    window = ReportingWindow(date(1990, 1, 1), date(2024, 1, 2))

    with pytest.raises(OccurrenceLimitError):
        enumerate_occurrences(date(2024, 1, 1), Interval.DAY, 1, window)


def test_custom_step_bound():
    window = ReportingWindow(date(2024, 1, 1), date(2024, 2, 1))

    with pytest.raises(ValueError):
        enumerate_occurrences(date(2024, 1, 1), Interval.DAY, 1, window, max_steps=10)


def test_inactive_charge_has_no_occurrences(make_charge):
    window = ReportingWindow(date(2024, 1, 1), date(2024, 6, 1))

    assert occurrences_for_charge(make_charge(active=False), window) == []
    assert len(occurrences_for_charge(make_charge(), window)) == 5


def test_due_items_are_sorted_across_charges(make_charge):
    window = ReportingWindow(date(2024, 1, 1), date(2024, 2, 1))
    weekly = make_charge(name="Gym", interval=Interval.WEEK, next_due_date=date(2024, 1, 3), amount=12.0)
    monthly = make_charge(name="Music", next_due_date=date(2024, 1, 10), currency="EUR")
    paused = make_charge(name="Paused", next_due_date=date(2024, 1, 2), active=False)

    items = due_items([monthly, weekly, paused], window)

    assert [(item.name, item.date) for item in items] == [
        ("Gym", date(2024, 1, 3)),
        ("Gym", date(2024, 1, 10)),
        ("Music", date(2024, 1, 10)),
        ("Gym", date(2024, 1, 17)),
        ("Gym", date(2024, 1, 24)),
        ("Gym", date(2024, 1, 31)),
    ]
    assert items[2].currency == "EUR"
    assert items[0].to_payload()["date"] == "2024-01-03"
