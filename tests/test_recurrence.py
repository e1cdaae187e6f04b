from datetime import date

import pytest

import recurrence
from models import RecurrenceFrequency
from recurrence import (
    NoOccurrencesInRange,
    RecurrenceLimitExceeded,
    RecurrenceRule,
    days_in_month,
    expand_occurrences,
    next_occurrence,
    series_occurrences,
)


def _monthly(day=None) -> RecurrenceRule:
    return RecurrenceRule(RecurrenceFrequency.monthly, day)


def test_next_occurrence_daily_and_weekly():
    daily = RecurrenceRule(RecurrenceFrequency.daily)
    weekly = RecurrenceRule(RecurrenceFrequency.weekly)
    assert next_occurrence(date(2024, 2, 28), daily) == date(2024, 2, 29)
    assert next_occurrence(date(2024, 12, 30), weekly) == date(2025, 1, 6)


def test_next_occurrence_clamps_day_31_to_april_30():
    assert next_occurrence(date(2024, 3, 31), _monthly(31)) == date(2024, 4, 30)


def test_next_occurrence_restores_day_after_short_month():
    assert next_occurrence(date(2024, 4, 30), _monthly(31)) == date(2024, 5, 31)


def test_next_occurrence_yearly_feb_29_clamps_in_common_year():
    rule = RecurrenceRule(RecurrenceFrequency.yearly, 29)
    assert next_occurrence(date(2024, 2, 29), rule) == date(2025, 2, 28)


def test_expand_day_31_through_april_lands_on_april_30():
    occurrences = expand_occurrences(
        _monthly(31), date(2024, 1, 31), date(2024, 1, 1), date(2024, 5, 31)
    )
    assert occurrences == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
        date(2024, 5, 31),
    ]


def test_expand_mid_month_rule_over_window():
    occurrences = expand_occurrences(
        _monthly(15), date(2024, 1, 15), date(2024, 2, 1), date(2024, 4, 30)
    )
    assert occurrences == [date(2024, 2, 15), date(2024, 3, 15), date(2024, 4, 15)]


def test_expand_without_day_keeps_anchor_day():
    occurrences = expand_occurrences(
        _monthly(), date(2024, 1, 31), date(2024, 1, 1), date(2024, 4, 30)
    )
    assert occurrences == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
    ]


def test_expand_yearly_leap_day_series():
    rule = RecurrenceRule(RecurrenceFrequency.yearly, 29)
    occurrences = expand_occurrences(
        rule, date(2024, 2, 29), date(2024, 1, 1), date(2028, 12, 31)
    )
    assert occurrences == [
        date(2024, 2, 29),
        date(2025, 2, 28),
        date(2026, 2, 28),
        date(2027, 2, 28),
        date(2028, 2, 29),
    ]


def test_expand_is_repeatable():
    args = (
        RecurrenceRule(RecurrenceFrequency.weekly),
        date(2024, 1, 3),
        date(2024, 2, 1),
        date(2024, 3, 1),
    )
    first = expand_occurrences(*args)
    assert first == expand_occurrences(*args)
    assert first[0] == date(2024, 2, 7)
    assert first[-1] == date(2024, 2, 28)


def test_expand_empty_when_window_before_anchor_series():
    occurrences = expand_occurrences(
        RecurrenceRule(RecurrenceFrequency.daily),
        date(2024, 1, 10),
        date(2024, 1, 1),
        date(2024, 1, 5),
    )
    assert occurrences == []


def test_expand_respects_iteration_cap(monkeypatch):
    monkeypatch.setattr(recurrence, "_iteration_cap", lambda start, end: 2)
    with pytest.raises(RecurrenceLimitExceeded):
        expand_occurrences(
            RecurrenceRule(RecurrenceFrequency.daily),
            date(2024, 1, 1),
            date(2024, 1, 1),
            date(2024, 1, 10),
        )


def test_series_occurrences_rejects_empty_range():
    with pytest.raises(NoOccurrencesInRange):
        series_occurrences(_monthly(1), date(2024, 5, 1), date(2024, 4, 1))
    assert issubclass(NoOccurrencesInRange, ValueError)


def test_series_occurrences_starts_at_series_start():
    occurrences = series_occurrences(_monthly(1), date(2024, 1, 1), date(2024, 3, 1))
    assert occurrences == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]


def test_days_in_month():
    assert days_in_month(2024, 2) == 29
    assert days_in_month(2023, 2) == 28
    assert days_in_month(2024, 12) == 31
