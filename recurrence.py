from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import RecurrenceFrequency

# Each step advances at least one day, so a loop never needs more steps than
# the days it has to cover.
ITERATION_SLACK = 16


class NoOccurrencesInRange(ValueError):
    pass


class RecurrenceLimitExceeded(RuntimeError):
    pass


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: RecurrenceFrequency
    day_of_month: Optional[int] = None


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(desired_day, days_in_month(year, month)))


def next_occurrence(current: date, rule: RecurrenceRule) -> date:
    if rule.frequency == RecurrenceFrequency.daily:
        return current + timedelta(days=1)
    if rule.frequency == RecurrenceFrequency.weekly:
        return current + timedelta(weeks=1)
    desired_day = rule.day_of_month or current.day
    if rule.frequency == RecurrenceFrequency.monthly:
        return _add_months(current, 1, desired_day=desired_day)
    return _add_months(current, 12, desired_day=desired_day)


def _iteration_cap(start: date, end: date) -> int:
    return max((end - start).days, 0) + 1 + ITERATION_SLACK


def expand_occurrences(
    rule: RecurrenceRule, anchor: date, window_start: date, window_end: date
) -> list[date]:
    if rule.day_of_month is None and rule.frequency in (
        RecurrenceFrequency.monthly,
        RecurrenceFrequency.yearly,
    ):
        # Without an explicit day the series keeps the anchor's day, so a
        # short month does not shift every later occurrence.
        rule = RecurrenceRule(rule.frequency, anchor.day)

    current = anchor
    cap = _iteration_cap(anchor, window_start)
    steps = 0
    while current < window_start:
        current = next_occurrence(current, rule)
        steps += 1
        if steps > cap:
            raise RecurrenceLimitExceeded(
                f"Could not reach {window_start} from {anchor} in {cap} steps"
            )

    occurrences: list[date] = []
    cap = _iteration_cap(window_start, window_end)
    while current <= window_end:
        occurrences.append(current)
        current = next_occurrence(current, rule)
        if len(occurrences) > cap:
            raise RecurrenceLimitExceeded(
                f"More than {cap} occurrences between {window_start} and {window_end}"
            )
    return occurrences


def series_occurrences(rule: RecurrenceRule, start: date, end: date) -> list[date]:
    occurrences = expand_occurrences(rule, start, start, end)
    if not occurrences:
        raise NoOccurrencesInRange(
            f"No occurrences found between {start.isoformat()} and {end.isoformat()}"
        )
    return occurrences
