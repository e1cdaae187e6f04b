from datetime import date
from typing import Optional


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def shift_month(year: int, month: int, count: int) -> tuple[int, int]:
    month_index = (year * 12) + (month - 1) + count
    return month_index // 12, (month_index % 12) + 1


def previous_months(year: int, month: int, count: int) -> list[tuple[int, int]]:
    """Trailing (year, month) pairs before the given month, most recent first."""
    return [shift_month(year, month, -offset) for offset in range(1, count + 1)]


def resolve_month(
    month: Optional[int],
    year: Optional[int],
    *,
    today: Optional[date] = None,
) -> tuple[int, int]:
    today = today or date.today()
    target_month = month or today.month
    target_year = year or today.year
    if not 1 <= target_month <= 12:
        raise ValueError("Month must be between 1 and 12")
    return target_year, target_month
