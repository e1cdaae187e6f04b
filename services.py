from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from models import (
    Category,
    Expense,
    ExpenseKind,
    Obligation,
    ObligationKind,
    RecurrenceFrequency,
    User,
)
from periods import month_end, month_start, previous_months, shift_month
from recurrence import (
    RecurrenceRule,
    expand_occurrences,
    local_today,
    next_occurrence,
    series_occurrences,
)
from repository import ExpenseQuery, ObligationQuery, SqlDataStore
from schemas import (
    CategoryIn,
    DefaultCategoryBudgetIn,
    ExpenseIn,
    GlobalBudgetIn,
    MonthlyCategoryBudgetIn,
    MonthTotal,
    RecurringObligationIn,
    ReminderIn,
    SharedCategoryLimitIn,
)

if TYPE_CHECKING:  # pragma: no cover
    from insights import InsightCache


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryTotal:
    category_id: int
    name: str
    color: str
    amount_cents: int
    budget_limit_cents: Optional[int]


@dataclass(frozen=True)
class ExpenseStats:
    total_cents: int
    count: int
    by_category: list[CategoryTotal]


@dataclass(frozen=True)
class MemberSpending:
    user_id: int
    name: str
    total_cents: int
    budget_cents: int
    remaining_cents: int
    count: int
    by_category: list[CategoryTotal]


@dataclass(frozen=True)
class HouseholdBreakdown:
    month: int
    year: int
    total_cents: int
    budget_cents: int
    remaining_cents: int
    count: int
    by_category: list[CategoryTotal]
    members: list[MemberSpending]


@dataclass(frozen=True)
class ForecastItem:
    obligation_id: int
    user_id: int
    description: str
    amount_cents: int
    category_id: int
    date: date
    kind: ObligationKind


@dataclass(frozen=True)
class DailyTotal:
    date: str
    amount_cents: int


@dataclass(frozen=True)
class CumulativePoint:
    date: str
    amount_cents: int
    cumulative_cents: int


@dataclass(frozen=True)
class ForecastSummary:
    total_amount_cents: int
    recurring_count: int
    reminder_count: int


@dataclass(frozen=True)
class ForecastData:
    start: date
    end: date
    items: list[ForecastItem]
    daily_totals: list[DailyTotal]
    cumulative: list[CumulativePoint]
    summary: ForecastSummary


@dataclass(frozen=True)
class MonthForecast:
    total_amount_cents: int
    bill_count: int
    reminder_count: int


@dataclass
class _Touched:
    months: set[tuple[int, int]] = field(default_factory=set)

    def add(self, d: date) -> None:
        self.months.add((d.year, d.month))


async def _resolved(value):
    return value


def rule_for(obligation: Obligation) -> RecurrenceRule:
    return RecurrenceRule(
        RecurrenceFrequency(obligation.frequency), obligation.day_of_month
    )


async def _invalidate(
    cache: Optional["InsightCache"], months: Iterable[tuple[int, int]]
) -> None:
    if cache is None:
        return
    for year, month in sorted(set(months)):
        await cache.invalidate(month, year)


class UserService:
    def __init__(self, store: SqlDataStore) -> None:
        self.store = store

    async def list_all(self) -> list[User]:
        return await self.store.list_users()

    async def create(self, name: str) -> User:
        name = name.strip()
        if not name:
            raise ValueError("User name is required")
        return await self.store.add_user(name)


class CategoryService:
    def __init__(self, store: SqlDataStore) -> None:
        self.store = store

    async def list_all(self) -> list[Category]:
        return await self.store.get_categories()

    async def create(self, data: CategoryIn) -> Category:
        existing = {c.name.lower() for c in await self.store.get_categories()}
        if data.name.strip().lower() in existing:
            raise ValueError("Category already exists")
        return await self.store.add_category(
            name=data.name.strip(),
            color=data.color,
            is_shared=data.is_shared,
            budget_limit_cents=data.budget_limit_cents,
        )


class BudgetService:
    def __init__(
        self, store: SqlDataStore, cache: Optional["InsightCache"] = None
    ) -> None:
        self.store = store
        self.cache = cache

    async def category_limits(
        self,
        user_id: Optional[int],
        category_ids: Sequence[int],
        month: int,
        year: int,
    ) -> dict[int, Optional[int]]:
        if not category_ids:
            return {}
        scope_ids = None if user_id is None else [user_id]
        categories, monthly, defaults, users = await asyncio.gather(
            self.store.get_categories(category_ids),
            self.store.monthly_category_budgets(scope_ids, category_ids, month, year),
            self.store.default_category_budgets(scope_ids, category_ids),
            self.store.list_users() if user_id is None else _resolved([]),
        )
        category_map = {c.id: c for c in categories}
        monthly_map = {(b.user_id, b.category_id): b.limit_cents for b in monthly}
        default_map = {(b.user_id, b.category_id): b.limit_cents for b in defaults}

        def personal_limit(uid: int, category: Category) -> Optional[int]:
            key = (uid, category.id)
            if key in monthly_map:
                return monthly_map[key]
            if key in default_map:
                return default_map[key]
            if category.is_shared and category.budget_limit_cents is not None:
                return category.budget_limit_cents
            return None

        limits: dict[int, Optional[int]] = {}
        for category_id in category_ids:
            category = category_map.get(category_id)
            if category is None:
                limits[category_id] = None
                continue
            if user_id is not None:
                limits[category_id] = personal_limit(user_id, category)
                continue
            if category.is_shared and category.budget_limit_cents is not None:
                limits[category_id] = category.budget_limit_cents
                continue
            member_limits = [
                limit
                for limit in (personal_limit(u.id, category) for u in users)
                if limit is not None
            ]
            limits[category_id] = sum(member_limits) if member_limits else None
        return limits

    async def resolve_category_budget(
        self, user_id: int, category_id: int, month: int, year: int
    ) -> Optional[int]:
        limits = await self.category_limits(user_id, [category_id], month, year)
        return limits.get(category_id)

    async def resolve_global_budget(self, month: int, year: int) -> int:
        budget = await self.store.get_global_budget(month, year)
        if budget:
            return budget.monthly_limit_cents
        settings = await self.store.get_app_settings()
        if settings and settings.default_global_budget_cents is not None:
            return settings.default_global_budget_cents
        return 0

    async def sum_category_budgets(
        self,
        user_id: Optional[int],
        category_ids: Optional[Sequence[int]],
        month: int,
        year: int,
    ) -> Optional[int]:
        if not category_ids:
            return None
        limits = await self.category_limits(user_id, list(category_ids), month, year)
        resolved = [limit for limit in limits.values() if limit is not None]
        if not resolved:
            return None
        return sum(resolved)

    async def effective_budget(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        category_ids: Optional[Sequence[int]] = None,
    ) -> int:
        limit = await self.resolve_global_budget(month, year)
        if category_ids:
            category_sum = await self.sum_category_budgets(
                user_id, category_ids, month, year
            )
            if category_sum is not None:
                limit = category_sum
        return limit

    async def carryover_amount(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        category_ids: Optional[Sequence[int]] = None,
    ) -> int:
        settings = await self.store.get_app_settings()
        if not settings or not settings.enable_budget_carryover:
            return 0
        prev_year, prev_month = shift_month(year, month, -1)
        stats = StatsService(self.store, budgets=self)
        spent, budget = await asyncio.gather(
            stats.total_between(
                user_id,
                month_start(prev_year, prev_month),
                month_end(prev_year, prev_month),
                category_ids=category_ids,
            ),
            self.effective_budget(user_id, prev_month, prev_year, category_ids),
        )
        return max(0, spent - budget)

    async def _require_user_and_category(self, user_id: int, category_id: int) -> None:
        user, category = await asyncio.gather(
            self.store.get_user(user_id), self.store.get_category(category_id)
        )
        if not user:
            raise ValueError("User not found")
        if not category:
            raise ValueError("Category not found")

    async def set_monthly_category_budget(self, data: MonthlyCategoryBudgetIn) -> None:
        await self._require_user_and_category(data.user_id, data.category_id)
        await self.store.upsert_monthly_category_budget(
            data.user_id, data.category_id, data.month, data.year, data.limit_cents
        )
        await _invalidate(self.cache, [(data.year, data.month)])

    async def clear_monthly_category_budget(
        self, user_id: int, category_id: int, month: int, year: int
    ) -> bool:
        """Drop a month override so resolution falls back to the lower layers."""
        removed = await self.store.delete_monthly_category_budget(
            user_id, category_id, month, year
        )
        await _invalidate(self.cache, [(year, month)])
        return removed > 0

    async def set_default_category_budget(
        self, data: DefaultCategoryBudgetIn, *, today: Optional[date] = None
    ) -> None:
        today = today or local_today()
        await self._require_user_and_category(data.user_id, data.category_id)
        await self.store.upsert_default_category_budget(
            data.user_id, data.category_id, data.limit_cents
        )
        await _invalidate(self.cache, [(today.year, today.month)])

    async def set_shared_category_limit(
        self,
        category_id: int,
        data: SharedCategoryLimitIn,
        *,
        today: Optional[date] = None,
    ) -> Category:
        today = today or local_today()
        existing = await self.store.get_category(category_id)
        if not existing:
            raise ValueError("Category not found")
        if not existing.is_shared:
            raise ValueError("Category is not shared")
        category = await self.store.update_category(
            category_id, budget_limit_cents=data.budget_limit_cents
        )
        await _invalidate(self.cache, [(today.year, today.month)])
        return category

    async def set_global_budget(
        self, data: GlobalBudgetIn, *, today: Optional[date] = None
    ) -> None:
        today = today or local_today()
        await self.store.upsert_global_budget(
            data.month, data.year, data.monthly_limit_cents
        )
        # The latest global limit also becomes the default for months
        # without their own record.
        await self.store.update_app_settings(
            default_global_budget_cents=data.monthly_limit_cents
        )
        await _invalidate(
            self.cache, [(data.year, data.month), (today.year, today.month)]
        )

    async def set_carryover_enabled(
        self, enabled: bool, *, today: Optional[date] = None
    ) -> None:
        today = today or local_today()
        await self.store.update_app_settings(enable_budget_carryover=enabled)
        await _invalidate(self.cache, [(today.year, today.month)])


class StatsService:
    def __init__(
        self, store: SqlDataStore, budgets: Optional[BudgetService] = None
    ) -> None:
        self.store = store
        self.budgets = budgets or BudgetService(store)

    @staticmethod
    def _query(
        user_id: Optional[int],
        start: date,
        end: date,
        include_projected: bool,
        category_ids: Optional[Sequence[int]],
    ) -> ExpenseQuery:
        # "Spent" only counts money that has actually left an account.
        return ExpenseQuery(
            start=start,
            end=end,
            user_id=user_id,
            include_shared=True,
            category_ids=category_ids,
            is_projected=None if include_projected else False,
            is_settled=None if include_projected else True,
        )

    async def entries(
        self,
        user_id: Optional[int],
        start: date,
        end: date,
        include_projected: bool = False,
        category_ids: Optional[Sequence[int]] = None,
    ) -> list[Expense]:
        return await self.store.list_expenses(
            self._query(user_id, start, end, include_projected, category_ids)
        )

    @staticmethod
    def _category_totals(
        expenses: Sequence[Expense], limits: Optional[dict[int, Optional[int]]] = None
    ) -> list[CategoryTotal]:
        buckets: dict[int, dict[str, object]] = {}
        for expense in expenses:
            bucket = buckets.get(expense.category_id)
            if bucket is None:
                bucket = {
                    "name": expense.category.name,
                    "color": expense.category.color,
                    "amount_cents": 0,
                }
                buckets[expense.category_id] = bucket
            bucket["amount_cents"] += expense.amount_cents
        limits = limits or {}
        return [
            CategoryTotal(
                category_id=category_id,
                name=str(bucket["name"]),
                color=str(bucket["color"]),
                amount_cents=int(bucket["amount_cents"]),
                budget_limit_cents=limits.get(category_id),
            )
            for category_id, bucket in buckets.items()
        ]

    async def compute_stats(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        include_projected: bool = False,
        category_ids: Optional[Sequence[int]] = None,
    ) -> ExpenseStats:
        expenses = await self.entries(
            user_id,
            month_start(year, month),
            month_end(year, month),
            include_projected,
            category_ids,
        )
        limits = await self.budgets.category_limits(
            user_id, list(dict.fromkeys(e.category_id for e in expenses)), month, year
        )
        return ExpenseStats(
            total_cents=sum(e.amount_cents for e in expenses),
            count=len(expenses),
            by_category=self._category_totals(expenses, limits),
        )

    async def household_breakdown(self, month: int, year: int) -> HouseholdBreakdown:
        """Household totals for a month plus one row per member.

        A member's row holds their own entries and every entry in a shared
        category, so shared spending shows up under each member. Every row
        is measured against the household's global budget.
        """
        expenses, users, budget = await asyncio.gather(
            self.entries(None, month_start(year, month), month_end(year, month)),
            self.store.list_users(),
            self.budgets.resolve_global_budget(month, year),
        )
        members = []
        for user in users:
            own = [
                e
                for e in expenses
                if e.user_id == user.id or e.category.is_shared
            ]
            total = sum(e.amount_cents for e in own)
            members.append(
                MemberSpending(
                    user_id=user.id,
                    name=user.name,
                    total_cents=total,
                    budget_cents=budget,
                    remaining_cents=budget - total,
                    count=len(own),
                    by_category=self._category_totals(own),
                )
            )
        total = sum(e.amount_cents for e in expenses)
        return HouseholdBreakdown(
            month=month,
            year=year,
            total_cents=total,
            budget_cents=budget,
            remaining_cents=budget - total,
            count=len(expenses),
            by_category=self._category_totals(expenses),
            members=members,
        )

    async def total_between(
        self,
        user_id: Optional[int],
        start: date,
        end: date,
        include_projected: bool = False,
        category_ids: Optional[Sequence[int]] = None,
    ) -> int:
        expenses = await self.entries(
            user_id, start, end, include_projected, category_ids
        )
        return sum(e.amount_cents for e in expenses)

    async def month_totals(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        months_back: int,
        category_ids: Optional[Sequence[int]] = None,
    ) -> list[MonthTotal]:
        months = previous_months(year, month, months_back)
        totals = await asyncio.gather(
            *(
                self.total_between(
                    user_id, month_start(y, m), month_end(y, m), category_ids=category_ids
                )
                for y, m in months
            )
        )
        return [
            MonthTotal(year=y, month=m, total_cents=total)
            for (y, m), total in zip(months, totals)
        ]


class ForecastService:
    def __init__(self, store: SqlDataStore) -> None:
        self.store = store

    @staticmethod
    def _recurring_items(
        obligations: Iterable[Obligation], start: date, end: date
    ) -> list[ForecastItem]:
        items: list[ForecastItem] = []
        for obligation in obligations:
            if obligation.next_due_date is None or obligation.frequency is None:
                continue
            window_end = end
            if obligation.series_end_date and obligation.series_end_date < window_end:
                window_end = obligation.series_end_date
            for occurrence in expand_occurrences(
                rule_for(obligation), obligation.next_due_date, start, window_end
            ):
                items.append(_forecast_item(obligation, occurrence))
        return items

    async def build_forecast(
        self,
        user_id: Optional[int],
        window_days: int,
        *,
        today: Optional[date] = None,
    ) -> ForecastData:
        if window_days <= 0:
            raise ValueError("Forecast window must be at least one day")
        today = today or local_today()
        end = today + timedelta(days=window_days)

        recurring, reminders = await asyncio.gather(
            self.store.list_obligations(
                ObligationQuery(
                    kind=ObligationKind.recurring,
                    user_id=user_id,
                    is_active=True,
                    is_settled=False,
                    is_projected=True,
                )
            ),
            self.store.list_obligations(
                ObligationQuery(
                    kind=ObligationKind.reminder,
                    user_id=user_id,
                    is_active=True,
                    is_settled=False,
                    is_projected=True,
                    occurs_from=today,
                    occurs_until=end,
                )
            ),
        )

        items = self._recurring_items(recurring, today, end)
        items.extend(_forecast_item(r, r.occurrence_date) for r in reminders)
        items.sort(key=lambda item: item.date)

        by_day: dict[str, int] = {}
        for item in items:
            key = item.date.isoformat()
            by_day[key] = by_day.get(key, 0) + item.amount_cents

        daily_totals = [DailyTotal(date=k, amount_cents=v) for k, v in by_day.items()]
        cumulative: list[CumulativePoint] = []
        running = 0
        for day in daily_totals:
            running += day.amount_cents
            cumulative.append(
                CumulativePoint(
                    date=day.date,
                    amount_cents=day.amount_cents,
                    cumulative_cents=running,
                )
            )

        summary = ForecastSummary(
            total_amount_cents=running,
            recurring_count=sum(
                1 for item in items if item.kind == ObligationKind.recurring
            ),
            reminder_count=sum(
                1 for item in items if item.kind == ObligationKind.reminder
            ),
        )
        return ForecastData(
            start=today,
            end=end,
            items=items,
            daily_totals=daily_totals,
            cumulative=cumulative,
            summary=summary,
        )

    async def build_month_forecast(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        category_ids: Optional[Sequence[int]] = None,
        *,
        today: Optional[date] = None,
    ) -> MonthForecast:
        today = today or local_today()
        start = month_start(year, month)
        end = month_end(year, month)
        # Projections dated before today have already turned into due
        # ledger entries, so they only come from the unpaid query.
        forecast_start = max(today, start)

        unpaid_due = await self.store.list_expenses(
            ExpenseQuery(
                start=start,
                end=end,
                user_id=user_id,
                include_shared=False,
                category_ids=category_ids,
                is_projected=False,
                is_settled=False,
            )
        )
        projected: list[Expense] = []
        obligation_items: list[ForecastItem] = []
        if forecast_start <= end:
            projected, recurring, reminders = await asyncio.gather(
                self.store.list_expenses(
                    ExpenseQuery(
                        start=forecast_start,
                        end=end,
                        user_id=user_id,
                        include_shared=False,
                        category_ids=category_ids,
                        is_projected=True,
                        is_settled=False,
                    )
                ),
                self.store.list_obligations(
                    ObligationQuery(
                        kind=ObligationKind.recurring,
                        user_id=user_id,
                        category_ids=category_ids,
                        is_active=True,
                        is_settled=False,
                        is_projected=True,
                    )
                ),
                self.store.list_obligations(
                    ObligationQuery(
                        kind=ObligationKind.reminder,
                        user_id=user_id,
                        is_active=True,
                        category_ids=category_ids,
                        is_settled=False,
                        is_projected=True,
                        occurs_from=forecast_start,
                        occurs_until=end,
                    )
                ),
            )
            obligation_items = self._recurring_items(recurring, forecast_start, end)
            obligation_items.extend(
                _forecast_item(r, r.occurrence_date) for r in reminders
            )

        ledger = unpaid_due + projected
        total = sum(e.amount_cents for e in ledger) + sum(
            i.amount_cents for i in obligation_items
        )
        bills = sum(1 for e in ledger if e.kind == ExpenseKind.recurring) + sum(
            1 for i in obligation_items if i.kind == ObligationKind.recurring
        )
        reminder_count = sum(1 for e in ledger if e.kind == ExpenseKind.reminder) + sum(
            1 for i in obligation_items if i.kind == ObligationKind.reminder
        )
        return MonthForecast(
            total_amount_cents=total, bill_count=bills, reminder_count=reminder_count
        )


def _forecast_item(obligation: Obligation, occurrence: date) -> ForecastItem:
    return ForecastItem(
        obligation_id=obligation.id,
        user_id=obligation.user_id,
        description=obligation.description,
        amount_cents=obligation.amount_cents,
        category_id=obligation.category_id,
        date=occurrence,
        kind=ObligationKind(obligation.kind),
    )


class ExpenseService:
    def __init__(
        self, store: SqlDataStore, cache: Optional["InsightCache"] = None
    ) -> None:
        self.store = store
        self.cache = cache

    async def _validate(self, data: ExpenseIn) -> None:
        user, category = await asyncio.gather(
            self.store.get_user(data.user_id), self.store.get_category(data.category_id)
        )
        if not user:
            raise ValueError("User not found")
        if not category:
            raise ValueError("Category not found")

    async def list_for_month(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        include_projected: bool = False,
    ) -> list[Expense]:
        return await self.store.list_expenses(
            ExpenseQuery(
                start=month_start(year, month),
                end=month_end(year, month),
                user_id=user_id,
                is_projected=None if include_projected else False,
            )
        )

    async def create(self, data: ExpenseIn) -> Expense:
        await self._validate(data)
        expense = await self.store.add_expense(
            user_id=data.user_id,
            description=data.description,
            amount_cents=data.amount_cents,
            date=data.date,
            category_id=data.category_id,
            kind=ExpenseKind.regular,
            is_projected=data.is_projected and not data.is_settled,
            is_settled=data.is_settled,
        )
        await _invalidate(self.cache, [(data.date.year, data.date.month)])
        return expense

    async def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        existing = await self.store.get_expense(expense_id)
        if not existing:
            raise ValueError("Expense not found")
        await self._validate(data)
        old_date = existing.date
        expense = await self.store.update_expense(
            expense_id,
            user_id=data.user_id,
            description=data.description,
            amount_cents=data.amount_cents,
            date=data.date,
            category_id=data.category_id,
            is_projected=data.is_projected and not data.is_settled,
            is_settled=data.is_settled,
        )
        await _invalidate(
            self.cache,
            [(old_date.year, old_date.month), (data.date.year, data.date.month)],
        )
        return expense

    async def delete(self, expense_id: int) -> None:
        expense = await self.store.delete_expense(expense_id)
        await _invalidate(self.cache, [(expense.date.year, expense.date.month)])

    async def mark_paid(self, expense_id: int, is_paid: bool) -> Expense:
        values: dict[str, object] = {"is_settled": is_paid}
        if is_paid:
            values["is_projected"] = False
        expense = await self.store.update_expense(expense_id, **values)
        await _invalidate(self.cache, [(expense.date.year, expense.date.month)])
        return expense


class ObligationService:
    def __init__(
        self, store: SqlDataStore, cache: Optional["InsightCache"] = None
    ) -> None:
        self.store = store
        self.cache = cache

    async def get(self, obligation_id: int) -> Obligation:
        obligation = await self.store.get_obligation(obligation_id)
        if not obligation:
            raise ValueError("Obligation not found")
        return obligation

    async def _validate(self, user_id: int, category_id: int) -> None:
        user, category = await asyncio.gather(
            self.store.get_user(user_id), self.store.get_category(category_id)
        )
        if not user:
            raise ValueError("User not found")
        if not category:
            raise ValueError("Category not found")

    async def create_recurring(self, data: RecurringObligationIn) -> Obligation:
        await self._validate(data.user_id, data.category_id)
        day_of_month = data.day_of_month
        if day_of_month is None and data.frequency in (
            RecurrenceFrequency.monthly,
            RecurrenceFrequency.yearly,
        ):
            # Pin the series to its first day so clamped months do not drift.
            day_of_month = data.start_date.day
        rule = RecurrenceRule(data.frequency, day_of_month)
        occurrences = series_occurrences(rule, data.start_date, data.end_date)
        obligation = await self.store.add_obligation(
            user_id=data.user_id,
            description=data.description,
            amount_cents=data.amount_cents,
            category_id=data.category_id,
            kind=ObligationKind.recurring,
            frequency=data.frequency,
            day_of_month=day_of_month,
            next_due_date=occurrences[0],
            series_end_date=data.end_date,
            is_active=True,
            is_projected=True,
            is_settled=False,
        )
        await _invalidate(self.cache, [(d.year, d.month) for d in occurrences])
        return obligation

    async def create_reminder(self, data: ReminderIn) -> Obligation:
        await self._validate(data.user_id, data.category_id)
        obligation = await self.store.add_obligation(
            user_id=data.user_id,
            description=data.description,
            amount_cents=data.amount_cents,
            category_id=data.category_id,
            kind=ObligationKind.reminder,
            occurrence_date=data.date,
            is_active=True,
            is_projected=True,
            is_settled=False,
        )
        await _invalidate(self.cache, [(data.date.year, data.date.month)])
        return obligation

    async def complete_reminder(self, obligation_id: int) -> Obligation:
        obligation = await self.store.get_obligation(obligation_id)
        if not obligation or obligation.kind != ObligationKind.reminder:
            raise ValueError("Obligation not found or is not a reminder")
        await self.store.post_occurrence(
            obligation, obligation.occurrence_date, ExpenseKind.reminder
        )
        obligation = await self.store.update_obligation(
            obligation_id, is_projected=False
        )
        occurred = obligation.occurrence_date
        await _invalidate(self.cache, [(occurred.year, occurred.month)])
        return obligation

    def _projected_months(
        self, obligation: Obligation, today: date
    ) -> list[tuple[int, int]]:
        if not obligation.is_active or not obligation.is_projected:
            return []
        if obligation.kind == ObligationKind.reminder:
            occurred = obligation.occurrence_date
            return [(occurred.year, occurred.month)]
        if obligation.next_due_date is None:
            return []
        # Open-ended series only matter up to the current month.
        until = obligation.series_end_date or month_end(today.year, today.month)
        occurrences = expand_occurrences(
            rule_for(obligation),
            obligation.next_due_date,
            obligation.next_due_date,
            until,
        )
        return [(d.year, d.month) for d in occurrences]

    async def deactivate(
        self, obligation_id: int, *, today: Optional[date] = None
    ) -> Obligation:
        obligation = await self.get(obligation_id)
        months = self._projected_months(obligation, today or local_today())
        obligation = await self.store.update_obligation(obligation_id, is_active=False)
        await _invalidate(self.cache, months)
        return obligation

    async def delete(self, obligation_id: int, *, today: Optional[date] = None) -> None:
        obligation = await self.get(obligation_id)
        months = self._projected_months(obligation, today or local_today())
        await self.store.delete_obligation(obligation_id)
        await _invalidate(self.cache, months)
        logger.info(
            f"Deleted {obligation.kind.value} obligation {obligation_id}; "
            f"invalidated {len(set(months))} months"
        )

    async def catch_up_rule(
        self, obligation: Obligation, today: date, touched: _Touched
    ) -> int:
        if obligation.next_due_date is None or obligation.next_due_date > today:
            return 0
        rule = rule_for(obligation)
        until = today
        if obligation.series_end_date and obligation.series_end_date < until:
            until = obligation.series_end_date

        posted = 0
        last = None
        for occurrence in expand_occurrences(
            rule, obligation.next_due_date, obligation.next_due_date, until
        ):
            if await self.store.post_occurrence(
                obligation, occurrence, ExpenseKind.recurring
            ):
                posted += 1
                touched.add(occurrence)
            last = occurrence

        values: dict[str, object] = {}
        if last is not None:
            values["next_due_date"] = next_occurrence(last, rule)
        next_due = values.get("next_due_date", obligation.next_due_date)
        if obligation.series_end_date and next_due > obligation.series_end_date:
            values["is_active"] = False
            values["is_projected"] = False
        if values:
            await self.store.update_obligation(obligation.id, **values)
        return posted

    async def catch_up_all(self, today: Optional[date] = None) -> int:
        today = today or local_today()
        touched = _Touched()
        recurring, reminders = await asyncio.gather(
            self.store.list_obligations(
                ObligationQuery(
                    kind=ObligationKind.recurring,
                    is_active=True,
                    is_settled=False,
                    due_on_or_before=today,
                )
            ),
            self.store.list_obligations(
                ObligationQuery(
                    kind=ObligationKind.reminder,
                    is_active=True,
                    is_settled=False,
                    is_projected=True,
                    due_on_or_before=today,
                )
            ),
        )
        count = 0
        for obligation in recurring:
            count += await self.catch_up_rule(obligation, today, touched)
        for reminder in reminders:
            if await self.store.post_occurrence(
                reminder, reminder.occurrence_date, ExpenseKind.reminder
            ):
                count += 1
                touched.add(reminder.occurrence_date)
            await self.store.update_obligation(reminder.id, is_projected=False)
        await _invalidate(self.cache, touched.months)
        logger.info(f"catch_up_all: today={today} occurrences_posted={count}")
        return count
