from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Protocol, Sequence

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import joinedload

from database import async_session_scope
from models import (
    AppSettings,
    Category,
    Expense,
    ExpenseKind,
    GlobalBudget,
    InsightCacheEntry,
    InsightPhase,
    Obligation,
    ObligationKind,
    User,
    UserCategoryBudget,
    UserCategoryDefaultBudget,
)


@dataclass(frozen=True)
class ExpenseQuery:
    start: date
    end: date
    # None selects every user's entries.
    user_id: Optional[int] = None
    include_shared: bool = True
    category_ids: Optional[Sequence[int]] = None
    is_projected: Optional[bool] = None
    is_settled: Optional[bool] = None


@dataclass(frozen=True)
class ObligationQuery:
    kind: ObligationKind
    user_id: Optional[int] = None
    category_ids: Optional[Sequence[int]] = None
    is_active: Optional[bool] = None
    is_settled: Optional[bool] = None
    is_projected: Optional[bool] = None
    due_on_or_before: Optional[date] = None
    occurs_from: Optional[date] = None
    occurs_until: Optional[date] = None


class DataStore(Protocol):
    async def list_users(self) -> list[User]: ...

    async def get_categories(
        self, category_ids: Optional[Iterable[int]] = None
    ) -> list[Category]: ...

    async def list_expenses(self, query: ExpenseQuery) -> list[Expense]: ...

    async def list_obligations(self, query: ObligationQuery) -> list[Obligation]: ...

    async def monthly_category_budgets(
        self,
        user_ids: Optional[Iterable[int]],
        category_ids: Iterable[int],
        month: int,
        year: int,
    ) -> list[UserCategoryBudget]: ...

    async def default_category_budgets(
        self, user_ids: Optional[Iterable[int]], category_ids: Iterable[int]
    ) -> list[UserCategoryDefaultBudget]: ...

    async def get_global_budget(self, month: int, year: int) -> Optional[GlobalBudget]: ...

    async def get_app_settings(self) -> Optional[AppSettings]: ...


class InsightCacheStore(Protocol):
    async def get(
        self, scope_user_id: Optional[int], month: int, year: int, phase: InsightPhase
    ) -> Optional[InsightCacheEntry]: ...

    async def put(
        self,
        scope_user_id: Optional[int],
        month: int,
        year: int,
        phase: InsightPhase,
        data: str,
        text: str,
        generated_at: datetime,
    ) -> InsightCacheEntry: ...

    async def delete_month(self, month: int, year: int) -> int: ...


def _scope_clause(column, value: Optional[int]):
    return column.is_(None) if value is None else column == value


class SqlDataStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self.sessionmaker = sessionmaker

    async def list_users(self) -> list[User]:
        async with self.sessionmaker() as session:
            result = await session.scalars(select(User).order_by(User.name, User.id))
            return list(result.all())

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self.sessionmaker() as session:
            return await session.get(User, user_id)

    async def get_categories(
        self, category_ids: Optional[Iterable[int]] = None
    ) -> list[Category]:
        stmt = select(Category).order_by(Category.name)
        if category_ids is not None:
            stmt = stmt.where(Category.id.in_(list(category_ids)))
        async with self.sessionmaker() as session:
            result = await session.scalars(stmt)
            return list(result.all())

    async def get_category(self, category_id: int) -> Optional[Category]:
        async with self.sessionmaker() as session:
            return await session.get(Category, category_id)

    async def list_expenses(self, query: ExpenseQuery) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.date.between(query.start, query.end))
            .order_by(Expense.date, Expense.id)
        )
        if query.user_id is not None:
            if query.include_shared:
                stmt = stmt.where(
                    or_(
                        Expense.user_id == query.user_id,
                        Expense.category.has(Category.is_shared.is_(True)),
                    )
                )
            else:
                stmt = stmt.where(Expense.user_id == query.user_id)
        if query.category_ids:
            stmt = stmt.where(Expense.category_id.in_(list(query.category_ids)))
        if query.is_projected is not None:
            stmt = stmt.where(Expense.is_projected.is_(query.is_projected))
        if query.is_settled is not None:
            stmt = stmt.where(Expense.is_settled.is_(query.is_settled))
        async with self.sessionmaker() as session:
            result = await session.scalars(stmt)
            return list(result.all())

    async def get_expense(self, expense_id: int) -> Optional[Expense]:
        async with self.sessionmaker() as session:
            return await session.get(Expense, expense_id)

    async def list_obligations(self, query: ObligationQuery) -> list[Obligation]:
        stmt = (
            select(Obligation)
            .where(Obligation.kind == query.kind)
            .order_by(Obligation.id)
        )
        if query.user_id is not None:
            stmt = stmt.where(Obligation.user_id == query.user_id)
        if query.category_ids:
            stmt = stmt.where(Obligation.category_id.in_(list(query.category_ids)))
        if query.is_active is not None:
            stmt = stmt.where(Obligation.is_active.is_(query.is_active))
        if query.is_settled is not None:
            stmt = stmt.where(Obligation.is_settled.is_(query.is_settled))
        if query.is_projected is not None:
            stmt = stmt.where(Obligation.is_projected.is_(query.is_projected))
        due_column = (
            Obligation.next_due_date
            if query.kind == ObligationKind.recurring
            else Obligation.occurrence_date
        )
        if query.due_on_or_before is not None:
            stmt = stmt.where(due_column <= query.due_on_or_before)
        if query.occurs_from is not None:
            stmt = stmt.where(due_column >= query.occurs_from)
        if query.occurs_until is not None:
            stmt = stmt.where(due_column <= query.occurs_until)
        async with self.sessionmaker() as session:
            result = await session.scalars(stmt)
            return list(result.all())

    async def get_obligation(self, obligation_id: int) -> Optional[Obligation]:
        async with self.sessionmaker() as session:
            return await session.get(Obligation, obligation_id)

    async def monthly_category_budgets(
        self,
        user_ids: Optional[Iterable[int]],
        category_ids: Iterable[int],
        month: int,
        year: int,
    ) -> list[UserCategoryBudget]:
        stmt = select(UserCategoryBudget).where(
            UserCategoryBudget.category_id.in_(list(category_ids)),
            UserCategoryBudget.month == month,
            UserCategoryBudget.year == year,
        )
        if user_ids is not None:
            stmt = stmt.where(UserCategoryBudget.user_id.in_(list(user_ids)))
        async with self.sessionmaker() as session:
            result = await session.scalars(stmt)
            return list(result.all())

    async def default_category_budgets(
        self, user_ids: Optional[Iterable[int]], category_ids: Iterable[int]
    ) -> list[UserCategoryDefaultBudget]:
        stmt = select(UserCategoryDefaultBudget).where(
            UserCategoryDefaultBudget.category_id.in_(list(category_ids))
        )
        if user_ids is not None:
            stmt = stmt.where(UserCategoryDefaultBudget.user_id.in_(list(user_ids)))
        async with self.sessionmaker() as session:
            result = await session.scalars(stmt)
            return list(result.all())

    async def get_global_budget(self, month: int, year: int) -> Optional[GlobalBudget]:
        async with self.sessionmaker() as session:
            return await session.scalar(
                select(GlobalBudget).where(
                    GlobalBudget.month == month, GlobalBudget.year == year
                )
            )

    async def get_app_settings(self) -> Optional[AppSettings]:
        async with self.sessionmaker() as session:
            return await session.scalar(select(AppSettings).order_by(AppSettings.id))

    async def add_user(self, name: str) -> User:
        async with async_session_scope(self.sessionmaker) as session:
            user = User(name=name)
            session.add(user)
            await session.flush()
            return user

    async def add_category(
        self,
        name: str,
        color: str,
        is_shared: bool,
        budget_limit_cents: Optional[int],
    ) -> Category:
        async with async_session_scope(self.sessionmaker) as session:
            category = Category(
                name=name,
                color=color,
                is_shared=is_shared,
                budget_limit_cents=budget_limit_cents,
            )
            session.add(category)
            await session.flush()
            return category

    async def update_category(self, category_id: int, **values) -> Category:
        async with async_session_scope(self.sessionmaker) as session:
            category = await session.get(Category, category_id)
            if not category:
                raise ValueError("Category not found")
            for key, value in values.items():
                setattr(category, key, value)
            await session.flush()
            return category

    async def add_expense(self, **values) -> Expense:
        async with async_session_scope(self.sessionmaker) as session:
            expense = Expense(**values)
            session.add(expense)
            await session.flush()
            return expense

    async def update_expense(self, expense_id: int, **values) -> Expense:
        async with async_session_scope(self.sessionmaker) as session:
            expense = await session.get(Expense, expense_id)
            if not expense:
                raise ValueError("Expense not found")
            for key, value in values.items():
                setattr(expense, key, value)
            await session.flush()
            return expense

    async def delete_expense(self, expense_id: int) -> Expense:
        async with async_session_scope(self.sessionmaker) as session:
            expense = await session.get(Expense, expense_id)
            if not expense:
                raise ValueError("Expense not found")
            await session.delete(expense)
            return expense

    async def add_obligation(self, **values) -> Obligation:
        async with async_session_scope(self.sessionmaker) as session:
            obligation = Obligation(**values)
            session.add(obligation)
            await session.flush()
            return obligation

    async def update_obligation(self, obligation_id: int, **values) -> Obligation:
        async with async_session_scope(self.sessionmaker) as session:
            obligation = await session.get(Obligation, obligation_id)
            if not obligation:
                raise ValueError("Obligation not found")
            for key, value in values.items():
                setattr(obligation, key, value)
            await session.flush()
            return obligation

    async def delete_obligation(self, obligation_id: int) -> Obligation:
        async with async_session_scope(self.sessionmaker) as session:
            obligation = await session.get(Obligation, obligation_id)
            if not obligation:
                raise ValueError("Obligation not found")
            # Posted entries are real spending and outlive their series.
            await session.execute(
                update(Expense)
                .where(Expense.origin_obligation_id == obligation_id)
                .values(origin_obligation_id=None)
                .execution_options(synchronize_session=False)
            )
            await session.execute(delete(Obligation).where(Obligation.id == obligation_id))
            return obligation

    async def post_occurrence(
        self, obligation: Obligation, occurrence_date: date, kind: ExpenseKind
    ) -> bool:
        async with async_session_scope(self.sessionmaker) as session:
            existing = await session.scalar(
                select(Expense.id)
                .where(
                    Expense.origin_obligation_id == obligation.id,
                    Expense.occurrence_date == occurrence_date,
                )
                .limit(1)
            )
            if existing:
                return False
            session.add(
                Expense(
                    user_id=obligation.user_id,
                    description=obligation.description,
                    amount_cents=obligation.amount_cents,
                    date=occurrence_date,
                    category_id=obligation.category_id,
                    kind=kind,
                    is_projected=False,
                    is_settled=False,
                    origin_obligation_id=obligation.id,
                    occurrence_date=occurrence_date,
                )
            )
            return True

    async def upsert_monthly_category_budget(
        self, user_id: int, category_id: int, month: int, year: int, limit_cents: int
    ) -> UserCategoryBudget:
        async with async_session_scope(self.sessionmaker) as session:
            existing = await session.scalar(
                select(UserCategoryBudget).where(
                    UserCategoryBudget.user_id == user_id,
                    UserCategoryBudget.category_id == category_id,
                    UserCategoryBudget.month == month,
                    UserCategoryBudget.year == year,
                )
            )
            if existing:
                existing.limit_cents = limit_cents
                return existing
            budget = UserCategoryBudget(
                user_id=user_id,
                category_id=category_id,
                month=month,
                year=year,
                limit_cents=limit_cents,
            )
            session.add(budget)
            await session.flush()
            return budget

    async def delete_monthly_category_budget(
        self, user_id: int, category_id: int, month: int, year: int
    ) -> int:
        async with async_session_scope(self.sessionmaker) as session:
            result = await session.execute(
                delete(UserCategoryBudget).where(
                    UserCategoryBudget.user_id == user_id,
                    UserCategoryBudget.category_id == category_id,
                    UserCategoryBudget.month == month,
                    UserCategoryBudget.year == year,
                )
            )
            return result.rowcount or 0

    async def upsert_default_category_budget(
        self, user_id: int, category_id: int, limit_cents: int
    ) -> UserCategoryDefaultBudget:
        async with async_session_scope(self.sessionmaker) as session:
            existing = await session.scalar(
                select(UserCategoryDefaultBudget).where(
                    UserCategoryDefaultBudget.user_id == user_id,
                    UserCategoryDefaultBudget.category_id == category_id,
                )
            )
            if existing:
                existing.limit_cents = limit_cents
                return existing
            budget = UserCategoryDefaultBudget(
                user_id=user_id, category_id=category_id, limit_cents=limit_cents
            )
            session.add(budget)
            await session.flush()
            return budget

    async def upsert_global_budget(
        self, month: int, year: int, monthly_limit_cents: int
    ) -> GlobalBudget:
        async with async_session_scope(self.sessionmaker) as session:
            existing = await session.scalar(
                select(GlobalBudget).where(
                    GlobalBudget.month == month, GlobalBudget.year == year
                )
            )
            if existing:
                existing.monthly_limit_cents = monthly_limit_cents
                return existing
            budget = GlobalBudget(
                month=month, year=year, monthly_limit_cents=monthly_limit_cents
            )
            session.add(budget)
            await session.flush()
            return budget

    async def update_app_settings(self, **values) -> AppSettings:
        async with async_session_scope(self.sessionmaker) as session:
            settings = await session.scalar(select(AppSettings).order_by(AppSettings.id))
            if not settings:
                settings = AppSettings()
                session.add(settings)
            for key, value in values.items():
                setattr(settings, key, value)
            await session.flush()
            return settings


class SqlInsightCacheStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self.sessionmaker = sessionmaker

    @staticmethod
    def _key_clauses(
        scope_user_id: Optional[int], month: int, year: int, phase: InsightPhase
    ) -> tuple:
        return (
            _scope_clause(InsightCacheEntry.scope_user_id, scope_user_id),
            InsightCacheEntry.month == month,
            InsightCacheEntry.year == year,
            InsightCacheEntry.phase == phase,
        )

    async def get(
        self, scope_user_id: Optional[int], month: int, year: int, phase: InsightPhase
    ) -> Optional[InsightCacheEntry]:
        async with self.sessionmaker() as session:
            return await session.scalar(
                select(InsightCacheEntry)
                .where(*self._key_clauses(scope_user_id, month, year, phase))
                .order_by(InsightCacheEntry.generated_at.desc())
                .limit(1)
            )

    async def put(
        self,
        scope_user_id: Optional[int],
        month: int,
        year: int,
        phase: InsightPhase,
        data: str,
        text: str,
        generated_at: datetime,
    ) -> InsightCacheEntry:
        async with async_session_scope(self.sessionmaker) as session:
            existing = await session.scalar(
                select(InsightCacheEntry)
                .where(*self._key_clauses(scope_user_id, month, year, phase))
                .limit(1)
            )
            if existing:
                existing.insight_data = data
                existing.insight_text = text
                existing.generated_at = generated_at
                return existing
            entry = InsightCacheEntry(
                scope_user_id=scope_user_id,
                month=month,
                year=year,
                phase=phase,
                insight_data=data,
                insight_text=text,
                generated_at=generated_at,
            )
            session.add(entry)
            await session.flush()
            return entry

    async def delete_month(self, month: int, year: int) -> int:
        async with async_session_scope(self.sessionmaker) as session:
            result = await session.execute(
                delete(InsightCacheEntry).where(
                    InsightCacheEntry.month == month, InsightCacheEntry.year == year
                )
            )
            return int(result.rowcount or 0)
