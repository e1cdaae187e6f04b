from datetime import date
from typing import Optional

import pytest_asyncio

from database import create_all, create_engine, create_sessionmaker
from insights import InsightCache
from models import Category, Expense, ExpenseKind, User
from repository import SqlDataStore, SqlInsightCacheStore


class Seeder:
    def __init__(self, store: SqlDataStore) -> None:
        self.store = store

    async def user(self, name: str = "Alex") -> User:
        return await self.store.add_user(name)

    async def category(
        self, name: str, *, is_shared: bool = False, limit: Optional[int] = None
    ) -> Category:
        return await self.store.add_category(
            name=name, color="#123456", is_shared=is_shared, budget_limit_cents=limit
        )

    async def expense(
        self, user: User, category: Category, amount_cents: int, on: date, **extra
    ) -> Expense:
        values = dict(
            user_id=user.id,
            description=f"{category.name} on {on.isoformat()}",
            amount_cents=amount_cents,
            date=on,
            category_id=category.id,
            kind=ExpenseKind.regular,
            is_projected=False,
            is_settled=True,
        )
        values.update(extra)
        return await self.store.add_expense(**values)


@pytest_asyncio.fixture
async def sessionmaker(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'budget.db'}")
    await create_all(engine)
    yield create_sessionmaker(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def store(sessionmaker):
    return SqlDataStore(sessionmaker)


@pytest_asyncio.fixture
async def cache(sessionmaker):
    return InsightCache(SqlInsightCacheStore(sessionmaker))


@pytest_asyncio.fixture
async def seed(store):
    return Seeder(store)
