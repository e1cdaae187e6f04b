from datetime import date

import pytest

from models import InsightPhase
from schemas import (
    DefaultCategoryBudgetIn,
    GlobalBudgetIn,
    MonthlyCategoryBudgetIn,
    SharedCategoryLimitIn,
    SpendingPrediction,
)
from services import BudgetService


@pytest.mark.asyncio
async def test_monthly_override_beats_default(store, seed):
    user = await seed.user()
    groceries = await seed.category("Groceries")
    await store.upsert_monthly_category_budget(user.id, groceries.id, 6, 2024, 500)
    await store.upsert_default_category_budget(user.id, groceries.id, 300)
    service = BudgetService(store)

    assert await service.resolve_category_budget(user.id, groceries.id, 6, 2024) == 500
    assert await service.resolve_category_budget(user.id, groceries.id, 7, 2024) == 300


@pytest.mark.asyncio
async def test_personal_category_never_uses_shared_limit(store, seed):
    user = await seed.user()
    personal = await seed.category("Hobbies", limit=9000)
    await seed.category("Rent", is_shared=True, limit=2000)
    service = BudgetService(store)

    assert await service.resolve_category_budget(user.id, personal.id, 6, 2024) is None


@pytest.mark.asyncio
async def test_shared_category_limit_applies_below_user_layers(store, seed):
    alex = await seed.user("Alex")
    sam = await seed.user("Sam")
    rent = await seed.category("Rent", is_shared=True, limit=2000)
    await store.upsert_default_category_budget(sam.id, rent.id, 700)
    service = BudgetService(store)

    assert await service.resolve_category_budget(alex.id, rent.id, 6, 2024) == 2000
    assert await service.resolve_category_budget(sam.id, rent.id, 6, 2024) == 700


@pytest.mark.asyncio
async def test_zero_limit_is_distinct_from_unresolved(store, seed):
    user = await seed.user()
    groceries = await seed.category("Groceries")
    await store.upsert_default_category_budget(user.id, groceries.id, 0)

    assert await BudgetService(store).resolve_category_budget(
        user.id, groceries.id, 6, 2024
    ) == 0


@pytest.mark.asyncio
async def test_aggregate_view_sums_personal_envelopes(store, seed):
    alex = await seed.user("Alex")
    sam = await seed.user("Sam")
    groceries = await seed.category("Groceries")
    await store.upsert_monthly_category_budget(alex.id, groceries.id, 6, 2024, 1000)
    await store.upsert_default_category_budget(sam.id, groceries.id, 1500)
    service = BudgetService(store)

    assert await service.sum_category_budgets(None, [groceries.id], 6, 2024) == 2500


@pytest.mark.asyncio
async def test_aggregate_view_uses_shared_limit_once(store, seed):
    alex = await seed.user("Alex")
    sam = await seed.user("Sam")
    household = await seed.category("Household", is_shared=True, limit=2000)
    await store.upsert_monthly_category_budget(alex.id, household.id, 6, 2024, 1000)
    await store.upsert_default_category_budget(sam.id, household.id, 1500)
    service = BudgetService(store)

    assert await service.sum_category_budgets(None, [household.id], 6, 2024) == 2000


@pytest.mark.asyncio
async def test_sum_counts_unresolved_categories_as_zero(store, seed):
    user = await seed.user()
    groceries = await seed.category("Groceries")
    fun = await seed.category("Fun")
    await store.upsert_default_category_budget(user.id, groceries.id, 800)
    service = BudgetService(store)

    assert await service.sum_category_budgets(user.id, [groceries.id, fun.id], 6, 2024) == 800
    assert await service.sum_category_budgets(user.id, [fun.id], 6, 2024) is None
    assert await service.sum_category_budgets(user.id, [], 6, 2024) is None
    assert await service.sum_category_budgets(user.id, None, 6, 2024) is None


@pytest.mark.asyncio
async def test_global_budget_fallback_chain(store):
    service = BudgetService(store)
    assert await service.resolve_global_budget(6, 2024) == 0

    await store.update_app_settings(default_global_budget_cents=50000)
    assert await service.resolve_global_budget(6, 2024) == 50000

    await store.upsert_global_budget(6, 2024, 42000)
    assert await service.resolve_global_budget(6, 2024) == 42000
    assert await service.resolve_global_budget(7, 2024) == 50000


@pytest.mark.asyncio
async def test_effective_budget_prefers_category_sum(store, seed):
    user = await seed.user()
    groceries = await seed.category("Groceries")
    fun = await seed.category("Fun")
    await store.upsert_global_budget(6, 2024, 100000)
    await store.upsert_default_category_budget(user.id, groceries.id, 30000)
    service = BudgetService(store)

    assert await service.effective_budget(user.id, 6, 2024) == 100000
    assert await service.effective_budget(user.id, 6, 2024, [groceries.id]) == 30000
    assert await service.effective_budget(user.id, 6, 2024, [fun.id]) == 100000


@pytest.mark.asyncio
async def test_carryover_from_previous_overspend(store, seed):
    user = await seed.user()
    groceries = await seed.category("Groceries")
    await store.upsert_global_budget(5, 2024, 100000)
    await seed.expense(user, groceries, 120000, date(2024, 5, 12))
    service = BudgetService(store)

    assert await service.carryover_amount(None, 6, 2024) == 0

    await store.update_app_settings(enable_budget_carryover=True)
    assert await service.carryover_amount(None, 6, 2024) == 20000
    assert await service.carryover_amount(None, 7, 2024) == 0


@pytest.mark.asyncio
async def test_budget_writes_invalidate_cached_insights(store, seed, cache):
    user = await seed.user()
    groceries = await seed.category("Groceries", is_shared=True)
    data = SpendingPrediction(
        predicted_spending_cents=1.0,
        budget_cents=1,
        difference_cents=0.0,
        is_over_budget=False,
    )
    service = BudgetService(store, cache)
    today = date(2024, 6, 3)

    await cache.put(None, 6, 2024, InsightPhase.start_of_month, data, "cached")
    await service.set_global_budget(
        GlobalBudgetIn(year=2024, month=6, monthly_limit_cents=90000), today=today
    )
    assert await cache.get(None, 6, 2024, InsightPhase.start_of_month) is None
    settings = await store.get_app_settings()
    assert settings.default_global_budget_cents == 90000

    await cache.put(None, 6, 2024, InsightPhase.start_of_month, data, "cached")
    await service.set_monthly_category_budget(
        MonthlyCategoryBudgetIn(
            user_id=user.id, category_id=groceries.id, year=2024, month=6, limit_cents=10
        )
    )
    assert await cache.get(None, 6, 2024, InsightPhase.start_of_month) is None

    await cache.put(None, 6, 2024, InsightPhase.start_of_month, data, "cached")
    await service.set_default_category_budget(
        DefaultCategoryBudgetIn(user_id=user.id, category_id=groceries.id, limit_cents=5),
        today=today,
    )
    assert await cache.get(None, 6, 2024, InsightPhase.start_of_month) is None

    await cache.put(None, 6, 2024, InsightPhase.start_of_month, data, "cached")
    category = await service.set_shared_category_limit(
        groceries.id, SharedCategoryLimitIn(budget_limit_cents=3000), today=today
    )
    assert category.budget_limit_cents == 3000
    assert await cache.get(None, 6, 2024, InsightPhase.start_of_month) is None

    await cache.put(None, 6, 2024, InsightPhase.start_of_month, data, "cached")
    await service.set_carryover_enabled(True, today=today)
    assert await cache.get(None, 6, 2024, InsightPhase.start_of_month) is None


@pytest.mark.asyncio
async def test_monthly_budget_requires_known_category(store, seed):
    user = await seed.user()
    with pytest.raises(ValueError):
        await BudgetService(store).set_monthly_category_budget(
            MonthlyCategoryBudgetIn(
                user_id=user.id, category_id=999, year=2024, month=6, limit_cents=10
            )
        )


@pytest.mark.asyncio
async def test_clearing_monthly_override_falls_back(store, seed, cache):
    alex = await seed.user("Alex")
    sam = await seed.user("Sam")
    groceries = await seed.category("Groceries")
    rent = await seed.category("Rent", is_shared=True, limit=2000)
    service = BudgetService(store, cache)
    await store.upsert_default_category_budget(alex.id, groceries.id, 300)
    for user, category in ((alex, groceries), (sam, rent)):
        await service.set_monthly_category_budget(
            MonthlyCategoryBudgetIn(
                user_id=user.id,
                category_id=category.id,
                year=2024,
                month=6,
                limit_cents=500,
            )
        )
    data = SpendingPrediction(
        predicted_spending_cents=1.0,
        budget_cents=1,
        difference_cents=0.0,
        is_over_budget=False,
    )
    await cache.put(None, 6, 2024, InsightPhase.start_of_month, data, "cached")

    assert await service.clear_monthly_category_budget(alex.id, groceries.id, 6, 2024)
    assert await service.resolve_category_budget(alex.id, groceries.id, 6, 2024) == 300
    assert await cache.get(None, 6, 2024, InsightPhase.start_of_month) is None

    assert await service.clear_monthly_category_budget(sam.id, rent.id, 6, 2024)
    assert await service.resolve_category_budget(sam.id, rent.id, 6, 2024) == 2000

    assert not await service.clear_monthly_category_budget(sam.id, rent.id, 6, 2024)


@pytest.mark.asyncio
async def test_shared_limit_rejected_for_personal_category(store, seed):
    hobbies = await seed.category("Hobbies")
    service = BudgetService(store)

    with pytest.raises(ValueError, match="not shared"):
        await service.set_shared_category_limit(
            hobbies.id, SharedCategoryLimitIn(budget_limit_cents=3000)
        )
    with pytest.raises(ValueError, match="not found"):
        await service.set_shared_category_limit(
            999, SharedCategoryLimitIn(budget_limit_cents=3000)
        )
    assert (await store.get_category(hobbies.id)).budget_limit_cents is None
