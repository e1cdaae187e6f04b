from datetime import datetime

import pytest

from models import InsightPhase
from repository import SqlInsightCacheStore
from schemas import CategoryChange, MonthlyComparison, PaceAlert


def _pace(spent: int = 600000) -> PaceAlert:
    return PaceAlert(
        spent_cents=spent,
        days_elapsed=15,
        days_remaining=15,
        daily_average_cents=spent / 15,
        projected_total_cents=spent * 2,
        budget_cents=1000000,
        over_by_cents=200000.0,
        is_over_budget=True,
        daily_target_cents=26666.67,
    )


@pytest.mark.asyncio
async def test_put_then_get_returns_entry_for_null_scope(cache):
    data = _pace()
    await cache.put(None, 6, 2024, InsightPhase.mid_month, data, "Slow down")

    entry = await cache.get(None, 6, 2024, InsightPhase.mid_month)

    assert entry is not None
    assert entry.text == "Slow down"
    assert entry.phase == InsightPhase.mid_month
    assert isinstance(entry.data, PaceAlert)
    assert entry.data == data


@pytest.mark.asyncio
async def test_put_overwrites_same_key(cache, sessionmaker):
    await cache.put(None, 6, 2024, InsightPhase.mid_month, _pace(1), "first")
    await cache.put(None, 6, 2024, InsightPhase.mid_month, _pace(2), "second")

    entry = await cache.get(None, 6, 2024, InsightPhase.mid_month)
    assert entry.text == "second"
    assert entry.data.spent_cents == 2
    assert await SqlInsightCacheStore(sessionmaker).delete_month(6, 2024) == 1


@pytest.mark.asyncio
async def test_scopes_and_phases_are_separate_keys(cache, seed):
    user = await seed.user()
    await cache.put(user.id, 6, 2024, InsightPhase.mid_month, _pace(), "mine")

    assert await cache.get(None, 6, 2024, InsightPhase.mid_month) is None
    assert await cache.get(user.id, 6, 2024, InsightPhase.end_of_month) is None
    assert (await cache.get(user.id, 6, 2024, InsightPhase.mid_month)).text == "mine"


@pytest.mark.asyncio
async def test_invalidate_clears_every_scope_and_phase_in_month(cache, seed):
    user = await seed.user()
    comparison = MonthlyComparison(
        current_total_cents=100,
        previous_total_cents=200,
        difference_cents=100,
        percent_change=50.0,
        is_lower=True,
        budget_cents=1000,
        under_budget=True,
        budget_difference_cents=900,
        category_changes=[
            CategoryChange(name="Fun", current_cents=100, previous_cents=200, change_cents=-100)
        ],
    )
    await cache.put(None, 6, 2024, InsightPhase.mid_month, _pace(), "a")
    await cache.put(user.id, 6, 2024, InsightPhase.end_of_month, comparison, "b")
    await cache.put(None, 7, 2024, InsightPhase.mid_month, _pace(), "c")

    assert await cache.invalidate(6, 2024) == 2

    assert await cache.get(None, 6, 2024, InsightPhase.mid_month) is None
    assert await cache.get(user.id, 6, 2024, InsightPhase.end_of_month) is None
    assert await cache.get(None, 7, 2024, InsightPhase.mid_month) is not None


@pytest.mark.asyncio
async def test_unreadable_entry_is_a_miss(cache, sessionmaker):
    await SqlInsightCacheStore(sessionmaker).put(
        None,
        6,
        2024,
        InsightPhase.mid_month,
        '{"kind": "unknown"}',
        "text",
        datetime(2024, 6, 15, 9, 0),
    )
    assert await cache.get(None, 6, 2024, InsightPhase.mid_month) is None
