from datetime import date

import pytest

from services import StatsService


@pytest.mark.asyncio
async def test_category_totals_sum_to_total(store, seed):
    user = await seed.user()
    groceries = await seed.category("Groceries")
    fun = await seed.category("Fun")
    await store.upsert_default_category_budget(user.id, groceries.id, 40000)
    await seed.expense(user, groceries, 1234, date(2024, 6, 1))
    await seed.expense(user, groceries, 4321, date(2024, 6, 30))
    await seed.expense(user, fun, 999, date(2024, 6, 15))
    await seed.expense(user, fun, 5000, date(2024, 7, 1))

    stats = await StatsService(store).compute_stats(user.id, 6, 2024)

    assert stats.total_cents == 1234 + 4321 + 999
    assert stats.count == 3
    assert sum(c.amount_cents for c in stats.by_category) == stats.total_cents
    by_name = {c.name: c for c in stats.by_category}
    assert by_name["Groceries"].amount_cents == 5555
    assert by_name["Groceries"].budget_limit_cents == 40000
    assert by_name["Fun"].budget_limit_cents is None


@pytest.mark.asyncio
async def test_user_scope_includes_shared_categories(store, seed):
    alex = await seed.user("Alex")
    sam = await seed.user("Sam")
    rent = await seed.category("Rent", is_shared=True, limit=150000)
    hobbies = await seed.category("Hobbies")
    await seed.expense(sam, rent, 100000, date(2024, 6, 1))
    await seed.expense(sam, hobbies, 2500, date(2024, 6, 2))
    await seed.expense(alex, hobbies, 1500, date(2024, 6, 3))
    service = StatsService(store)

    alex_stats = await service.compute_stats(alex.id, 6, 2024)
    everyone = await service.compute_stats(None, 6, 2024)

    assert alex_stats.total_cents == 101500
    assert {c.name for c in alex_stats.by_category} == {"Rent", "Hobbies"}
    assert everyone.total_cents == 104000


@pytest.mark.asyncio
async def test_unsettled_and_projected_entries_excluded_from_spent(store, seed):
    user = await seed.user()
    bills = await seed.category("Bills")
    await seed.expense(user, bills, 1000, date(2024, 6, 1))
    await seed.expense(user, bills, 2000, date(2024, 6, 2), is_settled=False)
    await seed.expense(
        user, bills, 4000, date(2024, 6, 3), is_settled=False, is_projected=True
    )
    service = StatsService(store)

    assert (await service.compute_stats(user.id, 6, 2024)).total_cents == 1000
    assert (
        await service.compute_stats(user.id, 6, 2024, include_projected=True)
    ).total_cents == 7000


@pytest.mark.asyncio
async def test_category_filter(store, seed):
    user = await seed.user()
    groceries = await seed.category("Groceries")
    fun = await seed.category("Fun")
    await seed.expense(user, groceries, 1000, date(2024, 6, 1))
    await seed.expense(user, fun, 3000, date(2024, 6, 1))

    stats = await StatsService(store).compute_stats(
        user.id, 6, 2024, category_ids=[fun.id]
    )
    assert stats.total_cents == 3000
    assert [c.name for c in stats.by_category] == ["Fun"]


@pytest.mark.asyncio
async def test_month_totals_most_recent_first(store, seed):
    user = await seed.user()
    groceries = await seed.category("Groceries")
    await seed.expense(user, groceries, 100, date(2024, 5, 5))
    await seed.expense(user, groceries, 200, date(2024, 4, 5))
    await seed.expense(user, groceries, 300, date(2023, 12, 5))

    totals = await StatsService(store).month_totals(user.id, 6, 2024, 7)

    assert [(t.year, t.month) for t in totals] == [
        (2024, 5),
        (2024, 4),
        (2024, 3),
        (2024, 2),
        (2024, 1),
        (2023, 12),
        (2023, 11),
    ]
    assert [t.total_cents for t in totals] == [100, 200, 0, 0, 0, 300, 0]


@pytest.mark.asyncio
async def test_total_between_partial_month(store, seed):
    user = await seed.user()
    groceries = await seed.category("Groceries")
    await seed.expense(user, groceries, 100, date(2024, 5, 5))
    await seed.expense(user, groceries, 200, date(2024, 5, 20))

    total = await StatsService(store).total_between(
        user.id, date(2024, 5, 1), date(2024, 5, 15)
    )
    assert total == 100


@pytest.mark.asyncio
async def test_household_breakdown_shows_shared_spending_for_every_member(
    store, seed
):
    alex = await seed.user("Alex")
    sam = await seed.user("Sam")
    rent = await seed.category("Rent", is_shared=True)
    hobbies = await seed.category("Hobbies")
    await store.upsert_global_budget(6, 2024, 200000)
    await seed.expense(sam, rent, 100000, date(2024, 6, 1))
    await seed.expense(sam, hobbies, 2500, date(2024, 6, 2))
    await seed.expense(alex, hobbies, 1500, date(2024, 6, 3))
    await seed.expense(alex, hobbies, 9999, date(2024, 6, 4), is_settled=False)
    await seed.expense(alex, hobbies, 7777, date(2024, 7, 1))

    breakdown = await StatsService(store).household_breakdown(6, 2024)

    assert breakdown.total_cents == 104000
    assert breakdown.count == 3
    assert breakdown.budget_cents == 200000
    assert breakdown.remaining_cents == 96000
    assert {c.name: c.amount_cents for c in breakdown.by_category} == {
        "Rent": 100000,
        "Hobbies": 4000,
    }

    members = {m.name: m for m in breakdown.members}
    assert [m.name for m in breakdown.members] == ["Alex", "Sam"]
    assert members["Alex"].total_cents == 101500
    assert members["Alex"].count == 2
    assert members["Alex"].remaining_cents == 98500
    assert members["Sam"].total_cents == 102500
    for member in breakdown.members:
        rent_row = [c for c in member.by_category if c.name == "Rent"]
        assert [c.amount_cents for c in rent_row] == [100000]


@pytest.mark.asyncio
async def test_household_breakdown_without_spending(store, seed):
    await seed.user("Alex")

    breakdown = await StatsService(store).household_breakdown(6, 2024)

    assert breakdown.total_cents == 0
    assert breakdown.budget_cents == 0
    assert [(m.name, m.total_cents, m.by_category) for m in breakdown.members] == [
        ("Alex", 0, [])
    ]
