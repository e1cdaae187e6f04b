import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response

from config import get_settings
from database import create_all, create_engine, create_sessionmaker
from insight_text import get_formatter
from insights import Insight, InsightCache, InsightService
from models import Category, Expense, Obligation, User
from periods import resolve_month
from recurrence import RecurrenceLimitExceeded, local_today
from repository import SqlDataStore, SqlInsightCacheStore
from scheduler import SchedulerManager
from schemas import (
    CarryoverIn,
    CategoryIn,
    DefaultCategoryBudgetIn,
    ExpenseIn,
    GlobalBudgetIn,
    MonthlyCategoryBudgetIn,
    MonthlyCategoryBudgetKey,
    RecurringObligationIn,
    ReminderIn,
    SharedCategoryLimitIn,
    UserIn,
)
from services import (
    BudgetService,
    CategoryService,
    ExpenseService,
    ForecastService,
    ObligationService,
    StatsService,
    UserService,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Household Budget")


@app.on_event("startup")
async def startup_event():
    engine = create_engine()
    await create_all(engine)
    sessionmaker = create_sessionmaker(engine)
    app.state.engine = engine
    app.state.store = SqlDataStore(sessionmaker)
    app.state.cache = InsightCache(SqlInsightCacheStore(sessionmaker))
    app.state.formatter = get_formatter()
    if app.state.formatter is None:
        logger.info("No formatter API key configured; insights use template text")
    app.state.scheduler = SchedulerManager(
        ObligationService(app.state.store, app.state.cache)
    )
    await app.state.scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    app.state.scheduler.stop()
    await app.state.engine.dispose()


def get_store(request: Request) -> SqlDataStore:
    return request.app.state.store


def get_cache(request: Request) -> InsightCache:
    return request.app.state.cache


def user_scope_from_request(request: Request) -> Optional[int]:
    raw = (request.query_params.get("user_id") or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user_id") from exc


def category_ids_from_request(request: Request) -> Optional[list[int]]:
    raw = request.query_params.get("category_ids") or ""
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    if not parts:
        return None
    try:
        return [int(p) for p in parts]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid category_ids") from exc


def month_from_request(request: Request) -> tuple[int, int]:
    try:
        month_raw = request.query_params.get("month")
        year_raw = request.query_params.get("year")
        return resolve_month(
            int(month_raw) if month_raw else None,
            int(year_raw) if year_raw else None,
            today=local_today(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def user_json(user: User) -> dict:
    return {"id": user.id, "name": user.name}


def category_json(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "color": category.color,
        "is_shared": category.is_shared,
        "budget_limit_cents": category.budget_limit_cents,
    }


def expense_json(expense: Expense) -> dict:
    return {
        "id": expense.id,
        "user_id": expense.user_id,
        "description": expense.description,
        "amount_cents": expense.amount_cents,
        "date": expense.date.isoformat(),
        "category_id": expense.category_id,
        "kind": expense.kind.value,
        "is_projected": expense.is_projected,
        "is_settled": expense.is_settled,
    }


def obligation_json(obligation: Obligation) -> dict:
    return {
        "id": obligation.id,
        "user_id": obligation.user_id,
        "description": obligation.description,
        "amount_cents": obligation.amount_cents,
        "category_id": obligation.category_id,
        "kind": obligation.kind.value,
        "is_active": obligation.is_active,
        "frequency": obligation.frequency.value if obligation.frequency else None,
        "day_of_month": obligation.day_of_month,
        "next_due_date": (
            obligation.next_due_date.isoformat() if obligation.next_due_date else None
        ),
        "series_end_date": (
            obligation.series_end_date.isoformat()
            if obligation.series_end_date
            else None
        ),
        "occurrence_date": (
            obligation.occurrence_date.isoformat()
            if obligation.occurrence_date
            else None
        ),
    }


def insight_json(insight: Insight) -> dict:
    return {
        "phase": insight.phase.value,
        "data": insight.data.model_dump(),
        "text": insight.text,
        "generated_at": insight.generated_at.isoformat(),
    }


@app.get("/api/users")
async def list_users(store: SqlDataStore = Depends(get_store)):
    return [user_json(u) for u in await UserService(store).list_all()]


@app.post("/api/users", status_code=201)
async def create_user(data: UserIn, store: SqlDataStore = Depends(get_store)):
    try:
        user = await UserService(store).create(data.name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return user_json(user)


@app.get("/api/categories")
async def list_categories(store: SqlDataStore = Depends(get_store)):
    return [category_json(c) for c in await CategoryService(store).list_all()]


@app.post("/api/categories", status_code=201)
async def create_category(data: CategoryIn, store: SqlDataStore = Depends(get_store)):
    try:
        category = await CategoryService(store).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return category_json(category)


@app.post("/api/categories/{category_id}/limit")
async def set_category_limit(
    category_id: int,
    data: SharedCategoryLimitIn,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    try:
        category = await BudgetService(store, cache).set_shared_category_limit(
            category_id, data
        )
    except ValueError as exc:
        status = 404 if str(exc) == "Category not found" else 400
        raise HTTPException(status_code=status, detail=str(exc)) from exc
    return category_json(category)


@app.get("/api/expenses")
async def list_expenses(request: Request, store: SqlDataStore = Depends(get_store)):
    year, month = month_from_request(request)
    include_projected = request.query_params.get("include_projected") == "true"
    items = await ExpenseService(store).list_for_month(
        user_scope_from_request(request), month, year, include_projected
    )
    return {"items": [expense_json(e) for e in items]}


@app.post("/api/expenses", status_code=201)
async def create_expense(
    data: ExpenseIn,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    try:
        expense = await ExpenseService(store, cache).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return expense_json(expense)


@app.post("/api/expenses/{expense_id}")
async def update_expense(
    expense_id: int,
    data: ExpenseIn,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    try:
        expense = await ExpenseService(store, cache).update(expense_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return expense_json(expense)


@app.post("/api/expenses/{expense_id}/delete")
async def delete_expense(
    expense_id: int,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    try:
        await ExpenseService(store, cache).delete(expense_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/expenses/{expense_id}/paid")
async def mark_expense_paid(
    expense_id: int,
    request: Request,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    is_paid = request.query_params.get("paid", "true") != "false"
    try:
        expense = await ExpenseService(store, cache).mark_paid(expense_id, is_paid)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return expense_json(expense)


@app.post("/api/obligations/recurring", status_code=201)
async def create_recurring_obligation(
    data: RecurringObligationIn,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    try:
        obligation = await ObligationService(store, cache).create_recurring(data)
    except (ValueError, RecurrenceLimitExceeded) as exc:
        # NoOccurrencesInRange is a ValueError.
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return obligation_json(obligation)


@app.post("/api/obligations/reminders", status_code=201)
async def create_reminder(
    data: ReminderIn,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    try:
        obligation = await ObligationService(store, cache).create_reminder(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return obligation_json(obligation)


@app.post("/api/obligations/{obligation_id}/complete")
async def complete_reminder(
    obligation_id: int,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    try:
        obligation = await ObligationService(store, cache).complete_reminder(
            obligation_id
        )
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return obligation_json(obligation)


@app.post("/api/obligations/{obligation_id}/deactivate")
async def deactivate_obligation(
    obligation_id: int,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    try:
        obligation = await ObligationService(store, cache).deactivate(obligation_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return obligation_json(obligation)


@app.post("/api/obligations/{obligation_id}/delete")
async def delete_obligation(
    obligation_id: int,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    try:
        await ObligationService(store, cache).delete(obligation_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/forecast")
async def forecast(request: Request, store: SqlDataStore = Depends(get_store)):
    try:
        days = int(request.query_params.get("days", "30"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid days") from exc
    max_days = get_settings().forecast_max_days
    if days > max_days:
        raise HTTPException(
            status_code=400, detail=f"Forecast window is limited to {max_days} days"
        )
    try:
        return await ForecastService(store).build_forecast(
            user_scope_from_request(request), days
        )
    except (ValueError, RecurrenceLimitExceeded) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/forecast/month")
async def month_forecast(request: Request, store: SqlDataStore = Depends(get_store)):
    year, month = month_from_request(request)
    return await ForecastService(store).build_month_forecast(
        user_scope_from_request(request),
        month,
        year,
        category_ids_from_request(request),
    )


@app.get("/api/stats")
async def stats(request: Request, store: SqlDataStore = Depends(get_store)):
    year, month = month_from_request(request)
    include_projected = request.query_params.get("include_projected") == "true"
    return await StatsService(store).compute_stats(
        user_scope_from_request(request),
        month,
        year,
        include_projected,
        category_ids_from_request(request),
    )


@app.get("/api/stats/household")
async def household_stats(request: Request, store: SqlDataStore = Depends(get_store)):
    year, month = month_from_request(request)
    return await StatsService(store).household_breakdown(month, year)


@app.get("/api/budgets")
async def budget_summary(request: Request, store: SqlDataStore = Depends(get_store)):
    year, month = month_from_request(request)
    user_id = user_scope_from_request(request)
    category_ids = category_ids_from_request(request)
    service = BudgetService(store)
    return {
        "year": year,
        "month": month,
        "global_budget_cents": await service.resolve_global_budget(month, year),
        "category_budget_cents": await service.sum_category_budgets(
            user_id, category_ids, month, year
        ),
        "effective_budget_cents": await service.effective_budget(
            user_id, month, year, category_ids
        ),
        "carryover_cents": await service.carryover_amount(
            user_id, month, year, category_ids
        ),
    }


@app.post("/api/budgets/global")
async def set_global_budget(
    data: GlobalBudgetIn,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    await BudgetService(store, cache).set_global_budget(data)
    return Response(status_code=204)


@app.post("/api/budgets/category")
async def set_monthly_category_budget(
    data: MonthlyCategoryBudgetIn,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    try:
        await BudgetService(store, cache).set_monthly_category_budget(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/budgets/category/delete")
async def clear_monthly_category_budget(
    data: MonthlyCategoryBudgetKey,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    await BudgetService(store, cache).clear_monthly_category_budget(
        data.user_id, data.category_id, data.month, data.year
    )
    return Response(status_code=204)


@app.post("/api/budgets/category-default")
async def set_default_category_budget(
    data: DefaultCategoryBudgetIn,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    try:
        await BudgetService(store, cache).set_default_category_budget(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/settings/carryover")
async def set_carryover(
    data: CarryoverIn,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    await BudgetService(store, cache).set_carryover_enabled(data.enabled)
    return Response(status_code=204)


@app.get("/api/insight")
async def insight(
    request: Request,
    store: SqlDataStore = Depends(get_store),
    cache: InsightCache = Depends(get_cache),
):
    year, month = month_from_request(request)
    service = InsightService(store, cache, request.app.state.formatter)
    result = await service.get_insight(
        user_scope_from_request(request),
        month,
        year,
        category_ids_from_request(request),
    )
    if result is None:
        return Response(status_code=204)
    return insight_json(result)


@app.post("/admin/catch-up")
async def run_catch_up(request: Request):
    count = await request.app.state.scheduler.run_job("manual")
    if count is None:
        raise HTTPException(status_code=500, detail="Catch-up failed")
    return {"occurrences_posted": count}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
