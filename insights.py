from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional, Sequence

from pydantic import ValidationError

from insight_text import TextFormatter, render_fallback
from models import InsightPhase
from periods import month_end, month_start, previous_months, shift_month
from recurrence import days_in_month, local_today
from repository import DataStore, InsightCacheStore
from schemas import (
    AnomalyReport,
    CategoryAnomaly,
    CategoryChange,
    CategoryInsight,
    CategoryInsights,
    InsightData,
    MonthlyComparison,
    MonthOverMonth,
    PaceAlert,
    SpendingPrediction,
    insight_data_adapter,
)
from services import BudgetService, ExpenseStats, StatsService

logger = logging.getLogger(__name__)

# Most recent month first.
PREDICTION_WEIGHTS = (0.5, 0.3, 0.2)
ANOMALY_MONTHS = 3
ANOMALY_THRESHOLD_PCT = 30.0
CATEGORY_HISTORY_MONTHS = 6
STABLE_CV_PCT = 15.0
VOLATILE_CV_PCT = 50.0
TRENDING_UP_PCT = 15.0
APPROACHING_LIMIT_PCT = 75.0


def insight_phase(day: int) -> InsightPhase:
    if day <= 7:
        return InsightPhase.start_of_month
    if day <= 20:
        return InsightPhase.mid_month
    return InsightPhase.end_of_month


@dataclass(frozen=True)
class Insight:
    phase: InsightPhase
    data: InsightData
    text: str
    generated_at: datetime


class InsightCache:
    def __init__(self, store: InsightCacheStore) -> None:
        self.store = store

    async def get(
        self, user_id: Optional[int], month: int, year: int, phase: InsightPhase
    ) -> Optional[Insight]:
        entry = await self.store.get(user_id, month, year, phase)
        if not entry:
            return None
        try:
            data = insight_data_adapter.validate_json(entry.insight_data)
        except ValidationError:
            logger.warning(
                f"Discarding unreadable cached insight id={entry.id} "
                f"month={year}-{month:02d} phase={phase.value}"
            )
            return None
        return Insight(
            phase=phase,
            data=data,
            text=entry.insight_text,
            generated_at=entry.generated_at,
        )

    async def put(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        phase: InsightPhase,
        data: InsightData,
        text: str,
    ) -> Insight:
        generated_at = datetime.utcnow()
        await self.store.put(
            user_id,
            month,
            year,
            phase,
            data.model_dump_json(),
            text,
            generated_at,
        )
        return Insight(phase=phase, data=data, text=text, generated_at=generated_at)

    async def invalidate(self, month: int, year: int) -> int:
        removed = await self.store.delete_month(month, year)
        if removed:
            logger.info(f"Invalidated {removed} cached insights for {year}-{month:02d}")
        return removed


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _history_by_category(months: Sequence[ExpenseStats]) -> dict[str, list[int]]:
    history: dict[str, list[int]] = {}
    for stats in months:
        for category in stats.by_category:
            history.setdefault(category.name, []).append(category.amount_cents)
    return history


class InsightService:
    def __init__(
        self,
        store: DataStore,
        cache: Optional[InsightCache] = None,
        formatter: Optional[TextFormatter] = None,
        clock: Callable[[], date] = local_today,
    ) -> None:
        self.store = store
        self.cache = cache
        self.formatter = formatter
        self.clock = clock
        self.budgets = BudgetService(store, cache)
        self.stats = StatsService(store, budgets=self.budgets)

    async def get_insight(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        category_ids: Optional[Sequence[int]] = None,
    ) -> Optional[Insight]:
        today = self.clock()
        if (month, year) != (today.month, today.year):
            return None
        phase = insight_phase(today.day)
        # Filtered views are too numerous to be worth keeping.
        cacheable = self.cache is not None and not category_ids

        try:
            if cacheable:
                cached = await self.cache.get(user_id, month, year, phase)
                if cached:
                    return cached
            data = await self._compute(phase, user_id, month, year, category_ids, today)
        except Exception:
            logger.exception(
                f"Failed to generate insight user={user_id} month={year}-{month:02d} "
                f"phase={phase.value}"
            )
            return None

        text = await self._render(data)
        if not cacheable:
            return Insight(
                phase=phase, data=data, text=text, generated_at=datetime.utcnow()
            )
        try:
            return await self.cache.put(user_id, month, year, phase, data, text)
        except Exception:
            logger.exception(f"Failed to cache insight for {year}-{month:02d}")
            return Insight(
                phase=phase, data=data, text=text, generated_at=datetime.utcnow()
            )

    async def _render(self, data: InsightData) -> str:
        if self.formatter is None:
            return render_fallback(data)
        try:
            return await self.formatter.render(data)
        except Exception as exc:
            logger.warning(f"Insight formatter failed, using fallback text: {exc}")
            return render_fallback(data)

    async def _compute(
        self,
        phase: InsightPhase,
        user_id: Optional[int],
        month: int,
        year: int,
        category_ids: Optional[Sequence[int]],
        today: date,
    ) -> InsightData:
        if phase == InsightPhase.start_of_month:
            return await self.spending_prediction(user_id, month, year, category_ids)
        if phase == InsightPhase.end_of_month:
            return await self.monthly_comparison(user_id, month, year, category_ids)

        pace, anomalies, progress, categories = await asyncio.gather(
            self.pace_alert(user_id, month, year, category_ids, today),
            self.anomalies(user_id, month, year, category_ids, today),
            self.month_over_month(user_id, month, year, category_ids, today),
            self.category_insights(user_id, month, year, category_ids),
        )
        if pace.is_over_budget:
            return pace
        if anomalies.has_anomalies:
            return anomalies
        if progress.is_ahead:
            return progress
        if categories.has_insights:
            return categories
        return pace

    async def _month_stats(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        category_ids: Optional[Sequence[int]],
        months_back: int,
    ) -> tuple[ExpenseStats, list[ExpenseStats]]:
        months = [(year, month)] + previous_months(year, month, months_back)
        results = await asyncio.gather(
            *(
                self.stats.compute_stats(user_id, m, y, False, category_ids)
                for y, m in months
            )
        )
        return results[0], list(results[1:])

    async def spending_prediction(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        category_ids: Optional[Sequence[int]] = None,
    ) -> SpendingPrediction:
        history, budget = await asyncio.gather(
            self.stats.month_totals(
                user_id, month, year, len(PREDICTION_WEIGHTS), category_ids
            ),
            self.budgets.effective_budget(user_id, month, year, category_ids),
        )
        predicted = sum(
            item.total_cents * weight
            for item, weight in zip(history, PREDICTION_WEIGHTS)
        )
        return SpendingPrediction(
            predicted_spending_cents=predicted,
            budget_cents=budget,
            difference_cents=abs(budget - predicted),
            is_over_budget=predicted > budget,
            historical_months=history,
        )

    async def pace_alert(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        category_ids: Optional[Sequence[int]],
        today: date,
    ) -> PaceAlert:
        total_days = days_in_month(year, month)
        days_elapsed = today.day
        days_remaining = total_days - days_elapsed

        spent, budget, carryover = await asyncio.gather(
            self.stats.total_between(
                user_id,
                month_start(year, month),
                month_end(year, month),
                category_ids=category_ids,
            ),
            self.budgets.effective_budget(user_id, month, year, category_ids),
            self.budgets.carryover_amount(user_id, month, year, category_ids),
        )
        available = budget - carryover
        daily_average = spent / days_elapsed
        projected_total = daily_average * total_days
        over_by = projected_total - available
        daily_target = 0.0
        if days_remaining > 0:
            daily_target = max(0.0, (available - spent) / days_remaining)

        return PaceAlert(
            spent_cents=spent,
            days_elapsed=days_elapsed,
            days_remaining=days_remaining,
            daily_average_cents=daily_average,
            projected_total_cents=projected_total,
            budget_cents=available,
            over_by_cents=abs(over_by),
            is_over_budget=over_by > 0,
            daily_target_cents=daily_target,
            carryover_cents=carryover,
        )

    async def anomalies(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        category_ids: Optional[Sequence[int]],
        today: date,
    ) -> AnomalyReport:
        total_days = days_in_month(year, month)
        current, previous = await self._month_stats(
            user_id, month, year, category_ids, ANOMALY_MONTHS
        )
        history = _history_by_category(previous)

        found: list[CategoryAnomaly] = []
        for category in current.by_category:
            amounts = history.get(category.name)
            if not amounts:
                continue
            average = _mean(amounts)
            if average <= 0:
                continue
            projected = category.amount_cents / today.day * total_days
            deviation = (projected - average) / average * 100
            if abs(deviation) > ANOMALY_THRESHOLD_PCT:
                found.append(
                    CategoryAnomaly(
                        category=category.name,
                        current_cents=category.amount_cents,
                        projected_cents=projected,
                        average_cents=average,
                        deviation_pct=deviation,
                        is_higher=deviation > 0,
                    )
                )
        found.sort(key=lambda a: abs(a.deviation_pct), reverse=True)
        return AnomalyReport(anomalies=found)

    async def month_over_month(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        category_ids: Optional[Sequence[int]],
        today: date,
    ) -> MonthOverMonth:
        prev_year, prev_month = shift_month(year, month, -1)
        cutoff = min(today.day, days_in_month(prev_year, prev_month))
        current, previous = await asyncio.gather(
            self.stats.total_between(
                user_id,
                month_start(year, month),
                month_end(year, month),
                category_ids=category_ids,
            ),
            self.stats.total_between(
                user_id,
                month_start(prev_year, prev_month),
                date(prev_year, prev_month, cutoff),
                category_ids=category_ids,
            ),
        )
        difference = current - previous
        percent_change = difference / previous * 100 if previous > 0 else 0.0
        return MonthOverMonth(
            current_spending_cents=current,
            last_month_same_day_cents=previous,
            difference_cents=abs(difference),
            percent_change=abs(percent_change),
            is_ahead=difference < 0,
        )

    async def category_insights(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        category_ids: Optional[Sequence[int]] = None,
    ) -> CategoryInsights:
        current, previous = await self._month_stats(
            user_id, month, year, category_ids, CATEGORY_HISTORY_MONTHS
        )
        history = _history_by_category(previous)

        found: list[CategoryInsight] = []
        for category in current.by_category:
            amounts = history.get(category.name, [])
            if len(amounts) >= 3:
                average = _mean(amounts)
                variance = _mean([(value - average) ** 2 for value in amounts])
                cv = math.sqrt(variance) / average * 100 if average > 0 else 0.0
                if cv < STABLE_CV_PCT:
                    found.append(
                        CategoryInsight(category=category.name, type="stable", value=average)
                    )
                elif cv > VOLATILE_CV_PCT:
                    found.append(
                        CategoryInsight(category=category.name, type="volatile", value=cv)
                    )

                recent, older = amounts[:3], amounts[3:6]
                if len(older) == 3:
                    older_average = _mean(older)
                    if older_average > 0:
                        increase = (_mean(recent) - older_average) / older_average * 100
                        if increase > TRENDING_UP_PCT:
                            found.append(
                                CategoryInsight(
                                    category=category.name,
                                    type="trending_up",
                                    value=increase,
                                )
                            )

            limit = category.budget_limit_cents
            if limit and limit > 0:
                used = category.amount_cents / limit * 100
                if APPROACHING_LIMIT_PCT < used < 100:
                    found.append(
                        CategoryInsight(
                            category=category.name, type="approaching_limit", value=used
                        )
                    )
        return CategoryInsights(insights=found)

    async def monthly_comparison(
        self,
        user_id: Optional[int],
        month: int,
        year: int,
        category_ids: Optional[Sequence[int]] = None,
    ) -> MonthlyComparison:
        (current, previous_months_stats), budget = await asyncio.gather(
            self._month_stats(user_id, month, year, category_ids, 1),
            self.budgets.effective_budget(user_id, month, year, category_ids),
        )
        previous = previous_months_stats[0]

        current_amounts = {c.name: c.amount_cents for c in current.by_category}
        previous_amounts = {c.name: c.amount_cents for c in previous.by_category}
        names = list(current_amounts)
        names.extend(name for name in previous_amounts if name not in current_amounts)

        changes: list[CategoryChange] = []
        for name in names:
            now_cents = current_amounts.get(name, 0)
            before_cents = previous_amounts.get(name, 0)
            if now_cents != before_cents:
                changes.append(
                    CategoryChange(
                        name=name,
                        current_cents=now_cents,
                        previous_cents=before_cents,
                        change_cents=now_cents - before_cents,
                    )
                )
        changes.sort(key=lambda c: abs(c.change_cents), reverse=True)

        difference = current.total_cents - previous.total_cents
        percent_change = (
            difference / previous.total_cents * 100 if previous.total_cents > 0 else 0.0
        )
        return MonthlyComparison(
            current_total_cents=current.total_cents,
            previous_total_cents=previous.total_cents,
            difference_cents=abs(difference),
            percent_change=abs(percent_change),
            is_lower=difference < 0,
            budget_cents=budget,
            under_budget=current.total_cents < budget,
            budget_difference_cents=abs(budget - current.total_cents),
            category_changes=changes,
            biggest_savings=next((c for c in changes if c.change_cents < 0), None),
            biggest_increase=next((c for c in changes if c.change_cents > 0), None),
        )
