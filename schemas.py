from datetime import date
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from models import RecurrenceFrequency


class UserIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field("#6b7280", max_length=7)
    is_shared: bool = False
    budget_limit_cents: Optional[int] = Field(default=None, ge=0)


class ExpenseIn(BaseModel):
    user_id: int
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    date: date
    category_id: int
    is_projected: bool = False
    is_settled: bool = True


class RecurringObligationIn(BaseModel):
    user_id: int
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    category_id: int
    frequency: RecurrenceFrequency
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    start_date: date
    end_date: date


class ReminderIn(BaseModel):
    user_id: int
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    category_id: int
    date: date


class MonthlyCategoryBudgetKey(BaseModel):
    user_id: int
    category_id: int
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)


class MonthlyCategoryBudgetIn(MonthlyCategoryBudgetKey):
    limit_cents: int = Field(..., ge=0)


class DefaultCategoryBudgetIn(BaseModel):
    user_id: int
    category_id: int
    limit_cents: int = Field(..., ge=0)


class GlobalBudgetIn(BaseModel):
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)
    monthly_limit_cents: int = Field(..., ge=0)


class SharedCategoryLimitIn(BaseModel):
    budget_limit_cents: Optional[int] = Field(default=None, ge=0)


class CarryoverIn(BaseModel):
    enabled: bool


class MonthTotal(BaseModel):
    year: int
    month: int
    total_cents: int


class SpendingPrediction(BaseModel):
    kind: Literal["spending_prediction"] = "spending_prediction"
    predicted_spending_cents: float
    budget_cents: int
    difference_cents: float
    is_over_budget: bool
    historical_months: list[MonthTotal] = Field(default_factory=list)


class PaceAlert(BaseModel):
    kind: Literal["pace_alert"] = "pace_alert"
    spent_cents: int
    days_elapsed: int
    days_remaining: int
    daily_average_cents: float
    projected_total_cents: float
    budget_cents: int
    over_by_cents: float
    is_over_budget: bool
    daily_target_cents: float
    carryover_cents: int = 0


class CategoryAnomaly(BaseModel):
    category: str
    current_cents: int
    projected_cents: float
    average_cents: float
    deviation_pct: float
    is_higher: bool


class AnomalyReport(BaseModel):
    kind: Literal["anomalies"] = "anomalies"
    anomalies: list[CategoryAnomaly] = Field(default_factory=list)

    @property
    def has_anomalies(self) -> bool:
        return bool(self.anomalies)

    @property
    def top_anomaly(self) -> Optional[CategoryAnomaly]:
        return self.anomalies[0] if self.anomalies else None


class MonthOverMonth(BaseModel):
    kind: Literal["month_over_month"] = "month_over_month"
    current_spending_cents: int
    last_month_same_day_cents: int
    difference_cents: int
    percent_change: float
    is_ahead: bool


class CategoryInsight(BaseModel):
    category: str
    type: Literal["stable", "volatile", "trending_up", "approaching_limit"]
    value: float


class CategoryInsights(BaseModel):
    kind: Literal["category_insights"] = "category_insights"
    insights: list[CategoryInsight] = Field(default_factory=list)

    @property
    def has_insights(self) -> bool:
        return bool(self.insights)

    @property
    def top_insight(self) -> Optional[CategoryInsight]:
        return self.insights[0] if self.insights else None


class CategoryChange(BaseModel):
    name: str
    current_cents: int
    previous_cents: int
    change_cents: int


class MonthlyComparison(BaseModel):
    kind: Literal["monthly_comparison"] = "monthly_comparison"
    current_total_cents: int
    previous_total_cents: int
    difference_cents: int
    percent_change: float
    is_lower: bool
    budget_cents: int
    under_budget: bool
    budget_difference_cents: int
    category_changes: list[CategoryChange] = Field(default_factory=list)
    biggest_savings: Optional[CategoryChange] = None
    biggest_increase: Optional[CategoryChange] = None


InsightData = Annotated[
    Union[
        SpendingPrediction,
        PaceAlert,
        AnomalyReport,
        MonthOverMonth,
        CategoryInsights,
        MonthlyComparison,
    ],
    Field(discriminator="kind"),
]

insight_data_adapter: TypeAdapter[InsightData] = TypeAdapter(InsightData)
