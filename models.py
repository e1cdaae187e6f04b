from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class ExpenseKind(str, Enum):
    regular = "regular"
    recurring = "recurring"
    reminder = "reminder"


class ObligationKind(str, Enum):
    recurring = "recurring"
    reminder = "reminder"


class RecurrenceFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class InsightPhase(str, Enum):
    start_of_month = "start_month"
    mid_month = "mid_month"
    end_of_month = "end_month"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#6b7280")
    is_shared: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    budget_limit_cents: Mapped[Optional[int]] = mapped_column(Integer)

    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="category"
    )

    __table_args__ = (
        CheckConstraint(
            "budget_limit_cents IS NULL OR budget_limit_cents >= 0",
            name="ck_category_budget_limit_positive",
        ),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    kind: Mapped[ExpenseKind] = mapped_column(
        SAEnum(ExpenseKind), nullable=False, default=ExpenseKind.regular
    )
    is_projected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_settled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    origin_obligation_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("obligations.id", ondelete="SET NULL")
    )
    occurrence_date: Mapped[Optional[date]] = mapped_column(Date)

    category: Mapped["Category"] = relationship("Category", back_populates="expenses")
    origin_obligation: Mapped[Optional["Obligation"]] = relationship(
        "Obligation", back_populates="expenses"
    )

    __table_args__ = (
        UniqueConstraint(
            "origin_obligation_id",
            "occurrence_date",
            name="uq_expense_origin_occurrence",
        ),
        Index("ix_expenses_user_date", "user_id", "date"),
        Index("ix_expenses_category_date", "category_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )


class Obligation(Base, TimestampMixin):
    __tablename__ = "obligations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    kind: Mapped[ObligationKind] = mapped_column(SAEnum(ObligationKind), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_settled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_projected: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    occurrence_date: Mapped[Optional[date]] = mapped_column(Date)
    frequency: Mapped[Optional[RecurrenceFrequency]] = mapped_column(
        SAEnum(RecurrenceFrequency)
    )
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer)
    next_due_date: Mapped[Optional[date]] = mapped_column(Date)
    series_end_date: Mapped[Optional[date]] = mapped_column(Date)

    category: Mapped["Category"] = relationship("Category")
    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="origin_obligation"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_obligation_amount_positive"),
        CheckConstraint(
            "kind != 'recurring' OR (frequency IS NOT NULL "
            "AND next_due_date IS NOT NULL AND series_end_date IS NOT NULL)",
            name="ck_obligation_recurring_fields",
        ),
        CheckConstraint(
            "kind != 'reminder' OR occurrence_date IS NOT NULL",
            name="ck_obligation_reminder_date",
        ),
        CheckConstraint(
            "day_of_month IS NULL OR (day_of_month >= 1 AND day_of_month <= 31)",
            name="ck_obligation_day_of_month_range",
        ),
        Index("ix_obligations_user_kind", "user_id", "kind"),
    )


class UserCategoryBudget(Base, TimestampMixin):
    __tablename__ = "user_category_budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("limit_cents >= 0", name="ck_user_category_budget_positive"),
        UniqueConstraint(
            "user_id",
            "category_id",
            "year",
            "month",
            name="uq_user_category_budget_month",
        ),
        Index("ix_user_category_budget_month", "year", "month"),
    )


class UserCategoryDefaultBudget(Base, TimestampMixin):
    __tablename__ = "user_category_default_budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "limit_cents >= 0", name="ck_user_category_default_budget_positive"
        ),
        UniqueConstraint(
            "user_id", "category_id", name="uq_user_category_default_budget"
        ),
    )


class GlobalBudget(Base, TimestampMixin):
    __tablename__ = "global_budgets"
    __table_args__ = (
        CheckConstraint("monthly_limit_cents >= 0", name="ck_global_budget_positive"),
        UniqueConstraint("year", "month", name="uq_global_budget_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    monthly_limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)


class AppSettings(Base, TimestampMixin):
    __tablename__ = "app_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    default_global_budget_cents: Mapped[Optional[int]] = mapped_column(Integer)
    enable_budget_carryover: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )


class InsightCacheEntry(Base):
    __tablename__ = "insight_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scope_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    phase: Mapped[InsightPhase] = mapped_column(SAEnum(InsightPhase), nullable=False)
    insight_data: Mapped[str] = mapped_column(Text, nullable=False)
    insight_text: Mapped[str] = mapped_column(Text, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "scope_user_id",
            "year",
            "month",
            "phase",
            name="uq_insight_cache_scope_month_phase",
        ),
        Index("ix_insight_cache_month", "year", "month"),
    )
