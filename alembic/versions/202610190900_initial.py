"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("color", sa.String(length=7), nullable=False),
        sa.Column("is_shared", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("budget_limit_cents", sa.Integer()),
        *_timestamps(),
        sa.CheckConstraint(
            "budget_limit_cents IS NULL OR budget_limit_cents >= 0",
            name="ck_category_budget_limit_positive",
        ),
    )

    op.create_table(
        "obligations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column(
            "kind",
            sa.Enum("recurring", "reminder", name="obligationkind"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_settled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_projected", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("occurrence_date", sa.Date()),
        sa.Column(
            "frequency",
            sa.Enum("daily", "weekly", "monthly", "yearly", name="recurrencefrequency"),
        ),
        sa.Column("day_of_month", sa.Integer()),
        sa.Column("next_due_date", sa.Date()),
        sa.Column("series_end_date", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_obligation_amount_positive"),
        sa.CheckConstraint(
            "kind != 'recurring' OR (frequency IS NOT NULL "
            "AND next_due_date IS NOT NULL AND series_end_date IS NOT NULL)",
            name="ck_obligation_recurring_fields",
        ),
        sa.CheckConstraint(
            "kind != 'reminder' OR occurrence_date IS NOT NULL",
            name="ck_obligation_reminder_date",
        ),
        sa.CheckConstraint(
            "day_of_month IS NULL OR (day_of_month >= 1 AND day_of_month <= 31)",
            name="ck_obligation_day_of_month_range",
        ),
    )
    op.create_index("ix_obligations_user_kind", "obligations", ["user_id", "kind"])

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column(
            "kind",
            sa.Enum("regular", "recurring", "reminder", name="expensekind"),
            nullable=False,
        ),
        sa.Column("is_projected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_settled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "origin_obligation_id",
            sa.Integer(),
            sa.ForeignKey("obligations.id", ondelete="SET NULL"),
        ),
        sa.Column("occurrence_date", sa.Date()),
        *_timestamps(),
        sa.UniqueConstraint(
            "origin_obligation_id",
            "occurrence_date",
            name="uq_expense_origin_occurrence",
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])
    op.create_index("ix_expenses_category_date", "expenses", ["category_id", "date"])

    op.create_table(
        "user_category_budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("limit_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("limit_cents >= 0", name="ck_user_category_budget_positive"),
        sa.UniqueConstraint(
            "user_id",
            "category_id",
            "year",
            "month",
            name="uq_user_category_budget_month",
        ),
    )
    op.create_index(
        "ix_user_category_budget_month", "user_category_budgets", ["year", "month"]
    )

    op.create_table(
        "user_category_default_budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("limit_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "limit_cents >= 0", name="ck_user_category_default_budget_positive"
        ),
        sa.UniqueConstraint(
            "user_id", "category_id", name="uq_user_category_default_budget"
        ),
    )

    op.create_table(
        "global_budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("monthly_limit_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("monthly_limit_cents >= 0", name="ck_global_budget_positive"),
        sa.UniqueConstraint("year", "month", name="uq_global_budget_month"),
    )

    op.create_table(
        "app_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("default_global_budget_cents", sa.Integer()),
        sa.Column(
            "enable_budget_carryover",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        *_timestamps(),
    )

    op.create_table(
        "insight_cache",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("scope_user_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column(
            "phase",
            sa.Enum(
                "start_of_month", "mid_month", "end_of_month", name="insightphase"
            ),
            nullable=False,
        ),
        sa.Column("insight_data", sa.Text(), nullable=False),
        sa.Column("insight_text", sa.Text(), nullable=False),
        sa.Column("generated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "scope_user_id",
            "year",
            "month",
            "phase",
            name="uq_insight_cache_scope_month_phase",
        ),
    )
    op.create_index("ix_insight_cache_month", "insight_cache", ["year", "month"])


def downgrade():
    op.drop_index("ix_insight_cache_month", table_name="insight_cache")
    op.drop_table("insight_cache")
    op.drop_table("app_settings")
    op.drop_table("global_budgets")
    op.drop_table("user_category_default_budgets")
    op.drop_index("ix_user_category_budget_month", table_name="user_category_budgets")
    op.drop_table("user_category_budgets")
    op.drop_index("ix_expenses_category_date", table_name="expenses")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("ix_obligations_user_kind", table_name="obligations")
    op.drop_table("obligations")
    op.drop_table("categories")
    op.drop_table("users")
