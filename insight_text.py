from __future__ import annotations

import json
import logging
from typing import Optional, Protocol

import httpx

from config import Settings, get_settings
from schemas import (
    AnomalyReport,
    CategoryInsights,
    InsightData,
    MonthlyComparison,
    MonthOverMonth,
    PaceAlert,
    SpendingPrediction,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You write one or two short, friendly sentences about a household's "
    "monthly spending. Amounts are in cents; present them as currency "
    "without the word cents. Do not invent numbers."
)


class FormatterUnavailable(RuntimeError):
    pass


class TextFormatter(Protocol):
    async def render(self, data: InsightData) -> str: ...


def format_currency(cents: float, include_cents: bool = True) -> str:
    if include_cents:
        return f"{cents / 100:,.2f}".replace(",", " ").replace(".", ",")
    return f"{cents / 100:,.0f}".replace(",", " ")


class HttpTextFormatter:
    """Chat-completions client that turns insight data into a sentence."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.transport = transport

    async def render(self, data: InsightData) -> str:
        if not self.settings.formatter_api_key:
            raise FormatterUnavailable("No formatter API key configured")
        payload = {
            "model": self.settings.formatter_model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": data.model_dump_json()},
            ],
            "max_tokens": 120,
        }
        headers = {
            "Authorization": f"Bearer {self.settings.formatter_api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(
            timeout=self.settings.formatter_timeout_secs, transport=self.transport
        ) as client:
            try:
                response = await client.post(
                    self.settings.formatter_url, json=payload, headers=headers
                )
                response.raise_for_status()
                body = response.json()
            except (httpx.HTTPError, json.JSONDecodeError) as exc:
                raise FormatterUnavailable(
                    f"Formatter request to {self.settings.formatter_url} failed"
                ) from exc

        try:
            text = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise FormatterUnavailable("Unexpected formatter response") from exc
        text = (text or "").strip()
        if not text:
            raise FormatterUnavailable("Formatter returned empty text")
        return text


def get_formatter() -> Optional[TextFormatter]:
    settings = get_settings()
    if not settings.formatter_api_key:
        return None
    return HttpTextFormatter(settings)


def render_fallback(data: InsightData) -> str:
    if isinstance(data, SpendingPrediction):
        predicted = format_currency(data.predicted_spending_cents, include_cents=False)
        gap = format_currency(data.difference_cents, include_cents=False)
        if data.is_over_budget:
            return (
                f"Based on recent months you may spend about {predicted}, "
                f"{gap} over budget."
            )
        return (
            f"Based on recent months you may spend about {predicted}, "
            f"leaving {gap} of your budget."
        )

    if isinstance(data, PaceAlert):
        if data.is_over_budget:
            projected = format_currency(data.projected_total_cents, include_cents=False)
            over = format_currency(data.over_by_cents, include_cents=False)
            return f"At this pace you'll reach {projected}, {over} over budget."
        target = format_currency(data.daily_target_cents, include_cents=False)
        return (
            f"You're on track. Keep daily spending under {target} "
            f"for the remaining {data.days_remaining} days."
        )

    if isinstance(data, AnomalyReport):
        top = data.top_anomaly
        if top is None:
            return "Category spending looks normal this month."
        direction = "higher" if top.is_higher else "lower"
        return (
            f"{top.category} spending is {abs(top.deviation_pct):.0f}% "
            f"{direction} than usual."
        )

    if isinstance(data, MonthOverMonth):
        diff = format_currency(data.difference_cents, include_cents=False)
        if data.is_ahead:
            return f"You've spent {diff} less than at this point last month."
        return f"You've spent {diff} more than at this point last month."

    if isinstance(data, CategoryInsights):
        top = data.top_insight
        if top is None:
            return "No notable category trends this month."
        if top.type == "stable":
            return f"{top.category} spending has been predictable lately."
        if top.type == "volatile":
            return f"{top.category} spending varies significantly month to month."
        if top.type == "trending_up":
            return f"{top.category} is trending up by {top.value:.0f}%."
        return f"{top.category} has used {top.value:.0f}% of its budget."

    if isinstance(data, MonthlyComparison):
        diff = format_currency(data.difference_cents, include_cents=False)
        direction = "less" if data.is_lower else "more"
        budget_diff = format_currency(data.budget_difference_cents, include_cents=False)
        position = "under" if data.under_budget else "over"
        return (
            f"You spent {diff} {direction} than last month "
            f"and finished {budget_diff} {position} budget."
        )

    raise TypeError(f"Unsupported insight data: {type(data).__name__}")
