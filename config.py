import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        formatter_url: str,
        formatter_api_key: Optional[str],
        formatter_model: str,
        formatter_timeout_secs: float,
        forecast_max_days: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.formatter_url = formatter_url
        self.formatter_api_key = formatter_api_key
        self.formatter_model = formatter_model
        self.formatter_timeout_secs = formatter_timeout_secs
        self.forecast_max_days = forecast_max_days


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite+aiosqlite:///{default_db}")
    timezone = os.getenv("BUDGET_TIMEZONE", "Asia/Kolkata")
    formatter_url = os.getenv(
        "BUDGET_FORMATTER_URL", "https://api.openai.com/v1/chat/completions"
    )
    formatter_api_key = os.getenv("BUDGET_FORMATTER_API_KEY") or None
    formatter_model = os.getenv("BUDGET_FORMATTER_MODEL", "gpt-4o-mini")
    formatter_timeout_secs = float(os.getenv("BUDGET_FORMATTER_TIMEOUT_SECS", "10"))
    forecast_max_days = int(os.getenv("BUDGET_FORECAST_MAX_DAYS", "366"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        formatter_url=formatter_url,
        formatter_api_key=formatter_api_key,
        formatter_model=formatter_model,
        formatter_timeout_secs=formatter_timeout_secs,
        forecast_max_days=forecast_max_days,
    )
