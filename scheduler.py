import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from services import ObligationService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, obligations: ObligationService) -> None:
        settings = get_settings()
        self.obligations = obligations
        self.scheduler = AsyncIOScheduler(timezone=settings.timezone)

    async def run_job(self, source: str = "manual") -> Optional[int]:
        logger.info(f"scheduler_run: source={source}")
        try:
            count = await self.obligations.catch_up_all()
        except Exception:
            logger.exception(f"scheduler_run failed: source={source}")
            return None
        logger.info(f"scheduler_run: source={source} occurrences_posted={count}")
        return count

    async def start(self) -> None:
        await self.run_job("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self.run_job,
            trigger,
            args=["daily_03:15"],
            id="obligations_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self.run_job,
            trigger,
            args=["hourly_safety_net"],
            id="obligations_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 and hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

