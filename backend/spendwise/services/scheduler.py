"""Proactive check scheduler — one pending re-check per user on APScheduler."""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger(__name__)

CheckCallback = Callable[[], Awaitable[object]]


def job_id(user_id: str) -> str:
    return f"proactive-check:{user_id}"


class ProactiveCheckScheduler:
    """Scheduling a check for a user replaces any check still pending for them."""

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self):
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Proactive check scheduler started")

    def schedule(self, user_id: str, run_at: datetime, callback: CheckCallback) -> datetime:
        self._scheduler.add_job(
            self._run,
            DateTrigger(run_date=run_at),
            args=[user_id, callback],
            id=job_id(user_id),
            replace_existing=True,
            misfire_grace_time=300,
        )
        logger.info(f"Next proactive check for user {user_id} at {run_at.isoformat()}")
        return run_at

    def next_run(self, user_id: str) -> datetime | None:
        job = self._scheduler.get_job(job_id(user_id))
        if job is None:
            return None
        # Jobs added before start() have no computed next_run_time yet.
        return getattr(job, "next_run_time", None) or job.trigger.run_date

    def cancel(self, user_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id(user_id))
        except JobLookupError:
            return False
        logger.info(f"Cancelled proactive check for user {user_id}")
        return True

    def shutdown(self):
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Proactive check scheduler stopped")

    @staticmethod
    async def _run(user_id: str, callback: CheckCallback):
        try:
            await callback()
        except Exception as e:
            logger.error(f"Proactive check failed for user {user_id}: {e}")
