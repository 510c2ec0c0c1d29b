"""
Scheduler service for Celia - runs the product sync on a timer with APScheduler.
"""

import logging
from typing import Dict, Optional

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from celia.config import config
from celia.services.errors import SyncInProgressError

logger = logging.getLogger(__name__)

JOB_ID = 'zureo_product_sync'


def build_trigger(schedule: Dict, timezone: str):
    """Build an APScheduler trigger from the schedule section of config.yaml"""
    schedule_type = schedule.get('type', 'cron')

    if schedule_type == 'cron':
        return CronTrigger(
            day_of_week=schedule.get('day_of_week'),
            hour=schedule.get('hour', '*'),
            minute=schedule.get('minute', '0'),
            timezone=timezone
        )
    if schedule_type == 'interval':
        return IntervalTrigger(
            days=schedule.get('days', 0),
            hours=schedule.get('hours', 0),
            minutes=schedule.get('minutes', 0),
            timezone=timezone
        )
    raise ValueError(f"Unknown schedule type: {schedule_type}")


class SchedulerService:
    """Owns the background scheduler and the periodic sync job."""

    def __init__(self, sync_service=None, schedule: Optional[Dict] = None, timezone: str = None):
        self._scheduler = None
        self._sync_service = sync_service
        self.schedule = schedule if schedule is not None else config.schedule
        self.timezone = timezone or config.scheduler_timezone
        self._running = False

    def _get_sync_service(self):
        """Lazy load the sync service to avoid circular imports."""
        if self._sync_service is None:
            from celia.services.sync_service import get_sync_service
            self._sync_service = get_sync_service()
        return self._sync_service

    def start(self):
        """Start the scheduler with the product sync job."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._scheduler = BackgroundScheduler(
            jobstores={'default': MemoryJobStore()},
            timezone=self.timezone
        )
        self._scheduler.add_job(
            func=self.run_sync_job,
            trigger=build_trigger(self.schedule, self.timezone),
            id=JOB_ID,
            name='Zureo product sync',
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self._scheduler.start()
        self._running = True
        logger.info(f"Scheduler started, next sync at {self.next_run_time()}")

    def stop(self):
        """Stop the scheduler."""
        if self._scheduler and self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self._running

    def next_run_time(self) -> Optional[str]:
        if not self._scheduler:
            return None
        job = self._scheduler.get_job(JOB_ID)
        if job is None or job.next_run_time is None:
            return None
        return job.next_run_time.isoformat()

    def run_sync_job(self):
        """Scheduled entry point; a fresh catalog or a held lease is not an error"""
        try:
            summary = self._get_sync_service().run_product_sync(force=False)
        except SyncInProgressError:
            logger.info("Scheduled sync skipped, another sync is in progress")
            return None

        if summary.get('skipped'):
            logger.info("Scheduled sync skipped, catalog is fresh")
        elif not summary.get('success'):
            logger.error(f"Scheduled sync failed: {summary.get('error')}")
        return summary


scheduler_service = SchedulerService()
