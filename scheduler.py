import logging
from typing import Callable, ContextManager, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from services import RecurringService


logger = logging.getLogger(__name__)


class SchedulerManager:
    """Re-runs reconciliation at startup, daily, and on an hourly safety net.

    A pass is idempotent, so overlapping or repeated triggers only cost time.
    """

    def __init__(
        self,
        session_factory: Callable[[], ContextManager[Session]] = session_scope,
        scheduler: Optional[BackgroundScheduler] = None,
    ) -> None:
        self.settings = get_settings()
        self.session_factory = session_factory
        self.scheduler = scheduler or BackgroundScheduler(
            timezone=self.settings.timezone
        )

    def run_job(self, source: str = "manual") -> int:
        logger.info("reconcile_run: source=%s", source)
        with self.session_factory() as session:
            created = RecurringService(session).catch_up()
        logger.info("reconcile_run: source=%s created=%d", source, created)
        return created

    def _safe_run(self, source: str) -> None:
        try:
            self.run_job(source)
        except Exception:
            logger.exception("reconcile_run_failed: source=%s", source)

    def start(self) -> None:
        self._safe_run("startup")

        trigger = CronTrigger(
            hour=self.settings.reconcile_hour, minute=self.settings.reconcile_minute
        )
        self.scheduler.add_job(
            self._safe_run,
            trigger,
            args=["daily"],
            id="reconcile_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        if self.settings.reconcile_interval_minutes > 0:
            trigger = IntervalTrigger(minutes=self.settings.reconcile_interval_minutes)
            self.scheduler.add_job(
                self._safe_run,
                trigger,
                args=["interval_safety_net"],
                id="reconcile_interval",
                replace_existing=True,
                misfire_grace_time=300,
            )

        self.scheduler.start()
        logger.info(
            "Scheduler started: daily %02d:%02d, interval %d min",
            self.settings.reconcile_hour,
            self.settings.reconcile_minute,
            self.settings.reconcile_interval_minutes,
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
