import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import sessionmaker

from config import get_settings
from database import session_scope
from services import ExpenseService, Reminder, ReminderService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

Notifier = Callable[[Reminder], None]


def log_notifier(reminder: Reminder) -> None:
    logger.info(f"reminder: title={reminder.title!r} body={reminder.body!r}")


class SchedulerManager:
    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        session_factory: Optional[sessionmaker] = None,
    ) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self.notifier = notifier or log_notifier
        self.session_factory = session_factory

    def _run_regeneration(self, source: str = "manual") -> int:
        logger.info(f"regenerate_run: source={source}")
        with session_scope(self.session_factory) as session:
            count = ExpenseService(session).regenerate_all()
        logger.info(f"regenerate_run: source={source} instances_created={count}")
        return count

    def _run_reminders(self, source: str = "manual") -> int:
        with session_scope(self.session_factory) as session:
            reminders = ReminderService(session).due_reminders()
            for reminder in reminders:
                self.notifier(reminder)
        logger.info(f"reminder_run: source={source} sent={len(reminders)}")
        return len(reminders)

    def _run_daily(self, source: str = "manual") -> None:
        self._run_regeneration(source)
        self._run_reminders(source)

    def _run_weekly_summary(self) -> None:
        with session_scope(self.session_factory) as session:
            summary = ReminderService(session).weekly_summary()
            if summary is not None:
                self.notifier(summary)
                logger.info("weekly_summary_sent")

    def start(self) -> None:
        # Catch up on anything the horizon passed while the app was down.
        self._run_regeneration("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_daily,
            trigger,
            args=["daily_03:15"],
            id="regenerate_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = CronTrigger(day_of_week="mon", hour=9, minute=0)
        self.scheduler.add_job(
            self._run_weekly_summary,
            trigger,
            id="weekly_summary",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 and weekly Monday summary")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
