"""tasks.py – APScheduler schedule.

• every ``CHECK_INTERVAL_H`` / 4 hours – ``jobs.run_due_checks``
• once a day at 07:00 UTC – ``jobs.send_scheduled_reports``
"""

from apscheduler.schedulers.blocking import BlockingScheduler

from . import jobs
from .config import get_settings
from .orchestrator import CheckConfig

settings = get_settings()
sched = BlockingScheduler(timezone="UTC")


@sched.scheduled_job(
    "interval", hours=max(1, settings.check_interval_h // 4), id="check_job"
)
def check_job() -> None:
    """Check trackers that have not been looked at for a while."""
    jobs.run_due_checks(
        CheckConfig.from_settings(settings),
        check_interval_h=settings.check_interval_h,
        limit=settings.trackers_per_run,
        retention_days=settings.retention_days,
    )


@sched.scheduled_job("cron", hour=7, minute=0, id="report_job")
def report_job() -> None:
    """Send the periodic reports that are due."""
    jobs.send_scheduled_reports(CheckConfig.from_settings(settings))


if __name__ == "__main__":
    sched.start()
