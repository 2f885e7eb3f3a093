from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from . import db
from .errors import OrchestrationError
from .models import ReportType, TrackerStatus
from .notifier import LogNotifier
from .orchestrator import CheckConfig, check_tracker
from .report import compose_report, payload_to_dict, summarize

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunSummary:
    expired: int = 0
    checked: int = 0
    failed: int = 0
    cleaned: int = 0


def run_due_checks(
    config: CheckConfig,
    *,
    check_interval_h: int = 12,
    limit: int = 5,
    retention_days: int = 30,
    now: Optional[datetime] = None,
) -> RunSummary:
    """One scheduler tick: expire, check stale trackers, purge old rows."""
    now = now or datetime.now(timezone.utc)
    summary = RunSummary()

    summary.expired = db.expire_trackers(now.date(), db_path=config.db_path)

    due = db.list_due_trackers(
        now - timedelta(hours=check_interval_h),
        now.date(),
        limit,
        db_path=config.db_path,
    )
    logger.info("%d trackers due for a check", len(due))
    for tracker in due:
        try:
            check_tracker(tracker.id, config, now=now)
            summary.checked += 1
        except OrchestrationError as exc:
            logger.error("Check of tracker %s failed: %s", tracker.id, exc)
            summary.failed += 1

    summary.cleaned = db.cleanup_observations(
        now - timedelta(days=retention_days), db_path=config.db_path
    )
    logger.info(
        "Run finished: %d expired, %d checked, %d failed, %d observations removed",
        summary.expired,
        summary.checked,
        summary.failed,
        summary.cleaned,
    )
    return summary


def send_scheduled_reports(
    config: CheckConfig, *, now: Optional[datetime] = None
) -> int:
    """Send the DAILY/WEEKLY/MONTHLY report of every active tracker that is due."""
    now = now or datetime.now(timezone.utc)
    notifier = config.notifier or LogNotifier()
    sent = 0

    for tracker in db.list_trackers(config.db_path, status=TrackerStatus.ACTIVE):
        last = db.last_report_at(tracker.id, ReportType.SCHEDULED, db_path=config.db_path)
        interval = timedelta(days=tracker.report_frequency.interval_days)
        if last is not None and now - last < interval:
            continue

        batches = db.load_latest_batches(
            tracker.id, n=2, window_s=config.batch_window_s, db_path=config.db_path
        )
        if not batches or not batches[0].observations:
            logger.info("Tracker %s has no data yet, no report", tracker.id)
            continue

        previous = batches[1] if len(batches) > 1 else None
        payload = compose_report(
            tracker, batches[0], summarize(batches[0], previous), top_n=config.top_n
        )
        if notifier.notify(payload, tracker.notify_email, ReportType.SCHEDULED):
            db.record_report(
                tracker.id,
                ReportType.SCHEDULED,
                payload_to_dict(payload),
                sent_at=now,
                db_path=config.db_path,
            )
            sent += 1

    logger.info("Sent %d scheduled reports", sent)
    return sent


__all__ = ["RunSummary", "run_due_checks", "send_scheduled_reports"]
