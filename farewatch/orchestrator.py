"""Runs one tracker check end to end.

``check_tracker`` loads the tracker, queries every configured provider in
parallel, merges and de-duplicates the offers into one batch, appends that
batch to storage, updates the tracker and finally evaluates price alerts.
"""

from __future__ import annotations

import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from . import db
from .alerts import AlertDecision, evaluate, in_cooldown
from .config import Settings, get_settings
from .dates import offer_hash
from .errors import PersistenceError, TrackerNotFoundError
from .models import (
    FlightObservation,
    FlightOffer,
    LuggageOption,
    ReportType,
    SearchRequest,
    Tracker,
    TrackerStatus,
)
from .notifier import Notifier, build_notifier
from .providers import FlightProvider, build_providers
from .report import payload_to_dict

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CheckConfig:
    """Everything a check needs besides the tracker id."""

    providers: Sequence[FlightProvider]
    db_path: str = db.DB_FILE
    timeout_s: float = 60.0
    batch_window_s: int = 60
    top_n: int = 5
    alert_cooldown_h: int = 24
    notifier: Optional[Notifier] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CheckConfig":
        settings = settings or get_settings()
        return cls(
            providers=build_providers(settings),
            db_path=settings.db_path,
            timeout_s=settings.provider_timeout_s,
            batch_window_s=settings.batch_window_s,
            top_n=settings.report_top_n,
            alert_cooldown_h=settings.alert_cooldown_h,
            notifier=build_notifier(settings),
        )


@dataclass(slots=True)
class CheckResult:
    tracker_id: str
    status: TrackerStatus
    skipped: bool = False
    checked_at: Optional[datetime] = None
    observations: List[FlightObservation] = field(default_factory=list)
    alert: Optional[AlertDecision] = None
    notified: bool = False


# ────────────────────────────────────────────────────────────────
# Fan-out / merge
# ────────────────────────────────────────────────────────────────


def fan_out(
    providers: Sequence[FlightProvider],
    request: SearchRequest,
    timeout_s: float,
) -> List[List[FlightOffer]]:
    """Run ``search`` on every provider in parallel, one result list each.

    A provider that raises or does not finish within *timeout_s* contributes
    an empty list; results are returned only after all providers settled.
    """
    if not providers:
        return []

    pool = ThreadPoolExecutor(
        max_workers=len(providers), thread_name_prefix="farewatch-provider"
    )
    futures = [pool.submit(p.search, request) for p in providers]
    try:
        _, pending = wait(futures, timeout=timeout_s)
    finally:
        pool.shutdown(wait=False, cancel_futures=True)

    results: List[List[FlightOffer]] = []
    for provider, future in zip(providers, futures):
        if future in pending:
            logger.warning(
                "Provider %s timed out after %ss", provider.name, timeout_s
            )
            results.append([])
            continue
        try:
            results.append(list(future.result()))
        except Exception as exc:
            logger.warning("Provider %s failed: %s", provider.name, exc)
            results.append([])
    return results


def matches_luggage(offer: FlightOffer, option: LuggageOption) -> bool:
    if option == LuggageOption.INCLUDED:
        return offer.luggage_included
    return True


def merge_offers(
    results: Sequence[Sequence[FlightOffer]],
    luggage_option: LuggageOption = LuggageOption.BOTH,
) -> List[FlightOffer]:
    return [
        off
        for offers in results
        for off in offers
        if matches_luggage(off, luggage_option)
    ]


def deduplicate(
    offers: Sequence[FlightOffer], tracker_id: str, checked_at: datetime
) -> List[FlightObservation]:
    """One observation per flight hash, keeping the cheapest offer.

    All observations share *checked_at*; first-seen order is preserved.
    """
    best: Dict[str, FlightOffer] = {}
    for off in offers:
        key = offer_hash(off)
        current = best.get(key)
        if current is None or off.price_eur < current.price_eur:
            best[key] = off
    return [
        FlightObservation(
            tracker_id=tracker_id, checked_at=checked_at, offer=off, flight_hash=key
        )
        for key, off in best.items()
    ]


# ────────────────────────────────────────────────────────────────
# Check
# ────────────────────────────────────────────────────────────────


def _mark_error(tracker_id: str, db_path: str) -> None:
    try:
        db.update_tracker_status(tracker_id, TrackerStatus.ERROR, db_path=db_path)
    except (sqlite3.Error, TrackerNotFoundError):
        logger.exception("Could not mark tracker %s as ERROR", tracker_id)


def _evaluate_alerts(
    tracker: Tracker, config: CheckConfig, now: datetime
) -> tuple[Optional[AlertDecision], bool]:
    try:
        return _alert_step(tracker, config, now)
    except sqlite3.Error:
        # the batch is already committed, the check itself succeeded
        logger.exception("Alert evaluation for tracker %s failed", tracker.id)
        return None, False


def _alert_step(
    tracker: Tracker, config: CheckConfig, now: datetime
) -> tuple[Optional[AlertDecision], bool]:
    batches = db.load_latest_batches(
        tracker.id, n=2, window_s=config.batch_window_s, db_path=config.db_path
    )
    newest = batches[0] if batches else None
    previous = batches[1] if len(batches) > 1 else None
    decision = evaluate(tracker, newest, previous, top_n=config.top_n)
    logger.info(
        "Tracker %s alert: %s (%s)",
        tracker.id,
        "triggered" if decision.triggered else "not triggered",
        decision.reason,
    )
    if not decision.triggered or config.notifier is None:
        return decision, False

    last = db.last_report_at(tracker.id, ReportType.PRICE_ALERT, db_path=config.db_path)
    if in_cooldown(last, now, config.alert_cooldown_h):
        logger.info(
            "Tracker %s: price alert already sent at %s, skipping", tracker.id, last
        )
        return decision, False

    sent = config.notifier.notify(
        decision.payload, tracker.notify_email, ReportType.PRICE_ALERT
    )
    if sent:
        db.record_report(
            tracker.id,
            ReportType.PRICE_ALERT,
            payload_to_dict(decision.payload),
            sent_at=now,
            db_path=config.db_path,
        )
    return decision, sent


def check_tracker(
    tracker_id: str,
    config: CheckConfig,
    *,
    now: Optional[datetime] = None,
) -> CheckResult:
    """Run one check of *tracker_id*.

    Provider failures only shrink the batch. A missing tracker or a failed
    write aborts the check, sets the tracker to ``ERROR`` where possible and
    raises an :class:`~farewatch.errors.OrchestrationError`.
    """
    now = (now or datetime.now(timezone.utc)).replace(microsecond=0)

    try:
        tracker = db.load_tracker(tracker_id, db_path=config.db_path)
    except sqlite3.Error as exc:
        logger.exception("Loading tracker %s failed", tracker_id)
        raise PersistenceError(f"Tracker {tracker_id}: {exc}") from exc
    if tracker is None:
        logger.error("Tracker %s not found", tracker_id)
        raise TrackerNotFoundError(tracker_id)

    if not tracker.is_checkable:
        logger.info("Tracker %s is %s, skipping check", tracker_id, tracker.status.value)
        return CheckResult(tracker_id, tracker.status, skipped=True)

    if tracker.window_elapsed(now.date()):
        logger.info("Tracker %s window ended %s", tracker_id, tracker.date_range_end)
        try:
            db.update_tracker_status(
                tracker_id, TrackerStatus.EXPIRED, db_path=config.db_path
            )
        except sqlite3.Error as exc:
            logger.exception("Expiring tracker %s failed", tracker_id)
            raise PersistenceError(f"Tracker {tracker_id}: {exc}") from exc
        return CheckResult(tracker_id, TrackerStatus.EXPIRED, skipped=True)

    request = SearchRequest.from_tracker(tracker, today=now.date())
    logger.info(
        "Checking tracker %s (%s) with %d providers",
        tracker_id,
        tracker.name,
        len(config.providers),
    )
    results = fan_out(config.providers, request, config.timeout_s)
    merged = merge_offers(results, tracker.luggage_option)
    observations = deduplicate(merged, tracker_id, now)
    logger.info(
        "Tracker %s: %d offers merged, %d after de-duplication",
        tracker_id,
        len(merged),
        len(observations),
    )

    try:
        db.insert_observations(observations, db_path=config.db_path)
        db.update_tracker_status(
            tracker_id, TrackerStatus.ACTIVE, last_checked_at=now, db_path=config.db_path
        )
    except sqlite3.Error as exc:
        logger.exception("Persisting batch for tracker %s failed", tracker_id)
        _mark_error(tracker_id, config.db_path)
        raise PersistenceError(f"Tracker {tracker_id}: {exc}") from exc

    result = CheckResult(
        tracker_id, TrackerStatus.ACTIVE, checked_at=now, observations=observations
    )
    if observations:
        result.alert, result.notified = _evaluate_alerts(tracker, config, now)
    return result


__all__ = [
    "CheckConfig",
    "CheckResult",
    "fan_out",
    "merge_offers",
    "deduplicate",
    "check_tracker",
]
