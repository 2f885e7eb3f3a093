from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from .models import Batch, PriceSummary, ReportPayload, Tracker
from .report import compose_report, summarize

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AlertDecision:
    triggered: bool
    reason: str
    summary: Optional[PriceSummary] = None
    payload: Optional[ReportPayload] = None


def price_drop_percent(newest: Decimal, previous: Decimal) -> Decimal:
    """Drop from *previous* to *newest* in percent; negative for a rise."""
    if previous <= 0:
        return Decimal("0")
    return (previous - newest) / previous * 100


def evaluate(
    tracker: Tracker,
    newest: Optional[Batch],
    previous: Optional[Batch] = None,
    top_n: int = 5,
) -> AlertDecision:
    """Decide whether the newest batch crosses the tracker's alert threshold.

    An absolute threshold fires when the newest cheapest price is at or below
    it. A percentage threshold fires when the drop against the cheapest price
    of *previous* reaches it; without a previous batch it never fires. Nothing
    is read or written here, so the same two batches always give the same
    decision.
    """
    if newest is None or not newest.observations:
        return AlertDecision(False, "no offers in newest batch")

    summary = summarize(newest, previous)
    payload = compose_report(tracker, newest, summary, top_n=top_n)
    cheapest = summary.cheapest_price

    if tracker.alert_threshold_eur is not None:
        threshold = Decimal(tracker.alert_threshold_eur)
        if cheapest <= threshold:
            reason = f"cheapest {cheapest} EUR <= threshold {threshold} EUR"
            return AlertDecision(True, reason, summary, payload)
        reason = f"cheapest {cheapest} EUR above threshold {threshold} EUR"
        return AlertDecision(False, reason, summary, payload)

    if tracker.alert_threshold_percent is not None:
        threshold = Decimal(tracker.alert_threshold_percent)
        if summary.previous_cheapest_price is None:
            return AlertDecision(False, "no previous batch to compare", summary, payload)
        drop = price_drop_percent(cheapest, summary.previous_cheapest_price)
        if drop >= threshold:
            reason = f"price dropped {drop:.2f}% >= {threshold}%"
            return AlertDecision(True, reason, summary, payload)
        reason = f"price dropped {drop:.2f}%, below {threshold}%"
        return AlertDecision(False, reason, summary, payload)

    return AlertDecision(False, "no alert threshold configured", summary, payload)


def in_cooldown(
    last_alert_at: Optional[datetime], now: datetime, cooldown_h: int
) -> bool:
    """``True`` if a price alert was already sent within *cooldown_h* hours."""
    if last_alert_at is None or cooldown_h <= 0:
        return False
    return now - last_alert_at < timedelta(hours=cooldown_h)


__all__ = ["AlertDecision", "evaluate", "in_cooldown", "price_drop_percent"]
