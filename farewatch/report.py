from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from .geo import format_date_range, format_route
from .models import (
    Batch,
    FlightOffer,
    PriceSummary,
    ReportPayload,
    Tracker,
    TrackerDetails,
)


def summarize(newest: Batch, previous: Optional[Batch] = None) -> PriceSummary:
    """Cheapest price of *newest* and its change against *previous*.

    ``price_change_percent`` is negative for a price drop and rounded to two
    decimals; ``None`` fields mean there is nothing to compare against.
    """
    cheapest = newest.cheapest()
    if cheapest is None:
        raise ValueError("cannot summarize an empty batch")

    summary = PriceSummary(cheapest_price=cheapest.price_eur)
    prev = previous.cheapest() if previous is not None else None
    if prev is None:
        return summary

    summary.previous_cheapest_price = prev.price_eur
    summary.price_change = cheapest.price_eur - prev.price_eur
    if prev.price_eur > 0:
        summary.price_change_percent = (
            summary.price_change / prev.price_eur * 100
        ).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return summary


def tracker_details(tracker: Tracker) -> TrackerDetails:
    return TrackerDetails(
        name=tracker.name,
        route=format_route(tracker.departure_airports, tracker.destination_airports),
        date_range=format_date_range(tracker.date_range_start, tracker.date_range_end),
        duration=f"{tracker.trip_duration_days} Tage",
    )


def compose_report(
    tracker: Tracker,
    batch: Batch,
    summary: PriceSummary,
    top_n: int = 5,
) -> ReportPayload:
    """Build the self-contained payload rendered by the notifiers.

    The cheapest offer of *batch* becomes the recommendation, the remaining
    offers follow by ascending price, cut to *top_n*. Ties keep the order in
    which the batch holds them.
    """
    if not batch.observations:
        raise ValueError("cannot compose a report from an empty batch")

    ranked = sorted(batch.offers, key=lambda off: off.price_eur)
    return ReportPayload(
        tracker_id=tracker.id,
        summary=summary,
        recommendation=ranked[0],
        top_flights=ranked[1 : 1 + top_n],
        tracker_details=tracker_details(tracker),
        checked_at=batch.checked_at,
    )


# ────────────────────────────────────────────────────────────────
# Serialisation for the reports table
# ────────────────────────────────────────────────────────────────


def _offer_to_dict(offer: FlightOffer) -> Dict[str, Any]:
    return {
        "departure_airport": offer.departure_airport,
        "destination_airport": offer.destination_airport,
        "outbound_date": offer.outbound_date.isoformat(),
        "return_date": offer.return_date.isoformat(),
        "price_eur": str(offer.price_eur),
        "airline": offer.airline,
        "stops": offer.stops,
        "total_duration_min": offer.total_duration_min,
        "luggage_included": offer.luggage_included,
        "booking_link": offer.booking_link,
        "source": offer.source,
    }


def _opt_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def payload_to_dict(payload: ReportPayload) -> Dict[str, Any]:
    """JSON-ready representation stored with each sent report."""
    summary = payload.summary
    details = payload.tracker_details
    checked_at: datetime = payload.checked_at
    return {
        "tracker_id": payload.tracker_id,
        "checked_at": checked_at.isoformat(),
        "summary": {
            "cheapest_price": str(summary.cheapest_price),
            "previous_cheapest_price": _opt_str(summary.previous_cheapest_price),
            "price_change": _opt_str(summary.price_change),
            "price_change_percent": _opt_str(summary.price_change_percent),
        },
        "recommendation": _offer_to_dict(payload.recommendation),
        "top_flights": [_offer_to_dict(off) for off in payload.top_flights],
        "tracker_details": {
            "name": details.name,
            "route": details.route,
            "date_range": details.date_range,
            "duration": details.duration,
        },
    }


__all__ = ["summarize", "tracker_details", "compose_report", "payload_to_dict"]
