from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Iterator, List, Optional, Tuple, Union

from .models import Flexibility, FlightOffer

DatePair = Tuple[date, date]


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def is_past_date(day: Union[date, datetime], today: Optional[date] = None) -> bool:
    """Return ``True`` if *day* lies before *today* (defaults to the UTC date)."""
    return _as_date(day) < (today or utc_today())


def iter_date_combinations(
    start: date,
    end: date,
    duration: int,
    flexibility: Flexibility,
    *,
    today: Optional[date] = None,
) -> Iterator[DatePair]:
    """Yield candidate ``(outbound, return)`` pairs for a date window.

    Every day of ``start..end`` is an outbound candidate and each of them is
    combined with a stay of ``duration ± flexibility.days``. Outbound days in
    the past are skipped, and so is any return later than
    ``end + flexibility.days``.
    """
    flex = Flexibility(flexibility).days
    start, end = _as_date(start), _as_date(end)
    max_return = end + timedelta(days=flex)

    outbound = start
    while outbound <= end:
        if not is_past_date(outbound, today):
            for offset in range(-flex, flex + 1):
                stay = duration + offset
                if stay <= 0:
                    continue
                ret = outbound + timedelta(days=stay)
                if ret <= max_return:
                    yield outbound, ret
        outbound += timedelta(days=1)


def date_combinations(
    start: date,
    end: date,
    duration: int,
    flexibility: Flexibility,
    *,
    today: Optional[date] = None,
) -> List[DatePair]:
    return list(
        iter_date_combinations(start, end, duration, flexibility, today=today)
    )


def travel_days(outbound: Optional[date], ret: Optional[date]) -> int:
    if not outbound or not ret:
        return 0
    return (ret - outbound).days


def week_number(day: Union[date, datetime]) -> int:
    """ISO calendar week (1-53)."""
    return _as_date(day).isocalendar()[1]


# ────────────────────────────────────────────────────────────────
# Flight identity
# ────────────────────────────────────────────────────────────────


def flight_hash(
    departure_airport: str,
    destination_airport: str,
    outbound_date: Union[date, datetime],
    return_date: Union[date, datetime],
    airline: str,
    stops: int,
) -> str:
    """Stable key for "the same offer"; price and duration are ignored."""
    outbound = _as_date(outbound_date).isoformat()
    ret = _as_date(return_date).isoformat()
    return (
        f"{departure_airport}-{destination_airport}-{outbound}-{ret}"
        f"-{airline}-{int(stops)}"
    )


def offer_hash(offer: FlightOffer) -> str:
    return flight_hash(
        offer.departure_airport,
        offer.destination_airport,
        offer.outbound_date,
        offer.return_date,
        offer.airline,
        offer.stops,
    )


__all__ = [
    "DatePair",
    "utc_today",
    "is_past_date",
    "iter_date_combinations",
    "date_combinations",
    "travel_days",
    "week_number",
    "flight_hash",
    "offer_hash",
]
