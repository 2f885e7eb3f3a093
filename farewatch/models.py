"""Data models used throughout the project."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple


class Flexibility(str, Enum):
    EXACT = "EXACT"
    PLUS_MINUS_1 = "PLUS_MINUS_1"
    PLUS_MINUS_2 = "PLUS_MINUS_2"

    @property
    def days(self) -> int:
        return {"EXACT": 0, "PLUS_MINUS_1": 1, "PLUS_MINUS_2": 2}[self.value]


class TravelClass(str, Enum):
    ECONOMY = "ECONOMY"
    PREMIUM_ECONOMY = "PREMIUM_ECONOMY"
    BUSINESS = "BUSINESS"
    FIRST = "FIRST"


class LuggageOption(str, Enum):
    INCLUDED = "INCLUDED"
    HAND_ONLY = "HAND_ONLY"
    BOTH = "BOTH"


class ReportFrequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"

    @property
    def interval_days(self) -> int:
        return {"DAILY": 1, "WEEKLY": 7, "MONTHLY": 30}[self.value]


class TrackerStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ERROR = "ERROR"
    EXPIRED = "EXPIRED"


class ReportType(str, Enum):
    SCHEDULED = "SCHEDULED"
    PRICE_ALERT = "PRICE_ALERT"


# Statuses from which a check is attempted; ERROR recovers on the next success.
CHECKABLE_STATUSES = frozenset({TrackerStatus.ACTIVE, TrackerStatus.ERROR})


@dataclass(slots=True)
class Tracker:
    id: str
    owner: str
    name: str
    departure_airports: List[str]
    destination_airports: List[str]
    date_range_start: date
    date_range_end: date
    trip_duration_days: int
    flexibility: Flexibility = Flexibility.EXACT
    travel_class: TravelClass = TravelClass.ECONOMY
    luggage_option: LuggageOption = LuggageOption.BOTH
    report_frequency: ReportFrequency = ReportFrequency.WEEKLY
    departure_radius_km: int = 200
    alert_threshold_percent: Optional[Decimal] = None
    alert_threshold_eur: Optional[Decimal] = None
    status: TrackerStatus = TrackerStatus.ACTIVE
    last_checked_at: Optional[datetime] = None
    notify_email: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_checkable(self) -> bool:
        return self.status in CHECKABLE_STATUSES

    def window_elapsed(self, today: date) -> bool:
        return self.date_range_end < today


@dataclass(frozen=True, slots=True)
class SearchRequest:
    """Provider-neutral search parameters built from one tracker."""

    departure_airports: Tuple[str, ...]
    destination_airports: Tuple[str, ...]
    date_range_start: date
    date_range_end: date
    trip_duration_days: int
    flexibility: Flexibility
    travel_class: TravelClass
    passengers: int = 1
    # date of the check, UTC; outbound days before it are not searched
    today: Optional[date] = None

    @classmethod
    def from_tracker(
        cls, tracker: Tracker, passengers: int = 1, today: Optional[date] = None
    ) -> "SearchRequest":
        return cls(
            departure_airports=tuple(tracker.departure_airports),
            destination_airports=tuple(tracker.destination_airports),
            date_range_start=tracker.date_range_start,
            date_range_end=tracker.date_range_end,
            trip_duration_days=tracker.trip_duration_days,
            flexibility=tracker.flexibility,
            travel_class=tracker.travel_class,
            passengers=passengers,
            today=today,
        )


@dataclass(slots=True)
class FlightOffer:
    """One normalized round-trip quote as returned by a provider."""

    departure_airport: str
    destination_airport: str
    outbound_date: date
    return_date: date
    price_eur: Decimal
    airline: str
    stops: int
    total_duration_min: int
    luggage_included: bool
    booking_link: str
    source: str


@dataclass(slots=True)
class FlightObservation:
    """A :class:`FlightOffer` as stored for one tracker and one batch."""

    tracker_id: str
    checked_at: datetime
    offer: FlightOffer
    flight_hash: str
    id: Optional[int] = None

    @property
    def price_eur(self) -> Decimal:
        return self.offer.price_eur


@dataclass(slots=True)
class Batch:
    """All observations written by one check, sharing one timestamp."""

    checked_at: datetime
    observations: List[FlightObservation] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.observations)

    @property
    def offers(self) -> List[FlightOffer]:
        return [obs.offer for obs in self.observations]

    def cheapest(self) -> Optional[FlightOffer]:
        if not self.observations:
            return None
        return min(self.offers, key=lambda off: off.price_eur)


@dataclass(slots=True)
class PriceSummary:
    cheapest_price: Decimal
    previous_cheapest_price: Optional[Decimal] = None
    price_change: Optional[Decimal] = None
    price_change_percent: Optional[Decimal] = None


@dataclass(slots=True)
class TrackerDetails:
    name: str
    route: str
    date_range: str
    duration: str


@dataclass(slots=True)
class ReportPayload:
    tracker_id: str
    summary: PriceSummary
    recommendation: FlightOffer
    top_flights: List[FlightOffer]
    tracker_details: TrackerDetails
    checked_at: datetime


__all__ = [
    "Flexibility",
    "TravelClass",
    "LuggageOption",
    "ReportFrequency",
    "TrackerStatus",
    "ReportType",
    "CHECKABLE_STATUSES",
    "Tracker",
    "SearchRequest",
    "FlightOffer",
    "FlightObservation",
    "Batch",
    "PriceSummary",
    "TrackerDetails",
    "ReportPayload",
]
