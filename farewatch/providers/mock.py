"""Deterministic synthetic offers, used when no live credentials are configured."""

from __future__ import annotations

import hashlib
import random
from datetime import date
from decimal import Decimal
from typing import List, Optional

from ..dates import date_combinations
from ..models import FlightOffer, SearchRequest
from .base import FlightProvider

MOCK_SOURCE = "MockData"
MOCK_AIRLINES = (
    "Lufthansa",
    "Eurowings",
    "Ryanair",
    "British Airways",
    "Air France",
    "KLM",
)


def _seed(request: SearchRequest) -> int:
    key = "|".join(
        [
            ",".join(request.departure_airports),
            ",".join(request.destination_airports),
            request.date_range_start.isoformat(),
            request.date_range_end.isoformat(),
            str(request.trip_duration_days),
            request.flexibility.value,
            request.travel_class.value,
        ]
    )
    return int(hashlib.sha256(key.encode("utf-8")).hexdigest()[:16], 16)


class MockProvider(FlightProvider):
    """Same request in, same offers out; ``source`` is always ``MockData``."""

    name = MOCK_SOURCE

    def __init__(self, min_offers: int = 3, max_offers: int = 5, today: Optional[date] = None) -> None:
        self.min_offers = min_offers
        self.max_offers = max_offers
        self.today = today

    def _search(self, request: SearchRequest) -> List[FlightOffer]:
        pairs = date_combinations(
            request.date_range_start,
            request.date_range_end,
            request.trip_duration_days,
            request.flexibility,
            today=self.today or request.today,
        )
        if not pairs:
            return []

        rng = random.Random(_seed(request))
        count = rng.randint(self.min_offers, self.max_offers)
        offers: List[FlightOffer] = []
        for _ in range(count):
            outbound, ret = rng.choice(pairs)
            offers.append(
                FlightOffer(
                    departure_airport=rng.choice(request.departure_airports),
                    destination_airport=rng.choice(request.destination_airports),
                    outbound_date=outbound,
                    return_date=ret,
                    price_eur=Decimal(rng.randint(150, 550)),
                    airline=rng.choice(MOCK_AIRLINES),
                    stops=1 if rng.random() > 0.7 else 0,
                    total_duration_min=rng.randint(60, 360),
                    luggage_included=rng.random() > 0.5,
                    booking_link="https://www.kiwi.com/deep/link/mock",
                    source=MOCK_SOURCE,
                )
            )
        offers.sort(key=lambda off: off.price_eur)
        return offers


__all__ = ["MockProvider", "MOCK_SOURCE"]
