from __future__ import annotations

import datetime as dt
import logging
import os
from decimal import Decimal
from typing import List, Optional
from urllib.parse import quote

import requests

from ..dates import date_combinations
from ..errors import ProviderError
from ..models import FlightOffer, SearchRequest, TravelClass
from .base import FlightProvider

logger = logging.getLogger(__name__)

SERPAPI_SOURCE = "Google Flights"
TRAVEL_CLASS_CODES = {
    TravelClass.ECONOMY: "1",
    TravelClass.PREMIUM_ECONOMY: "2",
    TravelClass.BUSINESS: "3",
    TravelClass.FIRST: "4",
}


class SerpApiProvider(FlightProvider):
    """Google Flights results through SerpApi.

    SerpApi takes one origin, one destination and one exact date pair per
    call, so the request is expanded with :func:`date_combinations` and
    capped at ``max_date_pairs`` pairs per route to save API credits.
    """

    name = SERPAPI_SOURCE

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str = "https://serpapi.com/search.json",
        max_date_pairs: int = 1,
        timeout: float = 30,
        today: dt.date | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("SERPAPI_API_KEY", "")
        self.base_url = base_url
        self.max_date_pairs = max_date_pairs
        self.timeout = timeout
        self.today = today

    def _search(self, request: SearchRequest) -> List[FlightOffer]:
        if not self.api_key:
            logger.warning("SerpApi API key missing, skipping search")
            return []

        pairs = date_combinations(
            request.date_range_start,
            request.date_range_end,
            request.trip_duration_days,
            request.flexibility,
            today=self.today or request.today,
        )[: self.max_date_pairs]

        offers: List[FlightOffer] = []
        for dep in request.departure_airports:
            for dest in request.destination_airports:
                for outbound, ret in pairs:
                    try:
                        offers.extend(
                            self.search_single(dep, dest, outbound, ret, request)
                        )
                    except (ProviderError, requests.RequestException, ValueError) as exc:
                        logger.warning(
                            "  SerpApi %s->%s %s/%s failed: %s",
                            dep,
                            dest,
                            outbound,
                            ret,
                            exc,
                        )
        return offers

    def search_single(
        self,
        origin: str,
        destination: str,
        outbound: dt.date,
        ret: dt.date,
        request: SearchRequest,
    ) -> List[FlightOffer]:
        params = {
            "engine": "google_flights",
            "departure_id": origin,
            "arrival_id": destination,
            "outbound_date": outbound.isoformat(),
            "return_date": ret.isoformat(),
            "type": "1",
            "adults": request.passengers,
            "travel_class": TRAVEL_CLASS_CODES[request.travel_class],
            "currency": "EUR",
            "hl": "de",
            "gl": "de",
            "api_key": self.api_key,
        }
        resp = requests.get(self.base_url, params=params, timeout=self.timeout)
        if resp.status_code != 200:
            raise ProviderError(
                self.name, f"HTTP {resp.status_code} – {resp.text[:120]}"
            )

        data = resp.json()
        if data.get("error"):
            raise ProviderError(self.name, f"API error: {data['error']}")

        raw = (data.get("best_flights") or []) + (data.get("other_flights") or [])
        offers = [
            self._to_offer(item, origin, destination, outbound, ret) for item in raw
        ]
        return [off for off in offers if off]

    def _to_offer(
        self,
        item: dict,
        origin: str,
        destination: str,
        outbound: dt.date,
        ret: dt.date,
    ) -> Optional[FlightOffer]:
        segments = item.get("flights") or []
        if not segments or item.get("price") is None:
            return None
        try:
            price = Decimal(str(item["price"]))
        except ArithmeticError:
            logger.debug("  SerpApi item with bad price %r skipped", item["price"])
            return None

        booking_link = (
            "https://www.google.com/travel/flights?q="
            + quote(
                f"Flights to {destination} from {origin} on {outbound.isoformat()} "
                f"returning {ret.isoformat()}"
            )
        )
        return FlightOffer(
            departure_airport=origin,
            destination_airport=destination,
            outbound_date=outbound,
            return_date=ret,
            price_eur=price,
            airline=segments[0].get("airline") or "Unknown",
            stops=len(segments) - 1,
            total_duration_min=int(item.get("total_duration") or 0),
            luggage_included=False,
            booking_link=booking_link,
            source=SERPAPI_SOURCE,
        )


__all__ = ["SerpApiProvider", "SERPAPI_SOURCE", "TRAVEL_CLASS_CODES"]
