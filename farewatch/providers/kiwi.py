from __future__ import annotations

import datetime as dt
import logging
import os
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..dates import utc_today
from ..errors import ProviderError
from ..models import FlightOffer, SearchRequest, TravelClass
from .base import FlightProvider, chunked

logger = logging.getLogger(__name__)

KIWI_SOURCE = "Kiwi.com"
CABIN_CODES = {
    TravelClass.ECONOMY: "M",
    TravelClass.PREMIUM_ECONOMY: "W",
    TravelClass.BUSINESS: "C",
    TravelClass.FIRST: "F",
}


class KiwiProvider(FlightProvider):
    """
    Client of the Kiwi.com Tequila search API (``/v2/search``).

    Kiwi searches a whole departure window at once, so no explicit date pairs
    are generated here; the stay is passed as ``nights_in_dst_from/to``.
    Airport lists are split into groups of ``group_size`` codes per side.
    """

    name = KIWI_SOURCE

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str = "https://api.tequila.kiwi.com/v2",
        group_size: int = 5,
        limit: int = 50,
        timeout: float = 15,
        fallback: FlightProvider | None = None,
        today: dt.date | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("KIWI_API_KEY", "")
        self.base_url = base_url.rstrip("/")
        self.group_size = group_size
        self.limit = limit
        self.timeout = timeout
        self.fallback = fallback
        self.today = today

    # ──────────────────────────────────────────────────────────

    def _search(self, request: SearchRequest) -> List[FlightOffer]:
        if not self.api_key:
            if self.fallback is not None:
                logger.warning(
                    "Kiwi API key missing, using %s fallback", self.fallback.name
                )
                return self.fallback.search(request)
            logger.warning("Kiwi API key missing, skipping search")
            return []

        offers: List[FlightOffer] = []
        for deps in chunked(request.departure_airports, self.group_size):
            for dests in chunked(request.destination_airports, self.group_size):
                try:
                    offers.extend(self.search_prices(deps, dests, request))
                except (ProviderError, requests.RequestException, ValueError) as exc:
                    logger.warning(
                        "  Kiwi %s->%s failed: %s", ",".join(deps), ",".join(dests), exc
                    )
        return offers

    def build_params(
        self,
        departures: Sequence[str],
        destinations: Sequence[str],
        request: SearchRequest,
    ) -> Dict[str, Any] | None:
        """Return query parameters for one airport group, or ``None`` if the window is over."""
        today = self.today or request.today or utc_today()
        date_from = max(request.date_range_start, today)
        if date_from > request.date_range_end:
            return None

        flex = request.flexibility.days
        return {
            "fly_from": ",".join(departures),
            "fly_to": ",".join(destinations),
            "date_from": date_from.strftime("%d/%m/%Y"),
            "date_to": request.date_range_end.strftime("%d/%m/%Y"),
            "return_to": (
                request.date_range_end + dt.timedelta(days=flex)
            ).strftime("%d/%m/%Y"),
            "nights_in_dst_from": max(1, request.trip_duration_days - flex),
            "nights_in_dst_to": request.trip_duration_days + flex,
            "flight_type": "round",
            "adults": request.passengers,
            "selected_cabins": CABIN_CODES[request.travel_class],
            "curr": "EUR",
            "locale": "de",
            "limit": self.limit,
        }

    def search_prices(
        self,
        departures: Sequence[str],
        destinations: Sequence[str],
        request: SearchRequest,
    ) -> List[FlightOffer]:
        """Return offers for one departure group × destination group."""
        params = self.build_params(departures, destinations, request)
        if params is None:
            return []

        logger.info("Kiwi requesting %s -> %s", params["fly_from"], params["fly_to"])
        resp = requests.get(
            f"{self.base_url}/search",
            params=params,
            headers={"apikey": self.api_key, "Accept-Encoding": "gzip"},
            timeout=self.timeout,
        )
        if resp.status_code != 200:
            raise ProviderError(
                self.name, f"HTTP {resp.status_code} – {resp.text[:120]}"
            )

        data = resp.json()
        items = data.get("data")
        if not isinstance(items, list):
            raise ProviderError(self.name, f"unexpected payload: {str(data)[:120]}")

        offers = [self._to_offer(item) for item in items]
        return [off for off in offers if off]

    def _to_offer(self, item: dict) -> Optional[FlightOffer]:
        """Map one JSON itinerary to a FlightOffer; ``None`` for incomplete rows."""
        route = item.get("route") or []
        outbound_legs = [seg for seg in route if not seg.get("return")]
        return_legs = [seg for seg in route if seg.get("return")]
        if not outbound_legs or not return_legs:
            return None

        try:
            outbound = dt.date.fromisoformat(outbound_legs[0]["local_departure"][:10])
            ret = dt.date.fromisoformat(return_legs[0]["local_departure"][:10])
            price = (item.get("conversion") or {}).get("EUR", item["price"])
            price_eur = Decimal(str(price))
        except (KeyError, TypeError, ValueError, ArithmeticError):
            return None

        airlines = item.get("airlines") or [outbound_legs[0].get("airline", "")]
        duration_s = (item.get("duration") or {}).get("total", 0) or 0
        baglimit = item.get("baglimit") or {}

        return FlightOffer(
            departure_airport=item.get("flyFrom") or outbound_legs[0].get("flyFrom", ""),
            destination_airport=item.get("flyTo") or outbound_legs[-1].get("flyTo", ""),
            outbound_date=outbound,
            return_date=ret,
            price_eur=price_eur,
            airline=airlines[0],
            stops=(len(outbound_legs) - 1) + (len(return_legs) - 1),
            total_duration_min=int(duration_s) // 60,
            luggage_included=bool(baglimit.get("hold_weight")),
            booking_link=item.get("deep_link", ""),
            source=KIWI_SOURCE,
        )


__all__ = ["KiwiProvider", "KIWI_SOURCE", "CABIN_CODES"]
