"""Distance and display helpers for airports, routes, prices and durations."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional, Sequence, Union

EARTH_RADIUS_KM = 6371.0


@dataclass(slots=True)
class Airport:
    iata_code: str
    name: str
    city: str
    country: str
    latitude: float
    longitude: float
    timezone: Optional[str] = None
    distance_km: Optional[int] = None


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates (haversine)."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def nearby_airports(
    airports: Iterable[Airport],
    latitude: float,
    longitude: float,
    radius_km: float = 200,
) -> List[Airport]:
    """Return airports within *radius_km*, closest first.

    The returned objects are copies with ``distance_km`` filled in (rounded).
    """
    found: List[Airport] = []
    for airport in airports:
        dist = round(
            distance_km(latitude, longitude, airport.latitude, airport.longitude)
        )
        if dist <= radius_km:
            found.append(
                Airport(
                    iata_code=airport.iata_code,
                    name=airport.name,
                    city=airport.city,
                    country=airport.country,
                    latitude=airport.latitude,
                    longitude=airport.longitude,
                    timezone=airport.timezone,
                    distance_km=dist,
                )
            )
    found.sort(key=lambda a: a.distance_km)
    return found


# ────────────────────────────────────────────────────────────────
# Formatting
# ────────────────────────────────────────────────────────────────


def format_duration(minutes: int) -> str:
    """``690`` -> ``"11h 30min"``."""
    hours, mins = divmod(int(minutes), 60)
    if hours == 0:
        return f"{mins}min"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}min"


def format_price(price: Union[Decimal, float, int]) -> str:
    """``Decimal("486.6")`` -> ``"487€"``."""
    rounded = Decimal(str(price)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{rounded}€"


def format_date(day: date) -> str:
    return day.strftime("%d.%m.%Y")


def format_date_range(start: date, end: date) -> str:
    return f"{format_date(start)} - {format_date(end)}"


def format_route(departure: Sequence[str], destination: Sequence[str]) -> str:
    return f"{'/'.join(departure)} → {'/'.join(destination)}"


__all__ = [
    "Airport",
    "distance_km",
    "nearby_airports",
    "format_duration",
    "format_price",
    "format_date",
    "format_date_range",
    "format_route",
]
