from datetime import date
from decimal import Decimal

import pytest

from farewatch.geo import (
    Airport,
    distance_km,
    format_date_range,
    format_duration,
    format_price,
    format_route,
    nearby_airports,
)

AIRPORTS = [
    Airport("DUS", "Düsseldorf", "Düsseldorf", "DE", 51.2895, 6.7668),
    Airport("FMO", "Münster Osnabrück", "Greven", "DE", 52.1346, 7.6848),
    Airport("CGN", "Köln/Bonn", "Köln", "DE", 50.8659, 7.1427),
    Airport("MUC", "München", "München", "DE", 48.3538, 11.7861),
]


def test_distance_frankfurt_new_york():
    # FRA -> JFK is roughly 6200 km
    assert distance_km(50.0379, 8.5622, 40.6413, -73.7781) == pytest.approx(6200, rel=0.02)


def test_distance_zero():
    assert distance_km(51.0, 7.0, 51.0, 7.0) == 0


def test_nearby_airports_sorted_and_rounded():
    # Essen city centre
    found = nearby_airports(AIRPORTS, 51.4556, 7.0116, radius_km=200)
    codes = [a.iata_code for a in found]
    assert codes[0] == "DUS"
    assert "MUC" not in codes
    assert set(codes) == {"DUS", "CGN", "FMO"}
    distances = [a.distance_km for a in found]
    assert distances == sorted(distances)
    assert all(isinstance(d, int) for d in distances)
    # inputs untouched
    assert AIRPORTS[0].distance_km is None


def test_format_duration():
    assert format_duration(690) == "11h 30min"
    assert format_duration(45) == "45min"
    assert format_duration(120) == "2h"


def test_format_price_rounds_half_up():
    assert format_price(Decimal("486.6")) == "487€"
    assert format_price(Decimal("486.5")) == "487€"
    assert format_price(450) == "450€"


def test_format_date_range_and_route():
    assert format_date_range(date(2025, 8, 1), date(2025, 8, 31)) == "01.08.2025 - 31.08.2025"
    assert format_route(["DUS", "FMO"], ["PVG", "SHA"]) == "DUS/FMO → PVG/SHA"
