from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from farewatch.config import get_settings
from farewatch.db import init_db, insert_tracker
from farewatch.models import Flexibility, FlightOffer, Tracker


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    init_db(path)
    return path


def make_tracker(**overrides) -> Tracker:
    fields = dict(
        id="t1",
        owner="alice",
        name="Summer in New York",
        departure_airports=["FRA"],
        destination_airports=["JFK"],
        date_range_start=date(2027, 7, 1),
        date_range_end=date(2027, 7, 31),
        trip_duration_days=14,
        flexibility=Flexibility.PLUS_MINUS_1,
        notify_email="alice@example.com",
        created_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return Tracker(**fields)


def make_offer(price="450", **overrides) -> FlightOffer:
    fields = dict(
        departure_airport="FRA",
        destination_airport="JFK",
        outbound_date=date(2027, 7, 1),
        return_date=date(2027, 7, 15),
        price_eur=Decimal(price),
        airline="Lufthansa",
        stops=0,
        total_duration_min=540,
        luggage_included=True,
        booking_link="https://example.com/offer",
        source="Kiwi.com",
    )
    fields.update(overrides)
    return FlightOffer(**fields)


@pytest.fixture
def tracker_factory():
    return make_tracker


@pytest.fixture
def offer_factory():
    return make_offer


@pytest.fixture
def stored_tracker(db_path):
    tracker = make_tracker()
    insert_tracker(tracker, db_path=db_path)
    return tracker
