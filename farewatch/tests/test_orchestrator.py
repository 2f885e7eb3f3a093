import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from farewatch import db
from farewatch.errors import PersistenceError, TrackerNotFoundError
from farewatch.models import LuggageOption, ReportType, TrackerStatus
from farewatch.notifier import Notifier
from farewatch.orchestrator import CheckConfig, check_tracker, deduplicate, fan_out
from farewatch.providers.base import FlightProvider

NOW = datetime(2027, 6, 15, 12, 0, 30, 123456, tzinfo=timezone.utc)


class StaticProvider(FlightProvider):
    def __init__(self, name, offers):
        self.name = name
        self.offers = offers
        self.calls = 0

    def _search(self, request):
        self.calls += 1
        return list(self.offers)


class FailingProvider(FlightProvider):
    name = "failing"

    def __init__(self):
        self.calls = 0

    def _search(self, request):
        self.calls += 1
        raise ConnectionError("endpoint unreachable")


class BlockingProvider(FlightProvider):
    name = "slow"

    def __init__(self):
        self.release = threading.Event()

    def _search(self, request):
        self.release.wait(5)
        return []


class RecordingNotifier(Notifier):
    name = "recording"

    def __init__(self):
        self.sent = []

    def _deliver(self, payload, address, report_type):
        self.sent.append((payload, address, report_type))


def make_config(db_path, *providers, notifier=None, **kwargs):
    return CheckConfig(providers=list(providers), db_path=db_path, notifier=notifier, **kwargs)


# ──────────────────────────────────────────────────────────
# Provider isolation
# ──────────────────────────────────────────────────────────


def test_all_providers_fail(db_path, stored_tracker):
    cfg = make_config(db_path, FailingProvider(), FailingProvider())
    result = check_tracker(stored_tracker.id, cfg, now=NOW)

    assert result.observations == []
    assert result.status == TrackerStatus.ACTIVE
    loaded = db.load_tracker(stored_tracker.id, db_path=db_path)
    assert loaded.last_checked_at == NOW.replace(microsecond=0)
    assert db.count_observations(stored_tracker.id, db_path=db_path) == 0


def test_one_provider_fails(db_path, stored_tracker, offer_factory):
    good = StaticProvider("Kiwi.com", [offer_factory("400"), offer_factory("420", airline="KLM")])
    cfg = make_config(db_path, FailingProvider(), good)
    result = check_tracker(stored_tracker.id, cfg, now=NOW)

    assert len(result.observations) == 2
    assert {o.offer.source for o in result.observations} == {"Kiwi.com"}
    assert db.count_observations(stored_tracker.id, db_path=db_path) == 2


def test_timed_out_provider_counts_as_empty(db_path, stored_tracker, offer_factory):
    slow = BlockingProvider()
    fast = StaticProvider("fast", [offer_factory()])
    try:
        results = fan_out([slow, fast], None, timeout_s=0.2)
    finally:
        slow.release.set()
    assert results[0] == []
    assert len(results[1]) == 1


def test_fan_out_without_providers():
    assert fan_out([], None, timeout_s=1) == []


# ──────────────────────────────────────────────────────────
# Merge / dedupe
# ──────────────────────────────────────────────────────────


def test_duplicates_collapse_to_cheapest(db_path, stored_tracker, offer_factory):
    a = StaticProvider("a", [offer_factory("500"), offer_factory("300", stops=1)])
    b = StaticProvider("b", [offer_factory("450", source="Google Flights")])
    result = check_tracker(stored_tracker.id, make_config(db_path, a, b), now=NOW)

    hashes = [o.flight_hash for o in result.observations]
    assert len(hashes) == len(set(hashes)) == 2
    direct = [o for o in result.observations if o.offer.stops == 0]
    assert direct[0].price_eur == Decimal("450")


def test_deduplicate_shares_timestamp(offer_factory):
    ts = NOW.replace(microsecond=0)
    obs = deduplicate([offer_factory("200"), offer_factory("100"), offer_factory("150")], "t1", ts)
    assert len(obs) == 1
    assert obs[0].price_eur == Decimal("100")
    assert obs[0].checked_at == ts


def test_luggage_included_filter(db_path, tracker_factory, offer_factory):
    tracker = tracker_factory(luggage_option=LuggageOption.INCLUDED)
    db.insert_tracker(tracker, db_path=db_path)
    provider = StaticProvider("p", [offer_factory("300", luggage_included=False), offer_factory("350", airline="KLM")])
    result = check_tracker(tracker.id, make_config(db_path, provider), now=NOW)
    assert [o.offer.airline for o in result.observations] == ["KLM"]


# ──────────────────────────────────────────────────────────
# Status handling
# ──────────────────────────────────────────────────────────


def test_paused_tracker_is_noop(db_path, tracker_factory, offer_factory):
    tracker = tracker_factory(status=TrackerStatus.PAUSED)
    db.insert_tracker(tracker, db_path=db_path)
    provider = StaticProvider("p", [offer_factory()])

    result = check_tracker(tracker.id, make_config(db_path, provider), now=NOW)

    assert result.skipped
    assert provider.calls == 0
    loaded = db.load_tracker(tracker.id, db_path=db_path)
    assert loaded.last_checked_at is None
    assert loaded.status == TrackerStatus.PAUSED


def test_unreadable_tracker_raises_persistence_error(db_path, monkeypatch):
    def locked(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "load_tracker", locked)
    with pytest.raises(PersistenceError):
        check_tracker("t1", make_config(db_path), now=NOW)


def test_expiry_write_failure_raises_persistence_error(db_path, stored_tracker, monkeypatch):
    def locked(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "update_tracker_status", locked)
    later = datetime(2027, 8, 2, tzinfo=timezone.utc)
    with pytest.raises(PersistenceError):
        check_tracker(stored_tracker.id, make_config(db_path), now=later)


def test_request_carries_check_date(db_path, stored_tracker):
    seen = []

    class CapturingProvider(FlightProvider):
        name = "capture"

        def _search(self, request):
            seen.append(request)
            return []

    check_tracker(stored_tracker.id, make_config(db_path, CapturingProvider()), now=NOW)
    assert seen[0].today == NOW.date()


def test_missing_tracker_raises(db_path):
    with pytest.raises(TrackerNotFoundError):
        check_tracker("ghost", make_config(db_path, FailingProvider()), now=NOW)


def test_error_tracker_recovers(db_path, tracker_factory, offer_factory):
    tracker = tracker_factory(status=TrackerStatus.ERROR)
    db.insert_tracker(tracker, db_path=db_path)
    check_tracker(tracker.id, make_config(db_path, StaticProvider("p", [offer_factory()])), now=NOW)
    assert db.load_tracker(tracker.id, db_path=db_path).status == TrackerStatus.ACTIVE


def test_elapsed_window_expires(db_path, stored_tracker, offer_factory):
    provider = StaticProvider("p", [offer_factory()])
    later = datetime(2027, 8, 2, tzinfo=timezone.utc)
    result = check_tracker(stored_tracker.id, make_config(db_path, provider), now=later)
    assert result.status == TrackerStatus.EXPIRED
    assert provider.calls == 0
    assert db.load_tracker(stored_tracker.id, db_path=db_path).status == TrackerStatus.EXPIRED


def test_persistence_failure_sets_error(db_path, stored_tracker, offer_factory, monkeypatch):
    def broken_insert(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(db, "insert_observations", broken_insert)
    cfg = make_config(db_path, StaticProvider("p", [offer_factory()]))
    with pytest.raises(PersistenceError):
        check_tracker(stored_tracker.id, cfg, now=NOW)

    loaded = db.load_tracker(stored_tracker.id, db_path=db_path)
    assert loaded.status == TrackerStatus.ERROR
    assert loaded.last_checked_at is None


# ──────────────────────────────────────────────────────────
# Alerts
# ──────────────────────────────────────────────────────────


def test_absolute_alert_notifies_once_per_cooldown(db_path, tracker_factory, offer_factory):
    tracker = tracker_factory(alert_threshold_eur=Decimal("400"))
    db.insert_tracker(tracker, db_path=db_path)
    notifier = RecordingNotifier()
    cfg = make_config(db_path, StaticProvider("p", [offer_factory("380")]), notifier=notifier)

    result = check_tracker(tracker.id, cfg, now=NOW)
    assert result.alert.triggered
    assert result.notified
    payload, address, report_type = notifier.sent[0]
    assert address == "alice@example.com"
    assert report_type == ReportType.PRICE_ALERT
    assert payload.recommendation.price_eur == Decimal("380")
    assert db.last_report_at(tracker.id, ReportType.PRICE_ALERT, db_path=db_path) is not None

    again = check_tracker(tracker.id, cfg, now=NOW + timedelta(hours=2))
    assert again.alert.triggered
    assert not again.notified
    assert len(notifier.sent) == 1

    later = check_tracker(tracker.id, cfg, now=NOW + timedelta(hours=25))
    assert later.notified
    assert len(notifier.sent) == 2


def test_percent_alert_against_previous_batch(db_path, tracker_factory, offer_factory):
    tracker = tracker_factory(alert_threshold_percent=Decimal("15"))
    db.insert_tracker(tracker, db_path=db_path)
    notifier = RecordingNotifier()

    first = check_tracker(
        tracker.id,
        make_config(db_path, StaticProvider("p", [offer_factory("200")]), notifier=notifier),
        now=NOW,
    )
    assert not first.alert.triggered

    second = check_tracker(
        tracker.id,
        make_config(db_path, StaticProvider("p", [offer_factory("160")]), notifier=notifier),
        now=NOW + timedelta(hours=12),
    )
    assert second.alert.triggered
    summary = notifier.sent[0][0].summary
    assert summary.previous_cheapest_price == Decimal("200")
    assert summary.price_change_percent == Decimal("-20.00")


def test_failed_delivery_does_not_fail_check(db_path, tracker_factory, offer_factory):
    class BrokenNotifier(Notifier):
        def _deliver(self, payload, address, report_type):
            raise OSError("smtp down")

    tracker = tracker_factory(alert_threshold_eur=Decimal("999"))
    db.insert_tracker(tracker, db_path=db_path)
    cfg = make_config(db_path, StaticProvider("p", [offer_factory()]), notifier=BrokenNotifier())
    result = check_tracker(tracker.id, cfg, now=NOW)
    assert result.alert.triggered
    assert not result.notified
    assert db.last_report_at(tracker.id, ReportType.PRICE_ALERT, db_path=db_path) is None


def test_alert_storage_error_keeps_committed_batch(db_path, tracker_factory, offer_factory, monkeypatch, caplog):
    tracker = tracker_factory(alert_threshold_eur=Decimal("999"))
    db.insert_tracker(tracker, db_path=db_path)

    def locked(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "last_report_at", locked)
    notifier = RecordingNotifier()
    cfg = make_config(db_path, StaticProvider("p", [offer_factory()]), notifier=notifier)
    result = check_tracker(tracker.id, cfg, now=NOW)

    assert result.status == TrackerStatus.ACTIVE
    assert result.alert is None
    assert not result.notified
    assert notifier.sent == []
    assert db.count_observations(tracker.id, db_path=db_path) == 1
    assert "Alert evaluation for tracker t1 failed" in caplog.text
