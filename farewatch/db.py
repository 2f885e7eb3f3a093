from __future__ import annotations

import json
import logging
import os
import pathlib
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .errors import StatusTransitionError, TrackerNotFoundError
from .models import (
    Batch,
    Flexibility,
    FlightObservation,
    FlightOffer,
    LuggageOption,
    ReportFrequency,
    ReportType,
    Tracker,
    TrackerStatus,
    TravelClass,
)

# Default paths – relative to the repository root
PACKAGE_DIR = pathlib.Path(__file__).resolve().parent
REPO_DIR = PACKAGE_DIR.parent
DB_FILE = os.getenv("FAREWATCH_DB", str(REPO_DIR / "farewatch.db"))
SCHEMA_FILE = str(PACKAGE_DIR / "schema.sql")
SCHEMA_VERSION = 1

# Status changes a user action may request; the orchestrator writes
# ACTIVE/ERROR/EXPIRED through update_tracker_status directly.
ALLOWED_TRANSITIONS = {
    TrackerStatus.ACTIVE: {TrackerStatus.PAUSED, TrackerStatus.ERROR, TrackerStatus.EXPIRED},
    TrackerStatus.PAUSED: {TrackerStatus.ACTIVE},
    TrackerStatus.ERROR: {TrackerStatus.ACTIVE, TrackerStatus.PAUSED, TrackerStatus.EXPIRED},
    TrackerStatus.EXPIRED: set(),
}

logger = logging.getLogger(__name__)


@contextmanager
def _connect(db_path: str) -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def _ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_ts(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _dec(raw: Any) -> Optional[Decimal]:
    return Decimal(str(raw)) if raw is not None else None


# ────────────────────────────────────────────────────────────────
# Schema
# ────────────────────────────────────────────────────────────────


def migrate(db_path: str = DB_FILE, schema_path: str = SCHEMA_FILE) -> None:
    """Run pending migrations on the database."""
    logger.info("Running migrations for %s", db_path)
    with _connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version "
            "(version INTEGER NOT NULL)"
        )
        row = conn.execute("SELECT version FROM schema_version").fetchone()
        current = row[0] if row else 0
        if current < SCHEMA_VERSION:
            logger.info("Applying schema version %s", SCHEMA_VERSION)
            with open(schema_path, "r", encoding="utf-8") as fh:
                conn.executescript(fh.read())
            if row:
                conn.execute(
                    "UPDATE schema_version SET version=?", (SCHEMA_VERSION,)
                )
            else:
                conn.execute(
                    "INSERT INTO schema_version(version) VALUES (?)",
                    (SCHEMA_VERSION,),
                )


def init_db(db_path: str = DB_FILE, schema_path: str = SCHEMA_FILE) -> None:
    """Initialize SQLite database using *schema_path*."""
    logger.info("Initializing database at %s", db_path)
    with _connect(db_path) as conn:
        with open(schema_path, "r", encoding="utf-8") as fh:
            conn.executescript(fh.read())
        conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version "
            "(version INTEGER NOT NULL)"
        )
        conn.execute("DELETE FROM schema_version")
        conn.execute(
            "INSERT INTO schema_version(version) VALUES (?)",
            (SCHEMA_VERSION,),
        )


# ────────────────────────────────────────────────────────────────
# Trackers
# ────────────────────────────────────────────────────────────────


def _row_to_tracker(row: sqlite3.Row) -> Tracker:
    return Tracker(
        id=row["id"],
        owner=row["owner"],
        name=row["name"],
        departure_airports=json.loads(row["departure_airports"]),
        destination_airports=json.loads(row["destination_airports"]),
        date_range_start=date.fromisoformat(row["date_range_start"]),
        date_range_end=date.fromisoformat(row["date_range_end"]),
        trip_duration_days=row["trip_duration_days"],
        flexibility=Flexibility(row["flexibility"]),
        travel_class=TravelClass(row["travel_class"]),
        luggage_option=LuggageOption(row["luggage_option"]),
        report_frequency=ReportFrequency(row["report_frequency"]),
        departure_radius_km=row["departure_radius_km"],
        alert_threshold_percent=_dec(row["alert_threshold_percent"]),
        alert_threshold_eur=_dec(row["alert_threshold_eur"]),
        status=TrackerStatus(row["status"]),
        last_checked_at=_parse_ts(row["last_checked_at"]),
        notify_email=row["notify_email"],
        created_at=_parse_ts(row["created_at"]),
    )


def insert_tracker(tracker: Tracker, db_path: str = DB_FILE) -> str:
    """Insert *tracker* and return its id."""
    logger.info("Inserting tracker %s (%s)", tracker.id, tracker.name)
    created = tracker.created_at or datetime.now(timezone.utc)
    with _connect(db_path) as conn:
        conn.execute(
            """
            INSERT INTO trackers(
                id, owner, name, departure_airports, destination_airports,
                departure_radius_km, date_range_start, date_range_end,
                trip_duration_days, flexibility, travel_class, luggage_option,
                report_frequency, alert_threshold_percent, alert_threshold_eur,
                status, last_checked_at, notify_email, created_at
            ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                tracker.id,
                tracker.owner,
                tracker.name,
                json.dumps(list(tracker.departure_airports)),
                json.dumps(list(tracker.destination_airports)),
                tracker.departure_radius_km,
                tracker.date_range_start.isoformat(),
                tracker.date_range_end.isoformat(),
                tracker.trip_duration_days,
                tracker.flexibility.value,
                tracker.travel_class.value,
                tracker.luggage_option.value,
                tracker.report_frequency.value,
                str(tracker.alert_threshold_percent)
                if tracker.alert_threshold_percent is not None
                else None,
                str(tracker.alert_threshold_eur)
                if tracker.alert_threshold_eur is not None
                else None,
                tracker.status.value,
                _ts(tracker.last_checked_at) if tracker.last_checked_at else None,
                tracker.notify_email,
                _ts(created),
            ),
        )
    return tracker.id


def load_tracker(tracker_id: str, db_path: str = DB_FILE) -> Optional[Tracker]:
    """Return the tracker with ``tracker_id`` or ``None``."""
    with _connect(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM trackers WHERE id=?", (tracker_id,)
        ).fetchone()
    return _row_to_tracker(row) if row else None


def list_trackers(
    db_path: str = DB_FILE,
    *,
    owner: Optional[str] = None,
    status: Optional[TrackerStatus] = None,
) -> List[Tracker]:
    sql = "SELECT * FROM trackers WHERE 1=1"
    params: List[Any] = []
    if owner is not None:
        sql += " AND owner=?"
        params.append(owner)
    if status is not None:
        sql += " AND status=?"
        params.append(TrackerStatus(status).value)
    sql += " ORDER BY created_at DESC"
    with _connect(db_path) as conn:
        rows = conn.execute(sql, params).fetchall()
    return [_row_to_tracker(r) for r in rows]


def update_tracker_status(
    tracker_id: str,
    status: TrackerStatus,
    last_checked_at: Optional[datetime] = None,
    db_path: str = DB_FILE,
) -> None:
    """Set ``status`` and, when given, ``last_checked_at`` of a tracker."""
    logger.info("Tracker %s -> %s", tracker_id, TrackerStatus(status).value)
    with _connect(db_path) as conn:
        if last_checked_at is None:
            cur = conn.execute(
                "UPDATE trackers SET status=? WHERE id=?",
                (TrackerStatus(status).value, tracker_id),
            )
        else:
            cur = conn.execute(
                "UPDATE trackers SET status=?, last_checked_at=? WHERE id=?",
                (TrackerStatus(status).value, _ts(last_checked_at), tracker_id),
            )
        if cur.rowcount == 0:
            raise TrackerNotFoundError(tracker_id)


def set_status(
    tracker_id: str, new_status: TrackerStatus, db_path: str = DB_FILE
) -> Tracker:
    """Apply a user-requested status change (pause/resume) and return the tracker."""
    new_status = TrackerStatus(new_status)
    tracker = load_tracker(tracker_id, db_path=db_path)
    if tracker is None:
        raise TrackerNotFoundError(tracker_id)
    if new_status == tracker.status:
        return tracker
    if new_status not in ALLOWED_TRANSITIONS[tracker.status]:
        raise StatusTransitionError(
            f"Tracker {tracker_id}: {tracker.status.value} -> "
            f"{new_status.value} is not allowed"
        )
    update_tracker_status(tracker_id, new_status, db_path=db_path)
    tracker.status = new_status
    return tracker


def delete_tracker(tracker_id: str, db_path: str = DB_FILE) -> bool:
    """Delete a tracker together with its observations and reports."""
    logger.info("Deleting tracker %s", tracker_id)
    with _connect(db_path) as conn:
        cur = conn.execute("DELETE FROM trackers WHERE id=?", (tracker_id,))
        return cur.rowcount > 0


def list_due_trackers(
    cutoff: datetime,
    today: date,
    limit: int,
    db_path: str = DB_FILE,
) -> List[Tracker]:
    """Checkable trackers inside their window, never checked or checked before *cutoff*."""
    with _connect(db_path) as conn:
        rows = conn.execute(
            """
            SELECT * FROM trackers
             WHERE status IN (?, ?)
               AND date_range_end >= ?
               AND (last_checked_at IS NULL OR last_checked_at < ?)
             ORDER BY last_checked_at IS NOT NULL, last_checked_at
             LIMIT ?
            """,
            (
                TrackerStatus.ACTIVE.value,
                TrackerStatus.ERROR.value,
                today.isoformat(),
                _ts(cutoff),
                limit,
            ),
        ).fetchall()
    return [_row_to_tracker(r) for r in rows]


def expire_trackers(today: date, db_path: str = DB_FILE) -> int:
    """Mark trackers whose date window has elapsed as ``EXPIRED``."""
    with _connect(db_path) as conn:
        cur = conn.execute(
            """
            UPDATE trackers SET status=?
             WHERE status IN (?, ?) AND date_range_end < ?
            """,
            (
                TrackerStatus.EXPIRED.value,
                TrackerStatus.ACTIVE.value,
                TrackerStatus.ERROR.value,
                today.isoformat(),
            ),
        )
        count = cur.rowcount
    if count:
        logger.info("Marked %d trackers as EXPIRED", count)
    return count


# ────────────────────────────────────────────────────────────────
# Observations
# ────────────────────────────────────────────────────────────────


def insert_observations(
    observations: Sequence[FlightObservation], db_path: str = DB_FILE
) -> int:
    """Append one batch of observations in a single transaction."""
    if not observations:
        return 0
    logger.info(
        "Inserting %d observations for tracker %s",
        len(observations),
        observations[0].tracker_id,
    )
    rows = [
        (
            obs.tracker_id,
            _ts(obs.checked_at),
            obs.offer.departure_airport,
            obs.offer.destination_airport,
            obs.offer.outbound_date.isoformat(),
            obs.offer.return_date.isoformat(),
            str(obs.offer.price_eur),
            obs.offer.airline,
            obs.offer.stops,
            obs.offer.total_duration_min,
            int(obs.offer.luggage_included),
            obs.offer.booking_link,
            obs.offer.source,
            obs.flight_hash,
        )
        for obs in observations
    ]
    with _connect(db_path) as conn:
        conn.executemany(
            """
            INSERT INTO observations(
                tracker_id, checked_at, departure_airport, destination_airport,
                outbound_date, return_date, price_eur, airline, stops,
                total_duration_min, luggage_included, booking_link, source,
                flight_hash
            ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            """,
            rows,
        )
    return len(rows)


def _row_to_observation(row: sqlite3.Row) -> FlightObservation:
    offer = FlightOffer(
        departure_airport=row["departure_airport"],
        destination_airport=row["destination_airport"],
        outbound_date=date.fromisoformat(row["outbound_date"]),
        return_date=date.fromisoformat(row["return_date"]),
        price_eur=Decimal(str(row["price_eur"])),
        airline=row["airline"],
        stops=row["stops"],
        total_duration_min=row["total_duration_min"],
        luggage_included=bool(row["luggage_included"]),
        booking_link=row["booking_link"] or "",
        source=row["source"],
    )
    return FlightObservation(
        tracker_id=row["tracker_id"],
        checked_at=_parse_ts(row["checked_at"]),
        offer=offer,
        flight_hash=row["flight_hash"],
        id=row["id"],
    )


def load_latest_batches(
    tracker_id: str,
    n: int = 2,
    window_s: int = 60,
    db_path: str = DB_FILE,
) -> List[Batch]:
    """Return up to *n* most recent batches of a tracker, newest first.

    Timestamps no more than *window_s* seconds older than the newest
    timestamp of a batch belong to that batch.
    """
    with _connect(db_path) as conn:
        stamps = [
            _parse_ts(r[0])
            for r in conn.execute(
                """
                SELECT DISTINCT checked_at FROM observations
                 WHERE tracker_id=? ORDER BY checked_at DESC
                """,
                (tracker_id,),
            )
        ]
        groups: List[List[datetime]] = []
        for ts in stamps:
            if groups and (groups[-1][0] - ts).total_seconds() <= window_s:
                groups[-1].append(ts)
                continue
            if len(groups) == n:
                break
            groups.append([ts])
        if not groups:
            return []

        rows = conn.execute(
            """
            SELECT * FROM observations
             WHERE tracker_id=? AND checked_at >= ?
             ORDER BY price_eur ASC, id ASC
            """,
            (tracker_id, _ts(groups[-1][-1])),
        ).fetchall()

    batches = [Batch(checked_at=group[0]) for group in groups]
    index: Dict[datetime, Batch] = {}
    for group, batch in zip(groups, batches):
        for ts in group:
            index[ts] = batch
    for row in rows:
        obs = _row_to_observation(row)
        batch = index.get(obs.checked_at)
        if batch is not None:
            batch.observations.append(obs)
    return batches


def count_observations(tracker_id: str, db_path: str = DB_FILE) -> int:
    with _connect(db_path) as conn:
        return conn.execute(
            "SELECT COUNT(*) FROM observations WHERE tracker_id=?", (tracker_id,)
        ).fetchone()[0]


def cleanup_observations(before: datetime, db_path: str = DB_FILE) -> int:
    """Delete observations checked before *before*; return the number removed."""
    with _connect(db_path) as conn:
        cur = conn.execute(
            "DELETE FROM observations WHERE checked_at < ?", (_ts(before),)
        )
        count = cur.rowcount
    if count:
        logger.info("Cleaned up %d old observations", count)
    return count


# ────────────────────────────────────────────────────────────────
# Reports
# ────────────────────────────────────────────────────────────────


def record_report(
    tracker_id: str,
    report_type: ReportType,
    content: Dict[str, Any],
    sent_at: Optional[datetime] = None,
    db_path: str = DB_FILE,
) -> int:
    sent_at = sent_at or datetime.now(timezone.utc)
    logger.info(
        "Recording %s report for tracker %s", ReportType(report_type).value, tracker_id
    )
    with _connect(db_path) as conn:
        cur = conn.execute(
            """
            INSERT INTO reports(tracker_id, sent_at, report_type, content_json)
            VALUES (?,?,?,?)
            """,
            (
                tracker_id,
                _ts(sent_at),
                ReportType(report_type).value,
                json.dumps(content, default=str),
            ),
        )
        return cur.lastrowid


def last_report_at(
    tracker_id: str, report_type: ReportType, db_path: str = DB_FILE
) -> Optional[datetime]:
    with _connect(db_path) as conn:
        row = conn.execute(
            """
            SELECT MAX(sent_at) FROM reports
             WHERE tracker_id=? AND report_type=?
            """,
            (tracker_id, ReportType(report_type).value),
        ).fetchone()
    return _parse_ts(row[0]) if row else None


__all__ = [
    "DB_FILE",
    "ALLOWED_TRANSITIONS",
    "migrate",
    "init_db",
    "insert_tracker",
    "load_tracker",
    "list_trackers",
    "update_tracker_status",
    "set_status",
    "delete_tracker",
    "list_due_trackers",
    "expire_trackers",
    "insert_observations",
    "load_latest_batches",
    "count_observations",
    "cleanup_observations",
    "record_report",
    "last_report_at",
]
