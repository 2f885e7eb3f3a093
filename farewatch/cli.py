from __future__ import annotations

import logging
from typing import Optional, Tuple

import click

from . import db, history, jobs
from .config import get_settings
from .errors import FareWatchError, TrackerValidationError
from .geo import format_date_range, format_route
from .models import (
    Flexibility,
    LuggageOption,
    ReportFrequency,
    TrackerStatus,
    TravelClass,
)
from .orchestrator import CheckConfig, check_tracker
from .validation import build_tracker

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        handlers=[logging.FileHandler("farewatch.log"), logging.StreamHandler()],
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _choice(enum_cls) -> click.Choice:
    return click.Choice([m.value for m in enum_cls], case_sensitive=False)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Track round-trip flight prices."""
    _setup_logging(verbose)
    settings = get_settings()
    ctx.obj = settings
    db.migrate(db_path=settings.db_path)


@cli.command("init-db")
@click.pass_obj
def init_db(settings) -> None:
    """Create (or recreate) the database schema."""
    db.init_db(db_path=settings.db_path)
    click.echo(f"Database ready: {settings.db_path}")


@cli.command()
@click.option("--name", required=True)
@click.option("--owner", required=True)
@click.option("--email", "notify_email", help="Address for reports and alerts")
@click.option("--from", "departures", multiple=True, required=True, help="Departure IATA code")
@click.option("--to", "destinations", multiple=True, required=True, help="Destination IATA code")
@click.option("--start", required=True, type=click.DateTime(formats=["%Y-%m-%d"]))
@click.option("--end", required=True, type=click.DateTime(formats=["%Y-%m-%d"]))
@click.option("--duration", required=True, type=int, help="Trip length in days")
@click.option("--flex", default=Flexibility.EXACT.value, type=_choice(Flexibility))
@click.option("--class", "travel_class", default=TravelClass.ECONOMY.value, type=_choice(TravelClass))
@click.option("--luggage", default=LuggageOption.BOTH.value, type=_choice(LuggageOption))
@click.option("--frequency", default=ReportFrequency.WEEKLY.value, type=_choice(ReportFrequency))
@click.option("--radius", default=200, type=int, help="Departure radius in km")
@click.option("--alert-eur", type=float, help="Alert when price is at or below")
@click.option("--alert-percent", type=float, help="Alert on a drop of at least")
@click.pass_obj
def create(
    settings,
    name: str,
    owner: str,
    notify_email: Optional[str],
    departures: Tuple[str, ...],
    destinations: Tuple[str, ...],
    start,
    end,
    duration: int,
    flex: str,
    travel_class: str,
    luggage: str,
    frequency: str,
    radius: int,
    alert_eur: Optional[float],
    alert_percent: Optional[float],
) -> None:
    """Create a new tracker."""
    data = {
        "name": name,
        "owner": owner,
        "notify_email": notify_email,
        "departure_airports": list(departures),
        "destination_airports": list(destinations),
        "date_range_start": start.date(),
        "date_range_end": end.date(),
        "trip_duration_days": duration,
        "flexibility": flex.upper(),
        "travel_class": travel_class.upper(),
        "luggage_option": luggage.upper(),
        "report_frequency": frequency.upper(),
        "departure_radius_km": radius,
        "alert_threshold_eur": str(alert_eur) if alert_eur is not None else None,
        "alert_threshold_percent": str(alert_percent) if alert_percent is not None else None,
    }
    try:
        tracker = build_tracker(data)
    except TrackerValidationError as exc:
        raise click.ClickException(str(exc)) from exc
    db.insert_tracker(tracker, db_path=settings.db_path)
    click.echo(tracker.id)


@cli.command("list")
@click.option("--owner")
@click.option("--status", type=_choice(TrackerStatus))
@click.pass_obj
def list_cmd(settings, owner: Optional[str], status: Optional[str]) -> None:
    """List trackers."""
    trackers = db.list_trackers(
        settings.db_path,
        owner=owner,
        status=TrackerStatus(status.upper()) if status else None,
    )
    for t in trackers:
        checked = t.last_checked_at.isoformat() if t.last_checked_at else "never"
        click.echo(
            f"{t.id}  {t.status.value:<7}  {t.name}  "
            f"{format_route(t.departure_airports, t.destination_airports)}  "
            f"{format_date_range(t.date_range_start, t.date_range_end)}  "
            f"checked: {checked}"
        )


@cli.command()
@click.argument("tracker_id")
@click.pass_obj
def check(settings, tracker_id: str) -> None:
    """Check one tracker now."""
    try:
        result = check_tracker(tracker_id, CheckConfig.from_settings(settings))
    except FareWatchError as exc:
        raise click.ClickException(str(exc)) from exc
    if result.skipped:
        click.echo(f"Skipped: tracker is {result.status.value}")
        return
    click.echo(f"Stored {len(result.observations)} offers")
    if result.alert is not None:
        click.echo(f"Alert: {result.alert.reason}")


def _set_status(settings, tracker_id: str, status: TrackerStatus) -> None:
    try:
        tracker = db.set_status(tracker_id, status, db_path=settings.db_path)
    except FareWatchError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"{tracker.id} is {tracker.status.value}")


@cli.command()
@click.argument("tracker_id")
@click.pass_obj
def pause(settings, tracker_id: str) -> None:
    """Pause a tracker."""
    _set_status(settings, tracker_id, TrackerStatus.PAUSED)


@cli.command()
@click.argument("tracker_id")
@click.pass_obj
def resume(settings, tracker_id: str) -> None:
    """Resume a paused tracker."""
    _set_status(settings, tracker_id, TrackerStatus.ACTIVE)


@cli.command()
@click.argument("tracker_id")
@click.confirmation_option(prompt="Delete tracker and all its data?")
@click.pass_obj
def delete(settings, tracker_id: str) -> None:
    """Delete a tracker with its history."""
    if not db.delete_tracker(tracker_id, db_path=settings.db_path):
        raise click.ClickException(f"Tracker {tracker_id} not found")
    click.echo(f"Deleted {tracker_id}")


@cli.command("history")
@click.argument("tracker_id")
@click.option("--daily", is_flag=True, help="One row per day with rolling mean")
@click.option("--csv", "as_csv", is_flag=True, help="Write a CSV file, print its path")
@click.pass_obj
def history_cmd(settings, tracker_id: str, daily: bool, as_csv: bool) -> None:
    """Show the price history of a tracker."""
    if daily:
        result = history.daily_minimums(
            tracker_id, settings.db_path, output="csv" if as_csv else None
        )
        click.echo(result if as_csv else result.to_string(index=False))
        return
    df = history.price_history(tracker_id, settings.db_path)
    if as_csv:
        click.echo(df.to_csv(index=False), nl=False)
    else:
        click.echo(df.to_string(index=False))


@cli.command("run-due")
@click.pass_obj
def run_due(settings) -> None:
    """Check all trackers that are due (one scheduler tick)."""
    summary = jobs.run_due_checks(
        CheckConfig.from_settings(settings),
        check_interval_h=settings.check_interval_h,
        limit=settings.trackers_per_run,
        retention_days=settings.retention_days,
    )
    click.echo(
        f"expired={summary.expired} checked={summary.checked} "
        f"failed={summary.failed} cleaned={summary.cleaned}"
    )


@cli.command()
@click.pass_obj
def reports(settings) -> None:
    """Send the periodic reports that are due."""
    sent = jobs.send_scheduled_reports(CheckConfig.from_settings(settings))
    click.echo(f"Sent {sent} reports")


@cli.command()
def serve() -> None:
    """Run the scheduler in the foreground."""
    from .tasks import sched

    logger.info("Starting scheduler")
    sched.start()


if __name__ == "__main__":
    cli()
