from decimal import Decimal

import pytest
from click.testing import CliRunner

from farewatch import db
from farewatch.cli import cli
from farewatch.models import TrackerStatus


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("FAREWATCH_DB", str(tmp_path / "cli.db"))
    monkeypatch.setenv("FAREWATCH_PROVIDERS", "mock")
    monkeypatch.delenv("SMTP_HOST", raising=False)
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    return CliRunner()


def create_tracker(runner, *extra):
    args = [
        "create",
        "--name", "Shanghai",
        "--owner", "alice",
        "--from", "DUS",
        "--from", "fmo",
        "--to", "PVG",
        "--start", "2027-08-01",
        "--end", "2027-08-31",
        "--duration", "14",
        "--flex", "PLUS_MINUS_1",
        *extra,
    ]
    result = runner.invoke(cli, args)
    assert result.exit_code == 0, result.output
    return result.output.strip().splitlines()[-1]


def test_create_and_list(runner, tmp_path):
    tracker_id = create_tracker(runner, "--alert-eur", "450")
    tracker = db.load_tracker(tracker_id, db_path=str(tmp_path / "cli.db"))
    assert tracker.departure_airports == ["DUS", "FMO"]
    assert tracker.alert_threshold_eur == Decimal("450")

    result = runner.invoke(cli, ["list", "--owner", "alice"])
    assert result.exit_code == 0
    assert tracker_id in result.output
    assert "DUS/FMO → PVG" in result.output


def test_create_rejects_invalid(runner):
    result = runner.invoke(
        cli,
        ["create", "--name", "x", "--owner", "a", "--from", "DUSS", "--to", "PVG",
         "--start", "2027-08-01", "--end", "2027-08-31", "--duration", "14"],
    )
    assert result.exit_code != 0
    assert "invalid IATA code" in result.output


def test_check_pause_resume_delete(runner, tmp_path):
    path = str(tmp_path / "cli.db")
    tracker_id = create_tracker(runner)

    result = runner.invoke(cli, ["check", tracker_id])
    assert result.exit_code == 0, result.output
    assert "Stored" in result.output
    assert db.count_observations(tracker_id, db_path=path) > 0

    assert runner.invoke(cli, ["pause", tracker_id]).exit_code == 0
    assert db.load_tracker(tracker_id, db_path=path).status == TrackerStatus.PAUSED
    result = runner.invoke(cli, ["check", tracker_id])
    assert "Skipped: tracker is PAUSED" in result.output

    assert runner.invoke(cli, ["resume", tracker_id]).exit_code == 0
    assert db.load_tracker(tracker_id, db_path=path).status == TrackerStatus.ACTIVE

    result = runner.invoke(cli, ["history", tracker_id])
    assert result.exit_code == 0
    assert "min_price" in result.output

    assert runner.invoke(cli, ["delete", "--yes", tracker_id]).exit_code == 0
    assert db.load_tracker(tracker_id, db_path=path) is None


def test_check_unknown_tracker(runner):
    result = runner.invoke(cli, ["check", "nope"])
    assert result.exit_code == 1
    assert "Tracker nope not found" in result.output


def test_run_due_and_reports(runner):
    create_tracker(runner)
    result = runner.invoke(cli, ["run-due"])
    assert result.exit_code == 0, result.output
    assert "checked=1" in result.output

    result = runner.invoke(cli, ["reports"])
    assert result.exit_code == 0
    assert "Sent 1 reports" in result.output
