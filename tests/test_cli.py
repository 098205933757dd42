import csv
import io
import json
import logging
from datetime import datetime, timedelta

import pytest
from typer.testing import CliRunner

from chrome_tracker import cli
from chrome_tracker.db import VisitStore
from chrome_tracker.models import FinalizedVisit

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "visits.sqlite"
    store = VisitStore.open(path, "com.google.Chrome")
    start = datetime(2024, 5, 1, 9, 0, 0)
    store.insert(
        FinalizedVisit(
            domain="example.com",
            url="https://example.com/",
            title="Example",
            started_at=start,
            ended_at=start + timedelta(seconds=42),
        )
    )
    store.close()
    return path


@pytest.fixture
def preferences(tmp_path, monkeypatch):
    path = tmp_path / "preferences.json"
    monkeypatch.setattr(cli, "get_preferences_path", lambda: path)
    return path


@pytest.mark.parametrize("flag", ["-h", "--help"])
def test_help(flag):
    result = runner.invoke(cli.app, [flag])

    assert result.exit_code == 0
    assert "--export-json" in result.output


def test_export_json_to_path(db_path, tmp_path):
    target = tmp_path / "day.json"

    result = runner.invoke(
        cli.app, ["--export-json", str(target), "--db", str(db_path), "--date", "2024-05-01"]
    )

    assert result.exit_code == 0, result.output
    assert f"JSON exported: {target}" in result.output
    data = json.loads(target.read_text(encoding="utf-8"))
    assert data["totalSeconds"] == 42
    assert data["visits"][0]["title"] == "Example"


def test_export_csv_to_default_path(db_path, tmp_path, monkeypatch):
    monkeypatch.setattr(
        cli, "default_export_path", lambda extension, day=None: tmp_path / f"default.{extension}"
    )

    result = runner.invoke(cli.app, ["--export-csv", "--db", str(db_path), "--date", "2024-05-01"])

    assert result.exit_code == 0, result.output
    rows = list(csv.reader(io.StringIO((tmp_path / "default.csv").read_text(encoding="utf-8"))))
    assert rows[1][0] == "example.com"
    assert rows[1][5] == "42"


def test_export_write_failure_exits_1(db_path, tmp_path):
    target = tmp_path / "missing" / "day.json"

    result = runner.invoke(cli.app, ["--export-json", str(target), "--db", str(db_path)])

    assert result.exit_code == 1


def test_unopenable_database_exits_1(tmp_path):
    result = runner.invoke(cli.app, ["--summary", "--db", str(tmp_path)])

    assert result.exit_code == 1


def test_summary(db_path, preferences):
    result = runner.invoke(cli.app, ["--summary", "--db", str(db_path), "--date", "2024-05-01"])

    assert result.exit_code == 0, result.output
    assert "Summary for 2024-05-01" in result.output
    assert "example.com" in result.output


@pytest.mark.parametrize(
    "arguments",
    [
        ["--export-json", "--export-csv"],
        ["--summary", "--web"],
        ["some-path.json"],
        ["--summary", "--date", "01/05/2024"],
    ],
)
def test_usage_errors_exit_2(arguments, db_path):
    result = runner.invoke(cli.app, [*arguments, "--db", str(db_path)])

    assert result.exit_code == 2


def test_blocklist_is_stored_and_shown(preferences):
    result = runner.invoke(
        cli.app, ["--blocklist", "YouTube.com, *.reddit.com\nwww.youtube.com", "--no-system-block"]
    )

    assert result.exit_code == 0, result.output
    assert "Blocking list applied" in result.output
    stored = json.loads(preferences.read_text(encoding="utf-8"))
    assert stored["ChromeTracker.blockedDomains"] == ["youtube.com", "*.reddit.com"]

    shown = runner.invoke(cli.app, ["--show-blocklist"])

    assert shown.exit_code == 0
    assert shown.output.split() == ["youtube.com", "*.reddit.com"]


def test_block_and_unblock_edit_the_stored_list(preferences):
    runner.invoke(cli.app, ["--blocklist", "a.com", "--no-system-block"])

    added = runner.invoke(cli.app, ["--block", "B.com, www.a.com", "--no-system-block"])
    assert added.exit_code == 0, added.output
    assert "Blocking list applied" in added.output
    stored = json.loads(preferences.read_text(encoding="utf-8"))
    assert stored["ChromeTracker.blockedDomains"] == ["a.com", "b.com"]

    removed = runner.invoke(cli.app, ["--unblock", "https://a.com/", "--no-system-block"])
    assert removed.exit_code == 0, removed.output

    stored = json.loads(preferences.read_text(encoding="utf-8"))
    assert stored["ChromeTracker.blockedDomains"] == ["b.com"]


class IdleRunner:
    def __init__(self):
        self.ran = False

    def run_forever(self):
        self.ran = True

    def request_stop(self):
        pass


@pytest.fixture
def tracking(tmp_path, monkeypatch, preferences):
    prompts = []

    def cancel(title, message):
        prompts.append(message)
        return None

    idle = IdleRunner()
    monkeypatch.setattr(cli, "get_log_path", lambda: tmp_path / "tracker.log")
    monkeypatch.setattr(cli, "prompt_password", cancel)
    monkeypatch.setattr(cli.signal, "signal", lambda signum, handler: None)
    monkeypatch.setattr("chrome_tracker.tracker.create_runner", lambda store, blocklist, settings: idle)

    root = logging.getLogger()
    before = list(root.handlers)
    yield prompts, idle
    for handler in root.handlers[:]:
        if handler not in before:
            root.removeHandler(handler)
            handler.close()


def test_plain_tracking_does_not_ask_for_a_password(tracking, db_path):
    prompts, idle = tracking

    result = runner.invoke(cli.app, ["--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert idle.ran
    assert prompts == []


def test_dashboard_tracking_authorizes_hosts_edits(tracking, db_path, monkeypatch):
    prompts, _ = tracking
    launched = {}
    monkeypatch.setattr(
        "chrome_tracker.server_runner.run_dashboard", lambda **kwargs: launched.update(kwargs)
    )

    result = runner.invoke(cli.app, ["--web", "--db", str(db_path), "--no-open-browser"])

    assert result.exit_code == 0, result.output
    assert len(prompts) == 1
    assert launched["hosts_blocker"] is not None
    assert launched["open_browser"] is False
