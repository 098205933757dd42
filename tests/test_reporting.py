import csv
import io
import json
from datetime import datetime, timedelta, timezone

import pytest

from chrome_tracker.db import VisitStore, database_connection
from chrome_tracker.models import FinalizedVisit
from chrome_tracker.reporting import (
    CSV_HEADER,
    SummaryPrinter,
    build_export_payload,
    export_csv,
    export_json,
    format_clock,
    format_duration,
    format_timestamp,
    render_csv,
)

DAY = datetime(2024, 5, 1)


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "visits.sqlite"
    store = VisitStore.open(path, "com.google.Chrome")
    start = datetime(2024, 5, 1, 9, 0, 0)
    store.insert(
        FinalizedVisit(
            domain="example.com",
            url="https://example.com/a?x=1,2",
            title='He said "hi", then left',
            started_at=start,
            ended_at=start + timedelta(seconds=65),
        )
    )
    store.insert(
        FinalizedVisit(
            domain="news.com",
            url="https://news.com/",
            title="",
            started_at=start + timedelta(minutes=5),
            ended_at=start + timedelta(minutes=5, seconds=10),
        )
    )
    store.close()
    return path


def test_format_timestamp():
    assert format_timestamp(0) == "1970-01-01T00:00:00.000Z"
    moment = datetime(2024, 5, 1, 8, 30, 0, 250000, tzinfo=timezone.utc)
    assert format_timestamp(moment) == "2024-05-01T08:30:00.250Z"


def test_format_duration_and_clock():
    assert format_duration(3725) == "01:02:05"
    assert format_clock(65) == "01:05"
    assert format_clock(3725) == "01:02:05"
    assert format_clock(-4) == "00:00"


def test_csv_quotes_commas_quotes_and_newlines():
    text = render_csv(
        [
            {
                "domain": "a.com",
                "url": "https://a.com/",
                "title": 'one, "two"\nthree',
                "startedAt": "s",
                "endedAt": "e",
                "durationSec": 3,
            }
        ]
    )

    assert text.splitlines()[0] == ",".join(CSV_HEADER)
    assert '"one, ""two""\nthree"' in text
    rows = list(csv.reader(io.StringIO(text)))
    assert rows[1][2] == 'one, "two"\nthree'


def test_export_payload(db_path):
    with database_connection(db_path) as conn:
        payload = build_export_payload(
            conn, DAY, now=datetime(2024, 5, 2, tzinfo=timezone.utc)
        )

    assert payload["generatedAt"] == "2024-05-02T00:00:00.000Z"
    assert payload["date"] == format_timestamp(DAY)
    assert payload["totalSeconds"] == 75
    assert payload["summaries"] == [
        {"domain": "example.com", "seconds": 65},
        {"domain": "news.com", "seconds": 10},
    ]
    first = payload["visits"][0]
    assert sorted(first) == ["domain", "durationSec", "endedAt", "startedAt", "title", "url"]
    assert payload["visits"][1]["title"] == ""


def test_export_json_writes_sorted_keys(db_path, tmp_path):
    target = export_json(db_path, DAY, tmp_path / "out.json")

    text = target.read_text(encoding="utf-8")
    data = json.loads(text)
    assert list(data) == ["date", "generatedAt", "summaries", "totalSeconds", "visits"]
    assert data["totalSeconds"] == 75
    assert text.startswith("{\n  ")


def test_export_csv_round_trips_through_a_csv_reader(db_path, tmp_path):
    target = export_csv(db_path, DAY, tmp_path / "out.csv")

    rows = list(csv.reader(io.StringIO(target.read_text(encoding="utf-8"))))
    assert rows[0] == list(CSV_HEADER)
    assert rows[1][:3] == ["example.com", "https://example.com/a?x=1,2", 'He said "hi", then left']
    assert rows[1][5] == "65"
    assert rows[2][2] == ""
    assert len(rows) == 3


def test_export_to_missing_directory_raises(db_path, tmp_path):
    with pytest.raises(OSError):
        export_csv(db_path, DAY, tmp_path / "missing" / "out.csv")


def test_summary_printer(db_path, capsys):
    SummaryPrinter(db_path).print_daily_summary(DAY, blocked=["youtube.com"])

    out = capsys.readouterr().out
    assert "Summary for 2024-05-01" in out
    assert "Total time: 00:01:15" in out
    assert out.index("example.com") < out.index("news.com")
    assert "Blocked sites (1): youtube.com" in out


def test_summary_printer_empty_day(db_path, capsys):
    SummaryPrinter(db_path).print_daily_summary(datetime(2023, 1, 1))

    assert "No visits recorded for the selected day." in capsys.readouterr().out
