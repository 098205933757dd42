"""Export and console reporting for recorded visits."""

from __future__ import annotations

import csv
import io
import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from .db import (
    database_connection,
    fetch_summary_for_day,
    fetch_total_seconds_for_day,
    fetch_visits_for_day,
)

CSV_HEADER = ("domain", "url", "title", "started_at", "ended_at", "duration_sec")


def format_timestamp(value: datetime | float) -> str:
    """UTC ISO-8601 with milliseconds, e.g. ``2024-05-01T08:30:00.250Z``."""
    if not isinstance(value, datetime):
        value = datetime.fromtimestamp(value, tz=timezone.utc)
    stamp = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def summary_records_for_day(conn: sqlite3.Connection, day: datetime) -> list[dict[str, Any]]:
    return [
        {"domain": row["domain"], "seconds": int(row["seconds"])}
        for row in fetch_summary_for_day(conn, day)
    ]


def visit_records_for_day(conn: sqlite3.Connection, day: datetime) -> list[dict[str, Any]]:
    return [
        {
            "domain": row["domain"],
            "url": row["url"],
            "title": row["title"] or "",
            "startedAt": format_timestamp(row["started_at"]),
            "endedAt": format_timestamp(row["ended_at"]),
            "durationSec": int(row["duration_sec"]),
        }
        for row in fetch_visits_for_day(conn, day)
    ]


def build_export_payload(
    conn: sqlite3.Connection, day: datetime, now: Optional[datetime] = None
) -> dict[str, Any]:
    summaries = summary_records_for_day(conn, day)
    day_start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    return {
        "generatedAt": format_timestamp(now or datetime.now(timezone.utc)),
        "date": format_timestamp(day_start),
        "totalSeconds": sum(item["seconds"] for item in summaries),
        "summaries": summaries,
        "visits": visit_records_for_day(conn, day),
    }


def render_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)


def render_csv(visits: Iterable[dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for visit in visits:
        writer.writerow(
            (
                visit["domain"],
                visit["url"],
                visit["title"],
                visit["startedAt"],
                visit["endedAt"],
                visit["durationSec"],
            )
        )
    return buffer.getvalue()


def export_json(db_path: Path, day: datetime, target: Path) -> Path:
    with database_connection(db_path) as conn:
        payload = build_export_payload(conn, day)
    _write_atomic(Path(target), render_json(payload))
    return Path(target)


def export_csv(db_path: Path, day: datetime, target: Path) -> Path:
    with database_connection(db_path) as conn:
        visits = visit_records_for_day(conn, day)
    _write_atomic(Path(target), render_csv(visits))
    return Path(target)


def _write_atomic(target: Path, content: str) -> None:
    tmp = target.with_name(f".{target.name}.tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, target)
    finally:
        tmp.unlink(missing_ok=True)


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def print_daily_summary(self, day: datetime, blocked: Iterable[str] = ()) -> None:
        with database_connection(self.db_path) as conn:
            rows = fetch_summary_for_day(conn, day)
            total = fetch_total_seconds_for_day(conn, day)

        blocked = list(blocked)
        if not rows:
            print("No visits recorded for the selected day.")
        else:
            print(f"Summary for {day.strftime('%Y-%m-%d')}")
            print("-" * 40)
            print(f"Total time: {format_duration(total)}")
            print()
            print("Top domains:")
            for row in rows[:10]:
                print(f"  {row['domain'][:30]:<30} {format_duration(row['seconds'])}")

        if blocked:
            print()
            print(f"Blocked sites ({len(blocked)}): {', '.join(blocked)}")


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_clock(seconds: int) -> str:
    """Compact status clock: ``MM:SS`` below an hour, ``HH:MM:SS`` above."""
    remaining = max(0, int(seconds))
    hours, remainder = divmod(remaining, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"
