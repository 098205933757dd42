"""SQLite persistence for finalized visits."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator

from .models import FinalizedVisit

logger = logging.getLogger(__name__)


def open_database(path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    initialize_schema(conn)
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS visits (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            domain TEXT NOT NULL,
            url TEXT NOT NULL,
            title TEXT,
            app_bundle_id TEXT NOT NULL,
            started_at REAL NOT NULL,
            ended_at REAL NOT NULL,
            duration_sec INTEGER NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_visits_started_at
            ON visits(started_at);
        """
    )


def insert_visit(
    conn: sqlite3.Connection, visit: FinalizedVisit, app_identifier: str
) -> None:
    conn.execute(
        """
        INSERT INTO visits (
            domain,
            url,
            title,
            app_bundle_id,
            started_at,
            ended_at,
            duration_sec
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            visit.domain,
            visit.url,
            visit.title or None,
            app_identifier,
            visit.started_at.timestamp(),
            visit.ended_at.timestamp(),
            visit.duration_seconds,
        ),
    )


def day_bounds(day: datetime) -> tuple[float, float]:
    """Epoch bounds of the local calendar day containing ``day``."""
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return start.timestamp(), end.timestamp()


def fetch_summary_for_day(conn: sqlite3.Connection, day: datetime) -> list[sqlite3.Row]:
    """Return total seconds per domain for a given day, longest first."""
    return list(
        conn.execute(
            """
            SELECT domain, SUM(duration_sec) AS seconds
            FROM visits
            WHERE started_at >= ? AND started_at < ?
            GROUP BY domain
            ORDER BY seconds DESC, domain;
            """,
            day_bounds(day),
        )
    )


def fetch_total_seconds_for_day(conn: sqlite3.Connection, day: datetime) -> int:
    row = conn.execute(
        """
        SELECT COALESCE(SUM(duration_sec), 0) AS seconds
        FROM visits
        WHERE started_at >= ? AND started_at < ?;
        """,
        day_bounds(day),
    ).fetchone()
    return int(row["seconds"])


def fetch_visits_for_day(conn: sqlite3.Connection, day: datetime) -> list[sqlite3.Row]:
    """Fetch individual visits for the provided day in chronological order."""
    return list(
        conn.execute(
            """
            SELECT
                id,
                domain,
                url,
                title,
                app_bundle_id,
                started_at,
                ended_at,
                duration_sec
            FROM visits
            WHERE started_at >= ? AND started_at < ?
            ORDER BY started_at, id;
            """,
            day_bounds(day),
        )
    )


class VisitStore:
    """Append-only sink used by the tracker; write failures are logged, not raised."""

    def __init__(self, conn: sqlite3.Connection, app_identifier: str) -> None:
        self._conn = conn
        self._app_identifier = app_identifier

    @classmethod
    def open(cls, path: Path, app_identifier: str) -> "VisitStore":
        return cls(open_database(path, check_same_thread=False), app_identifier)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def insert(self, visit: FinalizedVisit) -> None:
        try:
            insert_visit(self._conn, visit, self._app_identifier)
        except sqlite3.Error:
            logger.exception("Failed to store visit to %s; dropping it.", visit.domain)
            return
        logger.debug("Stored visit %s (%ds).", visit.domain, visit.duration_seconds)

    def close(self) -> None:
        self._conn.close()
