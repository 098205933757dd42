"""FastAPI application that exposes a local dashboard API for the tracker."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict

from .blocklist import BlocklistManager, PreferenceStore
from .config import TrackerSettings
from .db import VisitStore, database_connection, fetch_total_seconds_for_day
from .hosts import DisabledHostsEditor, HostsResult, SystemHostsBlocker
from .models import TrackerSnapshot
from .paths import APP_NAME, get_db_path, get_preferences_path
from .reporting import (
    build_export_payload,
    format_clock,
    render_csv,
    render_json,
    summary_records_for_day,
    visit_records_for_day,
)
from .sources import TabSource
from .tracker import ForegroundProbe, TrackerRunner, create_runner

logger = logging.getLogger(__name__)


class TrackerService:
    """Manage the visit store and the tracker thread for the dashboard."""

    update_timeout = 10.0

    def __init__(
        self,
        db_path: Path,
        settings: TrackerSettings,
        blocklist: BlocklistManager,
        *,
        tab_source: Optional[TabSource] = None,
        foreground: Optional[ForegroundProbe] = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._settings = settings
        self._blocklist = blocklist
        self._tab_source = tab_source
        self._foreground = foreground
        self._lock = threading.Lock()
        self._store: Optional[VisitStore] = None
        self._runner: Optional[TrackerRunner] = None

    def start(self) -> None:
        with self._lock:
            if self._runner and self._runner.is_running():
                return
            store = VisitStore.open(self._db_path, self._settings.app_identifier)
            runner = create_runner(
                store,
                self._blocklist,
                self._settings,
                tab_source=self._tab_source,
                foreground=self._foreground,
            )
            self._store = store
            self._runner = runner
            runner.start()

    def stop(self) -> None:
        with self._lock:
            runner, store = self._runner, self._store
            self._runner = None
            self._store = None
        if runner:
            runner.stop()
        if store:
            store.close()

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._runner and self._runner.is_running())

    def snapshot(self) -> TrackerSnapshot:
        with self._lock:
            runner = self._runner
        if runner is None:
            return TrackerSnapshot(False, None, 0)
        return runner.snapshot()

    def update_blocklist(self, update: Callable[[], List[str]]) -> List[str]:
        """Run ``update`` on the tracker thread, then re-evaluate the open session."""
        with self._lock:
            runner = self._runner
        if runner is None:
            return update()
        patterns = runner.submit(update).result(timeout=self.update_timeout)
        runner.refresh_after_filter_change()
        return patterns


class BlocklistPayload(BaseModel):
    domains: Optional[List[str]] = None
    text: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[TrackerSettings] = None,
    blocklist: Optional[BlocklistManager] = None,
    hosts_blocker: Optional[SystemHostsBlocker] = None,
    tab_source: Optional[TabSource] = None,
    foreground: Optional[ForegroundProbe] = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_db_path = Path(db_path or get_db_path())
    resolved_settings = settings or TrackerSettings()
    resolved_blocklist = blocklist or BlocklistManager(
        PreferenceStore(get_preferences_path()), resolved_settings.blocklist_key
    )
    resolved_blocker = hosts_blocker or SystemHostsBlocker(
        resolved_settings, DisabledHostsEditor()
    )
    service = TrackerService(
        resolved_db_path,
        resolved_settings,
        resolved_blocklist,
        tab_source=tab_source,
        foreground=foreground,
    )

    app = FastAPI(title="ChromeTracker", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path
    app.state.tracker_service = service

    @app.on_event("startup")
    async def _startup() -> None:
        service.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        service.stop()

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        snapshot = request.app.state.tracker_service.snapshot()
        with database_connection(request.app.state.db_path) as conn:
            today_seconds = fetch_total_seconds_for_day(conn, datetime.now())
        live_seconds = today_seconds + (snapshot.elapsed_seconds if snapshot.active else 0)
        symbol = "◌" if snapshot.domain is None else "◉"
        return {
            "tracker_running": request.app.state.tracker_service.is_running(),
            "database_path": str(request.app.state.db_path),
            "poll_seconds": resolved_settings.poll_interval.total_seconds(),
            **snapshot.to_dict(),
            "today_seconds": today_seconds,
            "live_seconds": live_seconds,
            "title": f"{symbol} {format_clock(live_seconds)}",
        }

    @app.get("/api/summary")
    def summary(
        request: Request,
        date: Optional[str] = Query(
            default=None,
            description="Target date in YYYY-MM-DD format.",
        ),
    ) -> Dict[str, Any]:
        target_day = _parse_date(date)
        with database_connection(request.app.state.db_path) as conn:
            entries = summary_records_for_day(conn, target_day)
        return {
            "date": target_day.strftime("%Y-%m-%d"),
            "total_seconds": sum(entry["seconds"] for entry in entries),
            "entries": entries,
        }

    @app.get("/api/visits")
    def visits(
        request: Request,
        date: Optional[str] = Query(
            default=None,
            description="Target date in YYYY-MM-DD format.",
        ),
    ) -> Dict[str, Any]:
        target_day = _parse_date(date)
        with database_connection(request.app.state.db_path) as conn:
            records = visit_records_for_day(conn, target_day)
        return {
            "date": target_day.strftime("%Y-%m-%d"),
            "visits": records,
        }

    @app.get("/api/blocklist")
    def get_blocklist() -> Dict[str, Any]:
        return {
            "domains": resolved_blocklist.blocked_domains,
            "system_block": _result_payload(resolved_blocker.last_result),
        }

    @app.put("/api/blocklist")
    def put_blocklist(payload: BlocklistPayload, request: Request) -> Dict[str, Any]:
        if (payload.domains is None) == (payload.text is None):
            raise HTTPException(status_code=400, detail="provide exactly one of domains or text")

        service = request.app.state.tracker_service
        if payload.text is not None:
            text = payload.text
            patterns = service.update_blocklist(lambda: resolved_blocklist.parse_and_set(text))
        else:
            domains = payload.domains or []
            patterns = service.update_blocklist(
                lambda: resolved_blocklist.set_blocked_domains(domains)
            )

        resolved_blocker.apply_async(patterns, on_done=_log_hosts_result)
        return {"domains": patterns, "system_block": {"pending": True}}

    @app.get("/api/export.json")
    def export_json(
        request: Request,
        date: Optional[str] = Query(default=None, description="Target date in YYYY-MM-DD format."),
    ) -> Response:
        target_day = _parse_date(date)
        with database_connection(request.app.state.db_path) as conn:
            payload = build_export_payload(conn, target_day)
        return Response(
            content=render_json(payload),
            media_type="application/json",
            headers=_attachment_headers(target_day, "json"),
        )

    @app.get("/api/export.csv")
    def export_csv(
        request: Request,
        date: Optional[str] = Query(default=None, description="Target date in YYYY-MM-DD format."),
    ) -> Response:
        target_day = _parse_date(date)
        with database_connection(request.app.state.db_path) as conn:
            records = visit_records_for_day(conn, target_day)
        return Response(
            content=render_csv(records),
            media_type="text/csv",
            headers=_attachment_headers(target_day, "csv"),
        )

    return app


def _parse_date(value: Optional[str]) -> datetime:
    if not value:
        return _start_of_day(datetime.now())
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date format") from exc
    return _start_of_day(parsed)


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _attachment_headers(day: datetime, extension: str) -> Dict[str, str]:
    filename = f"{APP_NAME}-{day.strftime('%Y-%m-%d')}.{extension}"
    return {"Content-Disposition": f'attachment; filename="{filename}"'}


def _result_payload(result: Optional[HostsResult]) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    return {"success": result.success, "message": result.message}


def _log_hosts_result(result: HostsResult) -> None:
    if result.success:
        logger.info("Blocking list applied: %s", result.message)
    else:
        logger.warning("Blocking list applied (system block failed): %s", result.message)
