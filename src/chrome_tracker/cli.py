"""Command-line interface for the tracker."""

from __future__ import annotations

import logging
import signal
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import typer

from .blocklist import BlocklistManager, PreferenceStore
from .config import TrackerSettings
from .db import VisitStore, database_connection
from .hosts import DisabledHostsEditor, HostsEditor, SudoHostsEditor, SystemHostsBlocker
from .normalization import parse_domain_input
from .paths import default_export_path, get_db_path, get_log_path, get_preferences_path

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Track active time per site in Google Chrome and block distracting sites.",
    context_settings={"help_option_names": ["-h", "--help"]},
    add_completion=False,
)


@app.command(context_settings={"help_option_names": ["-h", "--help"]})
def main(
    path: Optional[Path] = typer.Argument(
        None,
        help="Export target for --export-json/--export-csv. Defaults to ~/Downloads/ChromeTracker-<date>.<ext>.",
    ),
    export_json: bool = typer.Option(False, "--export-json", help="Export the day's visits as JSON."),
    export_csv: bool = typer.Option(False, "--export-csv", help="Export the day's visits as CSV."),
    summary: bool = typer.Option(False, "--summary", help="Print the day's per-domain totals."),
    blocklist_text: Optional[str] = typer.Option(
        None,
        "--blocklist",
        help="Replace the blocked sites (comma or newline separated) and apply them.",
    ),
    block_text: Optional[str] = typer.Option(
        None,
        "--block",
        help="Add sites to the blocklist (comma or newline separated) and apply it.",
    ),
    unblock_text: Optional[str] = typer.Option(
        None,
        "--unblock",
        help="Remove sites from the blocklist and apply it.",
    ),
    show_blocklist: bool = typer.Option(False, "--show-blocklist", help="Print the blocked sites."),
    web: bool = typer.Option(False, "--web", help="Track with the local dashboard."),
    date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Date (YYYY-MM-DD) to export or summarize. Defaults to today.",
    ),
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the visits SQLite database.",
    ),
    poll_seconds: float = typer.Option(
        1.0,
        "--interval",
        min=0.2,
        help="Polling interval in seconds.",
    ),
    system_block: bool = typer.Option(
        True,
        "--system-block/--no-system-block",
        help="Mirror the blocklist into the hosts file (needs administrator rights).",
    ),
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the dashboard."),
    port: int = typer.Option(8766, "--port", min=1, max=65535, help="TCP port for the dashboard."),
    open_browser: bool = typer.Option(
        True,
        "--open-browser/--no-open-browser",
        help="Open the dashboard in the default browser.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
) -> None:
    """Run the tracker (default), or export, summarize, or edit the blocklist."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    modes = [
        name
        for name, enabled in (
            ("--export-json", export_json),
            ("--export-csv", export_csv),
            ("--summary", summary),
            ("--blocklist", blocklist_text is not None),
            ("--block", block_text is not None),
            ("--unblock", unblock_text is not None),
            ("--show-blocklist", show_blocklist),
            ("--web", web),
        )
        if enabled
    ]
    if len(modes) > 1:
        raise typer.BadParameter(f"choose only one of {', '.join(modes)}")
    if path is not None and not (export_json or export_csv):
        raise typer.BadParameter("PATH is only used with --export-json or --export-csv")

    day = _parse_day(date)
    settings = TrackerSettings.from_intervals(poll_seconds=poll_seconds)
    db_path = db_path or get_db_path()

    if show_blocklist:
        for pattern in _load_blocklist(settings).blocked_domains:
            typer.echo(pattern)
        return

    if blocklist_text is not None:
        _apply_blocklist(settings, system_block, lambda b: b.parse_and_set(blocklist_text))
        return

    if block_text is not None:
        added = parse_domain_input(block_text)
        _apply_blocklist(settings, system_block, lambda b: b.add_blocked_domains(added))
        return

    if unblock_text is not None:
        removed = parse_domain_input(unblock_text)
        _apply_blocklist(settings, system_block, lambda b: b.remove_blocked_domains(removed))
        return

    _ensure_database(db_path)

    if export_json or export_csv:
        _export(db_path, day, path, "json" if export_json else "csv")
        return

    if summary:
        from .reporting import SummaryPrinter

        SummaryPrinter(db_path=db_path).print_daily_summary(
            day, blocked=_load_blocklist(settings).blocked_domains
        )
        return

    _track(
        db_path,
        settings,
        system_block=system_block,
        web=web,
        host=host,
        port=port,
        open_browser=open_browser,
    )


def _parse_day(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now()
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise typer.BadParameter("expected YYYY-MM-DD", param_hint="--date") from exc


def _ensure_database(db_path: Path) -> None:
    try:
        with database_connection(db_path):
            pass
    except (sqlite3.Error, OSError) as exc:
        typer.echo(f"Failed to open database {db_path}: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _export(db_path: Path, day: datetime, path: Optional[Path], extension: str) -> None:
    from .reporting import export_csv, export_json

    target = path or default_export_path(extension, day)
    exporter = export_json if extension == "json" else export_csv
    try:
        exporter(db_path, day, target)
    except (OSError, sqlite3.Error) as exc:
        typer.echo(f"Failed to export {extension.upper()}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"{extension.upper()} exported: {target}")


def _load_blocklist(settings: TrackerSettings) -> BlocklistManager:
    return BlocklistManager(PreferenceStore(get_preferences_path()), settings.blocklist_key)


def prompt_password(title: str, message: str) -> Optional[str]:
    typer.echo(title, err=True)
    try:
        return typer.prompt(message, hide_input=True, default="", show_default=False)
    except typer.Abort:
        return None


def _build_hosts_blocker(settings: TrackerSettings, enabled: bool) -> SystemHostsBlocker:
    editor: HostsEditor
    if enabled:
        editor = SudoHostsEditor(settings, prompt_password)
    else:
        editor = DisabledHostsEditor()
    return SystemHostsBlocker(settings, editor)


def _apply_blocklist(
    settings: TrackerSettings,
    system_block: bool,
    update: Callable[[BlocklistManager], List[str]],
) -> None:
    patterns = update(_load_blocklist(settings))
    result = _build_hosts_blocker(settings, system_block).apply_blocked_domains(patterns)
    if result.success:
        typer.echo(f"Blocking list applied: {len(patterns)} entries, {result.message}")
    else:
        typer.echo(f"Blocking list applied (system block failed): {result.message}")


def _attach_log_file() -> None:
    try:
        handler = logging.FileHandler(get_log_path(), encoding="utf-8")
    except OSError:
        logger.warning("Cannot write log file %s", get_log_path())
        return
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logging.getLogger().addHandler(handler)


def _track(
    db_path: Path,
    settings: TrackerSettings,
    *,
    system_block: bool,
    web: bool,
    host: str,
    port: int,
    open_browser: bool,
) -> None:
    _attach_log_file()
    blocklist = _load_blocklist(settings)

    if web:
        from .server_runner import run_dashboard

        # Only the dashboard edits the hosts file while tracking.
        hosts_blocker = _build_hosts_blocker(settings, system_block)
        if system_block:
            auth = hosts_blocker.authorize()
            if auth.success:
                logger.info(auth.message)
            else:
                logger.warning("System-level blocking unavailable: %s", auth.message)

        run_dashboard(
            host=host,
            port=port,
            db_path=db_path,
            settings=settings,
            blocklist=blocklist,
            hosts_blocker=hosts_blocker,
            open_browser=open_browser,
        )
        return

    from .tracker import create_runner

    try:
        store = VisitStore.open(db_path, settings.app_identifier)
    except (sqlite3.Error, OSError) as exc:
        typer.echo(f"Failed to open database {db_path}: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    runner = create_runner(store, blocklist, settings)
    signal.signal(signal.SIGTERM, lambda signum, frame: runner.request_stop())
    logger.info("Writing visits to %s", db_path)
    try:
        runner.run_forever()
    finally:
        store.close()
