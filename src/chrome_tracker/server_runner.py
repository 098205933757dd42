"""Launch the tracker behind the local web dashboard."""

from __future__ import annotations

import logging
import threading
import time
import webbrowser
from pathlib import Path
from typing import Optional

import uvicorn

from .blocklist import BlocklistManager
from .config import TrackerSettings
from .hosts import SystemHostsBlocker
from .paths import get_db_path
from .webapp import create_app

logger = logging.getLogger(__name__)

_WILDCARD_BINDS = ("", "0.0.0.0", "::")


def dashboard_url(host: str, port: int) -> str:
    browse_host = "127.0.0.1" if host in _WILDCARD_BINDS else host
    if ":" in browse_host:
        browse_host = f"[{browse_host}]"
    return f"http://{browse_host}:{port}/api/status"


def run_dashboard(
    *,
    host: str = "127.0.0.1",
    port: int = 8766,
    db_path: Optional[Path] = None,
    settings: Optional[TrackerSettings] = None,
    blocklist: Optional[BlocklistManager] = None,
    hosts_blocker: Optional[SystemHostsBlocker] = None,
    open_browser: bool = True,
    log_level: str = "info",
) -> None:
    """Serve the dashboard until interrupted; the tracker runs for the server's lifetime."""
    app = create_app(
        db_path=db_path or get_db_path(),
        settings=settings or TrackerSettings(),
        blocklist=blocklist,
        hosts_blocker=hosts_blocker,
    )
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level=log_level))

    url = dashboard_url(host, port)
    if open_browser:
        threading.Thread(
            target=_open_when_ready, args=(server, url), name="dashboard-browser", daemon=True
        ).start()

    logger.info("Dashboard at %s", url)
    server.run()


def _open_when_ready(server: uvicorn.Server, url: str, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not server.started:
        if server.should_exit or time.monotonic() > deadline:
            logger.warning("Dashboard did not come up; not opening %s", url)
            return
        time.sleep(0.1)
    if not webbrowser.open(url):
        logger.warning("No browser available to open %s", url)
