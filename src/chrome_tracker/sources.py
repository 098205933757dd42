"""macOS probes for the browser's active tab and the frontmost application."""

from __future__ import annotations

import logging
import subprocess
from typing import Optional, Protocol

import psutil

from .config import TrackerSettings
from .models import BrowserTab
from .normalization import domain_from_url

logger = logging.getLogger(__name__)

_ACTIVE_TAB_SCRIPT = """
tell application "{app}"
    if not running then return ""
    if (count of windows) = 0 then return ""
    set tabURL to URL of active tab of front window
    set tabTitle to title of active tab of front window
    return tabURL & linefeed & tabTitle
end tell
"""

_BLANK_TAB_SCRIPT = """
tell application "{app}"
    if not running then return false
    if (count of windows) = 0 then return false
    set URL of active tab of front window to "about:blank"
    return true
end tell
"""

_FRONTMOST_SCRIPT = (
    'tell application "System Events" to get bundle identifier '
    "of first application process whose frontmost is true"
)


class TabSource(Protocol):
    def current_tab(self) -> Optional[BrowserTab]: ...

    def neutralize_active_tab(self) -> bool: ...


def parse_tab_output(value: str) -> Optional[BrowserTab]:
    """Parse ``url\\ntitle`` as printed by the active-tab script."""
    parts = [part for part in value.split("\n") if part]
    if not parts:
        return None
    url = parts[0].strip()
    domain = domain_from_url(url)
    if domain is None:
        return None
    return BrowserTab(url=url, title="\n".join(parts[1:]), domain=domain)


def run_osascript(script: str, timeout: float) -> Optional[str]:
    try:
        completed = subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("osascript failed: %s", exc)
        return None
    if completed.returncode != 0:
        logger.debug("osascript exited %s: %s", completed.returncode, completed.stderr.strip())
        return None
    return completed.stdout.rstrip("\n")


def process_running(name: str) -> bool:
    try:
        for process in psutil.process_iter(["name"]):
            if process.info.get("name") == name:
                return True
    except psutil.Error:
        logger.debug("Process scan failed; assuming %s is running.", name)
        return True
    return False


class ChromeTabSource:
    """Reads the active tab of the browser's front window through AppleScript."""

    def __init__(self, settings: TrackerSettings) -> None:
        self._app_name = settings.app_name
        self._timeout = settings.tab_timeout.total_seconds()

    def current_tab(self) -> Optional[BrowserTab]:
        if not process_running(self._app_name):
            return None
        output = run_osascript(_ACTIVE_TAB_SCRIPT.format(app=self._app_name), self._timeout)
        if not output:
            return None
        return parse_tab_output(output)

    def neutralize_active_tab(self) -> bool:
        output = run_osascript(_BLANK_TAB_SCRIPT.format(app=self._app_name), self._timeout)
        return output == "true"


class FrontmostAppProbe:
    """Returns the bundle identifier of the frontmost application."""

    def __init__(self, settings: TrackerSettings) -> None:
        self._timeout = settings.tab_timeout.total_seconds()

    def frontmost_identifier(self) -> Optional[str]:
        output = run_osascript(_FRONTMOST_SCRIPT, self._timeout)
        return output.strip() if output else None
