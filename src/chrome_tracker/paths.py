"""Helpers for locating application directories."""

from __future__ import annotations

import logging
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from platformdirs import PlatformDirs

APP_NAME = "ChromeTracker"
APP_AUTHOR = "ChromeTracker"

logger = logging.getLogger(__name__)


def _dirs() -> PlatformDirs:
    return PlatformDirs(appname=APP_NAME, appauthor=APP_AUTHOR, roaming=True)


def get_data_dir() -> Path:
    """Return the base directory for persistent data.

    Falls back to a directory under the system temp dir when the user data
    directory cannot be created.
    """
    candidates = [Path(_dirs().user_data_path), Path(tempfile.gettempdir()) / APP_NAME]
    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.warning("Cannot use data directory %s", candidate)
            continue
        return candidate
    return candidates[-1]


def get_db_path() -> Path:
    return get_data_dir() / "visits.sqlite"


def get_log_path() -> Path:
    return get_data_dir() / "tracker.log"


def get_preferences_path() -> Path:
    return get_data_dir() / "preferences.json"


def get_downloads_dir() -> Path:
    downloads = Path(_dirs().user_downloads_path)
    return downloads if downloads.is_dir() else Path.home()


def default_export_path(extension: str, day: Optional[datetime] = None) -> Path:
    """``<downloads>/ChromeTracker-<YYYY-MM-DD>.<extension>``"""
    stamp = (day or datetime.now()).strftime("%Y-%m-%d")
    return get_downloads_dir() / f"{APP_NAME}-{stamp}.{extension}"
