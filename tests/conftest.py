from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import pytest

from chrome_tracker.blocklist import BlocklistManager, PreferenceStore
from chrome_tracker.config import TrackerSettings
from chrome_tracker.models import BrowserTab, FinalizedVisit
from chrome_tracker.normalization import domain_from_url
from chrome_tracker.tracker import VisitTracker

CHROME = "com.google.Chrome"


class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 5, 1, 9, 0, 0)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeTabSource:
    def __init__(self) -> None:
        self.tab: Optional[BrowserTab] = None
        self.neutralized = 0
        # False simulates a tab that stays on the page after navigation fails.
        self.blank_on_neutralize = True

    def show(self, url: str, title: str = "") -> None:
        domain = domain_from_url(url)
        assert domain is not None
        self.tab = BrowserTab(url=url, title=title, domain=domain)

    def clear(self) -> None:
        self.tab = None

    def current_tab(self) -> Optional[BrowserTab]:
        return self.tab

    def neutralize_active_tab(self) -> bool:
        self.neutralized += 1
        if not self.blank_on_neutralize:
            return False
        self.tab = None
        return True


class MemoryStore:
    def __init__(self) -> None:
        self.visits: list[FinalizedVisit] = []

    def insert(self, visit: FinalizedVisit) -> None:
        self.visits.append(visit)


class Foreground:
    def __init__(self, identifier: Optional[str] = CHROME) -> None:
        self.identifier = identifier

    def __call__(self) -> Optional[str]:
        return self.identifier


@pytest.fixture
def settings(tmp_path) -> TrackerSettings:
    hosts = tmp_path / "hosts"
    hosts.write_text("127.0.0.1 localhost\n", encoding="utf-8")
    return TrackerSettings(hosts_path=str(hosts), dns_flush_commands=())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tabs() -> FakeTabSource:
    return FakeTabSource()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def foreground() -> Foreground:
    return Foreground()


@pytest.fixture
def blocklist(tmp_path, settings) -> BlocklistManager:
    return BlocklistManager(PreferenceStore(tmp_path / "preferences.json"), settings.blocklist_key)


@pytest.fixture
def tracker(tabs, blocklist, store, settings, foreground, clock) -> VisitTracker:
    return VisitTracker(tabs, blocklist, store, settings, foreground=foreground, clock=clock)
