"""Visit session tracking for the target browser."""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Future
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from .blocklist import BlocklistManager
from .config import TrackerSettings
from .models import (
    ActiveSession,
    BrowserTab,
    FinalizedVisit,
    Inactive,
    TrackerSnapshot,
    TrackerState,
    Tracking,
)
from .sources import ChromeTabSource, FrontmostAppProbe, TabSource

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Observer = Callable[[TrackerSnapshot], None]
ForegroundProbe = Callable[[], Optional[str]]


def local_now() -> datetime:
    """Local time with its UTC offset attached."""
    return datetime.now().astimezone()


class VisitSink(Protocol):
    def insert(self, visit: FinalizedVisit) -> None: ...


class VisitTracker:
    """Turns polled tab and focus signals into finalized visits.

    Not thread-safe: every event method must run on the thread that owns the
    tracker (see :class:`TrackerRunner`). Observers are called exactly once per
    state-changing event, after the transition is complete.
    """

    def __init__(
        self,
        tab_source: TabSource,
        blocklist: BlocklistManager,
        store: VisitSink,
        settings: TrackerSettings,
        *,
        foreground: ForegroundProbe = lambda: None,
        clock: Clock = local_now,
    ) -> None:
        self._tab_source = tab_source
        self._blocklist = blocklist
        self._store = store
        self._settings = settings
        self._foreground = foreground
        self._clock = clock
        self._state: TrackerState = Inactive()
        self._active = False
        self._observers: list[Observer] = []

    @property
    def is_active(self) -> bool:
        return self._active

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def current_state(self) -> TrackerSnapshot:
        state = self._state
        if isinstance(state, Tracking):
            elapsed = (self._clock() - state.session.started_at).total_seconds()
            return TrackerSnapshot(self._active, state.session.domain, int(max(0.0, elapsed)))
        return TrackerSnapshot(self._active, None, 0)

    def start(self) -> None:
        self._active = self._is_target(self._foreground())
        logger.info("Tracking %s (foreground: %s).", self._settings.app_identifier, self._active)
        self._poll()
        self._notify()

    def stop(self) -> None:
        self._finalize()
        self._notify()

    def poll(self) -> None:
        if self._poll():
            self._notify()

    def app_activated(self, identifier: Optional[str]) -> None:
        active = self._is_target(identifier)
        if active == self._active:
            return
        self._active = active
        if active:
            self._poll()
        else:
            self._finalize()
        self._notify()

    def system_sleep(self, at: Optional[datetime] = None) -> None:
        self._active = False
        self._finalize(at)
        self._notify()

    def system_wake(self) -> None:
        self._active = self._is_target(self._foreground())
        self._poll()
        self._notify()

    def refresh_after_filter_change(self) -> None:
        if self._active:
            self._poll()
        self._notify()

    def _is_target(self, identifier: Optional[str]) -> bool:
        return identifier == self._settings.app_identifier

    def _read_tab(self) -> Optional[BrowserTab]:
        try:
            return self._tab_source.current_tab()
        except Exception:
            logger.debug("Tab read failed.", exc_info=True)
            return None

    def _poll(self) -> bool:
        """Run one poll; returns whether anything changed."""
        if not self._active:
            return False

        tab = self._read_tab()
        if tab is None:
            return False

        now = self._clock()
        if self._blocklist.should_block(tab.domain):
            self._finalize(now)
            if not self._tab_source.neutralize_active_tab():
                logger.warning("Could not navigate away from blocked %s.", tab.domain)
            logger.info("Blocked %s.", tab.domain)
            return True

        state = self._state
        if isinstance(state, Tracking):
            if state.session.domain == tab.domain:
                state.session.url = tab.url
                state.session.title = tab.title
                return True
            self._finalize(now)

        self._state = Tracking(
            ActiveSession(domain=tab.domain, url=tab.url, title=tab.title, started_at=now)
        )
        logger.debug("Session started: %s", tab.domain)
        return True

    def _finalize(self, ended_at: Optional[datetime] = None) -> Optional[FinalizedVisit]:
        state = self._state
        if not isinstance(state, Tracking):
            return None
        self._state = Inactive()

        visit = state.session.finalize(ended_at or self._clock())
        if visit.duration_seconds >= self._settings.min_visit_seconds:
            self._store.insert(visit)
        else:
            logger.debug(
                "Discarded %s after %ds (minimum %ds).",
                visit.domain,
                visit.duration_seconds,
                self._settings.min_visit_seconds,
            )
        return visit

    def _notify(self) -> None:
        snapshot = self.current_state()
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("Tracker observer failed.")


class FocusWatcher:
    """Derives focus and sleep/wake events from the foreground probe and wall-clock gaps."""

    def __init__(
        self,
        tracker: VisitTracker,
        foreground: ForegroundProbe,
        settings: TrackerSettings,
        clock: Clock = local_now,
    ) -> None:
        self._tracker = tracker
        self._foreground = foreground
        self._sleep_gap = settings.sleep_gap
        self._clock = clock
        self._last_identifier: Optional[str] = None
        self._last_check: Optional[datetime] = None

    def check(self) -> None:
        now = self._clock()
        last_check = self._last_check
        self._last_check = now

        if last_check is not None and now - last_check > self._sleep_gap:
            logger.info("No ticks for %s; treating the gap as a system sleep.", now - last_check)
            self._tracker.system_sleep(at=last_check)
            self._tracker.system_wake()
            self._last_identifier = self._foreground()
            return

        identifier = self._foreground()
        if identifier is None or identifier == self._last_identifier:
            return
        self._last_identifier = identifier
        self._tracker.app_activated(identifier)


class TrackerRunner:
    """Owns the tracker thread: periodic ticks plus a channel of submitted work."""

    def __init__(
        self,
        tracker: VisitTracker,
        settings: TrackerSettings,
        watcher: Optional[FocusWatcher] = None,
    ) -> None:
        self._tracker = tracker
        self._interval = settings.poll_interval.total_seconds()
        self._watcher = watcher
        self._inbox: "queue.Queue[tuple[Callable[[], Any], Future]]" = queue.Queue()
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._snapshot = TrackerSnapshot(False, None, 0)
        self._published_at = time.monotonic()
        tracker.subscribe(self._remember)

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Run ``fn`` on the tracker thread; the returned future holds its result."""
        future: Future = Future()
        self._inbox.put((lambda: fn(*args), future))
        return future

    def refresh_after_filter_change(self) -> Future:
        return self.submit(self._tracker.refresh_after_filter_change)

    def snapshot(self) -> TrackerSnapshot:
        with self._lock:
            snapshot, published_at = self._snapshot, self._published_at
        if snapshot.domain is None:
            return snapshot
        drift = int(max(0.0, time.monotonic() - published_at))
        return TrackerSnapshot(snapshot.active, snapshot.domain, snapshot.elapsed_seconds + drift)

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._stop_event = threading.Event()
            thread = threading.Thread(target=self.run_until_stopped, name="tracker", daemon=True)
            self._thread = thread
        thread.start()
        logger.info("Tracker background thread started.")

    def stop(self, timeout: float = 10.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
        self._stop_event.set()
        if thread is not None:
            thread.join(timeout=timeout)
            logger.info("Tracker background thread stopped.")

    def request_stop(self) -> None:
        self._stop_event.set()

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    def run_forever(self) -> None:
        try:
            self.run_until_stopped()
        except KeyboardInterrupt:
            logger.info("Tracker interrupted.")

    def run_until_stopped(self) -> None:
        """Tick until :meth:`request_stop` or :meth:`stop`, then finalize the open session."""
        stop_event = self._stop_event
        try:
            self._tracker.start()
            deadline = time.monotonic() + self._interval
            while not stop_event.is_set():
                remaining = deadline - time.monotonic()
                if remaining > 0:
                    try:
                        job = self._inbox.get(timeout=min(remaining, self._interval))
                    except queue.Empty:
                        continue
                    self._run_job(*job)
                    continue
                self._tick()
                deadline = self._next_deadline(deadline)
        finally:
            self._drain_inbox()
            self._tracker.stop()
            logger.info("Tracker stopped.")

    def _tick(self) -> None:
        try:
            if self._watcher is not None:
                self._watcher.check()
            self._tracker.poll()
        except Exception:
            logger.exception("Tracker tick failed.")

    def _next_deadline(self, previous: float) -> float:
        deadline = previous + self._interval
        now = time.monotonic()
        if now > deadline:
            missed = int((now - deadline) // self._interval) + 1
            logger.debug("Tick overran; skipping %d tick(s).", missed)
            deadline += missed * self._interval
        return deadline

    def _drain_inbox(self) -> None:
        while True:
            try:
                job = self._inbox.get_nowait()
            except queue.Empty:
                return
            self._run_job(*job)

    @staticmethod
    def _run_job(fn: Callable[[], Any], future: Future) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = fn()
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)

    def _remember(self, snapshot: TrackerSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot
            self._published_at = time.monotonic()


def create_runner(
    store: VisitSink,
    blocklist: BlocklistManager,
    settings: TrackerSettings,
    *,
    tab_source: Optional[TabSource] = None,
    foreground: Optional[ForegroundProbe] = None,
) -> TrackerRunner:
    """Wire a tracker to the macOS probes (or the given stand-ins) behind a runner."""
    if tab_source is None:
        tab_source = ChromeTabSource(settings)
    if foreground is None:
        foreground = FrontmostAppProbe(settings).frontmost_identifier
    tracker = VisitTracker(tab_source, blocklist, store, settings, foreground=foreground)
    watcher = FocusWatcher(tracker, foreground, settings)
    return TrackerRunner(tracker, settings, watcher)
