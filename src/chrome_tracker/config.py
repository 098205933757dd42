"""Configuration models and helpers for the tracker."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

MIN_VISIT_SECONDS = 3


def _default_dns_flush_commands() -> tuple[tuple[str, ...], ...]:
    return (
        ("/usr/bin/dscacheutil", "-flushcache"),
        ("/usr/bin/killall", "-HUP", "mDNSResponder"),
    )


@dataclass(slots=True)
class TrackerSettings:
    """Runtime configuration for the visit tracker and the system-level blocker."""

    poll_interval: timedelta = timedelta(seconds=1)
    sleep_gap: timedelta = timedelta(seconds=30)
    tab_timeout: timedelta = timedelta(seconds=2)
    min_visit_seconds: int = MIN_VISIT_SECONDS
    app_identifier: str = "com.google.Chrome"
    app_name: str = "Google Chrome"
    blocklist_key: str = "ChromeTracker.blockedDomains"
    hosts_path: str = "/etc/hosts"
    marker_start: str = "# ChromeTracker START"
    marker_end: str = "# ChromeTracker END"
    dns_flush_commands: tuple[tuple[str, ...], ...] = field(
        default_factory=_default_dns_flush_commands
    )

    @classmethod
    def from_intervals(
        cls,
        poll_seconds: float,
        sleep_gap_seconds: float | None = None,
    ) -> "TrackerSettings":
        sleep_gap = (
            sleep_gap_seconds if sleep_gap_seconds is not None else max(poll_seconds * 30, 30.0)
        )
        return cls(
            poll_interval=timedelta(seconds=poll_seconds),
            sleep_gap=timedelta(seconds=sleep_gap),
            tab_timeout=timedelta(seconds=max(poll_seconds * 2, 2.0)),
        )
