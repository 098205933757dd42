"""Domain models for tracked browser visits."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union


@dataclass(frozen=True, slots=True)
class BrowserTab:
    """The active tab of the tracked browser's front window."""

    url: str
    title: str
    domain: str


@dataclass(slots=True)
class ActiveSession:
    """An open observation interval for a single domain."""

    domain: str
    url: str
    title: str
    started_at: datetime

    def finalize(self, ended_at: datetime) -> "FinalizedVisit":
        return FinalizedVisit(
            domain=self.domain,
            url=self.url,
            title=self.title,
            started_at=self.started_at,
            ended_at=ended_at,
        )


@dataclass(frozen=True, slots=True)
class FinalizedVisit:
    """Represents a closed interval spent on one domain."""

    domain: str
    url: str
    title: str
    started_at: datetime
    ended_at: datetime

    @property
    def duration_seconds(self) -> int:
        return int(max(0.0, (self.ended_at - self.started_at).total_seconds()))


@dataclass(frozen=True, slots=True)
class Inactive:
    """No session is open."""


@dataclass(frozen=True, slots=True)
class Tracking:
    session: ActiveSession


TrackerState = Union[Inactive, Tracking]


@dataclass(frozen=True, slots=True)
class TrackerSnapshot:
    """Read-only view of the tracker for observers and other threads."""

    active: bool
    domain: Optional[str]
    elapsed_seconds: int

    def to_dict(self) -> dict[str, object]:
        return {
            "active": self.active,
            "domain": self.domain,
            "elapsed_seconds": self.elapsed_seconds,
        }
