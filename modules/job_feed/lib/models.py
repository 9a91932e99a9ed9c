from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class TimeWindow(str, enum.Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"

    @classmethod
    def parse(cls, value: Any) -> TimeWindow | None:
        if value is None or value == "":
            return None
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            raise ValueError(f"Unknown time window {value!r} (expected day|week|month|all)") from e


class ScopeMode(str, enum.Enum):
    SINGLE = "single"
    ALL_BOARDS = "all_boards"
    EVERYTHING = "everything"


@dataclass(frozen=True)
class Record:
    """
    A single job posting as returned by a collector (pre-dedupe).
    `id` is opaque and only compared for equality; uniqueness is per (source, id).
    """

    id: str
    source: str
    title: str = ""
    company: str = ""
    location: str = "Not specified"
    url: str = ""
    posted_date: str = "Not specified"
    timestamp: str = ""  # when the collector produced it
    description: str = ""
    metadata: str = ""


@dataclass(frozen=True)
class MembershipEntry:
    source: str
    id: str
    inserted_at: str  # UTC ISO-8601, used for eviction order only


@dataclass(frozen=True)
class CollectTask:
    """
    One unit of collector work: a keyword/location pair, a fixed URL, a named corpus.
    - query: collector-specific parameters
    - window_value: the source's own spelling of the time window (e.g. "r86400"), or None
    - limit: per-task cap on records kept after filtering
    - member: named member of a repository-style source, if any
    """

    source: str
    label: str
    query: dict[str, Any] = field(default_factory=dict)
    window_value: str | None = None
    limit: int | None = None
    member: str | None = None


@dataclass
class RunStatus:
    last_run: datetime | None = None
    success: bool = False
    jobs_found: int = 0
    error_count: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "success": self.success,
            "jobs_found": self.jobs_found,
            "error_count": self.error_count,
        }


@dataclass
class RunSummary:
    """
    Aggregate result of one orchestrator invocation.
    - statuses: per-source RunStatus, in the order the sources ran
    """

    mode: ScopeMode
    statuses: dict[str, RunStatus] = field(default_factory=dict)

    @property
    def total_jobs(self) -> int:
        return sum(s.jobs_found for s in self.statuses.values())

    @property
    def error_count(self) -> int:
        return sum(s.error_count for s in self.statuses.values())

    @property
    def success(self) -> bool:
        return bool(self.statuses) and all(s.success for s in self.statuses.values())

    def as_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "total_jobs": self.total_jobs,
            "error_count": self.error_count,
            "success": self.success,
            "by_source": {name: s.as_dict() for name, s in self.statuses.items()},
        }


@dataclass(frozen=True)
class Scope:
    """
    An orchestration request.
    - single: run `sources[0]` with `window`
    - all_boards: every time-windowed source, window per source from `windows_by_source`
      (falling back to `window`)
    - everything: all_boards, then the non-windowed sources
    - member: named member of a repository-style source (single mode only)
    """

    mode: ScopeMode
    sources: tuple[str, ...] = ()
    window: TimeWindow | None = None
    windows_by_source: dict[str, TimeWindow] = field(default_factory=dict)
    member: str | None = None

    @classmethod
    def single(cls, source: str, window: TimeWindow | None = None, *, member: str | None = None) -> Scope:
        return cls(mode=ScopeMode.SINGLE, sources=(source,), window=window, member=member)

    @classmethod
    def all_boards(cls, window: TimeWindow | None = TimeWindow.DAY, **windows_by_source: TimeWindow) -> Scope:
        return cls(mode=ScopeMode.ALL_BOARDS, window=window, windows_by_source=dict(windows_by_source))

    @classmethod
    def everything(cls, window: TimeWindow | None = TimeWindow.DAY, **windows_by_source: TimeWindow) -> Scope:
        return cls(mode=ScopeMode.EVERYTHING, window=window, windows_by_source=dict(windows_by_source))

    def window_for(self, source: str) -> TimeWindow | None:
        return self.windows_by_source.get(source, self.window)


@dataclass(frozen=True)
class CacheStats:
    count: int
    backend: str  # "sqlite" | "file"
    oldest: str | None = None
    newest: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"count": self.count, "backend": self.backend, "oldest": self.oldest, "newest": self.newest}
