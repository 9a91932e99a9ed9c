"""
Source registry: source name -> {collector, time-window mapping, task builder}.

The orchestrator never branches on a source's name; everything it needs to run
a source is looked up here.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable, Iterable
from typing import Any

from . import logging_bridge
from .collectors import registry as collector_registry
from .collectors.base import BaseCollector
from .config import SourceConfig
from .models import CollectTask, TimeWindow

TaskBuilder = Callable[[SourceConfig, TimeWindow | None, str | None], list[CollectTask]]


# =============================================================================
# TASK BUILDERS
# =============================================================================
def _base_query(src: SourceConfig) -> dict[str, Any]:
    return dict(src.params.get("query") or {})


def _limit_for(src: SourceConfig, key: str | None = None) -> int | None:
    if key is not None and key in src.job_limits:
        return src.job_limits[key]
    if "default" in src.job_limits:
        return src.job_limits["default"]
    return src.max_per_task


def build_keyword_location(src: SourceConfig, window: TimeWindow | None, window_value: str | None) -> list[CollectTask]:
    """One task per (keyword x location); locations default to a single blank (nationwide)."""
    keywords = [str(k) for k in src.params.get("keywords") or []]
    locations = [str(loc) for loc in src.params.get("locations") or [""]]
    tasks: list[CollectTask] = []
    for keyword, location in itertools.product(keywords, locations):
        label = f"{keyword} in {location}" if location else keyword
        tasks.append(
            CollectTask(
                source=src.name,
                label=label,
                query={**_base_query(src), "keyword": keyword, "location": location},
                window_value=window_value,
                limit=_limit_for(src, keyword),
            )
        )
    return tasks


def build_named_searches(src: SourceConfig, window: TimeWindow | None, window_value: str | None) -> list[CollectTask]:
    """One task per entry of params.searches: [{"name": ..., <query fields>}, ...]."""
    tasks: list[CollectTask] = []
    for i, search in enumerate(src.params.get("searches") or []):
        if not isinstance(search, dict):
            continue
        name = str(search.get("name") or f"search-{i + 1}")
        query = {**_base_query(src), **{k: v for k, v in search.items() if k != "name"}}
        tasks.append(
            CollectTask(
                source=src.name,
                label=name,
                query=query,
                window_value=window_value,
                limit=_limit_for(src, name),
            )
        )
    return tasks


def build_window_urls(src: SourceConfig, window: TimeWindow | None, window_value: str | None) -> list[CollectTask]:
    """One task per pre-built URL for the requested window: params.urls = {"day": [...], ...}."""
    urls_by_window: dict[str, Any] = src.params.get("urls") or {}
    key = (window or TimeWindow.DAY).value
    urls = urls_by_window.get(key)
    if urls is None:
        raise LookupError(f"source {src.name!r} has no URLs for window {key!r}")
    if isinstance(urls, str):
        urls = [urls]
    return [
        CollectTask(
            source=src.name,
            label=f"{key} #{i + 1}",
            query={**_base_query(src), "url": str(u)},
            window_value=window_value,
            limit=src.max_per_task,
        )
        for i, u in enumerate(urls)
    ]


def build_repositories(src: SourceConfig, window: TimeWindow | None, window_value: str | None) -> list[CollectTask]:
    """One task per configured repository: params.repos = [{"name", "url", "max_jobs"?}, ...]."""
    tasks: list[CollectTask] = []
    for repo in src.params.get("repos") or []:
        if not isinstance(repo, dict) or not repo.get("name"):
            continue
        name = str(repo["name"])
        extra = {k: v for k, v in repo.items() if k not in ("name", "max_jobs")}
        tasks.append(
            CollectTask(
                source=src.name,
                label=name,
                query={**_base_query(src), **extra},
                window_value=None,
                limit=int(repo.get("max_jobs") or src.max_per_task or 5),
                member=name,
            )
        )
    return tasks


TASK_BUILDERS: dict[str, TaskBuilder] = {
    "keyword_location": build_keyword_location,
    "named_searches": build_named_searches,
    "window_urls": build_window_urls,
    "repositories": build_repositories,
}


# =============================================================================
# REGISTRY
# =============================================================================
class SourceRegistry:
    def __init__(
        self,
        sources: Iterable[SourceConfig],
        *,
        skip_network: bool = False,
        get_collector: Callable[[str], type[BaseCollector]] | None = None,
    ) -> None:
        self._sources: dict[str, SourceConfig] = {}
        for s in sources:
            if s.name in self._sources:
                raise ValueError(f"duplicate source name {s.name!r}")
            self._sources[s.name] = s
        self.skip_network = skip_network
        self._get_collector = get_collector or collector_registry.get
        self._collectors: dict[str, BaseCollector] = {}

    # ---- lookup ------------------------------------------------------------

    def names(self) -> list[str]:
        return list(self._sources)

    def get(self, name: str) -> SourceConfig:
        key = (name or "").strip().lower()
        for s in self._sources.values():
            if s.name.lower() == key:
                return s
        raise KeyError(f"Unknown source {name!r}")

    def windowed(self) -> list[SourceConfig]:
        return [s for s in self._sources.values() if s.windowed]

    def unwindowed(self) -> list[SourceConfig]:
        return [s for s in self._sources.values() if not s.windowed]

    def collector_for(self, name: str) -> BaseCollector:
        src = self.get(name)
        if src.name not in self._collectors:
            cls = self._get_collector(src.kind)
            self._collectors[src.name] = cls(skip_network=self.skip_network)
        return self._collectors[src.name]

    # ---- tasks -------------------------------------------------------------

    def window_value(self, src: SourceConfig, window: TimeWindow | None) -> str | None:
        """The source's own spelling of `window` (e.g. 'r86400'), None if it has none."""
        if window is None or not src.windowed:
            return None
        value = src.time_filters.get(window.value)
        if value is None:
            logging_bridge.warning({
                "component": "job_feed.sources",
                "op": "window_value",
                "source": src.name,
                "window": window.value,
                "reason": "no mapping; collector default applies",
            })
        return value

    def build_tasks(self, name: str, window: TimeWindow | None = None, *, member: str | None = None) -> list[CollectTask]:
        """
        Build the task list for one source invocation.
        Raises KeyError for an unknown builder, LookupError for an unknown member.
        """
        src = self.get(name)
        builder = TASK_BUILDERS.get(src.tasks)
        if builder is None:
            raise KeyError(f"source {src.name!r} uses unknown task builder {src.tasks!r}")
        tasks = builder(src, window, self.window_value(src, window))
        if member is not None:
            wanted = member.strip().lower()
            tasks = [t for t in tasks if (t.member or "").lower() == wanted]
            if not tasks:
                raise LookupError(f"source {src.name!r} has no member named {member!r}")
        return tasks

    def close(self) -> None:
        for c in self._collectors.values():
            c.close()
        self._collectors.clear()
