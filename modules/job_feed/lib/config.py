from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .models import ScopeMode, TimeWindow
from .utils import truthy


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env cannot form a valid Settings."""


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class SourceConfig:
    """
    One external source and how to run it.
    - name: cache bucket and id namespace (e.g. "linkedin")
    - kind: collector family registered in collectors.registry (e.g. "json_feed", "stub")
    - tasks: task builder name (keyword_location | named_searches | window_urls | repositories)
    - windowed: takes part in time-windowed runs; False for fixed corpora (repositories)
    - time_filters: TimeWindow value -> the source's own filter value
    - fan_out: collect all tasks concurrently, then filter once against max_per_run
    - max_per_task / max_per_run / job_limits: caps on records kept after filtering
    - params: arbitrary dict handed to the task builder
    """

    name: str
    kind: str
    tasks: str = "keyword_location"
    windowed: bool = True
    time_filters: dict[str, str] = field(default_factory=dict)
    fan_out: bool = False
    max_per_task: int | None = None
    max_per_run: int | None = None
    job_limits: dict[str, int] = field(default_factory=dict)
    label: str = ""
    color: str = "#1e90ff"
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.label or self.name


@dataclass
class Settings:
    """
    Canonical configuration for a 'job_feed' run.

    Source definitions come from a JSON file (`sources_path`) or inline via
    `sources` (tests/dev runs). Everything else comes from kwargs, which the
    service runner has already normalized (`*_env` keys hold resolved values).
    """

    sources_path: str | None = None
    _sources: list[SourceConfig] = field(default_factory=list, repr=False)

    # Storage
    sqlite_path: str = "/app/local/state/jobfeed.db"
    cache_dir: str = "/app/local/state/job_cache"
    cache_capacity: int = 1000

    # Delivery (resolved webhook URL; empty -> log-only sink)
    webhook_url: str = field(default="", repr=False)

    # Runtime behavior
    task_delay_sec: float = 5.0
    item_delay_sec: float = 1.0
    max_threads: int = 4
    skip_network: bool = False

    # Scope of this run
    scope: ScopeMode = ScopeMode.EVERYTHING
    source: str | None = None
    window: TimeWindow | None = TimeWindow.DAY
    member: str | None = None

    # ------------- convenience -------------
    def sources(self) -> list[SourceConfig]:
        """Return the configured sources (loaded from file on first use)."""
        if self._sources:
            return self._sources
        if not self.sources_path:
            raise ConfigError("No sources configured. Provide 'sources_path' or inline 'sources'.")
        try:
            with open(self.sources_path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigError(f"job_feed sources file not found: {self.sources_path}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"job_feed sources file is invalid JSON: {self.sources_path}") from e

        if isinstance(data, dict):
            data = data.get("sources")
        self._sources = parse_sources(data)
        if not self._sources:
            raise ConfigError(f"No sources found in {self.sources_path}")
        return self._sources

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional unless stated otherwise):

            sources_path: str | sources: list  # one of the two is required
            sqlite_path: str = "/app/local/state/jobfeed.db"
            cache_dir: str = "/app/local/state/job_cache"
            cache_capacity: int = 1000
            webhook_url_env: str  # RESOLVED webhook URL (runner expanded *_env already)
            webhook_url: str      # explicit URL, used if webhook_url_env is empty
            task_delay_sec: float = 5
            item_delay_sec: float = 1
            max_threads: int = 4
            skip_network: bool = false

            scope: "single" | "all_boards" | "everything" = "everything"
            source: str           # required for scope=single
            window: "day" | "week" | "month" | "all" = "day"
            member: str           # named member of a repository-style source
        """
        kw = dict(kwargs or {})

        inline = kw.get("sources")
        sources = parse_sources(inline) if inline is not None else []

        sources_path = kw.get("sources_path")
        if sources_path is not None:
            sources_path = str(sources_path).strip() or None

        try:
            scope = ScopeMode(str(kw.get("scope") or "everything").strip().lower())
        except ValueError as e:
            raise ConfigError(f"'scope' must be one of single|all_boards|everything (got {kw.get('scope')!r})") from e

        try:
            window = TimeWindow.parse(kw.get("window", "day"))
        except ValueError as e:
            raise ConfigError(str(e)) from e

        try:
            settings = cls(
                sources_path=sources_path,
                _sources=sources,
                sqlite_path=str(kw.get("sqlite_path") or "/app/local/state/jobfeed.db"),
                cache_dir=str(kw.get("cache_dir") or "/app/local/state/job_cache"),
                cache_capacity=_int_setting(kw, "cache_capacity", 1000),
                webhook_url=str(kw.get("webhook_url_env") or kw.get("webhook_url") or "").strip(),
                task_delay_sec=float(kw.get("task_delay_sec", 5.0)),
                item_delay_sec=float(kw.get("item_delay_sec", 1.0)),
                max_threads=_int_setting(kw, "max_threads", 4),
                skip_network=truthy(kw.get("skip_network")),
                scope=scope,
                source=(str(kw["source"]).strip() or None) if kw.get("source") else None,
                window=window,
                member=(str(kw["member"]).strip() or None) if kw.get("member") else None,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid job_feed setting: {e}") from e

        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def parse_sources(value: Any) -> list[SourceConfig]:
    """
    Parse a flat list into SourceConfig objects.
    Accepts: [{"name": "...", "kind": "...", "tasks": "...", "params": {...}, ...}, ...]
    """
    if not value:
        return []
    if not isinstance(value, list):
        raise ConfigError("Expected a list of source objects.")
    out: list[SourceConfig] = []
    seen: set[str] = set()
    for i, item in enumerate(value):
        if not isinstance(item, dict):
            raise ConfigError(f"Source[{i}] must be an object.")
        name = str(item.get("name") or "").strip()
        kind = str(item.get("kind") or "").strip()
        if not name or not kind:
            raise ConfigError(f"Source[{i}] requires 'name' and 'kind'.")
        if name.lower() in seen:
            raise ConfigError(f"Source[{i}]: duplicate name {name!r}.")
        seen.add(name.lower())

        params = item.get("params") or {}
        if not isinstance(params, dict):
            raise ConfigError(f"Source[{i}].params must be an object.")
        time_filters = item.get("time_filters") or {}
        if not isinstance(time_filters, dict):
            raise ConfigError(f"Source[{i}].time_filters must be an object.")
        for key in time_filters:
            try:
                TimeWindow(key)
            except ValueError as e:
                raise ConfigError(f"Source[{i}].time_filters has unknown window {key!r}.") from e
        job_limits = item.get("job_limits") or {}
        if not isinstance(job_limits, dict):
            raise ConfigError(f"Source[{i}].job_limits must be an object.")

        tasks = str(item.get("tasks") or "keyword_location")
        windowed = item.get("windowed")
        out.append(
            SourceConfig(
                name=name,
                kind=kind,
                tasks=tasks,
                windowed=truthy(windowed) if windowed is not None else tasks != "repositories",
                time_filters={str(k): str(v) for k, v in time_filters.items()},
                fan_out=truthy(item.get("fan_out")),
                max_per_task=_optional_positive_int(item.get("max_per_task"), f"Source[{i}].max_per_task"),
                max_per_run=_optional_positive_int(item.get("max_per_run"), f"Source[{i}].max_per_run"),
                job_limits={str(k): _limit(v, f"Source[{i}].job_limits.{k}") for k, v in job_limits.items()},
                label=str(item.get("label") or ""),
                color=str(item.get("color") or "#1e90ff"),
                params=dict(params),
            )
        )
    return out


def _optional_positive_int(value: Any, field_name: str) -> int | None:
    if value is None:
        return None
    try:
        n = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{field_name}' must be an integer.") from e
    if n < 1:
        raise ConfigError(f"'{field_name}' must be >= 1.")
    return n


def _limit(value: Any, field_name: str) -> int:
    n = _optional_positive_int(value, field_name)
    if n is None:
        raise ConfigError(f"'{field_name}' must be an integer.")
    return n


def _int_setting(kw: dict[str, Any], key: str, default: int) -> int:
    # absent or blank falls back; an explicit 0 is kept so validation rejects it
    value = kw.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    return int(value)


def _validate_settings(s: Settings) -> None:
    if s.max_threads <= 0:
        raise ConfigError("'max_threads' must be >= 1.")
    if s.cache_capacity <= 0:
        raise ConfigError("'cache_capacity' must be >= 1.")
    if s.task_delay_sec < 0 or s.item_delay_sec < 0:
        raise ConfigError("Delays cannot be negative.")
    if not s.sqlite_path.strip():
        raise ConfigError("'sqlite_path' cannot be empty.")
    if not s.cache_dir.strip():
        raise ConfigError("'cache_dir' cannot be empty.")

    if s.scope is ScopeMode.SINGLE and not s.source:
        raise ConfigError("scope=single requires 'source'.")
    if s.member and s.scope is not ScopeMode.SINGLE:
        raise ConfigError("'member' is only valid with scope=single.")

    # Ensure the source list loads and is non-empty (file-backed or inline)
    selected = s.sources()
    if not selected:
        raise ConfigError("No sources to run.")
    if s.source and s.source.lower() not in {src.name.lower() for src in selected}:
        raise ConfigError(f"Unknown source {s.source!r}.")
