# tests/conftest.py
import itertools
import json
import os
from datetime import datetime, timedelta, timezone

import pytest
from freezegun import freeze_time

from modules.job_feed.lib.collectors.base import BaseCollector
from modules.job_feed.lib.config import SourceConfig
from modules.job_feed.lib.db import SqliteMembershipDB
from modules.job_feed.lib.file_cache import FileIdCache
from modules.job_feed.lib.notify import DeliveryError
from modules.job_feed.lib.sources import SourceRegistry
from modules.job_feed.lib.store import MembershipStore
from modules.job_feed.lib.tracker import RunStatusTracker


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1":
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch, tmp_path_factory):
    # Structured logs go to a throwaway dir per test
    monkeypatch.setenv("LOG_DIR", str(tmp_path_factory.mktemp("logs")))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.delenv("JOB_FEED_WEBHOOK_URL", raising=False)
    monkeypatch.setenv("CONFIG_PATH", "/app/local/config.json")
    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


@pytest.fixture
def tick_clock():
    """A clock that moves forward one second per call (strictly increasing inserts)."""
    start = datetime(2025, 1, 1, tzinfo=timezone.utc)
    counter = itertools.count()
    return lambda: start + timedelta(seconds=next(counter))


# ---------------------------------------------------------------------
# Store wiring
# ---------------------------------------------------------------------
@pytest.fixture
def sqlite_db(tmp_path):
    db = SqliteMembershipDB(str(tmp_path / "state" / "jobfeed.db"))
    assert db.connect()
    return db


@pytest.fixture
def file_cache(tmp_path):
    return FileIdCache(str(tmp_path / "job_cache"))


@pytest.fixture
def make_store(sqlite_db, file_cache, tick_clock):
    """Factory: make_store(capacity=..., durable=<adapter|None>) sharing the per-test adapters."""
    default = object()

    def _make(capacity=1000, durable=default, fallback=None):
        return MembershipStore(
            sqlite_db if durable is default else durable,
            fallback or file_cache,
            capacity=capacity,
            clock=tick_clock,
        )

    return _make


# ---------------------------------------------------------------------
# Orchestrator wiring
# ---------------------------------------------------------------------
class RecordingSink:
    """In-process sink: records what was delivered/announced, fails on request."""

    def __init__(self, fail_ids=(), refuse_announce=False):
        self.fail_ids = set(fail_ids)
        self.refuse_announce = refuse_announce
        self.delivered = []
        self.announced = []

    def deliver(self, record):
        if record.id in self.fail_ids:
            raise DeliveryError(f"refused {record.id}")
        self.delivered.append(record.id)
        return True

    def announce(self, text):
        if self.refuse_announce:
            return False
        self.announced.append(text)
        return True


@pytest.fixture
def recording_sink():
    return RecordingSink()


def stub_source(name, searches, **extra):
    """A 'stub' source whose named searches carry their own items (or fail=True)."""
    return SourceConfig(name=name, kind="stub", tasks="named_searches", params={"searches": searches}, **extra)


def repo_source(name, repos, **extra):
    return SourceConfig(name=name, kind="stub", tasks="repositories", windowed=False, params={"repos": repos}, **extra)


@pytest.fixture
def make_registry():
    def _make(*sources, get_collector=None):
        return SourceRegistry(sources, get_collector=get_collector)

    return _make


@pytest.fixture
def tracker():
    return RunStatusTracker()


class ScriptedCollector(BaseCollector):
    """
    Collector whose behavior is a callable set on the class by a test:
    ScriptedCollector.script = lambda task: [...] (or raise).
    """

    kind = "scripted"
    script = staticmethod(lambda task: [])
    seen_tasks: list = []

    def collect(self, task):
        type(self).seen_tasks.append(task)
        return type(self).script(task)


@pytest.fixture
def scripted_collector():
    ScriptedCollector.seen_tasks = []
    ScriptedCollector.script = staticmethod(lambda task: [])
    return ScriptedCollector


# ---------------------------------------------------------------------
# Files on disk
# ---------------------------------------------------------------------
@pytest.fixture
def sources_file(tmp_path):
    data = {
        "sources": [
            {
                "name": "demo",
                "kind": "stub",
                "tasks": "named_searches",
                "label": "Demo Board",
                "color": "#0077b5",
                "params": {
                    "searches": [
                        {"name": "python", "items": [{"id": "demo-1", "title": "Dev"}, {"id": "demo-2", "title": "SRE"}]},
                        {"name": "go", "items": [{"id": "demo-2", "title": "SRE"}]},
                    ]
                },
            },
            {
                "name": "repos",
                "kind": "stub",
                "tasks": "repositories",
                "params": {"repos": [{"name": "internships", "items": [{"id": "gh-1", "title": "Intern"}]}]},
            },
        ]
    }
    p = tmp_path / "job_feed_sources.json"
    p.write_text(json.dumps(data), encoding="utf-8")
    return p


@pytest.fixture
def feed_kwargs(tmp_path, sources_file):
    return {
        "sources_path": str(sources_file),
        "sqlite_path": str(tmp_path / "state" / "jobfeed.db"),
        "cache_dir": str(tmp_path / "state" / "job_cache"),
        "task_delay_sec": 0,
        "item_delay_sec": 0,
        "webhook_url_env": "JOB_FEED_WEBHOOK_URL",
    }


@pytest.fixture
def write_min_config(tmp_path, monkeypatch, feed_kwargs):
    cfg = {
        "timezone": "UTC",
        "jobs": [
            {
                "id": "job-feed-daily",
                "module": "modules.job_feed",
                "trigger": {"daily_time": {"time": "07:30"}},
                "kwargs": {**feed_kwargs, "scope": "everything"},
                "summary": "pytest config",
            }
        ],
    }
    p = tmp_path / "config.json"
    p.write_text(json.dumps(cfg), encoding="utf-8")
    monkeypatch.setenv("CONFIG_PATH", str(p))
    return p
