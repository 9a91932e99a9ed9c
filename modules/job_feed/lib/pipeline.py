from __future__ import annotations

import threading
from dataclasses import dataclass

from . import logging_bridge
from .config import Settings
from .db import SqliteMembershipDB
from .engine import Orchestrator
from .file_cache import FileIdCache
from .models import Scope, ScopeMode
from .notify import LogSink, NotificationSink, WebhookSink
from .sources import SourceRegistry
from .store import MembershipStore
from .tracker import RunStatusTracker

# Last-run statuses live for the process, across scheduled and ad-hoc runs.
_TRACKER_LOCK = threading.Lock()
_TRACKER: RunStatusTracker | None = None


def process_tracker(sources: list[str]) -> RunStatusTracker:
    global _TRACKER
    with _TRACKER_LOCK:
        if _TRACKER is None:
            _TRACKER = RunStatusTracker(sources)
        return _TRACKER


@dataclass
class Pipeline:
    settings: Settings
    registry: SourceRegistry
    durable: SqliteMembershipDB
    store: MembershipStore
    sink: NotificationSink
    tracker: RunStatusTracker
    orchestrator: Orchestrator

    def scope(self) -> Scope:
        s = self.settings
        if s.scope is ScopeMode.SINGLE:
            return Scope.single(s.source or "", s.window, member=s.member)
        if s.scope is ScopeMode.ALL_BOARDS:
            return Scope.all_boards(s.window)
        return Scope.everything(s.window)

    def close(self) -> None:
        self.registry.close()
        close = getattr(self.sink, "close", None)
        if callable(close):
            close()
        self.durable.close()


def build_sink(settings: Settings) -> NotificationSink:
    if settings.webhook_url and not settings.skip_network:
        return WebhookSink(settings.webhook_url, sources=settings.sources())
    return LogSink()


def build_pipeline(
    settings: Settings,
    *,
    sink: NotificationSink | None = None,
    tracker: RunStatusTracker | None = None,
    cancel_event: threading.Event | None = None,
) -> Pipeline:
    """
    Wire adapters -> store -> registry -> orchestrator from validated settings.
    A SQLite file that cannot be opened leaves the store on the JSON fallback.
    """
    sources = settings.sources()
    names = [s.name for s in sources]

    durable = SqliteMembershipDB(settings.sqlite_path)
    if not durable.connect():
        logging_bridge.warning({
            "component": "job_feed.pipeline",
            "op": "connect",
            "sqlite_path": settings.sqlite_path,
            "fallback_dir": settings.cache_dir,
        })
    store = MembershipStore(durable, FileIdCache(settings.cache_dir), capacity=settings.cache_capacity)
    store.initialize_all(names)

    registry = SourceRegistry(sources, skip_network=settings.skip_network)
    tracker = tracker or process_tracker(names)
    sink = sink or build_sink(settings)
    orchestrator = Orchestrator(
        store,
        sink,
        tracker,
        registry,
        task_delay=settings.task_delay_sec,
        item_delay=settings.item_delay_sec,
        max_threads=settings.max_threads,
        cancel_event=cancel_event,
    )
    return Pipeline(
        settings=settings,
        registry=registry,
        durable=durable,
        store=store,
        sink=sink,
        tracker=tracker,
        orchestrator=orchestrator,
    )
