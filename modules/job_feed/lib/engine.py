"""
Orchestrator: runs source collectors against the membership store and the sink.

Features:
  - Sequential tasks with an interruptible inter-task throttle (default)
  - Bounded fan-out per source (`fan_out`), joined before any filtering
  - Per-task failure isolation; collector/delivery errors become counters
  - Scopes: single source, all time-windowed boards, everything
  - Named-member runs that accumulate into the source's status
  - Comprehensive logging via `logging_bridge`
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from . import logging_bridge, render
from .collectors.base import BaseCollector
from .config import SourceConfig
from .models import CollectTask, Record, RunStatus, RunSummary, Scope, ScopeMode, TimeWindow
from .notify import NotificationSink
from .sources import SourceRegistry
from .store import MembershipStore
from .tracker import RunStatusTracker
from .utils import utc_now, wait


class InfrastructureError(RuntimeError):
    """The run cannot start at all (sink unreachable, source/task set unresolvable)."""


class Orchestrator:
    def __init__(
        self,
        store: MembershipStore,
        sink: NotificationSink,
        tracker: RunStatusTracker,
        registry: SourceRegistry,
        *,
        task_delay: float = 5.0,
        item_delay: float = 1.0,
        max_threads: int = 4,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._sink = sink
        self._tracker = tracker
        self._registry = registry
        self._task_delay = float(task_delay)
        self._item_delay = float(item_delay)
        self._max_threads = max(1, int(max_threads))
        self._cancel = cancel_event or threading.Event()
        self._clock = clock

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Interrupt any pending delay and skip the remaining tasks/sources."""
        self._cancel.set()

    # =========================================================================
    # SCOPES
    # =========================================================================
    def run(self, scope: Scope) -> RunSummary:
        """Run a scope and return the combined summary. Never raises."""
        summary = RunSummary(mode=scope.mode)
        try:
            if scope.mode is ScopeMode.SINGLE:
                if not scope.sources:
                    raise InfrastructureError("single scope without a source")
                name = scope.sources[0]
                if scope.member:
                    summary.statuses[name] = self.run_member(name, scope.member)
                else:
                    summary.statuses[name] = self.run_source(name, scope.window_for(name))
            elif scope.mode is ScopeMode.ALL_BOARDS:
                self._run_boards(scope, summary)
            else:
                self._run_boards(scope, summary)
                unwindowed = self._run_unwindowed(scope, summary)
                self._announce(render.everything_summary(summary.total_jobs, unwindowed, self._labels()))
        except Exception as e:
            logging_bridge.error({
                "component": "job_feed.engine",
                "op": "run_scope",
                "mode": scope.mode.value,
                "error": repr(e),
            })

        logging_bridge.activity({
            "component": "job_feed.engine",
            "op": "scope_summary",
            **summary.as_dict(),
        })
        return summary

    def _selected(self, candidates: list[SourceConfig], scope: Scope) -> list[SourceConfig]:
        if not scope.sources:
            return candidates
        wanted = {s.lower() for s in scope.sources}
        return [c for c in candidates if c.name.lower() in wanted]

    def _run_boards(self, scope: Scope, summary: RunSummary) -> None:
        boards: dict[str, RunStatus] = {}
        for src in self._selected(self._registry.windowed(), scope):
            if self.cancelled:
                break
            boards[src.name] = self.run_source(src.name, scope.window_for(src.name))
        summary.statuses.update(boards)
        self._announce(render.boards_summary(boards, self._labels()))

    def _run_unwindowed(self, scope: Scope, summary: RunSummary) -> dict[str, RunStatus]:
        out: dict[str, RunStatus] = {}
        for src in self._selected(self._registry.unwindowed(), scope):
            if self.cancelled:
                break
            out[src.name] = self.run_source(src.name)
        summary.statuses.update(out)
        return out

    def _labels(self) -> dict[str, str]:
        return {n: self._registry.get(n).display_name for n in self._registry.names()}

    # =========================================================================
    # ONE SOURCE
    # =========================================================================
    def run_source(self, name: str, window: TimeWindow | None = None) -> RunStatus:
        """
        Run every task of one source. Overwrites the source's tracked status.
        success=False only when the run could not start.
        """
        start_ns = time.perf_counter_ns()
        src: SourceConfig | None = None
        try:
            src = self._registry.get(name)
            collector = self._registry.collector_for(src.name)
            tasks = self._registry.build_tasks(src.name, window)
            self._announce_required(render.opening_text(src))
        except (LookupError, InfrastructureError) as e:
            status = self._failed(name, e, op="run_source")
            if src is not None:
                self._tracker.record(src.name, status)
            return status

        status = self._run_tasks(src, collector, tasks)
        status.last_run = self._clock()
        self._tracker.record(src.name, status)
        self._announce(render.source_complete(src, status))

        logging_bridge.activity({
            "component": "job_feed.engine",
            "op": "source_summary",
            "source": src.name,
            "window": window.value if window else None,
            "tasks": len(tasks),
            "jobs_found": status.jobs_found,
            "error_count": status.error_count,
            "cancelled": self.cancelled,
            "total_us": int((time.perf_counter_ns() - start_ns) // 1000),
        })
        return status

    def run_member(self, source: str, member: str) -> RunStatus:
        """
        Run one named member of a repository-style source.
        Counts are added to the source's tracked status; a failed start leaves it untouched.
        """
        try:
            src = self._registry.get(source)
            collector = self._registry.collector_for(src.name)
            tasks = self._registry.build_tasks(src.name, None, member=member)
            self._announce_required(render.opening_text(src))
        except (LookupError, InfrastructureError) as e:
            return self._failed(source, e, op="run_member", member=member)

        status = self._run_tasks(src, collector, tasks)
        status.last_run = self._clock()
        merged = self._tracker.accumulate(src.name, status)

        logging_bridge.activity({
            "component": "job_feed.engine",
            "op": "member_summary",
            "source": src.name,
            "member": member,
            "jobs_found": status.jobs_found,
            "error_count": status.error_count,
            "source_jobs_found": merged.jobs_found,
        })
        return status

    def _failed(self, name: str, err: BaseException, *, op: str, member: str | None = None) -> RunStatus:
        logging_bridge.error({
            "component": "job_feed.engine",
            "op": op,
            "source": name,
            "member": member,
            "stage": "infrastructure",
            "error": repr(err),
        })
        return RunStatus(last_run=self._clock(), success=False, jobs_found=0, error_count=1)

    # =========================================================================
    # TASKS
    # =========================================================================
    def _run_tasks(self, src: SourceConfig, collector: BaseCollector, tasks: list[CollectTask]) -> RunStatus:
        status = RunStatus(success=True)
        seen: set[str] = set()

        if src.fan_out:
            if tasks and not self.cancelled:
                self._run_fan_out(src, collector, tasks, seen, status)
            return status

        for i, task in enumerate(tasks):
            if i > 0 and wait(self._task_delay, self._cancel):
                break
            if self.cancelled:
                break
            try:
                records = collector.collect(task)
                self._process(src, task, records, task.limit, seen, status)
            except Exception as e:
                self._task_failed(src, task, e, status)
        return status

    def _run_fan_out(
        self,
        src: SourceConfig,
        collector: BaseCollector,
        tasks: list[CollectTask],
        seen: set[str],
        status: RunStatus,
    ) -> None:
        """Collect all tasks concurrently; cap each task's fresh records, then the concatenation."""
        with ThreadPoolExecutor(max_workers=min(len(tasks), self._max_threads)) as pool:
            futures = [pool.submit(collector.collect, t) for t in tasks]

        combined: list[Record] = []
        taken = set(seen)
        for task, fut in zip(tasks, futures):
            try:
                fresh = self._fresh(src, fut.result(), task.limit, taken)
            except Exception as e:
                self._task_failed(src, task, e, status)
                continue
            taken.update(r.id for r in fresh)
            combined.extend(fresh)

        batch = CollectTask(
            source=src.name,
            label=tasks[0].label if len(tasks) == 1 else f"{len(tasks)} searches",
            limit=src.max_per_run,
        )
        try:
            self._process(src, batch, combined, src.max_per_run, seen, status)
        except Exception as e:
            self._task_failed(src, batch, e, status)

    def _process(
        self,
        src: SourceConfig,
        task: CollectTask,
        records: list[Record],
        limit: int | None,
        seen: set[str],
        status: RunStatus,
    ) -> None:
        fresh = self._fresh(src, records, limit, seen)
        seen.update(r.id for r in fresh)

        logging_bridge.activity({
            "component": "job_feed.engine",
            "op": "task",
            "source": src.name,
            "task": task.label,
            "collected": len(records),
            "new": len(fresh),
        })
        if not fresh:
            return

        self._store.add(src.name, fresh)
        status.jobs_found += len(fresh)
        self._announce(render.task_header(src, task, len(fresh)))

        for i, rec in enumerate(fresh):
            if i > 0:
                # cancellation only shortens the wait; records already stored are still delivered
                wait(self._item_delay, self._cancel)
            self._deliver(src, rec, status)

    def _fresh(self, src: SourceConfig, records: list[Record], limit: int | None, seen: set[str]) -> list[Record]:
        # drop in-run duplicates, then ids already emitted, then cap
        out: list[Record] = []
        batch_ids: set[str] = set()
        for rec in records:
            if limit is not None and len(out) >= limit:
                break
            if rec.id in seen or rec.id in batch_ids:
                continue
            batch_ids.add(rec.id)
            if self._store.exists(src.name, rec.id):
                continue
            out.append(rec)
        return out

    def _deliver(self, src: SourceConfig, rec: Record, status: RunStatus) -> None:
        try:
            ok = self._sink.deliver(rec)
            err = None if ok else "sink returned False"
        except Exception as e:
            ok, err = False, repr(e)
        if not ok:
            status.error_count += 1
            logging_bridge.error({
                "component": "job_feed.engine",
                "op": "deliver",
                "source": src.name,
                "id": rec.id,
                "error": err,
            })

    def _task_failed(self, src: SourceConfig, task: CollectTask, err: BaseException, status: RunStatus) -> None:
        status.error_count += 1
        logging_bridge.error({
            "component": "job_feed.engine",
            "op": "task",
            "source": src.name,
            "task": task.label,
            "error": repr(err),
        })
        self._announce(render.task_error(src, task, err))

    # =========================================================================
    # SINK HELPERS
    # =========================================================================
    def _announce_required(self, text: str) -> None:
        try:
            ok = self._sink.announce(text)
        except Exception as e:
            raise InfrastructureError(f"notification sink unreachable: {e!r}") from e
        if not ok:
            raise InfrastructureError("notification sink refused the opening announcement")

    def _announce(self, text: str) -> bool:
        """Best-effort announcement; failures are logged, never counted."""
        try:
            ok = bool(self._sink.announce(text))
        except Exception as e:
            ok = False
            logging_bridge.error({
                "component": "job_feed.engine",
                "op": "announce",
                "error": repr(e),
            })
        return ok
