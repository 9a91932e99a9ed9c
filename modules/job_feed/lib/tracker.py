from __future__ import annotations

import copy
import threading
from collections.abc import Iterable

from .models import RunStatus


class RunStatusTracker:
    """
    Last-run status per source, for the lifetime of the process.

    Whole-source runs overwrite; named-member runs (one repository out of a
    repository-style source) accumulate into the existing counts.
    """

    def __init__(self, sources: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._status: dict[str, RunStatus] = {s: RunStatus() for s in sources}

    def record(self, source: str, status: RunStatus) -> None:
        with self._lock:
            self._status[source] = copy.copy(status)

    def accumulate(self, source: str, status: RunStatus) -> RunStatus:
        with self._lock:
            current = self._status.get(source)
            if current is None or current.last_run is None:
                merged = copy.copy(status)
            else:
                merged = RunStatus(
                    last_run=current.last_run,
                    success=current.success,
                    jobs_found=current.jobs_found + status.jobs_found,
                    error_count=current.error_count + status.error_count,
                )
            self._status[source] = merged
            return copy.copy(merged)

    def get(self, source: str) -> RunStatus:
        with self._lock:
            return copy.copy(self._status.get(source) or RunStatus())

    def sources(self) -> list[str]:
        with self._lock:
            return list(self._status)

    def snapshot(self) -> dict[str, RunStatus]:
        with self._lock:
            return {k: copy.copy(v) for k, v in self._status.items()}
