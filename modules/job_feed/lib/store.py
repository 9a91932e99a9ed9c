"""
Per-source membership store: which record ids have already been emitted.

The in-memory id sets are authoritative for `exists()` (never touches disk).
Writes go to the durable SQLite adapter; when it is unreachable the whole id
list for the source is rewritten to the JSON fallback file instead. Either way
each source keeps at most `capacity` ids, newest kept.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from typing import Any, Protocol

from . import logging_bridge
from .db import StoreDurabilityError, membership_row
from .models import CacheStats, MembershipEntry, Record
from .utils import iso_utc, utc_now

DEFAULT_CAPACITY = 1000


class DurableAdapter(Protocol):
    name: str
    connected: bool

    def upsert_many(self, source: str, rows: Iterable[dict[str, Any]]) -> int: ...
    def find_ids(self, source: str) -> list[str]: ...
    def count_rows(self, source: str) -> int: ...
    def find_oldest_after_skip(self, source: str, skip: int) -> str | None: ...
    def delete_older_than(self, source: str, inserted_at: str) -> int: ...
    def delete_all(self, source: str) -> int: ...
    def oldest_newest(self, source: str) -> tuple[str | None, str | None]: ...


class FallbackAdapter(Protocol):
    name: str

    def read_ids(self, source: str) -> list[str]: ...
    def write_ids(self, source: str, ids: list[str]) -> None: ...


class MembershipStore:
    def __init__(
        self,
        durable: DurableAdapter | None,
        fallback: FallbackAdapter,
        *,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if int(capacity) < 1:
            raise ValueError("capacity must be >= 1")
        self._durable = durable
        self._fallback = fallback
        self.capacity = int(capacity)
        self._clock = clock
        # source -> ids in insertion order (dict used as an ordered set)
        self._ids: dict[str, dict[str, None]] = {}
        self._lock = threading.RLock()

    # ---- introspection -----------------------------------------------------

    @property
    def durable_available(self) -> bool:
        return bool(self._durable is not None and getattr(self._durable, "connected", False))

    @property
    def backend(self) -> str:
        return self._durable.name if self.durable_available else self._fallback.name  # type: ignore[union-attr]

    def sources(self) -> list[str]:
        with self._lock:
            return list(self._ids)

    def ids(self, source: str) -> list[str]:
        """Snapshot of the in-memory ids for `source`, oldest first."""
        with self._lock:
            return list(self._ids.get(source, {}))

    # ---- loading -----------------------------------------------------------

    def initialize(self, source: str) -> int:
        """
        Load the id set for `source` from whichever adapter is authoritative.
        Never raises; on adapter error the source starts empty.
        """
        with self._lock:
            backend = self.backend
            try:
                if self.durable_available:
                    ids = self._durable.find_ids(source)  # type: ignore[union-attr]
                else:
                    ids = self._fallback.read_ids(source)
            except (StoreDurabilityError, OSError, ValueError) as e:
                logging_bridge.warning({
                    "component": "job_feed.store",
                    "op": "initialize",
                    "source": source,
                    "backend": backend,
                    "error": repr(e),
                })
                ids = []
            self._ids[source] = dict.fromkeys(ids)
            n = len(self._ids[source])

        logging_bridge.activity({
            "component": "job_feed.store",
            "op": "initialize",
            "source": source,
            "backend": backend,
            "count": n,
        })
        return n

    def initialize_all(self, sources: Iterable[str]) -> dict[str, int]:
        return {s: self.initialize(s) for s in sources}

    # ---- hot path ----------------------------------------------------------

    def exists(self, source: str, record_id: str) -> bool:
        bucket = self._ids.get(source)
        return bucket is not None and record_id in bucket

    # ---- writes ------------------------------------------------------------

    def add(self, source: str, records: Sequence[Record]) -> int:
        """
        Remember `records` for `source` and persist them.
        Returns the number of records handed in (0 for an empty batch).
        """
        if not records:
            return 0

        with self._lock:
            bucket = self._ids.setdefault(source, {})
            for r in records:
                bucket.setdefault(r.id, None)

            inserted_at = iso_utc(self._clock())
            try:
                if not self.durable_available:
                    raise StoreDurabilityError("durable store not connected")
                self._durable.upsert_many(  # type: ignore[union-attr]
                    source,
                    [membership_row(MembershipEntry(source, r.id, inserted_at), r) for r in records],
                )
            except StoreDurabilityError as e:
                logging_bridge.warning({
                    "component": "job_feed.store",
                    "op": "add",
                    "source": source,
                    "fallback": self._fallback.name,
                    "error": str(e),
                })
                self._save_fallback(source)
                return len(records)

            logging_bridge.activity({
                "component": "job_feed.store",
                "op": "add",
                "source": source,
                "backend": self._durable.name,  # type: ignore[union-attr]
                "count": len(records),
            })
            self._evict(source)
        return len(records)

    def clear(self, source: str) -> bool:
        """
        Forget everything for `source`: memory, durable rows, fallback file.
        Every step is attempted; returns False if any of them failed.
        """
        ok = True
        with self._lock:
            self._ids[source] = {}

            if self.durable_available:
                try:
                    self._durable.delete_all(source)  # type: ignore[union-attr]
                except StoreDurabilityError:
                    ok = False

            try:
                self._fallback.write_ids(source, [])
            except OSError:
                ok = False

        logging_bridge.activity({
            "component": "job_feed.store",
            "op": "clear",
            "source": source,
            "ok": ok,
        })
        return ok

    def clear_all(self, sources: Iterable[str] | None = None) -> bool:
        names = list(sources) if sources is not None else self.sources()
        results = [self.clear(s) for s in names]
        return all(results)

    # ---- stats -------------------------------------------------------------

    def stats(self, source: str) -> CacheStats:
        if self.durable_available:
            try:
                count = self._durable.count_rows(source)  # type: ignore[union-attr]
                oldest, newest = self._durable.oldest_newest(source)  # type: ignore[union-attr]
                return CacheStats(count=count, backend=self._durable.name, oldest=oldest, newest=newest)  # type: ignore[union-attr]
            except StoreDurabilityError as e:
                logging_bridge.warning({
                    "component": "job_feed.store",
                    "op": "stats",
                    "source": source,
                    "error": str(e),
                })
        with self._lock:
            count = len(self._ids.get(source, {}))
        return CacheStats(count=count, backend=self._fallback.name)

    def all_stats(self, sources: Iterable[str] | None = None) -> dict[str, Any]:
        """Stats for every source plus a `total` count."""
        names = list(sources) if sources is not None else self.sources()
        out: dict[str, Any] = {}
        total = 0
        for s in names:
            st = self.stats(s)
            out[s] = st
            total += st.count
        out["total"] = total
        return out

    # ---- internal ----------------------------------------------------------

    def _evict(self, source: str) -> None:
        """Keep the newest `capacity` durable rows, then resync memory from disk."""
        try:
            count = self._durable.count_rows(source)  # type: ignore[union-attr]
            if count <= self.capacity:
                return
            cutoff = self._durable.find_oldest_after_skip(source, self.capacity - 1)  # type: ignore[union-attr]
            if cutoff is None:
                return
            deleted = self._durable.delete_older_than(source, cutoff)  # type: ignore[union-attr]
            self._ids[source] = dict.fromkeys(self._durable.find_ids(source))  # type: ignore[union-attr]
        except StoreDurabilityError as e:
            logging_bridge.error({
                "component": "job_feed.store",
                "op": "evict",
                "source": source,
                "error": str(e),
            })
            return

        logging_bridge.activity({
            "component": "job_feed.store",
            "op": "evict",
            "source": source,
            "cutoff": cutoff,
            "deleted": deleted,
            "remaining": len(self._ids[source]),
        })

    def _save_fallback(self, source: str) -> None:
        ids = list(self._ids.get(source, {}))
        if len(ids) > self.capacity:
            ids = ids[-self.capacity :]
            self._ids[source] = dict.fromkeys(ids)
        try:
            self._fallback.write_ids(source, ids)
        except OSError:
            # file_cache already logged it; memory still holds the ids for this process
            return
        logging_bridge.activity({
            "component": "job_feed.store",
            "op": "save_fallback",
            "source": source,
            "backend": self._fallback.name,
            "count": len(ids),
        })
