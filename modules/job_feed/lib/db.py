from __future__ import annotations

import contextlib
import os
import sqlite3
from collections.abc import Iterable, Mapping
from typing import Any

from .logging_bridge import error as log_error
from .models import MembershipEntry, Record

_ROW_FIELDS = ("title", "company", "location", "url", "posted_date", "description", "metadata")


class StoreDurabilityError(RuntimeError):
    """The durable store is unreachable or a read/write against it failed."""


def membership_row(entry: MembershipEntry, record: Record) -> dict[str, Any]:
    """
    Flatten a membership and its Record into the persisted column set.
    """
    return {
        "source": entry.source,
        "record_id": entry.id,
        "title": record.title or "",
        "company": record.company or "",
        "location": record.location or "Not specified",
        "url": record.url or "",
        "posted_date": record.posted_date or "Not specified",
        "description": record.description or "",
        "metadata": record.metadata or "",
        "inserted_at": entry.inserted_at,
    }


class SqliteMembershipDB:
    """
    Durable adapter: one `memberships` table keyed by (source, record_id).

    Every call opens a short-lived connection. Until `connect()` succeeds every
    operation raises StoreDurabilityError, which the store treats as "unreachable".
    """

    name = "sqlite"

    def __init__(self, sqlite_path: str) -> None:
        self.sqlite_path = sqlite_path
        self.connected = False

    # ---- lifecycle ---------------------------------------------------------

    def connect(self) -> bool:
        """
        Ensure the SQLite database and schema exist. Safe to call multiple times.
        Returns False (and logs) instead of raising when the file cannot be opened.
        """
        try:
            _ensure_dir(self.sqlite_path)
            with contextlib.closing(_connect(self.sqlite_path)) as conn:
                _apply_pragmas(conn)
                _ensure_schema(conn)
        except (sqlite3.Error, OSError) as e:
            self.connected = False
            log_error({
                "component": "job_feed.db",
                "op": "connect",
                "sqlite_path": self.sqlite_path,
                "error": repr(e),
            })
            return False
        self.connected = True
        return True

    def close(self) -> None:
        self.connected = False

    # ---- writes ------------------------------------------------------------

    def upsert_many(self, source: str, rows: Iterable[Mapping[str, Any]]) -> int:
        """
        Insert or refresh rows for `source`. A re-upserted id gets the new
        inserted_at, so it counts as fresh for eviction.
        """
        params = [
            (
                source,
                str(r["record_id"]),
                *(str(r.get(f) or "") for f in _ROW_FIELDS),
                str(r["inserted_at"]),
            )
            for r in rows
        ]
        if not params:
            return 0

        def _op(conn: sqlite3.Connection) -> int:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.executemany(
                """
                INSERT INTO memberships
                  (source, record_id, title, company, location, url, posted_date,
                   description, metadata, inserted_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (source, record_id) DO UPDATE SET
                  title = excluded.title,
                  company = excluded.company,
                  location = excluded.location,
                  url = excluded.url,
                  posted_date = excluded.posted_date,
                  description = excluded.description,
                  metadata = excluded.metadata,
                  inserted_at = excluded.inserted_at
                """,
                params,
            )
            conn.commit()
            return len(params)

        return self._run("upsert_many", source, _op)

    def delete_older_than(self, source: str, inserted_at: str) -> int:
        def _op(conn: sqlite3.Connection) -> int:
            cur = conn.execute(
                "DELETE FROM memberships WHERE source = ? AND inserted_at < ?",
                (source, inserted_at),
            )
            conn.commit()
            return int(cur.rowcount or 0)

        return self._run("delete_older_than", source, _op)

    def delete_all(self, source: str) -> int:
        def _op(conn: sqlite3.Connection) -> int:
            cur = conn.execute("DELETE FROM memberships WHERE source = ?", (source,))
            conn.commit()
            return int(cur.rowcount or 0)

        return self._run("delete_all", source, _op)

    # ---- reads -------------------------------------------------------------

    def find_ids(self, source: str) -> list[str]:
        """All ids for `source`, oldest insertion first."""

        def _op(conn: sqlite3.Connection) -> list[str]:
            cur = conn.execute(
                "SELECT record_id FROM memberships WHERE source = ? ORDER BY inserted_at ASC, id ASC",
                (source,),
            )
            return [row[0] for row in cur.fetchall()]

        return self._run("find_ids", source, _op)

    def count_rows(self, source: str) -> int:
        def _op(conn: sqlite3.Connection) -> int:
            (n,) = conn.execute("SELECT COUNT(*) FROM memberships WHERE source = ?", (source,)).fetchone()
            return int(n or 0)

        return self._run("count_rows", source, _op)

    def find_oldest_after_skip(self, source: str, skip: int) -> str | None:
        """
        inserted_at of the row at position `skip` when ordered newest first,
        i.e. the cutoff that keeps the `skip + 1` newest rows.
        """

        def _op(conn: sqlite3.Connection) -> str | None:
            row = conn.execute(
                """
                SELECT inserted_at FROM memberships
                WHERE source = ?
                ORDER BY inserted_at DESC, id DESC
                LIMIT 1 OFFSET ?
                """,
                (source, max(0, int(skip))),
            ).fetchone()
            return row[0] if row else None

        return self._run("find_oldest_after_skip", source, _op)

    def oldest_newest(self, source: str) -> tuple[str | None, str | None]:
        def _op(conn: sqlite3.Connection) -> tuple[str | None, str | None]:
            row = conn.execute(
                "SELECT MIN(inserted_at), MAX(inserted_at) FROM memberships WHERE source = ?",
                (source,),
            ).fetchone()
            return (row[0], row[1]) if row else (None, None)

        return self._run("oldest_newest", source, _op)

    def latest_rows(self, source: str, limit: int = 15) -> list[tuple[str, str, str, str]]:
        """(record_id, title, url, inserted_at) for the newest `limit` rows."""

        def _op(conn: sqlite3.Connection) -> list[tuple[str, str, str, str]]:
            cur = conn.execute(
                """
                SELECT record_id, title, url, inserted_at FROM memberships
                WHERE source = ?
                ORDER BY inserted_at DESC
                LIMIT ?
                """,
                (source, limit),
            )
            return [tuple(r) for r in cur.fetchall()]  # type: ignore[misc]

        return self._run("latest_rows", source, _op)

    def list_sources(self) -> list[str]:
        def _op(conn: sqlite3.Connection) -> list[str]:
            cur = conn.execute("SELECT DISTINCT source FROM memberships ORDER BY source")
            return [row[0] for row in cur.fetchall()]

        return self._run("list_sources", "*", _op)

    # ---- internal ----------------------------------------------------------

    def _run(self, op: str, source: str, fn):
        if not self.connected:
            raise StoreDurabilityError(f"durable store not connected ({self.sqlite_path})")
        try:
            with contextlib.closing(_connect(self.sqlite_path)) as conn:
                _apply_pragmas(conn)
                return fn(conn)
        except (sqlite3.Error, OSError) as e:
            log_error({
                "component": "job_feed.db",
                "op": op,
                "source": source,
                "sqlite_path": self.sqlite_path,
                "error": repr(e),
            })
            raise StoreDurabilityError(f"{op} failed for {source!r}: {e}") from e


def reset_db(sqlite_path: str) -> None:
    """
    Remove the DB file entirely (for pytest fixtures).
    Safe if it doesn't exist.
    """
    with contextlib.suppress(FileNotFoundError):
        os.remove(sqlite_path)


# ---- Internal utilities -----------------------------------------------------


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # isolation_level=None gives autocommit mode; we'll manage transactions explicitly.
    return sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None)


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA cache_size=-8000;")  # approx 8MB cache


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS memberships (
          id INTEGER PRIMARY KEY,
          source      TEXT NOT NULL,
          record_id   TEXT NOT NULL,
          title       TEXT NOT NULL DEFAULT '',
          company     TEXT NOT NULL DEFAULT '',
          location    TEXT NOT NULL DEFAULT '',
          url         TEXT NOT NULL DEFAULT '',
          posted_date TEXT NOT NULL DEFAULT '',
          description TEXT NOT NULL DEFAULT '',
          metadata    TEXT NOT NULL DEFAULT '',
          inserted_at TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_memberships_source_record
          ON memberships (source, record_id);
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_memberships_source_inserted
          ON memberships (source, inserted_at);
        """
    )
