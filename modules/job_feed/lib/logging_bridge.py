"""
Structured log records for the job feed.

Records go to the service's JSONL streams (activity / error) when the
`service` package is importable, and always to stdlib logging under
`job_feed.<stream>`. Import is silent.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

try:
    from service import logging_utils as _jsonl  # type: ignore
except ImportError:  # running lib/ on its own (scripts, notebooks)
    _jsonl = None

_SECRET_HINTS = ("password", "token", "secret", "webhook", "authorization", "api_key", "apikey")


def _scrub(record: dict[str, Any]) -> dict[str, Any]:
    if _jsonl is not None:
        return _jsonl.redact(record)
    return {k: ("***REDACTED***" if any(h in str(k).lower() for h in _SECRET_HINTS) else v) for k, v in record.items()}


def _writer(stream: str) -> Callable[[dict[str, Any]], None] | None:
    if _jsonl is None:
        return None
    return _jsonl.write_error_log if stream == "error" else _jsonl.write_activity_log


def _emit(stream: str, level: int, record: dict[str, Any]) -> None:
    payload = _scrub(record)
    logger = logging.getLogger(f"job_feed.{stream}")
    write = _writer(stream)
    if write is not None:
        try:
            write(payload)
        except (OSError, TypeError, ValueError):
            # JSONL stream unavailable; stdlib logging still gets the record.
            logger.exception("jsonl write failed for %s record", stream)
        else:
            if level < logging.WARNING:
                return
    logger.log(level, payload)


def activity(record: dict[str, Any]) -> None:
    _emit("activity", logging.INFO, record)


def warning(record: dict[str, Any]) -> None:
    """Degraded but working: durable store down, unknown window, skipped source."""
    _emit("activity", logging.WARNING, {**record, "level": "warning"})


def error(record: dict[str, Any]) -> None:
    _emit("error", logging.ERROR, record)
