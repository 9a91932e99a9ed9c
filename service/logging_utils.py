# service/logging_utils.py
from __future__ import annotations

import contextlib
import datetime as _dt
import json
import os
import socket
import threading
from collections.abc import Iterable
from typing import Any

# ---- Configuration (env-driven) ---------------------------------------------

# Prefixes for the two daily JSONL streams
_ACTIVITY_PREFIX = os.getenv("ACTIVITY_LOG_PREFIX", "activity")
_ERROR_PREFIX = os.getenv("ERROR_LOG_PREFIX", "error")

# Key substrings whose values never reach disk (case-insensitive)
_DEFAULT_REDACT_KEYS = {
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "webhook",
    "authorization",
    "cookie",
}

_REDACTED = "***REDACTED***"
_HOSTNAME = socket.gethostname()
_PID = os.getpid()

# Collectors run in threads; one append at a time per process.
_WRITE_LOCK = threading.Lock()


# ---- Public API --------------------------------------------------------------


def write_activity_log(record: dict[str, Any]) -> None:
    """
    Append one structured activity record to today's activity JSONL file.
    Never mutates `record`; may raise on unrecoverable I/O or serialization errors.
    """
    _write_jsonl(_log_path_for_today(_ACTIVITY_PREFIX), record)


def write_error_log(record: dict[str, Any]) -> None:
    """Append one structured error record, parallel to the activity stream."""
    _write_jsonl(_log_path_for_today(_ERROR_PREFIX), record)


def get_activity_log_path() -> str:
    return _log_path_for_today(_ACTIVITY_PREFIX)


def get_error_log_path() -> str:
    return _log_path_for_today(_ERROR_PREFIX)


def redact(record: dict[str, Any], keys: set[str] | None = None) -> dict[str, Any]:
    """Redacted deep copy of `record` (keys matched by substring, bearer tokens scrubbed)."""
    return _redact_deep(record, keys or _DEFAULT_REDACT_KEYS)


# ---- Internal helpers --------------------------------------------------------


def _log_dir() -> str:
    # Read per call so tests (and the CLI) can point LOG_DIR elsewhere after import.
    return os.getenv("LOG_DIR", "/app/local/logs")


def _max_bytes() -> int:
    try:
        return int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
    except ValueError:
        return 0


def _log_path_for_today(prefix: str) -> str:
    return os.path.join(_log_dir(), f"{prefix}-{_dt.date.today().isoformat()}.jsonl")


def _rotate_if_too_big(path: str) -> None:
    limit = _max_bytes()
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    stamp = _dt.datetime.now().strftime("%Y%m%d-%H%M%S")
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, f"{path}.{stamp}")


def _scrub_bearer(value: str) -> str:
    if "bearer " not in value.lower():
        return value
    scheme = value.split(" ", 1)[0]
    return f"{scheme} {_REDACTED}"


def _key_matches(name: str, patterns: Iterable[str]) -> bool:
    n = name.lower()
    return any(p in n for p in patterns)


def _redact_deep(value: Any, patterns: Iterable[str]) -> Any:
    if isinstance(value, dict):
        return {
            k: (_REDACTED if isinstance(k, str) and _key_matches(k, patterns) else _redact_deep(v, patterns))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_deep(v, patterns) for v in value)
    if isinstance(value, str):
        return _scrub_bearer(value)
    return value


def _write_jsonl(path: str, record: dict[str, Any]) -> None:
    payload = _redact_deep(record, _DEFAULT_REDACT_KEYS)
    meta = payload.get("_meta") if isinstance(payload.get("_meta"), dict) else {}
    payload["_meta"] = {**meta, "host": _HOSTNAME, "pid": _PID}

    # Serialize before touching the file; default=str covers datetimes and enums
    data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")

    with _WRITE_LOCK:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        _rotate_if_too_big(path)
        fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
        try:
            os.write(fd, data)
        finally:
            os.close(fd)
