from __future__ import annotations

import hashlib
import threading
from datetime import datetime, timezone
from typing import Any


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc(dt: datetime) -> str:
    """
    UTC ISO-8601 timestamp with microseconds and a 'Z' suffix.
    Fixed width, so string order matches time order.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def now_iso() -> str:
    return iso_utc(utc_now())


def stable_id(prefix: str, *parts: str) -> str:
    """Content-hash id for records whose platform offers no id of its own."""
    digest = hashlib.sha1("|".join(p.strip() for p in parts).encode("utf-8")).hexdigest()[:16]
    return f"{prefix}-{digest}"


def wait(seconds: float, cancel: threading.Event | None = None) -> bool:
    """
    Sleep for `seconds`, waking early if `cancel` is set.
    Returns True if the wait was cancelled.
    """
    if seconds <= 0:
        return bool(cancel and cancel.is_set())
    if cancel is None:
        threading.Event().wait(seconds)
        return False
    return cancel.wait(seconds)
