# job_feed/collectors/__init__.py
from __future__ import annotations

from .base import BaseCollector, CollectorError
from .json_feed import JsonFeedCollector
from .registry import all_kinds, get, register
from .stub import StubCollector

__all__ = [
    "BaseCollector",
    "CollectorError",
    "JsonFeedCollector",
    "StubCollector",
    "all_kinds",
    "get",
    "register",
]
