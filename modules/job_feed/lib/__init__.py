# modules/job_feed/lib/__init__.py
from __future__ import annotations

# Importing the collectors package registers the built-in collector kinds.
from . import collectors as _collectors  # noqa: F401
from .config import ConfigError, Settings, SourceConfig
from .db import SqliteMembershipDB, StoreDurabilityError
from .engine import InfrastructureError, Orchestrator
from .file_cache import FileIdCache
from .models import CacheStats, CollectTask, Record, RunStatus, RunSummary, Scope, ScopeMode, TimeWindow
from .notify import DeliveryError, LogSink, WebhookSink
from .pipeline import Pipeline, build_pipeline
from .sources import SourceRegistry
from .store import MembershipStore
from .tracker import RunStatusTracker

__all__ = [
    "CacheStats",
    "CollectTask",
    "ConfigError",
    "DeliveryError",
    "FileIdCache",
    "InfrastructureError",
    "LogSink",
    "MembershipStore",
    "Orchestrator",
    "Pipeline",
    "Record",
    "RunStatus",
    "RunStatusTracker",
    "RunSummary",
    "Scope",
    "ScopeMode",
    "Settings",
    "SourceConfig",
    "SourceRegistry",
    "SqliteMembershipDB",
    "StoreDurabilityError",
    "TimeWindow",
    "WebhookSink",
    "build_pipeline",
]
