from __future__ import annotations

from typing import Any

from .lib import render
from .lib.config import Settings
from .lib.logging_bridge import activity as log_activity
from .lib.pipeline import build_pipeline


def run(**kwargs: Any) -> dict[str, Any]:
    """
    Entry point for the 'job_feed' module.

    Accepts kwargs (from scheduler/runner), including:
      sources_path: str                        # JSON source definitions
      sqlite_path: str = "/app/local/state/jobfeed.db"
      cache_dir: str = "/app/local/state/job_cache"
      cache_capacity: int = 1000
      webhook_url_env: str = "JOB_FEED_WEBHOOK_URL"   # env var NAME, resolved by the runner
      task_delay_sec: float = 5
      item_delay_sec: float = 1
      max_threads: int = 4
      skip_network: bool = False

      # What to run
      scope: "single" | "all_boards" | "everything" = "everything"
      source: str          # scope=single
      window: "day" | "week" | "month" | "all" = "day"
      member: str          # one named member of a repository-style source

    Returns:
      meta dict (no HTML): the run summary, a one-line message, the store
      backend and the process-wide last-run status lines.
    """
    settings = Settings.from_env_and_kwargs(kwargs)
    pipeline = build_pipeline(settings)
    scope = pipeline.scope()

    log_activity({
        "component": "job_feed.main",
        "op": "start",
        "scope": scope.mode.value,
        "source": settings.source,
        "window": settings.window.value if settings.window else None,
        "member": settings.member,
        "backend": pipeline.store.backend,
        "flags": {"skip_network": settings.skip_network},
    })

    try:
        summary = pipeline.orchestrator.run(scope)
        backend = pipeline.store.backend
        status = render.status_lines(pipeline.tracker.snapshot())
    finally:
        pipeline.close()

    meta = summary.as_dict()
    meta["message"] = (
        f"{summary.total_jobs} new jobs across {len(summary.statuses)} sources "
        f"({summary.error_count} errors)"
    )
    meta["backend"] = backend
    meta["status"] = status
    return meta
