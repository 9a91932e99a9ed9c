# service/cli.py
"""
User-facing command-line entrypoints for the container.

Subcommands
-----------
serve
    - Starts the APScheduler service loop via service.scheduler.start()
    - Registers signal handlers for graceful shutdown

run MODULE [--kwargs k=v ...]
    - Executes a module ad-hoc via runner.run_module_once(...)
    - Displays a concise success/failure summary

feed run --scope single|all_boards|everything [--source S] [--window W] [--member M]
feed stats
feed status
feed clear [--source S]
    - Operator commands for the job feed. Settings come from the first
      'modules.job_feed' job in the service config, overridden by flags.

list-jobs
    - Loads config via config_schema.load_config() and prints configured jobs

validate-config
    - Loads/validates config and returns nonzero on error
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")

FEED_MODULE = "modules.job_feed"


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


# -------------------------- Utility / glue code ------------------------------
def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """
    Parse key=value strings into a dict; JSON-looking values are decoded,
    everything else is kept as a raw string.
    """
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {raw!r})")
        k, v = (s.strip() for s in raw.split("=", 1))
        if not k:
            raise argparse.ArgumentTypeError(f"Invalid key in --kwargs item {raw!r}")
        try:
            out[k] = json.loads(v)
        except json.JSONDecodeError:
            out[k] = v
    return out


def _print_table(rows: Iterable[tuple[str, str]], headers: tuple[str, str] = ("ID", "DETAILS")) -> None:
    rows = list(rows)
    w0 = max([len(headers[0]), *(len(r[0]) for r in rows)])
    w1 = max([len(headers[1]), *(len(r[1]) for r in rows)])
    sep = f"+-{'-' * w0}-+-{'-' * w1}-+"
    print(sep)
    print(f"| {headers[0].ljust(w0)} | {headers[1].ljust(w1)} |")
    print(sep)
    for c0, c1 in rows:
        print(f"| {c0.ljust(w0)} | {c1.ljust(w1)} |")
    print(sep)


def _job_rows(cfg: dict[str, Any]) -> list[tuple[str, str]]:
    out = []
    for idx, j in enumerate(cfg.get("jobs") or []):
        jid = str(j.get("id") or j.get("name") or idx)
        desc = j.get("summary") or j.get("description") or json.dumps(j.get("trigger"), default=str)
        out.append((jid, f"{j.get('module')} | {desc}"))
    return out


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
    except KeyboardInterrupt:
        return 130
    except _config_schema.ConfigError as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1
    print("OK: configuration is valid.")
    return 0


def cmd_list_jobs(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
    except _config_schema.ConfigError as e:
        print(f"ERROR: failed to list jobs: {e}", file=sys.stderr)
        return 1
    rows = _job_rows(cfg)
    if not rows:
        print("No jobs found in config.")
        return 0
    _print_table(rows, headers=("JOB", "DETAILS"))
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    start_time = time.monotonic()
    kwargs = _parse_kv_pairs(args.kwargs or [])
    LOG.debug("Run module %s with kwargs=%s", args.module, kwargs)

    try:
        result, run_id = _runner.run_module_once(module=args.module, kwargs=kwargs, trigger_type="adhoc")
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "ts": _now_iso(),
            "where": "cli.run",
            "module": args.module,
            "kwargs": kwargs,
            "error": repr(e),
            "duration_ms": int((time.monotonic() - start_time) * 1000),
        })
        return 1

    L.write_activity_log({
        "ts": _now_iso(),
        "event": "cli_run",
        "run_id": run_id,
        "module": args.module,
        "trigger_type": "adhoc",
        "ok": result.ok,
        "duration_ms": int((time.monotonic() - start_time) * 1000),
    })
    print(f"{'DONE' if result.ok else 'DEGRADED'}: {result.message}")
    return 0 if result.ok else 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the scheduler until a termination signal is received."""
    L.write_activity_log({"ts": _now_iso(), "event": "serve_start"})
    stop_event = threading.Event()
    sched = None

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        sched = _scheduler.start(config_path=args.config)
        LOG.info("Scheduler started: %r", sched)
        while not stop_event.is_set():
            time.sleep(0.3)
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        LOG.exception("Fatal error in serve: %s", e)
        return 1
    finally:
        if sched is not None:
            sched.stop()
            sched.join(timeout=10.0)
    L.write_activity_log({"ts": _now_iso(), "event": "serve_stop"})
    return 0


# ------------------------------- feed ----------------------------------------
def _feed_kwargs(args: argparse.Namespace) -> dict[str, Any]:
    """Kwargs of the first configured job_feed job, normalized like the runner does, plus flag overrides."""
    cfg = _config_schema.load_config(args.config)
    base: dict[str, Any] = {}
    for job in cfg.get("jobs") or []:
        if job.get("module") == FEED_MODULE:
            base = dict(job.get("kwargs") or {})
            break
    kw = _runner._normalize_kwargs_types(base)
    kw.update(_parse_kv_pairs(getattr(args, "kwargs", None) or []))
    for key in ("scope", "source", "window", "member"):
        value = getattr(args, key, None)
        if value is not None:
            kw[key] = value
    return kw


def _open_feed(args: argparse.Namespace, *, log_sink: bool = False):
    # Imported lazily: only the feed subcommands need the module on the path.
    from modules.job_feed.lib.config import Settings
    from modules.job_feed.lib.notify import LogSink
    from modules.job_feed.lib.pipeline import build_pipeline

    settings = Settings.from_env_and_kwargs(_feed_kwargs(args))
    cancel = threading.Event()
    pipeline = build_pipeline(settings, sink=LogSink() if log_sink else None, cancel_event=cancel)
    return pipeline, cancel


def cmd_feed_run(args: argparse.Namespace) -> int:
    from modules.job_feed.lib.config import ConfigError

    try:
        pipeline, cancel = _open_feed(args)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    def _cancel(signum=None, frame=None):
        LOG.info("Signal %s received; cancelling feed run...", signum)
        cancel.set()

    previous = signal.signal(signal.SIGINT, _cancel)
    try:
        summary = pipeline.orchestrator.run(pipeline.scope())
    finally:
        signal.signal(signal.SIGINT, previous)
        pipeline.close()

    for name, status in summary.statuses.items():
        state = "ok" if status.success else "FAILED"
        print(f"{name}: {state} jobs={status.jobs_found} errors={status.error_count}")
    print(f"total: {summary.total_jobs} new jobs ({summary.error_count} errors)")
    return 0 if summary.success else 1


def cmd_feed_stats(args: argparse.Namespace) -> int:
    from modules.job_feed.lib import render
    from modules.job_feed.lib.config import ConfigError

    try:
        pipeline, _ = _open_feed(args, log_sink=True)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    try:
        stats = pipeline.store.all_stats(pipeline.registry.names())
    finally:
        pipeline.close()
    for line in render.stats_lines(stats):
        print(line)
    return 0


def cmd_feed_status(args: argparse.Namespace) -> int:
    """Last-run status per configured source, as held by this process's tracker."""
    from modules.job_feed.lib import render
    from modules.job_feed.lib.config import ConfigError

    try:
        pipeline, _ = _open_feed(args, log_sink=True)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    try:
        snapshot = {name: pipeline.tracker.get(name) for name in pipeline.registry.names()}
    finally:
        pipeline.close()
    for line in render.status_lines(snapshot):
        print(line)
    return 0


def cmd_feed_clear(args: argparse.Namespace) -> int:
    from modules.job_feed.lib.config import ConfigError

    try:
        pipeline, _ = _open_feed(args, log_sink=True)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    try:
        if args.source:
            name = pipeline.registry.get(args.source).name
            ok = pipeline.store.clear(name)
            cleared = [name]
        else:
            cleared = pipeline.registry.names()
            ok = pipeline.store.clear_all(cleared)
    except KeyError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    finally:
        pipeline.close()
    print(f"{'Cleared' if ok else 'Partially cleared'}: {', '.join(cleared)}")
    return 0 if ok else 1


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="python -m service.cli", description="Service command-line tools")
    p.add_argument("--config", help="Path to config file (fallbacks to CONFIG_PATH env).")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("serve", help="Run the main scheduler loop.")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("run", help="Execute a module ad-hoc via runner.run_module_once().")
    sp.add_argument("module", help="Module path to run (e.g., modules.job_feed).")
    sp.add_argument("--kwargs", metavar="k=v", nargs="*", help="Extra keyword arguments (JSON values supported).")
    sp.set_defaults(func=cmd_run)

    feed = sub.add_parser("feed", help="Job feed operator commands.")
    feed_sub = feed.add_subparsers(dest="feed_cmd", required=True)

    fp = feed_sub.add_parser("run", help="Run the job feed for a scope.")
    fp.add_argument("--scope", choices=["single", "all_boards", "everything"], default="everything")
    fp.add_argument("--source", help="Source name (required for --scope single).")
    fp.add_argument("--window", choices=["day", "week", "month", "all"])
    fp.add_argument("--member", help="One named member of a repository-style source.")
    fp.add_argument("--kwargs", metavar="k=v", nargs="*", help="Override job_feed settings.")
    fp.set_defaults(func=cmd_feed_run)

    fp = feed_sub.add_parser("stats", help="Print cache stats per source.")
    fp.add_argument("--kwargs", metavar="k=v", nargs="*", help="Override job_feed settings.")
    fp.set_defaults(func=cmd_feed_stats)

    fp = feed_sub.add_parser("status", help="Print the last run of each source in this process.")
    fp.add_argument("--kwargs", metavar="k=v", nargs="*", help="Override job_feed settings.")
    fp.set_defaults(func=cmd_feed_status)

    fp = feed_sub.add_parser("clear", help="Forget emitted ids for one source or all.")
    fp.add_argument("--source", help="Source to clear (default: all).")
    fp.add_argument("--kwargs", metavar="k=v", nargs="*", help="Override job_feed settings.")
    fp.set_defaults(func=cmd_feed_clear)

    sp = sub.add_parser("list-jobs", help="Print all jobs from config.")
    sp.set_defaults(func=cmd_list_jobs)

    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
