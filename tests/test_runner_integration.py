import json
import re

import pytest

from modules.job_feed.lib.config import ConfigError


def _activity_records():
    from service import logging_utils

    with open(logging_utils.get_activity_log_path(), encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


def test_runner_runs_job_feed(feed_kwargs):
    from service import runner

    result, run_id = runner.run_module_once(module="modules.job_feed", kwargs=feed_kwargs)

    assert isinstance(run_id, str) and re.match(r"^[a-f0-9]+$", run_id)
    assert result.ok is True
    assert result.meta["total_jobs"] == 3
    assert result.meta["backend"] == "sqlite"
    assert result.meta["by_source"]["demo"]["jobs_found"] == 2
    assert result.meta["by_source"]["repos"]["jobs_found"] == 1
    assert result.message == "3 new jobs across 2 sources (0 errors)"
    assert any(line.startswith("demo: ok at ") for line in result.meta["status"])

    # one runner record per run, tagged with the run id
    runs = [r for r in _activity_records() if r.get("run_id") == run_id]
    assert len(runs) == 1 and runs[0]["ok"] is True

    again, _ = runner.run_module_once(module="modules.job_feed", kwargs=feed_kwargs)
    assert again.meta["total_jobs"] == 0


def test_runner_single_scope_from_string_kwargs(feed_kwargs):
    from service import runner

    kwargs = {**feed_kwargs, "scope": "single", "source": "repos", "member": "internships", "cache_capacity": "10"}
    result, _ = runner.run_module_once(module="modules.job_feed", kwargs=kwargs, trigger_type="adhoc")
    assert result.meta["mode"] == "single"
    assert list(result.meta["by_source"]) == ["repos"]
    assert result.meta["total_jobs"] == 1


def test_runner_reports_degraded_run(tmp_path):
    from service import runner

    kwargs = {
        "sources": json.dumps([
            {"name": "demo", "kind": "stub", "tasks": "named_searches", "params": {"searches": [{"name": "x"}]}},
            {"name": "broken", "kind": "no-such-collector"},
        ]),
        "sqlite_path": str(tmp_path / "feed.db"),
        "cache_dir": str(tmp_path / "cache"),
        "task_delay_sec": "0",
        "item_delay_sec": "0",
        "scope": "all_boards",
    }
    result, _ = runner.run_module_once(module="modules.job_feed", kwargs=kwargs)
    assert result.ok is False
    assert result.meta["error_count"] == 1
    assert result.meta["by_source"]["demo"]["success"] is True


def test_runner_propagates_config_errors(feed_kwargs):
    from service import runner

    with pytest.raises(ConfigError):
        runner.run_module_once(module="modules.job_feed", kwargs={**feed_kwargs, "scope": "galaxy"})


def test_env_kwargs_are_resolved(monkeypatch):
    from service import runner

    monkeypatch.setenv("JOB_FEED_WEBHOOK_URL", "https://hooks.example/secret")
    out = runner._normalize_kwargs_types(
        {
            "webhook_url_env": "JOB_FEED_WEBHOOK_URL",
            "missing_env": "NOT_SET_ANYWHERE",
            "cache_capacity": "250",
            "skip_network": "yes",
            "task_delay_sec": "0.5",
            "sources": '[{"name": "a"}]',
            "window": "week",
        }
    )
    assert out == {
        "webhook_url_env": "https://hooks.example/secret",
        "missing_env": "",
        "cache_capacity": 250,
        "skip_network": True,
        "task_delay_sec": 0.5,
        "sources": [{"name": "a"}],
        "window": "week",
    }
