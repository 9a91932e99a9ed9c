import json
import os

from service import logging_utils


def _read(path):
    with open(path, encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


def test_activity_records_are_redacted(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    logging_utils.write_activity_log({
        "component": "job_feed.notify",
        "webhook_url": "https://hooks.example/abc",
        "headers": {"Authorization": "Bearer abc123"},
        "note": "Bearer xyz",
    })

    path = logging_utils.get_activity_log_path()
    assert os.path.dirname(path) == str(tmp_path)
    (rec,) = _read(path)
    assert rec["component"] == "job_feed.notify"
    assert rec["webhook_url"] == "***REDACTED***"
    assert rec["headers"]["Authorization"] == "***REDACTED***"
    assert rec["note"] == "Bearer ***REDACTED***"
    assert {"host", "pid"} <= set(rec["_meta"])


def test_redact_does_not_mutate():
    original = {"token": "t", "nested": [{"api_key": "k", "ok": 1}]}
    out = logging_utils.redact(original)
    assert out == {"token": "***REDACTED***", "nested": [{"api_key": "***REDACTED***", "ok": 1}]}
    assert original["token"] == "t"


def test_failed_task_lands_in_error_log(feed_kwargs):
    from service import runner

    kwargs = {
        **feed_kwargs,
        "sources": [{"name": "flaky", "kind": "stub", "tasks": "named_searches", "params": {"searches": [{"name": "x", "fail": "HTTP 503"}]}}],
    }
    result, _ = runner.run_module_once(module="modules.job_feed", kwargs=kwargs)
    assert result.meta["error_count"] == 1

    errors = _read(logging_utils.get_error_log_path())
    assert any(e.get("component") == "job_feed.engine" and e.get("source") == "flaky" for e in errors)
