# tests/test_job_feed_tracker.py
from datetime import datetime, timezone

from modules.job_feed.lib.models import RunStatus
from modules.job_feed.lib.tracker import RunStatusTracker

T1 = datetime(2025, 1, 1, 7, 30, tzinfo=timezone.utc)
T2 = datetime(2025, 1, 2, 7, 30, tzinfo=timezone.utc)


def test_defaults_for_known_and_unknown_sources():
    tr = RunStatusTracker(["linkedin"])
    assert tr.sources() == ["linkedin"]
    assert tr.get("linkedin") == RunStatus()
    assert tr.get("monster") == RunStatus()


def test_record_overwrites():
    tr = RunStatusTracker()
    tr.record("linkedin", RunStatus(last_run=T1, success=True, jobs_found=4, error_count=1))
    tr.record("linkedin", RunStatus(last_run=T2, success=True, jobs_found=2))
    assert tr.get("linkedin") == RunStatus(last_run=T2, success=True, jobs_found=2, error_count=0)


def test_accumulate_adds_counts_and_keeps_last_run():
    tr = RunStatusTracker()
    tr.record("github", RunStatus(last_run=T1, success=True, jobs_found=3, error_count=1))

    merged = tr.accumulate("github", RunStatus(last_run=T2, success=True, jobs_found=2, error_count=2))
    assert merged == RunStatus(last_run=T1, success=True, jobs_found=5, error_count=3)
    assert tr.get("github") == merged


def test_accumulate_into_never_run_source_takes_status():
    tr = RunStatusTracker(["github"])
    status = RunStatus(last_run=T2, success=True, jobs_found=2)
    assert tr.accumulate("github", status) == status


def test_returned_statuses_are_copies():
    tr = RunStatusTracker()
    tr.record("dice", RunStatus(last_run=T1, success=True, jobs_found=1))
    got = tr.get("dice")
    got.jobs_found = 99
    assert tr.get("dice").jobs_found == 1
    assert tr.snapshot()["dice"].jobs_found == 1
