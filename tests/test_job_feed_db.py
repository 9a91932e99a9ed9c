# tests/test_job_feed_db.py
import pytest

from modules.job_feed.lib.db import SqliteMembershipDB, StoreDurabilityError, membership_row, reset_db
from modules.job_feed.lib.models import MembershipEntry, Record


def _rows(source, *pairs):
    return [
        membership_row(MembershipEntry(source, rid, ts), Record(id=rid, source=source, title=rid))
        for rid, ts in pairs
    ]


def test_connect_creates_schema(tmp_path):
    dbp = tmp_path / "nested" / "jobfeed.db"
    reset_db(str(dbp))
    db = SqliteMembershipDB(str(dbp))
    assert db.connect() is True
    assert dbp.exists()
    assert db.count_rows("linkedin") == 0
    # connecting twice is harmless
    assert db.connect() is True


def test_connect_failure_returns_false(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    db = SqliteMembershipDB(str(blocker / "jobfeed.db"))
    assert db.connect() is False
    assert db.connected is False


def test_operations_require_connection(tmp_path):
    db = SqliteMembershipDB(str(tmp_path / "jobfeed.db"))
    with pytest.raises(StoreDurabilityError):
        db.find_ids("linkedin")
    with pytest.raises(StoreDurabilityError):
        db.upsert_many("linkedin", _rows("linkedin", ("a", "2025-01-01T00:00:00.000000Z")))


def test_upsert_find_and_cutoff(sqlite_db):
    sqlite_db.upsert_many(
        "dice",
        _rows(
            "dice",
            ("a", "2025-01-01T00:00:01.000000Z"),
            ("b", "2025-01-01T00:00:02.000000Z"),
            ("c", "2025-01-01T00:00:03.000000Z"),
        ),
    )
    assert sqlite_db.find_ids("dice") == ["a", "b", "c"]
    assert sqlite_db.count_rows("dice") == 3
    assert sqlite_db.find_oldest_after_skip("dice", 0) == "2025-01-01T00:00:03.000000Z"
    assert sqlite_db.find_oldest_after_skip("dice", 1) == "2025-01-01T00:00:02.000000Z"
    assert sqlite_db.find_oldest_after_skip("dice", 5) is None
    assert sqlite_db.oldest_newest("dice") == ("2025-01-01T00:00:01.000000Z", "2025-01-01T00:00:03.000000Z")

    assert sqlite_db.delete_older_than("dice", "2025-01-01T00:00:02.000000Z") == 1
    assert sqlite_db.find_ids("dice") == ["b", "c"]


def test_upsert_refreshes_existing_row(sqlite_db):
    sqlite_db.upsert_many("dice", _rows("dice", ("a", "2025-01-01T00:00:01.000000Z")))
    sqlite_db.upsert_many("dice", _rows("dice", ("a", "2025-01-02T00:00:00.000000Z")))
    assert sqlite_db.count_rows("dice") == 1
    assert sqlite_db.oldest_newest("dice") == ("2025-01-02T00:00:00.000000Z", "2025-01-02T00:00:00.000000Z")


def test_sources_are_isolated(sqlite_db):
    sqlite_db.upsert_many("dice", _rows("dice", ("a", "2025-01-01T00:00:01.000000Z")))
    sqlite_db.upsert_many("linkedin", _rows("linkedin", ("a", "2025-01-01T00:00:01.000000Z")))
    assert sqlite_db.list_sources() == ["dice", "linkedin"]

    assert sqlite_db.delete_all("dice") == 1
    assert sqlite_db.find_ids("dice") == []
    assert sqlite_db.find_ids("linkedin") == ["a"]


def test_latest_rows(sqlite_db):
    sqlite_db.upsert_many(
        "dice",
        _rows("dice", ("a", "2025-01-01T00:00:01.000000Z"), ("b", "2025-01-01T00:00:02.000000Z")),
    )
    latest = sqlite_db.latest_rows("dice", limit=1)
    assert latest == [("b", "b", "", "2025-01-01T00:00:02.000000Z")]
