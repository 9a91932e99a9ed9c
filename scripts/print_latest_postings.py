#!/usr/bin/env python3
"""Print the newest emitted records per source from the job feed SQLite store."""

import os
import sys
from datetime import datetime
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent  # ../scripts -> project root
sys.path.insert(0, str(PROJECT_ROOT))

from modules.job_feed.lib.db import SqliteMembershipDB, StoreDurabilityError  # noqa: E402

DEFAULT_DB = PROJECT_ROOT / "local" / "state" / "jobfeed.db"


def format_timestamp(iso_str: str) -> str:
    """Convert an ISO timestamp to a readable local format."""
    try:
        dt = datetime.fromisoformat(iso_str.replace("Z", "+00:00"))
    except ValueError:
        return iso_str
    return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")


def main() -> int:
    db_path = os.getenv("SQLITE_PATH", str(DEFAULT_DB))
    if not os.path.exists(db_path):
        print(f"Database not found: {db_path}")
        return 1

    limit = 15
    if len(sys.argv) > 1:
        try:
            limit = int(sys.argv[1])
            if limit <= 0:
                raise ValueError
        except ValueError:
            print(f"Invalid limit: {sys.argv[1]}. Using default (15).", file=sys.stderr)

    db = SqliteMembershipDB(db_path)
    if not db.connect():
        print(f"Could not open {db_path}", file=sys.stderr)
        return 1

    try:
        sources = db.list_sources()
        print(f"DATABASE: {db_path} ({len(sources)} sources). Showing last {limit} per source.\n")
        for source in sources:
            print("=" * 80)
            print(f"SOURCE: {source} ({db.count_rows(source)} ids)")
            print("-" * 80)
            for i, (record_id, title, url, ts) in enumerate(db.latest_rows(source, limit), 1):
                print(f"{i:2d}. [{format_timestamp(ts)}] {record_id}")
                print(f"     Title: {title}")
                print(f"     URL:   {url}")
            print()
    except StoreDurabilityError as e:
        print(f"Error reading {db_path}: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
