from __future__ import annotations

import json
import os
import re

from .logging_bridge import error as log_error


class FileIdCache:
    """
    Fallback adapter: one JSON array of ids per source, rewritten wholesale.

    No index and no timestamps; the whole list is loaded into memory.
    Single-writer only: concurrent processes writing the same source will race.
    """

    name = "file"

    def __init__(self, cache_dir: str) -> None:
        self.cache_dir = cache_dir

    def path_for(self, source: str) -> str:
        slug = re.sub(r"[^0-9a-zA-Z_-]+", "_", source.strip().lower()).strip("_") or "default"
        return os.path.join(self.cache_dir, f"{slug}-job-cache.json")

    def read_ids(self, source: str) -> list[str]:
        """Return the stored ids, oldest first. A missing file is an empty list."""
        path = self.path_for(source)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        if not isinstance(data, list):
            raise ValueError(f"fallback cache {path} does not hold a JSON list")
        return [str(x) for x in data]

    def write_ids(self, source: str, ids: list[str]) -> None:
        path = self.path_for(source)
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            tmp = f"{path}.tmp"
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(list(ids), f)
            os.replace(tmp, path)
        except OSError as e:
            log_error({
                "component": "job_feed.file_cache",
                "op": "write_ids",
                "source": source,
                "path": path,
                "error": repr(e),
            })
            raise
