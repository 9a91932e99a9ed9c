from __future__ import annotations

from typing import Any

from ..models import CollectTask, Record
from ..utils import now_iso, stable_id
from .base import BaseCollector, CollectorError
from .registry import register


@register
class StubCollector(BaseCollector):
    """
    A zero-network collector used for tests and dry-runs.

    task.query may contain:
      - items: list[{id?, title, url, company?, location?, posted_date?}]
      - fail: bool | str     # raise CollectorError instead of returning items

    Items without an id get a content hash of their url/title.
    """

    kind = "stub"

    def collect(self, task: CollectTask) -> list[Record]:
        query: dict[str, Any] = dict(task.query or {})
        if query.get("fail"):
            msg = query["fail"] if isinstance(query["fail"], str) else "stub failure requested"
            raise CollectorError(f"{task.source}/{task.label}: {msg}")

        raw_items = query.get("items") or []
        if not isinstance(raw_items, list):
            raw_items = []

        ts = now_iso()
        out: list[Record] = []
        for item in raw_items:
            if not isinstance(item, dict):
                continue
            url = str(item.get("url") or "").strip()
            title = str(item.get("title") or "").strip()
            rid = str(item.get("id") or "").strip() or stable_id(task.source, url, title)
            out.append(
                Record(
                    id=rid,
                    source=task.source,
                    title=title or "(no title)",
                    company=str(item.get("company") or "Unknown Company"),
                    location=str(item.get("location") or "Not specified"),
                    url=url,
                    posted_date=str(item.get("posted_date") or "Not specified"),
                    timestamp=ts,
                    description=str(item.get("description") or ""),
                )
            )
        return out
