# job_feed/collectors/json_feed.py
from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

import requests

from ..http_client import HttpClient
from ..models import CollectTask, Record
from ..utils import now_iso, stable_id
from .base import BaseCollector, CollectorError
from .registry import register


def _pluck(item: Mapping[str, Any], *keys: str, default: str = "") -> str:
    for k in keys:
        v = item.get(k)
        if v not in (None, ""):
            return str(v).strip()
    return default


@register
class JsonFeedCollector(BaseCollector):
    """
    Generic collector for sources that already publish postings as JSON.

    task.query:
      url: str                 # REQUIRED endpoint
      params: dict             # OPTIONAL extra query params (keyword, location, ...)
      window_param: str        # OPTIONAL query param name for task.window_value
      items_key: str           # OPTIONAL key holding the list when the body is an object
      id_key: str = "id"       # OPTIONAL field holding the platform id

    Items map onto Record by common field names; items without an id get a
    content hash of their url. No markup parsing happens here.
    """

    kind = "json_feed"

    def __init__(self, *, skip_network: bool = False, http: HttpClient | None = None) -> None:
        super().__init__(skip_network=skip_network)
        self._http = http
        self._http_lock = threading.Lock()

    @property
    def http(self) -> HttpClient:
        # fan-out calls collect() from several threads; build one client only
        with self._http_lock:
            if self._http is None:
                self._http = HttpClient()
            return self._http

    def collect(self, task: CollectTask) -> list[Record]:
        if self.skip_network:
            return []

        query = dict(task.query or {})
        url = str(query.get("url") or "").strip()
        if not url:
            raise CollectorError(f"{task.source}/{task.label}: json_feed task has no 'url'")

        params: dict[str, Any] = dict(query.get("params") or {})
        window_param = query.get("window_param")
        if window_param and task.window_value is not None:
            params[str(window_param)] = task.window_value

        try:
            body = self.http.get_json(url, params=params or None)
        except (requests.RequestException, ValueError) as e:
            raise CollectorError(f"{task.source}/{task.label}: {e}") from e

        items = body
        items_key = query.get("items_key")
        if items_key and isinstance(body, dict):
            items = body.get(str(items_key)) or []
        if not isinstance(items, list):
            raise CollectorError(f"{task.source}/{task.label}: expected a JSON list of postings")

        id_key = str(query.get("id_key") or "id")
        ts = now_iso()
        out: list[Record] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            link = _pluck(item, "url", "link", "apply_url")
            platform_id = _pluck(item, id_key)
            rid = f"{task.source}-{platform_id}" if platform_id else stable_id(task.source, link)
            out.append(
                Record(
                    id=rid,
                    source=task.source,
                    title=_pluck(item, "title", "position", default="Unknown Position"),
                    company=_pluck(item, "company", "company_name", default="Unknown Company"),
                    location=_pluck(item, "location", "candidate_required_location", default="Not specified"),
                    url=link,
                    posted_date=_pluck(item, "posted_date", "publication_date", "date", default="Not specified"),
                    timestamp=ts,
                    description=_pluck(item, "description", "summary"),
                )
            )
        return out

    def close(self) -> None:
        with self._http_lock:
            if self._http is not None:
                self._http.close()
                self._http = None
