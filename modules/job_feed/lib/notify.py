"""
Notification sinks: where surviving records (and batch announcements) go.

Delivery is at-least-once; a sink may report failure by returning False or by
raising DeliveryError. Neither is fatal to a run.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

import requests

from . import logging_bridge, render
from .config import SourceConfig
from .http_client import HttpClient
from .models import Record


class DeliveryError(Exception):
    """A single record or announcement failed to reach the sink."""


class NotificationSink(Protocol):
    def deliver(self, record: Record) -> bool: ...
    def announce(self, text: str) -> bool: ...


class WebhookSink:
    """Chat webhook (Discord-compatible JSON): one embed per record, plain content for announcements."""

    def __init__(
        self,
        url: str,
        *,
        sources: Iterable[SourceConfig] = (),
        http: HttpClient | None = None,
        username: str | None = "Job Feed",
    ) -> None:
        if not url:
            raise ValueError("WebhookSink requires a webhook URL")
        self._url = url
        self._sources = {s.name: s for s in sources}
        self._http = http or HttpClient()
        self._username = username

    def _post(self, payload: dict) -> None:
        if self._username:
            payload = {"username": self._username, **payload}
        try:
            self._http.post_json(self._url, payload)
        except requests.RequestException as e:
            raise DeliveryError(repr(e)) from e

    def deliver(self, record: Record) -> bool:
        embed = render.record_embed(record, self._sources.get(record.source))
        self._post({"embeds": [embed]})
        return True

    def announce(self, text: str) -> bool:
        # Chat message content is capped at 2000 chars
        self._post({"content": text[:2000]})
        return True

    def close(self) -> None:
        self._http.close()


class LogSink:
    """Writes deliveries to the activity log only (no webhook configured, dry runs)."""

    def __init__(self) -> None:
        self.delivered = 0
        self.announced = 0

    def deliver(self, record: Record) -> bool:
        self.delivered += 1
        logging_bridge.activity({
            "component": "job_feed.notify",
            "op": "deliver",
            "source": record.source,
            "id": record.id,
            "title": record.title,
            "url": record.url,
        })
        return True

    def announce(self, text: str) -> bool:
        self.announced += 1
        logging_bridge.activity({
            "component": "job_feed.notify",
            "op": "announce",
            "text": text,
        })
        return True

    def close(self) -> None:
        return None
