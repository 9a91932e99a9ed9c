# job_feed/http_client.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

LOG = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "JobFeed/0.1 (+https://example.invalid)"
RETRY_STATUSES = (429, 500, 502, 503, 504)


def build_session(user_agent: str = DEFAULT_USER_AGENT, retries: int = 3) -> requests.Session:
    """Session with urllib3 retries mounted for both schemes."""
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})

    # Webhook posts are retried as well; delivery is at-least-once.
    policy = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=frozenset(["GET", "HEAD", "POST"]),
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=policy, pool_connections=4, pool_maxsize=8)
    for scheme in ("http://", "https://"):
        session.mount(scheme, adapter)
    return session


def _body_preview(resp: requests.Response, limit: int = 200) -> str:
    return resp.text[:limit].replace("\n", " ")


class HttpClient:
    """JSON over HTTP for the json_feed collector and the webhook sink."""

    def __init__(
        self,
        timeout: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
        retries: int = 3,
        session: requests.Session | None = None,
    ):
        self.timeout = float(timeout)
        self.session = session or build_session(user_agent, retries)

    def get_json(self, url: str, params: Mapping[str, Any] | None = None) -> Any:
        """Fetch a posting feed; ValueError if the body is not JSON."""
        resp = self.session.get(url, params=params, timeout=self.timeout)
        resp.raise_for_status()
        try:
            return resp.json()
        except ValueError as e:
            raise ValueError(f"feed at {url!r} did not return JSON; body starts: {_body_preview(resp)!r}") from e

    def post_json(self, url: str, payload: Mapping[str, Any]) -> requests.Response:
        resp = self.session.post(url, json=dict(payload), timeout=self.timeout)
        if resp.status_code == 429:
            # Rate limit outlasted the retry budget; chat webhooks report the wait in the body.
            try:
                wait = resp.json().get("retry_after")
            except ValueError:
                wait = resp.headers.get("Retry-After")
            raise requests.HTTPError(f"webhook rate limited (retry_after={wait})", response=resp)
        resp.raise_for_status()
        return resp

    def close(self) -> None:
        try:
            self.session.close()
        except requests.RequestException:
            LOG.debug("closing http session failed", exc_info=True)
