# tests/test_job_feed_collectors.py
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest
import requests

from modules.job_feed.lib.collectors import CollectorError, JsonFeedCollector, StubCollector, registry
from modules.job_feed.lib.collectors.base import BaseCollector
from modules.job_feed.lib.models import CollectTask


class FakeHttp:
    def __init__(self, body=None, exc=None):
        self.body = body
        self.exc = exc
        self.calls = []
        self.closed = False

    def get_json(self, url, params=None):
        self.calls.append((url, params))
        if self.exc:
            raise self.exc
        return self.body

    def close(self):
        self.closed = True


def test_registry_has_builtin_kinds():
    kinds = registry.all_kinds()
    assert kinds["stub"] is StubCollector
    assert kinds["json_feed"] is JsonFeedCollector
    assert registry.get("JSON_FEED") is JsonFeedCollector
    with pytest.raises(KeyError):
        registry.get("monster")


def test_register_rejects_missing_or_clashing_kind():
    class NoKind(BaseCollector):
        def collect(self, task):
            return []

    class Clash(BaseCollector):
        kind = "stub"

        def collect(self, task):
            return []

    with pytest.raises(ValueError):
        registry.register(NoKind)
    with pytest.raises(ValueError):
        registry.register(Clash)
    # re-registering the same class is fine
    assert registry.register(StubCollector) is StubCollector


def test_stub_maps_items():
    task = CollectTask(
        source="demo",
        label="python",
        query={
            "items": [
                {"id": "demo-1", "title": "Backend Dev", "company": "Acme", "url": "https://x.example/1"},
                {"title": "No Id", "url": "https://x.example/2"},
                "garbage",
            ]
        },
    )
    out = StubCollector().collect(task)
    assert [r.title for r in out] == ["Backend Dev", "No Id"]
    assert out[0].id == "demo-1"
    assert out[0].company == "Acme"
    assert out[0].location == "Not specified"
    assert out[1].id.startswith("demo-")
    assert out[1].source == "demo"
    # same content hashes to the same id
    assert StubCollector().collect(task)[1].id == out[1].id


def test_stub_failure():
    with pytest.raises(CollectorError):
        StubCollector().collect(CollectTask(source="demo", label="x", query={"fail": "boom"}))


def test_json_feed_maps_items_and_window_param():
    http = FakeHttp(
        {
            "jobs": [
                {
                    "id": 42,
                    "title": "Data Engineer",
                    "company_name": "Initech",
                    "candidate_required_location": "USA",
                    "url": "https://remote.example/42",
                    "publication_date": "2025-01-01",
                },
                {"position": "SRE", "link": "https://remote.example/sre"},
            ]
        }
    )
    c = JsonFeedCollector(http=http)
    task = CollectTask(
        source="remote",
        label="all",
        query={"url": "https://remote.example/api", "items_key": "jobs", "window_param": "since", "params": {"q": "data"}},
        window_value="1d",
    )

    out = c.collect(task)

    assert http.calls == [("https://remote.example/api", {"q": "data", "since": "1d"})]
    assert out[0].id == "remote-42"
    assert out[0].company == "Initech"
    assert out[0].location == "USA"
    assert out[0].posted_date == "2025-01-01"
    assert out[1].title == "SRE"
    assert out[1].company == "Unknown Company"
    assert out[1].id.startswith("remote-") and out[1].id != "remote-"

    c.close()
    assert http.closed is True


def test_json_feed_errors_become_collector_errors():
    task = CollectTask(source="remote", label="all", query={"url": "https://remote.example/api"})
    with pytest.raises(CollectorError):
        JsonFeedCollector(http=FakeHttp(exc=requests.ConnectionError("down"))).collect(task)
    with pytest.raises(CollectorError):
        JsonFeedCollector(http=FakeHttp({"not": "a list"})).collect(task)
    with pytest.raises(CollectorError):
        JsonFeedCollector(http=FakeHttp([])).collect(CollectTask(source="remote", label="x"))


def test_json_feed_skip_network():
    http = FakeHttp([{"id": 1}])
    c = JsonFeedCollector(skip_network=True, http=http)
    assert c.collect(CollectTask(source="remote", label="x", query={"url": "https://a"})) == []
    assert http.calls == []


def test_json_feed_builds_one_client_across_threads(monkeypatch):
    from modules.job_feed.lib.collectors import json_feed

    built = []

    class SlowClient(FakeHttp):
        def __init__(self):
            time.sleep(0.05)
            super().__init__([])
            built.append(self)

    monkeypatch.setattr(json_feed, "HttpClient", SlowClient)
    c = JsonFeedCollector()
    start = threading.Barrier(4)

    def grab():
        start.wait()
        return c.http

    with ThreadPoolExecutor(max_workers=4) as pool:
        clients = list(pool.map(lambda _: grab(), range(4)))

    assert len(built) == 1
    assert all(client is built[0] for client in clients)
    c.close()
    assert built[0].closed is True
