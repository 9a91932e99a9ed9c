import pytest
import requests

from modules.job_feed.lib.http_client import HttpClient, build_session


def response(status, body=b"", headers=None):
    resp = requests.Response()
    resp.status_code = status
    resp._content = body
    resp.headers.update(headers or {})
    return resp


class FakeSession:
    def __init__(self, resp):
        self.resp = resp
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append(("GET", url, params, timeout))
        return self.resp

    def post(self, url, json=None, timeout=None):
        self.calls.append(("POST", url, json, timeout))
        return self.resp

    def close(self):
        pass


def test_session_mounts_retrying_adapter():
    session = build_session(user_agent="JobFeedTest/1", retries=2)
    adapter = session.get_adapter("https://example.invalid/")
    assert adapter.max_retries.total == 2
    assert 429 in adapter.max_retries.status_forcelist
    assert "POST" in adapter.max_retries.allowed_methods
    assert session.headers["User-Agent"] == "JobFeedTest/1"


def test_get_json_returns_body():
    session = FakeSession(response(200, b'{"jobs": [{"id": 1}]}'))
    client = HttpClient(timeout=3, session=session)
    assert client.get_json("https://feed.example/api", params={"q": "python"}) == {"jobs": [{"id": 1}]}
    assert session.calls == [("GET", "https://feed.example/api", {"q": "python"}, 3.0)]


def test_get_json_rejects_html():
    client = HttpClient(session=FakeSession(response(200, b"<html>login wall</html>")))
    with pytest.raises(ValueError, match="login wall"):
        client.get_json("https://feed.example/api")


def test_get_json_raises_on_http_error():
    client = HttpClient(session=FakeSession(response(503)))
    with pytest.raises(requests.HTTPError):
        client.get_json("https://feed.example/api")


def test_post_json_reports_rate_limit_wait():
    client = HttpClient(session=FakeSession(response(429, b'{"retry_after": 1.5}')))
    with pytest.raises(requests.HTTPError, match="retry_after=1.5"):
        client.post_json("https://hooks.example/abc", {"content": "hi"})


def test_post_json_accepts_no_content():
    session = FakeSession(response(204))
    resp = HttpClient(session=session).post_json("https://hooks.example/abc", {"content": "hi"})
    assert resp.status_code == 204
    assert session.calls[0][2] == {"content": "hi"}
