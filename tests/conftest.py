# tests/conftest.py
from __future__ import annotations

import urllib.error

import pytest

from feedpipe.config import load_settings
from feedpipe.db import get_conn, init_db
from feedpipe.errors import HttpStatusError, NetworkError
from feedpipe.http_fetch import HttpResponse


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path, monkeypatch):
    monkeypatch.setenv("FEEDPIPE_DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("FEEDPIPE_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.delenv("YOUTUBE_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    # Safety net: nothing in the suite may reach the real network
    def no_network(req, timeout=None):
        raise urllib.error.URLError("network disabled in tests")

    monkeypatch.setattr("urllib.request.urlopen", no_network)


@pytest.fixture
def settings(tmp_path):
    return load_settings(
        db_path=str(tmp_path / "test.db"),
        cache_dir=str(tmp_path / "cache"),
        retry_base_sleep_s=0,
        thumbnail_workers=1,
        youtube_api_key=None,
        openai_api_key=None,
    )


@pytest.fixture
def conn(settings):
    c = get_conn(settings)
    init_db(c)
    try:
        yield c
    finally:
        c.close()


class FakeWeb:
    """
    Stand-in for feedpipe.http_fetch.fetch keyed by URL (and optionally method).

    Unknown URLs fail with NetworkError, like an unreachable host.
    """

    def __init__(self):
        self.routes: dict[tuple[str | None, str], object] = {}
        self.calls: list[tuple[str, str]] = []

    def add(self, url: str, body: bytes | str = b"", *, status: int = 200, content_type: str = "text/html", method: str | None = None):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.routes[(method, url)] = (status, content_type, body)

    def add_json(self, url: str, payload, *, method: str | None = None):
        import json
        self.add(url, json.dumps(payload), content_type="application/json", method=method)

    def fail(self, url: str, exc: Exception, *, method: str | None = None):
        self.routes[(method, url)] = exc

    def called(self, url: str) -> int:
        return sum(1 for _, u in self.calls if u == url)

    def __call__(self, url, *, timeout_s, user_agent, method="GET", headers=None, data=None, max_bytes=None):
        self.calls.append((method, url))
        route = self.routes.get((method, url), self.routes.get((None, url)))
        if route is None:
            raise NetworkError(f"connection refused for {url}")
        if isinstance(route, Exception):
            raise route
        status, content_type, body = route
        if not 200 <= status < 300:
            raise HttpStatusError(status, url)
        return HttpResponse(
            url=url,
            status=status,
            headers={"content-type": content_type},
            body=b"" if method == "HEAD" else body,
        )


@pytest.fixture
def web(monkeypatch):
    fake = FakeWeb()
    monkeypatch.setattr("feedpipe.http_fetch.fetch", fake)
    return fake


def insert_test_feed(conn, url="https://example.com/feed.xml", **fields):
    from feedpipe.repo import get_feed, insert_feed

    fields.setdefault("title", "Example Feed")
    feed_id = insert_feed(conn, url=url, **fields)
    return get_feed(conn, feed_id)
