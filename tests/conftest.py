"""Shared fakes: no test in this suite touches the network."""

import json
import threading
from typing import Any, Dict, List, Optional

import pytest
import requests

from cache_warmer.config import DomainTarget
from cache_warmer.purger import CloudflarePurger


def make_response(
    status: int = 200,
    headers: Optional[Dict[str, str]] = None,
    text: str = "",
    json_body: Any = None,
    url: str = "",
) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.headers.update(headers or {})
    body = json.dumps(json_body) if json_body is not None else text
    response._content = body.encode("utf-8")
    response.encoding = "utf-8"
    response.url = url
    return response


class FakeSession:
    """
    Stand-in for requests.Session.

    `routes` maps a URL to a response, an exception, or a list of those
    consumed one per call (the last entry repeats).
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None, post_reply: Any = None):
        self.routes = dict(routes or {})
        self.post_reply = post_reply
        self.get_calls: List[str] = []
        self.get_kwargs: List[Dict[str, Any]] = []
        self.post_calls: List[Dict[str, Any]] = []
        self.headers: Dict[str, str] = {}
        self.proxies: Dict[str, str] = {}
        self.closed = False
        self._lock = threading.Lock()

    def _next(self, url: str) -> Any:
        with self._lock:
            route = self.routes.get(url)
            if isinstance(route, list):
                item = route[0] if len(route) == 1 else route.pop(0)
            else:
                item = route
        if item is None:
            return make_response(404, url=url)
        return item

    def get(self, url: str, **kwargs) -> requests.Response:
        with self._lock:
            self.get_calls.append(url)
            self.get_kwargs.append(kwargs)
        item = self._next(url)
        if callable(item) and not isinstance(item, requests.Response):
            item = item()
        if isinstance(item, BaseException):
            raise item
        return item

    def post(self, url: str, **kwargs) -> requests.Response:
        with self._lock:
            self.post_calls.append({"url": url, **kwargs})
        reply = self.post_reply
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, requests.Response):
            return reply
        return make_response(200, json_body=reply if reply is not None else {"ok": True})

    def close(self) -> None:
        self.closed = True


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def urlset(*locs: str) -> str:
    entries = "".join(f"<url><loc>{loc}</loc></url>" for loc in locs)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</urlset>'
    )


def sitemap_index(*locs: str) -> str:
    entries = "".join(f"<sitemap><loc>{loc}</loc></sitemap>" for loc in locs)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</sitemapindex>'
    )


@pytest.fixture
def target() -> DomainTarget:
    return DomainTarget(region="id", base_url="https://example.test", user_agent="Test-Warmer/1.0")


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("APPS_SCRIPT_URL", "CLOUDFLARE_ZONE_ID", "CLOUDFLARE_API_TOKEN", "PROXY_ID"):
        monkeypatch.delenv(name, raising=False)


def make_purger(reply: Any = None) -> CloudflarePurger:
    """A live CloudflarePurger whose API calls land on a FakeSession."""
    return CloudflarePurger("zone", "token", session=FakeSession(post_reply=reply or {"success": True}))


def purged_urls(purger: CloudflarePurger) -> List[str]:
    return [call["json"]["files"][0] for call in purger.session.post_calls]
