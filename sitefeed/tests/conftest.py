"""
Shared fixtures: settings without environment, canned pages and a fake
Playwright browser.
"""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from sitefeed.config import Settings
from sitefeed.models import SourceConfig


LIST_PAGE = """
<html>
  <body>
    <ul class="news">
      <li class="item">
        <a class="headline" href="/posts/1">First &amp; foremost</a>
        <time datetime="2024-01-01T08:00:00Z">Jan 1</time>
        <div class="body"><p>Hello <b>world</b></p><script>alert(1)</script></div>
        <span class="by">Alice</span>
        <img src="/img/1.png">
      </li>
      <li class="item">
        <a class="headline" href="https://other.example/posts/2">Second</a>
        <time datetime="2024-01-03T08:00:00Z">Jan 3</time>
        <div class="body"><p>Another post</p></div>
        <span class="by">Bob</span>
        <img data-src="/img/2.png">
      </li>
      <li class="item">
        <a class="headline" href="/posts/3">Third</a>
        <div class="body"></div>
      </li>
    </ul>
  </body>
</html>
"""


@pytest.fixture
def settings():
    """Settings isolated from the environment, with fast timings."""
    return Settings(
        _env_file=None,
        render_extra_wait_ms=0,
        script_timeout_ms=10000,
    )


@pytest.fixture
def list_page():
    return LIST_PAGE


def make_source(**overrides) -> SourceConfig:
    """Build a selector-mode source for the canned list page."""
    data = {
        "id": "news",
        "url": "https://news.example/list",
        "title": "Example news",
        "fetchMode": "selector",
        "selector": {
            "selectorType": "css",
            "container": "li.item",
            "title": {"selector": "a.headline"},
            "link": {"selector": "a.headline", "extractType": "attr", "attrName": "href"},
            "date": {"selector": "time"},
            "content": {"selector": "div.body", "extractType": "html"},
            "author": {"selector": "span.by"},
        },
    }
    data.update(overrides)
    return SourceConfig.model_validate(data)


def html_transport(pages: dict[str, str], status: int = 200, seen: list = None) -> httpx.MockTransport:
    """Serve canned bodies by URL; unknown URLs get 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        body = pages.get(str(request.url))
        if body is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(status, text=body, headers={"Content-Type": "text/html; charset=utf-8"})

    return httpx.MockTransport(handler)


def run(coro):
    return asyncio.run(coro)


FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# ----------------------------------------------------------------------
# Fake Playwright objects


class FakeResponse:
    def __init__(self, status: int = 200):
        self.status = status


class FakeContext:
    def __init__(self, browser: "FakeBrowser"):
        self.browser = browser
        self.closed = False
        self.extra_headers = {}
        self.cookies = []
        self.pages = []

    async def set_extra_http_headers(self, headers):
        self.extra_headers.update(headers)

    async def add_cookies(self, cookies):
        self.cookies.extend(cookies)

    async def new_page(self):
        if self.browser.new_page_exception is not None:
            raise self.browser.new_page_exception
        page = FakePage(self)
        self.pages.append(page)
        return page

    async def close(self):
        self.closed = True


class FakePage:
    def __init__(self, context: FakeContext):
        self.context = context
        self.visited = []
        self.timeout = None

    def set_default_timeout(self, timeout):
        self.timeout = timeout

    def set_default_navigation_timeout(self, timeout):
        self.timeout = timeout

    async def goto(self, url, wait_until=None, timeout=None):
        self.visited.append(url)
        behaviour = self.context.browser.goto_behaviour
        if isinstance(behaviour, Exception):
            raise behaviour
        return FakeResponse(behaviour)

    async def wait_for_selector(self, selector, timeout=None):
        if self.context.browser.selector_exception is not None:
            raise self.context.browser.selector_exception
        return object()

    async def content(self):
        return self.context.browser.html


class FakeBrowser:
    """Stands in for a Playwright Browser; records contexts it hands out."""

    def __init__(self, html: str = "<html></html>", goto_behaviour=200):
        self.html = html
        self.goto_behaviour = goto_behaviour
        self.selector_exception = None
        self.new_page_exception = None
        self.connected = True
        self.contexts = []
        self.context_options = []
        self.closed = False

    def is_connected(self):
        return self.connected

    async def new_context(self, **options):
        self.context_options.append(options)
        context = FakeContext(self)
        self.contexts.append(context)
        return context

    async def close(self):
        self.closed = True
        self.connected = False


class BrowserFactory:
    """Counts launches; optionally slow so concurrent callers overlap."""

    def __init__(self, html: str = "<html></html>", delay: float = 0.0, fail: Exception = None):
        self.html = html
        self.delay = delay
        self.fail = fail
        self.calls = 0
        self.browsers = []

    async def __call__(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        browser = FakeBrowser(self.html)
        self.browsers.append(browser)
        return browser
