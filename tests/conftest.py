"""
Shared test fixtures.

Fakes stand in for Playwright so no test launches a browser:
- ``FakePage``: ``url`` + ``evaluate``/``goto``/``title``/``close``
- ``FakeSession``: hands out one prepared ``FakePage``
- ``FakeFetcher``: serves a dict-defined site to the frontier
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from sitemap_crawler.models import FetchResult


class FakeResponse:
    def __init__(self, status: int = 200):
        self.status = status


class FakePage:
    """
    Minimal Playwright ``Page`` double.

    ``scripts`` maps a JS source string to either a value or a callable
    ``(page, arg) -> value``.  Unknown scripts evaluate to ``None``.
    """

    def __init__(
        self,
        url: str = "https://example.com/",
        scripts: Optional[Dict[str, Any]] = None,
        title: str = "",
        status: int = 200,
        goto_errors: Optional[Dict[str, BaseException]] = None,
    ):
        self.url = url
        self.scripts = dict(scripts or {})
        self._title = title
        self.status = status
        self.goto_errors = dict(goto_errors or {})
        self.goto_calls: List[str] = []
        self.evaluated: List[Any] = []
        self.closed = False

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append((script, arg))
        value = self.scripts.get(script)
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            return value(self, arg)
        return value

    async def goto(self, url: str, wait_until: str = "load", timeout: float = 0):
        self.goto_calls.append(wait_until)
        error = self.goto_errors.get(wait_until)
        if error is not None:
            raise error
        return FakeResponse(self.status)

    async def title(self) -> str:
        return self._title

    async def close(self) -> None:
        self.closed = True


class FakeSession:
    def __init__(self, page: FakePage):
        self.page = page

    async def new_page(self) -> FakePage:
        return self.page


SiteEntry = Union[FetchResult, BaseException, Callable[[], Any]]


class FakeFetcher:
    """
    Serves pages from a dict keyed by canonical URL.

    Values are ``FetchResult``s, exceptions (raised on fetch) or lists of
    links (wrapped in a 200 result titled after the URL).  URLs missing
    from the dict return an empty 200 page.
    """

    def __init__(self, site: Optional[Dict[str, Any]] = None, gate: Optional[asyncio.Event] = None):
        self.site = dict(site or {})
        self.gate = gate
        self.calls: List[str] = []
        self.max_in_flight = 0
        self._in_flight = 0

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            await asyncio.sleep(0)
            if self.gate is not None:
                await self.gate.wait()
            entry = self.site.get(url, [])
            if isinstance(entry, BaseException):
                raise entry
            if isinstance(entry, FetchResult):
                return entry
            return FetchResult(url=url, title=f"Title {url}", links=list(entry))
        finally:
            self._in_flight -= 1


@pytest.fixture
def fake_page():
    return FakePage()


@pytest.fixture
def chain_records():
    """root -> /a -> /a/b"""
    return [
        {"url": "/", "depth": 0, "parent_url": None, "title": "Home"},
        {"url": "/a", "depth": 1, "parent_url": "/", "title": "A"},
        {"url": "/a/b", "depth": 2, "parent_url": "/a", "title": "B"},
    ]
