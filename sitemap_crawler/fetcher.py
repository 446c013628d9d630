"""
Page Fetcher
============
Renders one URL in headless Chromium and returns its title plus every
candidate link the route discoverer can find.

- ``BrowserSession``: one Playwright + browser + context per crawl job,
  acquired with ``async with`` and released on every exit path.
- ``PageFetcher``: navigation with fallback readiness strategies, bot
  challenge detection, content stabilization, title resolution and SPA
  route discovery.  Failures are raised as classified ``FetchError``s.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence

from playwright.async_api import async_playwright, Browser, BrowserContext, Page
from playwright.async_api import Error as PlaywrightError

from .errors import BlockedByBotProtection, FetchError, classify_fetch_error
from .models import FetchResult
from .route_discovery import RouteDiscoverer
from .run_config import CrawlerRunConfig
from .utils import fallback_title, is_placeholder_title, poll_until_stable

logger = logging.getLogger(__name__)


# Resource types to block for speed
_BLOCKED_RESOURCE_TYPES = frozenset([
    "image", "media", "font",
])

# Analytics/tracking scripts
_BLOCKED_URL_PATTERNS = [
    re.compile(r"google[-_]?analytics", re.IGNORECASE),
    re.compile(r"googletagmanager", re.IGNORECASE),
    re.compile(r"facebook\.net", re.IGNORECASE),
    re.compile(r"doubleclick\.net", re.IGNORECASE),
    re.compile(r"hotjar\.", re.IGNORECASE),
    re.compile(r"segment\.(com|io)", re.IGNORECASE),
    re.compile(r"mixpanel\.", re.IGNORECASE),
]

_LAUNCH_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-gpu',
    '--disable-extensions',
    '--no-first-run',
]

# Tried in order; the first that completes wins
NAVIGATION_STRATEGIES = ('networkidle', 'domcontentloaded', 'load')

# Lower-cased markers of interstitial bot-check pages
BOT_CHALLENGE_MARKERS = (
    "just a moment",
    "checking your browser",
    "access denied",
    "attention required",
    "please verify you are human",
    "verify you are a human",
    "ddos protection by",
    "cloudflare",
)

FINGERPRINT_JS = """
() => [
    document.querySelectorAll('a[href]').length,
    document.body ? document.body.innerHTML.length : 0,
]
"""

CHALLENGE_TEXT_JS = "() => (document.body && document.body.innerText || '').slice(0, 2000)"

TITLE_CANDIDATES_JS = """
() => {
    const text = sel => {
        const el = document.querySelector(sel);
        return el ? (el.textContent || '').trim() : '';
    };
    const og = document.querySelector('meta[property="og:title"]');
    return {
        title: text('title'),
        h1: text('h1'),
        h2: text('h2'),
        og: og ? (og.getAttribute('content') || '').trim() : '',
    };
}
"""


class Fetcher(Protocol):
    """Anything the frontier can ask to fetch a URL."""

    async def fetch(self, url: str) -> FetchResult:
        ...


# ---------------------------------------------------------------------------
# Browser session
# ---------------------------------------------------------------------------

class BrowserSession:
    """
    Owns the Playwright driver, the Chromium instance and one browser
    context for the duration of a crawl job.

    Usage::

        async with BrowserSession(config) as session:
            page = await session.new_page()
    """

    def __init__(self, config: Optional[CrawlerRunConfig] = None):
        self.config = config or CrawlerRunConfig()
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    async def __aenter__(self) -> "BrowserSession":
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            raise RuntimeError("BrowserSession is not started")
        return self._context

    async def start(self) -> None:
        """Launch Chromium and create the shared context."""
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=_LAUNCH_ARGS,
        )
        self._context = await self._browser.new_context(
            user_agent=self.config.user_agent,
            viewport={'width': 1920, 'height': 1080},
            locale='en-US',
        )
        if self.config.block_resources:
            await self._context.route("**/*", self._route_handler)

        logger.info(
            f"[FETCH] Browser session started "
            f"(headless={self.config.headless}, "
            f"blocking={'images,fonts,media,analytics' if self.config.block_resources else 'none'})"
        )

    async def new_page(self) -> Page:
        page = await self.context.new_page()
        page.set_default_timeout(self.config.navigation_timeout_s * 1000)
        return page

    async def _route_handler(self, route) -> None:
        """Block unnecessary resources for speed."""
        request = route.request
        if request.resource_type in _BLOCKED_RESOURCE_TYPES:
            await route.abort()
            return
        if request.resource_type == "script":
            for pattern in _BLOCKED_URL_PATTERNS:
                if pattern.search(request.url):
                    await route.abort()
                    return
        await route.continue_()

    async def close(self) -> None:
        """Close context, browser and driver. Safe to call more than once."""
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.debug(f"[FETCH] Context close: {e}")
            self._context = None
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.debug(f"[FETCH] Browser close: {e}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("[FETCH] Browser session closed")


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------

def looks_like_challenge(title: str, body_text: str) -> bool:
    """Keyword heuristic for bot-protection interstitials."""
    haystack = f"{title or ''}\n{body_text or ''}".lower()
    return any(marker in haystack for marker in BOT_CHALLENGE_MARKERS)


class PageFetcher:
    """
    Fetches single pages through a shared ``BrowserSession``.

    Args:
        session: Started browser session (anything with ``new_page()``)
        config: Run configuration (timeouts, stability, budgets)
        discoverer: Route discoverer; built from ``config`` when omitted
        sleep: Injected for tests
    """

    def __init__(
        self,
        session,
        config: Optional[CrawlerRunConfig] = None,
        discoverer: Optional[RouteDiscoverer] = None,
        strategies: Sequence[str] = NAVIGATION_STRATEGIES,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session = session
        self.config = config or CrawlerRunConfig()
        self.strategies = tuple(strategies)
        self._sleep = sleep
        self.discoverer = discoverer or RouteDiscoverer(
            hash_nav_budget=self.config.hash_nav_budget,
            stabilizer=self.wait_for_stable,
        )

    async def fetch(self, url: str) -> FetchResult:
        """
        Render ``url`` and collect its title and candidate links.

        Raises:
            FetchError: classified failure (timeout, blocked, navigation)
        """
        t_start = time.monotonic()
        page = await self.session.new_page()
        try:
            response = await self._navigate(page, url)
            status = response.status if response is not None else 200

            await self._check_bot_challenge(page, url)
            await self.wait_for_stable(page)

            title = await self.resolve_title(page, url)
            links: List[str] = []
            if status < 400:
                links = await self.discoverer.discover(page)

            logger.info(
                f"[FETCH] {url} -> {status} '{title[:50]}' "
                f"({len(links)} links, {time.monotonic() - t_start:.1f}s)"
            )
            return FetchResult(
                url=url,
                title=title,
                links=links,
                status_code=status,
                final_url=page.url,
            )
        except FetchError:
            raise
        except Exception as e:
            raise classify_fetch_error(url, e) from e
        finally:
            try:
                await page.close()
            except PlaywrightError as e:
                logger.debug(f"[FETCH] Page close failed for {url}: {e}")

    async def _navigate(self, page, url: str):
        """Try each readiness strategy in turn; raise the last error if all fail."""
        timeout_ms = self.config.navigation_timeout_s * 1000
        last_error: Optional[BaseException] = None
        for strategy in self.strategies:
            try:
                return await page.goto(url, wait_until=strategy, timeout=timeout_ms)
            except PlaywrightError as e:
                last_error = e
                logger.warning(f"[FETCH] Strategy '{strategy}' failed for {url}: {str(e).splitlines()[0]}")
        raise classify_fetch_error(url, last_error or PlaywrightError("no navigation strategies"))

    async def _is_challenged(self, page) -> bool:
        title = await page.title()
        body = await page.evaluate(CHALLENGE_TEXT_JS)
        return looks_like_challenge(title, body)

    async def _check_bot_challenge(self, page, url: str) -> None:
        """Wait once for a challenge page to clear; raise if it does not."""
        if not await self._is_challenged(page):
            return
        logger.warning(
            f"[FETCH] Bot challenge on {url}; rechecking in {self.config.challenge_recheck_s}s"
        )
        await self._sleep(self.config.challenge_recheck_s)
        if await self._is_challenged(page):
            raise BlockedByBotProtection(url, "Page blocked by bot protection")

    async def wait_for_stable(self, page) -> None:
        """Poll (link count, body length) until the DOM stops changing."""

        async def fingerprint():
            return tuple(await page.evaluate(FINGERPRINT_JS) or ())

        try:
            result = await poll_until_stable(
                fingerprint,
                interval_s=self.config.stability_interval_s,
                threshold=self.config.stability_threshold,
                timeout_s=self.config.stability_timeout_s,
                sleep=self._sleep,
            )
        except PlaywrightError as e:
            logger.debug(f"[FETCH] Stability polling aborted: {e}")
            return
        if not result.stable:
            logger.debug(
                f"[FETCH] Content still changing after {result.elapsed_s:.1f}s "
                f"({result.samples} samples)"
            )

    async def resolve_title(self, page, url: str) -> str:
        """``<title>`` > ``<h1>`` > ``<h2>`` / og:title > URL-derived fallback."""
        try:
            found = await page.evaluate(TITLE_CANDIDATES_JS) or {}
        except PlaywrightError as e:
            logger.debug(f"[FETCH] Title extraction failed for {url}: {e}")
            found = {}
        for key in ('title', 'h1', 'h2', 'og'):
            candidate = found.get(key)
            if not is_placeholder_title(candidate):
                return candidate.strip()
        return fallback_title(url)
