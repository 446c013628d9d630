"""
Crawler Errors
==============
Exception taxonomy shared by the normaliser, fetcher, frontier and job runner.

Per-item errors (``InvalidUrl``, ``FetchError`` subclasses,
``PersistenceFailure``) are always handled inside the frontier.  Anything
else escaping the traversal loop is a job-level failure.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout


class CrawlerError(Exception):
    """Base class for all crawler errors."""


class InvalidUrl(CrawlerError):
    """Raised by the normaliser for malformed or non-HTTP(S) URLs."""

    def __init__(self, url: str, reason: str = "malformed URL"):
        self.url = url
        self.reason = reason
        super().__init__(f"{reason}: {url!r}")


# ---------------------------------------------------------------------------
# Fetch failures. Each maps to the synthetic status recorded for the page
# ---------------------------------------------------------------------------

class FetchError(CrawlerError):
    """A single page could not be fetched."""

    status_code: int = 0
    kind: str = "FetchError"

    def __init__(self, url: str, message: str = "", cause: Optional[BaseException] = None):
        self.url = url
        self.cause = cause
        super().__init__(message or f"{self.kind} while fetching {url}")

    @property
    def synthetic_title(self) -> str:
        return f"ERROR: {self.kind}"


class NavigationTimeout(FetchError):
    """Every readiness strategy timed out."""
    status_code = 408
    kind = "NavigationTimeout"


class BlockedByBotProtection(FetchError):
    """A bot-challenge page did not clear after the recheck."""
    status_code = 403
    kind = "BlockedByBotProtection"


class NavigationFailed(FetchError):
    """Navigation failed for a non-timeout reason (DNS, refused, aborted)."""
    status_code = 0
    kind = "NavigationFailed"


class UnknownFetchError(FetchError):
    """Anything else raised while fetching a page."""
    status_code = 0
    kind = "UnknownFetchError"


class PersistenceFailure(CrawlerError):
    """The page store rejected a record. The crawl continues without it."""

    def __init__(self, url: str, cause: Optional[BaseException] = None):
        self.url = url
        self.cause = cause
        super().__init__(f"Could not persist page {url}: {cause}")


def classify_fetch_error(url: str, exc: BaseException) -> FetchError:
    """Map an arbitrary exception raised during a fetch onto the taxonomy."""
    if isinstance(exc, FetchError):
        return exc
    if isinstance(exc, (PlaywrightTimeout, asyncio.TimeoutError)):
        return NavigationTimeout(url, str(exc), cause=exc)

    message = str(exc)
    lowered = message.lower()
    if 'blocked' in lowered or 'access denied' in lowered or 'cloudflare' in lowered:
        return BlockedByBotProtection(url, message, cause=exc)
    if 'timeout' in lowered:
        return NavigationTimeout(url, message, cause=exc)
    if isinstance(exc, PlaywrightError) and ('net::' in message or 'navigation' in lowered):
        return NavigationFailed(url, message, cause=exc)
    return UnknownFetchError(url, f"{type(exc).__name__}: {message}", cause=exc)
