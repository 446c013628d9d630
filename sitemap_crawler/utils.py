"""
Utility Functions
=================
URL canonicalization, domain comparison, title fallbacks and the shared
"poll until stable" primitive.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional
from urllib.parse import unquote, urlparse, urlunparse

from .errors import InvalidUrl

logger = logging.getLogger(__name__)


class URLNormalizer:
    """
    Canonicalizes raw URLs into the deduplication key used by the frontier.

    Rules, applied in order:
      1. Parse; reject malformed, non-HTTP(S) or host-less URLs.
      2. Strip the query string.
      3. Keep the fragment only when it is an SPA hash route (``#/...``).
      4. Strip a trailing ``/`` from the path unless the path is ``/``.
    """

    ALLOWED_SCHEMES = ('http', 'https')
    HASH_ROUTE_PREFIX = '/'

    def __init__(self, preserve_hash_routes: bool = True):
        """
        Args:
            preserve_hash_routes: Keep ``#/`` fragments (SPA routes). In-page
                anchors are always stripped.
        """
        self.preserve_hash_routes = preserve_hash_routes

    def normalize(self, url: str) -> str:
        """
        Normalize a URL for consistent comparison.

        Args:
            url: Raw absolute URL

        Returns:
            Canonical URL string

        Raises:
            InvalidUrl: if the URL cannot be canonicalized
        """
        if not url or not isinstance(url, str) or not url.strip():
            raise InvalidUrl(str(url), "empty URL")
        raw = url.strip()

        try:
            parsed = urlparse(raw)
            # Accessing .port validates it (raises ValueError on garbage)
            parsed.port
        except ValueError as e:
            raise InvalidUrl(raw, f"unparseable URL ({e})") from e

        scheme = parsed.scheme.lower()
        if scheme not in self.ALLOWED_SCHEMES:
            raise InvalidUrl(raw, f"unsupported scheme {scheme or '(none)'!r}")
        if not parsed.hostname:
            raise InvalidUrl(raw, "missing host")

        netloc = parsed.netloc.lower()

        path = parsed.path or '/'
        if path != '/' and path.endswith('/'):
            path = path.rstrip('/') or '/'

        fragment = ''
        if self.preserve_hash_routes and parsed.fragment.startswith(self.HASH_ROUTE_PREFIX):
            fragment = parsed.fragment

        return urlunparse((scheme, netloc, path, parsed.params, '', fragment))

    def try_normalize(self, url: str) -> Optional[str]:
        """Like :meth:`normalize` but returns None for invalid input."""
        try:
            return self.normalize(url)
        except InvalidUrl as e:
            logger.debug(f"[NORMALIZE] Dropped {e}")
            return None

    @staticmethod
    def is_same_domain(url: str, base_url: str) -> bool:
        """
        Check if URL belongs to the same domain as base URL.

        Hostnames must be equal, or equal once a leading ``www.`` is removed
        from either side.
        """
        try:
            url_domain = (urlparse(url).hostname or '').lower()
            base_domain = (urlparse(base_url).hostname or '').lower()
        except ValueError:
            return False

        if not url_domain or not base_domain:
            return False

        if url_domain.startswith('www.'):
            url_domain = url_domain[4:]
        if base_domain.startswith('www.'):
            base_domain = base_domain[4:]

        return url_domain == base_domain


_default_normalizer = URLNormalizer()


def normalize(url: str) -> str:
    """Module-level shortcut for ``URLNormalizer().normalize``."""
    return _default_normalizer.normalize(url)


def same_domain(a: str, b: str) -> bool:
    """True when both URLs share a host, ignoring a ``www.`` prefix."""
    return URLNormalizer.is_same_domain(a, b)


def is_hash_route(url: str) -> bool:
    """True if the URL carries an SPA hash route (``#/...``)."""
    try:
        return urlparse(url).fragment.startswith('/')
    except ValueError:
        return False


def origin_of(url: str) -> str:
    """``scheme://host[:port]`` of a URL."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


# ---------------------------------------------------------------------------
# Titles
# ---------------------------------------------------------------------------

_WORD_START_RE = re.compile(r"\b\w")
_PAGE_EXTENSION_RE = re.compile(r"\.(html?|php|aspx?|jsp)$", re.IGNORECASE)

# Titles that carry no information about the page
_ERROR_TITLES = {'error', 'untitled'}


def humanize_segment(segment: str) -> str:
    """'getting-started' -> 'Getting Started'."""
    text = unquote(segment or '')
    text = _PAGE_EXTENSION_RE.sub('', text)
    text = re.sub(r"[-_]+", ' ', text).strip()
    text = re.sub(r"\s+", ' ', text)
    return _WORD_START_RE.sub(lambda m: m.group(0).upper(), text)


def _segments(path: str) -> List[str]:
    return [s for s in path.split('/') if s]


def fallback_title(url: str) -> str:
    """
    Title derived from the URL alone.

    Uses the last non-empty segment of the hash route (for ``#/`` URLs) or of
    the path, humanized.  Falls back to ``"Home"`` for the site root and
    ``"Page"`` for anything else.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return "Page"

    if parsed.fragment.startswith('/'):
        hash_segments = _segments(parsed.fragment)
        if hash_segments:
            return humanize_segment(hash_segments[-1]) or "Page"

    path_segments = _segments(parsed.path)
    if path_segments:
        return humanize_segment(path_segments[-1]) or "Page"

    if parsed.scheme and parsed.netloc:
        return "Home"
    return "Page"


def is_placeholder_title(title: Optional[str]) -> bool:
    """True for empty titles and the error/untitled placeholders."""
    if not title or not title.strip():
        return True
    cleaned = title.strip()
    if cleaned.upper().startswith('ERROR:'):
        return True
    return cleaned.lower() in _ERROR_TITLES


def display_title(title: Optional[str], url: str) -> str:
    """Title to show for a page, replacing placeholders with the URL fallback."""
    if is_placeholder_title(title):
        return fallback_title(url)
    return title.strip()


# ---------------------------------------------------------------------------
# Polling primitive
# ---------------------------------------------------------------------------

@dataclass
class StabilityResult:
    """Outcome of :func:`poll_until_stable`."""
    stable: bool
    value: Any
    samples: int
    elapsed_s: float


async def poll_until_stable(
    sample: Callable[[], Awaitable[Any]],
    *,
    interval_s: float = 0.5,
    threshold: int = 3,
    timeout_s: float = 8.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> StabilityResult:
    """
    Poll ``sample()`` at a fixed interval until its value is unchanged for
    ``threshold`` consecutive checks, or ``timeout_s`` elapses.

    Exceptions raised by ``sample`` propagate to the caller.

    Args:
        sample: Coroutine factory returning a comparable fingerprint
        interval_s: Delay between samples
        threshold: Consecutive unchanged samples required
        timeout_s: Upper bound on total wait

    Returns:
        StabilityResult with the last sampled value
    """
    start = clock()
    deadline = start + timeout_s
    previous = await sample()
    samples = 1
    unchanged = 0

    while clock() < deadline:
        await sleep(interval_s)
        current = await sample()
        samples += 1
        if current == previous:
            unchanged += 1
            if unchanged >= threshold:
                return StabilityResult(True, current, samples, clock() - start)
        else:
            unchanged = 0
            previous = current

    return StabilityResult(False, previous, samples, clock() - start)
