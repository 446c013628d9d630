"""
Robots.txt Handler
==================
Best-effort robots.txt compliance, off by default.

robots.txt is downloaded once per origin with ``requests`` (in a worker
thread so the event loop keeps running) and parsed with
``urllib.robotparser``.  A missing or unreachable robots.txt allows
everything.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import requests

logger = logging.getLogger(__name__)


class RobotsHandler:
    """
    Caches one parsed robots.txt per origin.

    Args:
        user_agent: Agent string matched against ``User-agent`` groups
        timeout: Download timeout in seconds
        respect_robots: When False every URL is allowed and nothing is fetched
    """

    def __init__(self, user_agent: str = "*", timeout: float = 10.0, respect_robots: bool = True):
        self.user_agent = user_agent
        self.timeout = timeout
        self.respect_robots = respect_robots
        self._cache: Dict[str, Optional[RobotFileParser]] = {}

    @staticmethod
    def _origin(url: str) -> str:
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"

    def _download(self, origin: str) -> Optional[RobotFileParser]:
        robots_url = f"{origin}/robots.txt"
        try:
            response = requests.get(
                robots_url,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            logger.warning(f"[ROBOTS] Failed to fetch {robots_url}: {e}")
            return None

        if response.status_code != 200:
            logger.info(f"[ROBOTS] No robots.txt at {origin} (status: {response.status_code})")
            return None

        parser = RobotFileParser()
        parser.set_url(robots_url)
        parser.parse(response.text.splitlines())
        logger.info(f"[ROBOTS] Parsed robots.txt for {origin}")
        return parser

    def load_sync(self, url: str) -> Optional[RobotFileParser]:
        """Fetch and cache robots.txt for the URL's origin (blocking)."""
        origin = self._origin(url)
        if origin not in self._cache:
            self._cache[origin] = self._download(origin)
        return self._cache[origin]

    async def load(self, url: str) -> Optional[RobotFileParser]:
        """Fetch and cache robots.txt without blocking the event loop."""
        if not self.respect_robots:
            return None
        origin = self._origin(url)
        if origin in self._cache:
            return self._cache[origin]
        return await asyncio.to_thread(self.load_sync, url)

    def can_fetch(self, url: str) -> bool:
        """True unless a loaded robots.txt disallows ``url``."""
        if not self.respect_robots:
            return True
        parser = self.load_sync(url)
        if parser is None:
            return True
        allowed = parser.can_fetch(self.user_agent, url)
        if not allowed:
            logger.debug(f"[ROBOTS] Disallowed: {url}")
        return allowed

    def clear_cache(self) -> None:
        self._cache.clear()
