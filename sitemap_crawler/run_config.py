"""
Run Configuration
=================
Single source of truth for crawler defaults and runtime limits.

The CLI, the job runner, the fetcher and the frontier all read from one
``CrawlerRunConfig``.  Values come from (lowest to highest priority):
built-in defaults, ``SITEMAP_CRAWLER_*`` environment variables, CLI flags.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

from .models import DEFAULT_MAX_DEPTH, DEFAULT_MAX_PAGES, CrawlJob

logger = logging.getLogger(__name__)


ENV_PREFIX = "SITEMAP_CRAWLER_"

# ---------------------------------------------------------------------------
# Canonical defaults
# ---------------------------------------------------------------------------
_DEFAULTS: Dict[str, Any] = {
    "max_depth": DEFAULT_MAX_DEPTH,
    "max_pages": DEFAULT_MAX_PAGES,
    "concurrency": 6,                 # pages fetched per batch
    "navigation_timeout_s": 30.0,     # per readiness strategy
    "stability_interval_s": 0.5,
    "stability_threshold": 3,         # consecutive unchanged samples
    "stability_timeout_s": 8.0,
    "challenge_recheck_s": 5.0,       # wait before re-checking a bot challenge
    "hash_nav_budget": 5,             # simulated #/ navigations per page
    "headless": True,
    "block_resources": True,          # images, fonts, media, analytics
    "respect_robots": False,
    "robots_timeout_s": 10.0,
    "user_agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "output_json": None,
    "output_xml": None,
    "output_tree": None,
    "output_records": None,
}


def _coerce(raw: str, default: Any) -> Any:
    """Convert an environment string to the type of its default."""
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


@dataclass
class CrawlerRunConfig:
    """
    Configuration consumed by every crawler subsystem.

    Populate via:
      - ``CrawlerRunConfig()``                 all defaults
      - ``CrawlerRunConfig(max_pages=50)``      override one value
      - ``CrawlerRunConfig.from_env()``         defaults + environment
      - ``CrawlerRunConfig.from_cli_args(ns)``  environment + argparse Namespace
    """

    # ---- Crawl limits ----
    max_depth: int = _DEFAULTS["max_depth"]
    max_pages: int = _DEFAULTS["max_pages"]
    concurrency: int = _DEFAULTS["concurrency"]

    # ---- Fetch behaviour ----
    navigation_timeout_s: float = _DEFAULTS["navigation_timeout_s"]
    stability_interval_s: float = _DEFAULTS["stability_interval_s"]
    stability_threshold: int = _DEFAULTS["stability_threshold"]
    stability_timeout_s: float = _DEFAULTS["stability_timeout_s"]
    challenge_recheck_s: float = _DEFAULTS["challenge_recheck_s"]
    hash_nav_budget: int = _DEFAULTS["hash_nav_budget"]

    # ---- Browser ----
    headless: bool = _DEFAULTS["headless"]
    block_resources: bool = _DEFAULTS["block_resources"]
    user_agent: str = _DEFAULTS["user_agent"]

    # ---- Politeness ----
    respect_robots: bool = _DEFAULTS["respect_robots"]
    robots_timeout_s: float = _DEFAULTS["robots_timeout_s"]

    # ---- Output paths (None = skip) ----
    output_json: Optional[str] = _DEFAULTS["output_json"]
    output_xml: Optional[str] = _DEFAULTS["output_xml"]
    output_tree: Optional[str] = _DEFAULTS["output_tree"]
    output_records: Optional[str] = _DEFAULTS["output_records"]

    def __post_init__(self):
        if self.max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        if self.max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.stability_threshold < 1:
            raise ValueError("stability_threshold must be >= 1")

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "CrawlerRunConfig":
        """
        Build config from ``SITEMAP_CRAWLER_<FIELD>`` environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)
            **overrides: Values that win over the environment
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for f in fields(cls):
            key = ENV_PREFIX + f.name.upper()
            if key not in environ:
                continue
            default = _DEFAULTS.get(f.name)
            try:
                values[f.name] = _coerce(environ[key], default) if default is not None else environ[key]
            except ValueError as e:
                raise ValueError(f"Invalid value for {key}: {environ[key]!r}") from e
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @classmethod
    def from_cli_args(cls, args, environ: Optional[Mapping[str, str]] = None) -> "CrawlerRunConfig":
        """Build config from an argparse Namespace (``__main__.py``)."""
        overrides = {
            "max_depth": getattr(args, "depth", None),
            "max_pages": getattr(args, "pages", None),
            "concurrency": getattr(args, "concurrency", None),
            "navigation_timeout_s": getattr(args, "timeout", None),
            "hash_nav_budget": getattr(args, "hash_nav_budget", None),
            "output_json": getattr(args, "output_json", None),
            "output_xml": getattr(args, "output_xml", None),
            "output_tree": getattr(args, "output_tree", None),
            "output_records": getattr(args, "output_records", None),
        }
        # Boolean flags only override when switched on
        if getattr(args, "respect_robots", False):
            overrides["respect_robots"] = True
        if getattr(args, "headed", False):
            overrides["headless"] = False
        if getattr(args, "no_block_resources", False):
            overrides["block_resources"] = False
        return cls.from_env(environ, **overrides)

    def to_job(self, seed: str, job_id: str = "") -> CrawlJob:
        """Return a ``CrawlJob`` for ``seed`` using this config's limits."""
        return CrawlJob(
            seed_domain=seed,
            max_depth=self.max_depth,
            max_pages=self.max_pages,
            job_id=job_id,
        )

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self, url: str) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 65)
        logger.info("SITEMAP CRAWL CONFIG")
        logger.info("=" * 65)
        logger.info(f"  URL:              {url}")
        logger.info(f"  Max Depth:        {self.max_depth}")
        logger.info(f"  Max Pages:        {self.max_pages}")
        logger.info(f"  Concurrency:      {self.concurrency} pages per batch")
        logger.info(f"  Timeout:          {self.navigation_timeout_s}s per strategy")
        logger.info(f"  Stability:        {self.stability_threshold} x {self.stability_interval_s}s "
                    f"(max {self.stability_timeout_s}s)")
        logger.info(f"  Hash Nav Budget:  {self.hash_nav_budget} per page")
        logger.info(f"  Headless:         {self.headless}")
        logger.info(f"  Block Resources:  {self.block_resources}")
        if self.respect_robots:
            logger.info(f"  robots.txt:       respected (best effort)")
        logger.info("=" * 65)
