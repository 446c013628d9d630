"""
Crawl Job Runner
================
Orchestrates one crawl job end to end:

    PENDING -> CRAWLING -> PROCESSING -> COMPLETED
                      \\-----------------> FAILED

CRAWLING runs the frontier inside a browser session; PROCESSING rebuilds the
sitemap tree and (optionally) asks an external generator for
recommendations.  A generator failure never fails the job.  Any other
exception marks the job FAILED with its message and is re-raised.
A job stopped with ``stop()`` still completes, but its state is flagged
``aborted`` because the sitemap only covers what was crawled so far.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, List, Optional

from .compression import Recommendation, RecommendationGenerator, generate_recommendations
from .fetcher import BrowserSession, PageFetcher
from .frontier import FrontierManager
from .models import CrawlJob, CrawlProgress, PageRecord, SitemapNode
from .monitor import CrawlMetrics, CrawlMonitor
from .robots import RobotsHandler
from .run_config import CrawlerRunConfig
from .sitemap_tree import build_sitemap_tree, count_nodes

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "PENDING"
    CRAWLING = "CRAWLING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class CrawlJobState:
    """Everything known about a job; handed to the status callback."""
    job: CrawlJob
    status: JobStatus = JobStatus.PENDING
    pages_crawled: int = 0
    error_message: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    records: List[PageRecord] = field(default_factory=list)
    tree: Optional[SitemapNode] = None
    recommendations: List[Recommendation] = field(default_factory=list)
    metrics: Optional[CrawlMetrics] = None
    aborted: bool = False

    @property
    def job_id(self) -> str:
        return self.job.job_id


@asynccontextmanager
async def browser_fetcher(config: CrawlerRunConfig) -> AsyncIterator[PageFetcher]:
    """Default fetcher factory: one Chromium session for the whole job."""
    async with BrowserSession(config) as session:
        yield PageFetcher(session, config)


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class CrawlJobRunner:
    """
    Runs crawl jobs with a shared configuration.

    Args:
        config: Run configuration (defaults + environment when omitted)
        store: Page store passed to the frontier
        recommender: Optional external ``RecommendationGenerator``
        fetcher_factory: ``factory(config)`` returning an async context
            manager that yields a fetcher.  Defaults to a Playwright session.
    """

    def __init__(
        self,
        config: Optional[CrawlerRunConfig] = None,
        store=None,
        recommender: Optional[RecommendationGenerator] = None,
        fetcher_factory: Optional[Callable[[CrawlerRunConfig], Any]] = None,
    ):
        self.config = config or CrawlerRunConfig.from_env()
        self.store = store
        self.recommender = recommender
        self.fetcher_factory = fetcher_factory or browser_fetcher
        self._progress_callback: Optional[Callable] = None
        self._status_callback: Optional[Callable] = None
        self._frontier: Optional[FrontierManager] = None
        self._stop_requested = False

    def set_progress_callback(self, callback: Callable) -> None:
        """Set callback: callback(progress: CrawlProgress), sync or async."""
        self._progress_callback = callback

    def set_status_callback(self, callback: Callable) -> None:
        """Set callback: callback(state: CrawlJobState) on every status change."""
        self._status_callback = callback

    def stop(self) -> None:
        """Abort the running crawl after the current batch is cancelled."""
        self._stop_requested = True
        if self._frontier is not None:
            self._frontier.abort()

    async def _set_status(self, state: CrawlJobState, status: JobStatus) -> None:
        state.status = status
        logger.info(f"[JOB] {state.job_id}: {status.value}")
        if self._status_callback is not None:
            try:
                await _maybe_await(self._status_callback(state))
            except Exception as e:
                logger.warning(f"[JOB] Status callback failed: {e}")

    def _progress_sink(self, state: CrawlJobState) -> Callable[[CrawlProgress], Any]:
        async def on_progress(progress: CrawlProgress) -> None:
            state.pages_crawled = progress.pages_crawled
            if self._progress_callback is not None:
                await _maybe_await(self._progress_callback(progress))
        return on_progress

    async def run(self, job: CrawlJob) -> CrawlJobState:
        """
        Execute ``job`` and return its final state.

        Raises:
            Exception: whatever made the job FAILED (after the status update)
        """
        if not job.job_id:
            job.job_id = uuid.uuid4().hex[:12]
        state = CrawlJobState(job=job)
        monitor = CrawlMonitor()
        robots = None
        if self.config.respect_robots:
            robots = RobotsHandler(
                user_agent=self.config.user_agent,
                timeout=self.config.robots_timeout_s,
            )

        state.started_at = time.time()
        try:
            await self._set_status(state, JobStatus.CRAWLING)
            async with self.fetcher_factory(self.config) as fetcher:
                self._frontier = FrontierManager(
                    fetcher,
                    store=self.store,
                    progress=self._progress_sink(state),
                    robots=robots,
                    concurrency=self.config.concurrency,
                    monitor=monitor,
                )
                if self._stop_requested:
                    self._frontier.abort()
                state.records = await self._frontier.run(job)
            state.pages_crawled = len(state.records)

            await self._set_status(state, JobStatus.PROCESSING)
            state.tree = build_sitemap_tree(state.records)
            state.recommendations = await generate_recommendations(self.recommender, state.tree)
            state.metrics = monitor.snapshot()
            if state.metrics.stop_reason == "aborted":
                state.aborted = True
                state.error_message = "aborted"
                logger.warning(f"[JOB] {state.job_id}: stopped early, sitemap is partial")
            logger.info("\n" + monitor.format_summary(state.metrics))

            state.completed_at = time.time()
            await self._set_status(state, JobStatus.COMPLETED)
            logger.info(
                f"[JOB] {state.job_id}: {count_nodes(state.tree)} pages in sitemap, "
                f"{len(state.recommendations)} recommendations"
            )
            return state
        except asyncio.CancelledError:
            state.error_message = "cancelled"
            state.completed_at = time.time()
            await self._set_status(state, JobStatus.FAILED)
            raise
        except Exception as e:
            state.error_message = str(e) or type(e).__name__
            state.completed_at = time.time()
            logger.error(f"[JOB] {state.job_id} failed: {state.error_message}")
            await self._set_status(state, JobStatus.FAILED)
            raise
        finally:
            self._frontier = None
            self._stop_requested = False

    def run_sync(self, job: CrawlJob) -> CrawlJobState:
        """Blocking wrapper around :meth:`run`."""
        return asyncio.run(self.run(job))


async def crawl_site(seed: str, config: Optional[CrawlerRunConfig] = None, **runner_kwargs) -> CrawlJobState:
    """Crawl ``seed`` with ``config`` and return the finished job state."""
    config = config or CrawlerRunConfig.from_env()
    runner = CrawlJobRunner(config, **runner_kwargs)
    return await runner.run(config.to_job(seed))
