"""
Frontier Manager
================
Bounded, batch-parallel breadth-first traversal of one site.

Each iteration pops up to ``concurrency`` items off the queue, drops those
that fail the pre-dispatch filters (depth, invalid URL, other domain,
already visited, robots.txt), fetches the survivors concurrently, and then
processes the results in batch order on the owner task:

  1. mark the URL visited
  2. emit and persist one ``PageRecord`` (success or synthetic error)
  3. normalize, filter and enqueue the discovered links one level deeper

``visited`` never exceeds ``max_pages`` and no item deeper than
``max_depth`` is ever enqueued.  A fetch failure only affects its own
item.  ``abort()`` cancels the in-flight batch; its items emit nothing.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Callable, Deque, List, Optional, Set, Union

from .errors import FetchError, InvalidUrl, PersistenceFailure, classify_fetch_error
from .models import CrawlJob, CrawlProgress, FetchResult, FrontierItem, PageRecord
from .monitor import CrawlMonitor
from .robots import RobotsHandler
from .utils import fallback_title, normalize, same_domain

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 6

Outcome = Union[FetchResult, FetchError]

# Drop reasons (also the monitor's keys)
DROP_DEPTH = "depth exceeded"
DROP_INVALID = "invalid url"
DROP_CROSS_DOMAIN = "cross-domain"
DROP_VISITED = "already visited"
DROP_ROBOTS = "robots.txt"


class TraversalContext:
    """All mutable state of one crawl job. Touched only by the owner task."""

    def __init__(self, job: CrawlJob):
        self.job = job
        self.seed_url = normalize(job.seed_url)
        self.queue: Deque[FrontierItem] = deque()
        self.queued: Set[str] = set()
        self.in_flight: Set[str] = set()
        self.visited: Set[str] = set()
        self.records: List[PageRecord] = []
        self.abort_event = asyncio.Event()
        self.batches = 0

    @property
    def aborted(self) -> bool:
        return self.abort_event.is_set()

    @property
    def remaining_budget(self) -> int:
        return self.job.max_pages - len(self.visited)

    def enqueue(self, item: FrontierItem) -> None:
        self.queue.append(item)
        self.queued.add(item.url)

    def pop(self) -> FrontierItem:
        item = self.queue.popleft()
        self.queued.discard(item.url)
        return item


class FrontierManager:
    """
    Drives a crawl job to completion.

    Args:
        fetcher: Object with ``async fetch(url) -> FetchResult``
        store: Optional page store (``insert_page`` sync or async)
        progress: Optional ``callable(CrawlProgress)``, sync or async
        robots: Optional ``RobotsHandler`` (consulted only if it respects robots)
        concurrency: Pages fetched per batch
        monitor: Counters for the end-of-job summary
    """

    def __init__(
        self,
        fetcher,
        store=None,
        progress: Optional[Callable[[CrawlProgress], Any]] = None,
        robots: Optional[RobotsHandler] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        monitor: Optional[CrawlMonitor] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.fetcher = fetcher
        self.store = store
        self.progress = progress
        self.robots = robots
        self.concurrency = concurrency
        self.monitor = monitor or CrawlMonitor()
        self._context: Optional[TraversalContext] = None
        self._abort_requested = False

    @property
    def context(self) -> Optional[TraversalContext]:
        return self._context

    def abort(self) -> None:
        """Stop dispatching; the in-flight batch is cancelled."""
        self._abort_requested = True
        if self._context is not None:
            self._context.abort_event.set()
        logger.info("[FRONTIER] Abort requested")

    # -----------------------------------------------------------------------
    # Main loop
    # -----------------------------------------------------------------------

    async def run(self, job: CrawlJob) -> List[PageRecord]:
        """
        Crawl ``job`` and return its page records in emission order.

        Raises:
            InvalidUrl: the seed cannot be normalized
        """
        ctx = TraversalContext(job)
        self._context = ctx
        if self._abort_requested:
            ctx.abort_event.set()

        ctx.enqueue(FrontierItem(url=ctx.seed_url, depth=0, parent_url=None))
        self.monitor.start()
        logger.info(
            f"[FRONTIER] Starting {ctx.seed_url} "
            f"(max_depth={job.max_depth}, max_pages={job.max_pages}, concurrency={self.concurrency})"
        )

        while ctx.queue and ctx.remaining_budget > 0 and not ctx.aborted:
            batch = await self._form_batch(ctx)
            if not batch:
                continue

            ctx.batches += 1
            logger.info(
                f"[FRONTIER] Batch {ctx.batches}: {len(batch)} pages "
                f"(depth {batch[0].depth}-{batch[-1].depth}) | "
                f"visited={len(ctx.visited)} queued={len(ctx.queue)}"
            )
            outcomes = await self._run_batch(ctx, batch)
            if outcomes is None:
                break

            emitted = 0
            for item, outcome in zip(batch, outcomes):
                if await self._process(ctx, item, outcome):
                    emitted += 1
            ctx.in_flight.clear()
            self.monitor.record_batch()
            if emitted:
                await self._report(ctx)

        if ctx.aborted:
            reason = "aborted"
        elif ctx.remaining_budget <= 0:
            reason = "max pages reached"
        else:
            reason = "queue exhausted"
        self.monitor.stop(reason)
        await self._report(ctx)

        logger.info(
            f"[FRONTIER] Finished: {len(ctx.records)} records, "
            f"{len(ctx.visited)} visited, stop reason: {reason}"
        )
        return ctx.records

    # -----------------------------------------------------------------------
    # Batch formation
    # -----------------------------------------------------------------------

    async def _form_batch(self, ctx: TraversalContext) -> List[FrontierItem]:
        capacity = min(self.concurrency, ctx.remaining_budget)
        batch: List[FrontierItem] = []
        while ctx.queue and len(batch) < capacity:
            item = ctx.pop()
            try:
                url = normalize(item.url)
            except InvalidUrl as e:
                self._drop(item, DROP_INVALID, str(e))
                continue
            reason = await self._drop_reason(ctx, url, item.depth)
            if reason:
                self._drop(item, reason)
                continue
            ctx.in_flight.add(url)
            batch.append(FrontierItem(url=url, depth=item.depth, parent_url=item.parent_url))
        return batch

    async def _drop_reason(self, ctx: TraversalContext, url: str, depth: int) -> Optional[str]:
        if depth > ctx.job.max_depth:
            return DROP_DEPTH
        if not same_domain(url, ctx.seed_url):
            return DROP_CROSS_DOMAIN
        if url in ctx.visited or url in ctx.in_flight:
            return DROP_VISITED
        if self.robots is not None and self.robots.respect_robots:
            await self.robots.load(url)
            if not self.robots.can_fetch(url):
                return DROP_ROBOTS
        return None

    def _drop(self, item: FrontierItem, reason: str, detail: str = "") -> None:
        self.monitor.record_drop(reason)
        logger.debug(f"[FRONTIER] Dropped {item.url} ({reason}{': ' + detail if detail else ''})")

    # -----------------------------------------------------------------------
    # Fetching
    # -----------------------------------------------------------------------

    async def _fetch_one(self, item: FrontierItem) -> Outcome:
        try:
            return await self.fetcher.fetch(item.url)
        except FetchError as e:
            return e
        except Exception as e:
            return classify_fetch_error(item.url, e)

    async def _run_batch(self, ctx: TraversalContext, batch: List[FrontierItem]) -> Optional[List[Outcome]]:
        """
        Fetch the batch concurrently.

        Returns:
            Outcomes in batch order, or None if the job was aborted mid-batch
        """
        tasks = [asyncio.ensure_future(self._fetch_one(item)) for item in batch]
        abort_waiter = asyncio.ensure_future(ctx.abort_event.wait())
        try:
            pending = set(tasks)
            while pending and not ctx.aborted:
                _, pending = await asyncio.wait(
                    pending | {abort_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                pending.discard(abort_waiter)
            if ctx.aborted:
                logger.info(f"[FRONTIER] Batch {ctx.batches} cancelled by abort")
                return None
            return [t.result() for t in tasks]
        finally:
            abort_waiter.cancel()
            for t in tasks:
                if not t.done():
                    t.cancel()
            await asyncio.gather(*tasks, abort_waiter, return_exceptions=True)

    # -----------------------------------------------------------------------
    # Result processing
    # -----------------------------------------------------------------------

    async def _process(self, ctx: TraversalContext, item: FrontierItem, outcome: Outcome) -> bool:
        """Record one fetched item and enqueue its links. True if a record was emitted."""
        ctx.visited.add(item.url)

        if isinstance(outcome, FetchError):
            title = outcome.synthetic_title
            status = outcome.status_code
            links: List[str] = []
            self.monitor.record_page(status, item.depth, failure_kind=outcome.kind)
            logger.warning(f"[FRONTIER] [{item.depth}] {item.url} failed: {outcome.kind} ({outcome})")
        else:
            title = outcome.title or fallback_title(item.url)
            status = outcome.status_code
            links = outcome.links if status < 400 else []
            self.monitor.record_page(status, item.depth)
            logger.info(f"[FRONTIER] [{item.depth}] {item.url} ({status})")

        emitted = False
        try:
            page_id = await self._persist(ctx, item, title, status)
        except PersistenceFailure as e:
            self.monitor.record_persistence_failure()
            logger.warning(f"[FRONTIER] {e}")
        else:
            ctx.records.append(PageRecord(
                id=page_id,
                url=item.url,
                depth=item.depth,
                parent_url=item.parent_url,
                title=title,
                status_code=status,
            ))
            emitted = True

        enqueued = self._enqueue_links(ctx, item, links)
        self.monitor.record_links(discovered=len(links), enqueued=enqueued)
        return emitted

    async def _persist(self, ctx: TraversalContext, item: FrontierItem, title: str, status: int) -> Any:
        if self.store is None:
            return len(ctx.records) + 1
        result = self.store.insert_page(
            ctx.job.job_id, item.url, item.depth, item.parent_url, title, status,
        )
        if inspect.isawaitable(result):
            result = await result
        return result

    def _enqueue_links(self, ctx: TraversalContext, parent: FrontierItem, links: List[str]) -> int:
        child_depth = parent.depth + 1
        if child_depth > ctx.job.max_depth:
            return 0
        enqueued = 0
        for raw in links:
            try:
                url = normalize(raw)
            except InvalidUrl as e:
                logger.debug(f"[FRONTIER] Skipped link {e}")
                continue
            if not same_domain(url, ctx.seed_url):
                continue
            if url in ctx.visited or url in ctx.queued or url in ctx.in_flight:
                continue
            ctx.enqueue(FrontierItem(url=url, depth=child_depth, parent_url=parent.url))
            enqueued += 1
        return enqueued

    async def _report(self, ctx: TraversalContext) -> None:
        if self.progress is None:
            return
        try:
            result = self.progress(CrawlProgress(pages_crawled=len(ctx.records), job_id=ctx.job.job_id))
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"[FRONTIER] Progress callback failed: {e}")
