"""
Crawl Monitor
=============
Counters for one crawl job.

All updates come from the frontier's owner task between batches, so no
locking is needed.  ``snapshot()`` returns an immutable ``CrawlMetrics``
and ``format_summary()`` renders the end-of-job banner.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrawlMetrics:
    """Snapshot of crawl counters at a point in time."""
    pages_ok: int = 0
    pages_failed: int = 0
    pages_dropped: int = 0
    persistence_failures: int = 0
    links_discovered: int = 0
    links_enqueued: int = 0
    batches: int = 0
    max_depth_reached: int = 0
    elapsed_sec: float = 0.0
    pages_per_sec: float = 0.0
    stop_reason: str = ""
    drop_reasons: Dict[str, int] = field(default_factory=dict)
    failure_kinds: Dict[str, int] = field(default_factory=dict)

    @property
    def pages_crawled(self) -> int:
        return self.pages_ok + self.pages_failed


class CrawlMonitor:
    """
    Usage::

        monitor = CrawlMonitor()
        monitor.start()
        monitor.record_page(status_code=200, depth=1)
        monitor.stop("queue exhausted")
        logger.info(monitor.format_summary())
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._start_time: Optional[float] = None
        self._end_time: Optional[float] = None
        self._pages_ok = 0
        self._pages_failed = 0
        self._persistence_failures = 0
        self._links_discovered = 0
        self._links_enqueued = 0
        self._batches = 0
        self._max_depth = 0
        self._stop_reason = ""
        self._drops: Counter = Counter()
        self._failures: Counter = Counter()

    def start(self) -> None:
        self._start_time = self._clock()
        self._end_time = None

    def stop(self, reason: str) -> None:
        self._end_time = self._clock()
        self._stop_reason = reason

    # ---- recording -------------------------------------------------------

    def record_page(self, status_code: int, depth: int, failure_kind: Optional[str] = None) -> None:
        if 200 <= status_code < 400 and failure_kind is None:
            self._pages_ok += 1
        else:
            self._pages_failed += 1
            self._failures[failure_kind or f"HTTP {status_code}"] += 1
        self._max_depth = max(self._max_depth, depth)

    def record_drop(self, reason: str) -> None:
        self._drops[reason] += 1

    def record_persistence_failure(self) -> None:
        self._persistence_failures += 1

    def record_links(self, discovered: int, enqueued: int) -> None:
        self._links_discovered += discovered
        self._links_enqueued += enqueued

    def record_batch(self) -> None:
        self._batches += 1

    # ---- reporting -------------------------------------------------------

    def snapshot(self) -> CrawlMetrics:
        if self._start_time is None:
            elapsed = 0.0
        else:
            end = self._end_time if self._end_time is not None else self._clock()
            elapsed = max(0.0, end - self._start_time)
        crawled = self._pages_ok + self._pages_failed
        return CrawlMetrics(
            pages_ok=self._pages_ok,
            pages_failed=self._pages_failed,
            pages_dropped=sum(self._drops.values()),
            persistence_failures=self._persistence_failures,
            links_discovered=self._links_discovered,
            links_enqueued=self._links_enqueued,
            batches=self._batches,
            max_depth_reached=self._max_depth,
            elapsed_sec=round(elapsed, 2),
            pages_per_sec=round(crawled / elapsed, 2) if elapsed > 0 else 0.0,
            stop_reason=self._stop_reason,
            drop_reasons=dict(self._drops),
            failure_kinds=dict(self._failures),
        )

    def format_summary(self, metrics: Optional[CrawlMetrics] = None) -> str:
        """Human-readable summary string."""
        m = metrics or self.snapshot()
        lines = [
            "=" * 65,
            "  CRAWL SUMMARY",
            "=" * 65,
            f"  Pages crawled:       {m.pages_crawled}",
            f"    ok:                {m.pages_ok}",
            f"    failed:            {m.pages_failed}",
            f"  Items dropped:       {m.pages_dropped}",
            f"  Persist failures:    {m.persistence_failures}",
            "-" * 65,
            f"  Links discovered:    {m.links_discovered}",
            f"  Links enqueued:      {m.links_enqueued}",
            f"  Batches:             {m.batches}",
            f"  Deepest level:       {m.max_depth_reached}",
            "-" * 65,
            f"  Elapsed time:        {m.elapsed_sec:.1f} s",
            f"  Speed:               {m.pages_per_sec:.2f} pages/sec",
            f"  Stop reason:         {m.stop_reason}",
        ]
        if m.failure_kinds:
            lines.append("-" * 65)
            for kind, count in sorted(m.failure_kinds.items()):
                lines.append(f"  {kind + ':':<21}{count}")
        lines.append("=" * 65)
        return "\n".join(lines)
