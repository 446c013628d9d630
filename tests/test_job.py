"""
Tests for the job runner and the recommendation hand-off.
"""

import asyncio
from contextlib import asynccontextmanager

import pytest

from sitemap_crawler.compression import (
    Recommendation,
    chunk_sitemap,
    compress_sitemap,
    generate_recommendations,
)
from sitemap_crawler.job import CrawlJobRunner, JobStatus, crawl_site
from sitemap_crawler.models import CrawlJob, SitemapNode
from sitemap_crawler.run_config import CrawlerRunConfig
from sitemap_crawler.sitemap_tree import build_sitemap_tree

from conftest import FakeFetcher


SITE = {
    "https://x.io/": ["https://x.io/docs", "https://x.io/#/app"],
    "https://x.io/docs": ["https://x.io/docs/api"],
}


def _factory(fetcher):
    @asynccontextmanager
    async def factory(config):
        yield fetcher
    return factory


def _runner(fetcher=None, **kwargs):
    return CrawlJobRunner(
        CrawlerRunConfig(max_pages=20),
        fetcher_factory=_factory(fetcher or FakeFetcher(SITE)),
        **kwargs,
    )


class StaticRecommender:
    def __init__(self, result):
        self.result = result
        self.received = None

    def generate(self, compressed):
        self.received = compressed
        return self.result


class BrokenRecommender:
    async def generate(self, compressed):
        raise RuntimeError("model unavailable")


class TestCrawlJobRunner:

    @pytest.mark.asyncio
    async def test_status_sequence_and_results(self):
        seen = []
        runner = _runner()
        runner.set_status_callback(lambda state: seen.append(state.status))

        state = await runner.run(CrawlJob("x.io"))

        assert seen == [JobStatus.CRAWLING, JobStatus.PROCESSING, JobStatus.COMPLETED]
        assert state.status == JobStatus.COMPLETED
        assert state.pages_crawled == 4
        assert [r.url for r in state.records][0] == "https://x.io/"
        assert state.tree.url == "https://x.io/"
        assert state.metrics.pages_ok == 4
        assert state.completed_at >= state.started_at
        assert not state.aborted
        assert state.error_message is None

    @pytest.mark.asyncio
    async def test_job_id_assigned_when_missing(self):
        state = await _runner().run(CrawlJob("x.io"))
        assert len(state.job_id) == 12

        state = await _runner().run(CrawlJob("x.io", job_id="fixed"))
        assert state.job_id == "fixed"

    @pytest.mark.asyncio
    async def test_progress_callback_receives_counts(self):
        counts = []
        runner = _runner()
        runner.set_progress_callback(lambda p: counts.append(p.pages_crawled))
        await runner.run(CrawlJob("x.io"))
        assert counts[-1] == 4

    @pytest.mark.asyncio
    async def test_failure_marks_job_failed_and_reraises(self):
        seen = []
        runner = _runner()
        runner.set_status_callback(lambda state: seen.append((state.status, state.error_message)))

        with pytest.raises(Exception):
            await runner.run(CrawlJob("https://"))

        assert seen[0] == (JobStatus.CRAWLING, None)
        assert seen[-1][0] == JobStatus.FAILED
        assert "missing host" in seen[-1][1]

    @pytest.mark.asyncio
    async def test_factory_error_fails_job(self):
        @asynccontextmanager
        async def no_browser(config):
            raise RuntimeError("Executable doesn't exist")
            yield

        seen = []
        runner = CrawlJobRunner(CrawlerRunConfig(), fetcher_factory=no_browser)
        runner.set_status_callback(lambda state: seen.append(state.status))
        with pytest.raises(RuntimeError):
            await runner.run(CrawlJob("x.io"))
        assert seen[-1] == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_status_callback_errors_are_ignored(self):
        def explode(state):
            raise RuntimeError("dashboard offline")

        runner = _runner()
        runner.set_status_callback(explode)
        state = await runner.run(CrawlJob("x.io"))
        assert state.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_stop_aborts_crawl(self):
        gate = asyncio.Event()
        fetcher = FakeFetcher(SITE, gate=gate)
        runner = _runner(fetcher)
        task = asyncio.ensure_future(runner.run(CrawlJob("x.io")))
        for _ in range(5):
            await asyncio.sleep(0)
        runner.stop()
        state = await asyncio.wait_for(task, timeout=5)
        assert state.status == JobStatus.COMPLETED
        assert state.records == []
        assert state.metrics.stop_reason == "aborted"
        assert state.aborted
        assert state.error_message == "aborted"

    @pytest.mark.asyncio
    async def test_stop_only_affects_one_run(self):
        runner = _runner()
        runner.stop()

        first = await runner.run(CrawlJob("x.io"))
        second = await runner.run(CrawlJob("x.io"))

        assert first.aborted
        assert first.records == []
        assert not second.aborted
        assert second.error_message is None
        assert len(second.records) == 4
        assert second.metrics.stop_reason == "queue exhausted"

    def test_run_sync(self):
        state = _runner().run_sync(CrawlJob("x.io"))
        assert state.status == JobStatus.COMPLETED
        assert len(state.records) == 4

    @pytest.mark.asyncio
    async def test_recommendations(self):
        recommender = StaticRecommender([
            {"category": "NAVIGATION", "before": "/docs/api", "after": "/api"},
            Recommendation(explanation="merge"),
            "noise",
        ])
        state = await _runner(recommender=recommender).run(CrawlJob("x.io"))
        assert [r.category for r in state.recommendations] == ["NAVIGATION", "GENERAL"]
        assert state.recommendations[0].explanation == "AI-optimized structure"
        assert recommender.received["count"] == 4

    @pytest.mark.asyncio
    async def test_recommender_failure_still_completes(self):
        state = await _runner(recommender=BrokenRecommender()).run(CrawlJob("x.io"))
        assert state.status == JobStatus.COMPLETED
        assert state.recommendations == []

    @pytest.mark.asyncio
    async def test_crawl_site(self):
        state = await crawl_site(
            "x.io",
            CrawlerRunConfig(max_depth=0),
            fetcher_factory=_factory(FakeFetcher(SITE)),
        )
        assert [r.url for r in state.records] == ["https://x.io/"]


class TrackingFactory:
    """Fetcher factory that records whether its session was released."""

    def __init__(self, fetcher):
        self.fetcher = fetcher
        self.entered = False
        self.exited = False
        self.exit_exc_type = None

    def __call__(self, config):
        return self

    async def __aenter__(self):
        self.entered = True
        return self.fetcher

    async def __aexit__(self, exc_type, exc, tb):
        self.exited = True
        self.exit_exc_type = exc_type
        return False


class ExplodingStore:
    def insert_page(self, *args):
        raise RuntimeError("schema mismatch")


class TestSessionRelease:

    @pytest.mark.asyncio
    async def test_cancellation_releases_session_and_fails_job(self):
        gate = asyncio.Event()
        factory = TrackingFactory(FakeFetcher(SITE, gate=gate))
        states = []
        runner = CrawlJobRunner(CrawlerRunConfig(), fetcher_factory=factory)
        runner.set_status_callback(lambda state: states.append((state.status, state.error_message, state)))

        task = asyncio.ensure_future(runner.run(CrawlJob("x.io")))
        for _ in range(5):
            await asyncio.sleep(0)
        assert factory.entered and not factory.exited
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert factory.exited
        assert factory.exit_exc_type is asyncio.CancelledError
        status, message, state = states[-1]
        assert status == JobStatus.FAILED
        assert message == "cancelled"
        assert state.records == []

    @pytest.mark.asyncio
    async def test_store_error_releases_session(self):
        factory = TrackingFactory(FakeFetcher(SITE))
        runner = CrawlJobRunner(CrawlerRunConfig(), store=ExplodingStore(), fetcher_factory=factory)
        with pytest.raises(RuntimeError, match="schema mismatch"):
            await runner.run(CrawlJob("x.io"))
        assert factory.exited
        assert factory.exit_exc_type is RuntimeError

    @pytest.mark.asyncio
    async def test_successful_run_releases_session(self):
        factory = TrackingFactory(FakeFetcher(SITE))
        await CrawlJobRunner(CrawlerRunConfig(), fetcher_factory=factory).run(CrawlJob("x.io"))
        assert factory.exited
        assert factory.exit_exc_type is None


class TestCompression:

    def _tree(self):
        return build_sitemap_tree([
            {"url": "https://x.io/", "depth": 0, "parent_url": None},
            {"url": "https://x.io/docs", "depth": 1, "parent_url": "https://x.io/"},
            {"url": "https://x.io/docs/api", "depth": 2, "parent_url": "https://x.io/docs"},
            {"url": "https://x.io/#/app", "depth": 1, "parent_url": "https://x.io/"},
        ])

    def test_compress_counts_pages_per_segment(self):
        compressed = compress_sitemap(self._tree())
        assert compressed["count"] == 4
        docs = compressed["children"]["docs"]
        assert docs["count"] == 2
        assert docs["depth"] == 1
        assert docs["children"]["api"]["count"] == 1
        assert compressed["children"]["app"]["count"] == 1

    def test_virtual_root_is_not_counted(self):
        tree = SitemapNode(id="root", url="https://x.io", title="Root", depth=-1, status="virtual")
        assert compress_sitemap(tree) == {"count": 0, "depth": 0, "children": {}}

    def test_chunk_by_top_level_section(self):
        chunks = chunk_sitemap(compress_sitemap(self._tree()))
        assert [c["path"] for c in chunks] == ["/docs", "/app"]

    def test_single_page_is_one_chunk(self):
        compressed = compress_sitemap(build_sitemap_tree([{"url": "https://x.io/", "depth": 0}]))
        assert chunk_sitemap(compressed) == [{"path": "/", "structure": compressed}]

    @pytest.mark.asyncio
    async def test_no_generator(self):
        assert await generate_recommendations(None, self._tree()) == []
