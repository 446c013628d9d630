"""
Sitemap Crawler Package
An SPA-aware site crawler that rebuilds a hierarchical sitemap from a
bounded, batch-parallel Playwright crawl.

CLI Usage:
    python -m sitemap_crawler <url> [options]

    Options:
        --depth             Maximum crawl depth (default: 3)
        --pages             Maximum pages to crawl (default: 500)
        --concurrency       Pages fetched per batch (default: 6)
        --timeout           Navigation timeout in seconds (default: 30)
        --respect-robots    Honour robots.txt (best effort)
        --output-json       Export JSON sitemap
        --output-xml        Export XML sitemap
        --output-tree       Export text tree
        --output-records    Stream raw page records (JSON lines)
"""

from .errors import (
    CrawlerError,
    InvalidUrl,
    FetchError,
    NavigationTimeout,
    BlockedByBotProtection,
    NavigationFailed,
    UnknownFetchError,
    PersistenceFailure,
)
from .models import CrawlJob, FrontierItem, FetchResult, PageRecord, SitemapNode, CrawlProgress
from .run_config import CrawlerRunConfig
from .utils import URLNormalizer, normalize, same_domain, poll_until_stable
from .route_discovery import RouteDiscoverer, RouteExtractor
from .fetcher import BrowserSession, PageFetcher
from .frontier import FrontierManager, TraversalContext
from .robots import RobotsHandler
from .monitor import CrawlMonitor, CrawlMetrics
from .sitemap_tree import build_sitemap_tree, iter_nodes, count_nodes
from .exporters import export_sitemap, render_sitemap
from .compression import compress_sitemap, chunk_sitemap, Recommendation, RecommendationGenerator
from .storage import PageStore, InMemoryPageStore, JsonlPageStore
from .job import CrawlJobRunner, CrawlJobState, JobStatus, crawl_site

__all__ = [
    # Errors
    'CrawlerError',
    'InvalidUrl',
    'FetchError',
    'NavigationTimeout',
    'BlockedByBotProtection',
    'NavigationFailed',
    'UnknownFetchError',
    'PersistenceFailure',
    # Data model
    'CrawlJob',
    'FrontierItem',
    'FetchResult',
    'PageRecord',
    'SitemapNode',
    'CrawlProgress',
    'CrawlerRunConfig',
    # Crawling
    'URLNormalizer',
    'normalize',
    'same_domain',
    'poll_until_stable',
    'RouteDiscoverer',
    'RouteExtractor',
    'BrowserSession',
    'PageFetcher',
    'FrontierManager',
    'TraversalContext',
    'RobotsHandler',
    'CrawlMonitor',
    'CrawlMetrics',
    # Sitemap
    'build_sitemap_tree',
    'iter_nodes',
    'count_nodes',
    'export_sitemap',
    'render_sitemap',
    'compress_sitemap',
    'chunk_sitemap',
    'Recommendation',
    'RecommendationGenerator',
    # Persistence / jobs
    'PageStore',
    'InMemoryPageStore',
    'JsonlPageStore',
    'CrawlJobRunner',
    'CrawlJobState',
    'JobStatus',
    'crawl_site',
]

__version__ = '1.0.0'
