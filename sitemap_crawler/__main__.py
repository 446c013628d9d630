#!/usr/bin/env python3
"""
Command-line Sitemap Crawler
============================
Crawls a site (SPA hash routes included) and writes the reconstructed
sitemap as JSON, XML and/or a text tree.

All configuration flows through ``CrawlerRunConfig``: built-in defaults,
then ``SITEMAP_CRAWLER_*`` environment variables (a ``.env`` file is loaded
first), then the flags below.

Run with: python -m sitemap_crawler <url> [options]
"""

import argparse
import logging
import sys
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

from .errors import CrawlerError
from .exporters import export_sitemap, sitemap_tree_text
from .job import CrawlJobRunner, CrawlJobState
from .models import CrawlProgress
from .run_config import CrawlerRunConfig
from .storage import JsonlPageStore, iter_records

logger = logging.getLogger(__name__)


def _base_name_from_url(url: str) -> str:
    """Derive a filesystem-safe base name from a URL."""
    parsed = urlparse(url if '://' in url else 'https://' + url)
    base = parsed.netloc.replace('.', '_').replace(':', '_')
    if parsed.path and parsed.path != '/':
        path_part = parsed.path.strip('/').replace('/', '_')[:30]
        base = f"{base}_{path_part}"
    return base


def build_parser() -> argparse.ArgumentParser:
    defaults = CrawlerRunConfig()
    parser = argparse.ArgumentParser(
        prog='python -m sitemap_crawler',
        description='SPA-aware sitemap crawler (Playwright)',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m sitemap_crawler example.com
  python -m sitemap_crawler https://example.com --depth 2 --pages 100 --output-xml sitemap.xml
  python -m sitemap_crawler https://app.example.com --output-tree tree.txt --respect-robots
  python -m sitemap_crawler --from-records pages.jsonl --output-tree tree.txt
        """
    )
    parser.add_argument('url', nargs='?', help='Seed URL or bare domain')
    parser.add_argument('--depth', type=int, default=None,
                        help=f'Maximum crawl depth (default: {defaults.max_depth})')
    parser.add_argument('--pages', type=int, default=None,
                        help=f'Maximum pages to crawl (default: {defaults.max_pages})')
    parser.add_argument('--concurrency', type=int, default=None,
                        help=f'Pages fetched per batch (default: {defaults.concurrency})')
    parser.add_argument('--timeout', type=float, default=None,
                        help=f'Navigation timeout in seconds (default: {defaults.navigation_timeout_s:g})')
    parser.add_argument('--hash-nav-budget', type=int, default=None,
                        help=f'Simulated #/ navigations per page (default: {defaults.hash_nav_budget})')
    parser.add_argument('--respect-robots', action='store_true',
                        help='Skip URLs disallowed by robots.txt (best effort)')
    parser.add_argument('--headed', action='store_true', help='Show the browser window')
    parser.add_argument('--no-block-resources', action='store_true',
                        help='Load images, fonts, media and analytics scripts')
    parser.add_argument('--output-json', type=str, help='JSON sitemap output path')
    parser.add_argument('--output-xml', type=str, help='XML sitemap output path')
    parser.add_argument('--output-tree', type=str, help='Text tree output path')
    parser.add_argument('--output-records', type=str,
                        help='Stream raw page records to this JSON-lines file')
    parser.add_argument('--from-records', type=str, metavar='JSONL',
                        help='Skip crawling; rebuild outputs from a saved records file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def _export(records, cfg: CrawlerRunConfig, base_url: str) -> list:
    exported = []
    for fmt, path in (("json", cfg.output_json), ("xml", cfg.output_xml), ("tree", cfg.output_tree)):
        if path:
            exported.append(export_sitemap(records, fmt, path, base_url=base_url))
    return exported


def print_summary(state: CrawlJobState) -> None:
    """Print crawl summary."""
    m = state.metrics
    print("\n" + "=" * 65)
    print("CRAWL COMPLETE")
    print("=" * 65)
    print(f"  Job:                 {state.job_id}")
    print(f"  Status:              {state.status.value}")
    print(f"  Pages recorded:      {len(state.records)}")
    if m is not None:
        print(f"  Failed pages:        {m.pages_failed}")
        print(f"  Total time:          {m.elapsed_sec:.1f}s")
        print(f"  Overall speed:       {m.pages_per_sec:.2f} pages/sec")
        print(f"  Stop reason:         {m.stop_reason}")
    if state.aborted:
        print("  NOTE: crawl was stopped early; the sitemap is partial")
    print("=" * 65)


def run_from_records(path: str, cfg: CrawlerRunConfig, base_url: str = None) -> int:
    records = list(iter_records(path))
    logger.info(f"Loaded {len(records)} records from {path}")
    exported = _export(records, cfg, base_url)
    if not exported:
        print(sitemap_tree_text(records, base_url=base_url))
    for p in exported:
        print(f"  Exported: {p}")
    return 0


def run_crawl(url: str, cfg: CrawlerRunConfig) -> int:
    store = JsonlPageStore(cfg.output_records) if cfg.output_records else None
    runner = CrawlJobRunner(cfg, store=store)

    def progress_cb(progress: CrawlProgress):
        print(f"[Pages {progress.pages_crawled}/{cfg.max_pages}]")

    runner.set_progress_callback(progress_cb)
    job = cfg.to_job(url)
    cfg.log_summary(job.seed_url)

    try:
        state = runner.run_sync(job)
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except CrawlerError as e:
        logger.error(f"Crawl failed: {e}")
        return 1

    if not state.records:
        logger.warning("No pages were crawled; skipping export")
    else:
        exported = _export(state.records, cfg, job.seed_url)
        if cfg.output_records:
            exported.append(str(Path(cfg.output_records).absolute()))
        if exported:
            print("\n" + "-" * 40)
            for path in exported:
                print(f"  Exported: {path}")
            print("-" * 40)
        else:
            print(sitemap_tree_text(state.records, base_url=job.seed_url))
    print_summary(state)
    return 0


def main(argv=None) -> int:
    # .env next to the project, else the working directory
    env_path = Path(__file__).resolve().parent.parent / '.env'
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )

    try:
        cfg = CrawlerRunConfig.from_cli_args(args)
    except ValueError as e:
        parser.error(str(e))

    if args.from_records:
        return run_from_records(args.from_records, cfg, base_url=args.url)

    if not args.url:
        parser.error("a URL is required unless --from-records is given")

    if not (cfg.output_json or cfg.output_xml or cfg.output_tree):
        base = _base_name_from_url(args.url)
        cfg.output_json = f"{base}.json"
        logger.info(f"No output format given; writing {cfg.output_json}")

    return run_crawl(args.url, cfg)


if __name__ == '__main__':
    sys.exit(main())
