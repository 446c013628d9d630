"""
Data Model
==========
Job descriptor, frontier items, page records and sitemap nodes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


DEFAULT_MAX_DEPTH = 3
DEFAULT_MAX_PAGES = 500


@dataclass
class CrawlJob:
    """One crawl request. Owned by the frontier for the lifetime of the job."""
    seed_domain: str
    max_depth: int = DEFAULT_MAX_DEPTH
    max_pages: int = DEFAULT_MAX_PAGES
    job_id: str = ""

    def __post_init__(self):
        if not self.seed_domain or not self.seed_domain.strip():
            raise ValueError("seed_domain is required")
        if self.max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        if self.max_pages < 1:
            raise ValueError("max_pages must be >= 1")

    @property
    def seed_url(self) -> str:
        seed = self.seed_domain.strip()
        if not seed.lower().startswith(('http://', 'https://')):
            seed = 'https://' + seed
        return seed


@dataclass
class FrontierItem:
    """Queue entry. Never persisted."""
    url: str
    depth: int
    parent_url: Optional[str] = None


@dataclass
class FetchResult:
    """What a successful fetch hands back to the frontier."""
    url: str
    title: str
    links: List[str] = field(default_factory=list)
    status_code: int = 200
    final_url: str = ""


@dataclass(frozen=True)
class PageRecord:
    """One visited canonical URL, success or failure."""
    id: Any
    url: str
    depth: int
    parent_url: Optional[str]
    title: str
    status_code: int

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'url': self.url,
            'depth': self.depth,
            'parent_url': self.parent_url,
            'title': self.title,
            'status_code': self.status_code,
        }


@dataclass
class SitemapNode:
    """Hierarchical view of the crawl, rebuilt on demand from records."""
    id: Any
    url: str
    title: str
    depth: int
    status: str = "ok"
    children: List["SitemapNode"] = field(default_factory=list)

    @property
    def is_virtual(self) -> bool:
        return self.status == "virtual"

    def to_dict(self) -> Dict[str, Any]:
        node: Dict[str, Any] = {
            'id': self.id,
            'url': self.url,
            'title': self.title,
            'depth': self.depth,
            'status': self.status,
        }
        if self.children:
            node['children'] = [child.to_dict() for child in self.children]
        return node


@dataclass
class CrawlProgress:
    """Payload handed to the progress sink."""
    pages_crawled: int
    job_id: str = ""
