"""
Sitemap Tree Builder
====================
Rebuilds the parent/child hierarchy from the flat, ordered list of page
records a crawl produces.

Nodes live in an arena (a list) and are addressed by index; a URL -> index
map resolves ``parent_url`` references.  A record is attached under its
parent when the parent is known and the attachment would not close a
cycle; everything else becomes top-level.  One top-level node is the tree
itself, several are wrapped in a virtual root.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional
from urllib.parse import urlparse

from .models import SitemapNode

logger = logging.getLogger(__name__)

VIRTUAL_ROOT_ID = "root"
VIRTUAL_ROOT_TITLE = "Root"


def record_field(record: Any, name: str, default: Any = None) -> Any:
    """Read a field from a PageRecord-like object or a mapping."""
    if isinstance(record, Mapping):
        if name in record:
            return record[name]
        # camelCase rows from the JSON export
        if name == 'parent_url':
            return record.get('parentUrl', default)
        if name == 'status_code':
            return record.get('statusCode', default)
        return default
    return getattr(record, name, default)


def _is_site_root(url: str) -> bool:
    """Path is ``/`` (or empty) and there is no hash route."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.path in ('', '/') and not parsed.fragment


def _node_status(status_code: Optional[int]) -> str:
    if status_code is None:
        return "ok"
    return "ok" if 200 <= status_code < 400 else "error"


def _creates_cycle(child: int, parent: int, parent_of: List[Optional[int]]) -> bool:
    """True if ``child`` is ``parent`` or one of its ancestors."""
    current: Optional[int] = parent
    steps = 0
    while current is not None and steps <= len(parent_of):
        if current == child:
            return True
        current = parent_of[current]
        steps += 1
    return False


def build_sitemap_tree(records: Iterable[Any]) -> SitemapNode:
    """
    Build a single-rooted tree from page records.

    Args:
        records: ``PageRecord`` objects or dicts with ``url``, ``title``,
            ``depth``, ``parent_url`` (and optionally ``id``,
            ``status_code``), in crawl order

    Returns:
        The root ``SitemapNode``.  Every record appears exactly once.
    """
    records = list(records)
    if not records:
        return SitemapNode(id=VIRTUAL_ROOT_ID, url="", title=VIRTUAL_ROOT_TITLE,
                           depth=-1, status="virtual")

    # (1) arena + first-occurrence index
    arena: List[SitemapNode] = []
    index: Dict[str, int] = {}
    for i, rec in enumerate(records):
        url = record_field(rec, 'url', '')
        arena.append(SitemapNode(
            id=record_field(rec, 'id', i + 1),
            url=url,
            title=record_field(rec, 'title', '') or '',
            depth=int(record_field(rec, 'depth', 0) or 0),
            status=_node_status(record_field(rec, 'status_code')),
        ))
        index.setdefault(url, i)

    # (2) root candidate
    root_idx = next(
        (i for i, node in enumerate(arena) if _is_site_root(node.url)),
        0,
    )

    # (3) attach in input order
    parent_of: List[Optional[int]] = [None] * len(arena)
    top_level: List[int] = []
    orphans = 0
    for i, rec in enumerate(records):
        parent_url = record_field(rec, 'parent_url')
        p = index.get(parent_url) if parent_url else None
        if p is not None and not _creates_cycle(i, p, parent_of):
            parent_of[i] = p
            arena[p].children.append(arena[i])
            continue
        if p is not None:
            logger.debug(f"[TREE] Cycle via {arena[i].url} -> {parent_url}; kept top-level")
        if i != root_idx and parent_url:
            orphans += 1
        top_level.append(i)

    # (4) single root or virtual root
    if len(top_level) == 1:
        tree = arena[top_level[0]]
    else:
        candidate = urlparse(arena[root_idx].url)
        root_url = f"{candidate.scheme}://{candidate.netloc}" if candidate.netloc else "/"
        tree = SitemapNode(
            id=VIRTUAL_ROOT_ID,
            url=root_url,
            title=VIRTUAL_ROOT_TITLE,
            depth=-1,
            status="virtual",
            children=[arena[i] for i in top_level],
        )

    logger.debug(
        f"[TREE] {len(arena)} nodes, {len(top_level)} top-level, {orphans} orphans"
        f"{' (virtual root)' if tree.is_virtual else ''}"
    )
    return tree


def iter_nodes(tree: SitemapNode) -> Iterator[SitemapNode]:
    """Depth-first, pre-order walk (iterative, so deep trees are fine)."""
    stack = [tree]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def count_nodes(tree: SitemapNode) -> int:
    """Number of real (non-virtual) nodes."""
    return sum(1 for node in iter_nodes(tree) if not node.is_virtual)
