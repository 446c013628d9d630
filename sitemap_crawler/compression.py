"""
Sitemap Compression
===================
Shrinks a sitemap tree into a path-segment summary small enough to hand
to an external recommendation generator (typically an LLM), and splits
that summary by top-level section.

The generator itself is outside this package: anything implementing
``RecommendationGenerator.generate(compressed)`` works.  Its output is
treated as opaque ``Recommendation`` records.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol
from urllib.parse import urlparse

from .models import SitemapNode
from .sitemap_tree import iter_nodes

logger = logging.getLogger(__name__)


@dataclass
class Recommendation:
    category: str = "GENERAL"
    before: Any = None
    after: Any = None
    explanation: str = "AI-optimized structure"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Recommendation":
        return cls(
            category=data.get('category') or "GENERAL",
            before=data.get('before'),
            after=data.get('after'),
            explanation=data.get('explanation') or "AI-optimized structure",
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RecommendationGenerator(Protocol):
    def generate(self, compressed: Dict[str, Any]) -> Any:
        """Return a list of Recommendation (or dicts), directly or as an awaitable."""
        ...


def _segments(url: str) -> List[str]:
    """Path segments followed by hash-route segments."""
    parsed = urlparse(url)
    segs = [s for s in parsed.path.split('/') if s]
    if parsed.fragment.startswith('/'):
        segs.extend(s for s in parsed.fragment.split('/') if s)
    return segs


def _empty(depth: int) -> Dict[str, Any]:
    return {'count': 0, 'depth': depth, 'children': {}}


def compress_sitemap(tree: SitemapNode) -> Dict[str, Any]:
    """
    Fold every real node's URL into a nested ``{count, depth, children}``
    structure keyed by path segment.

    ``count`` is the number of pages at or below a segment; the top-level
    dict describes the whole site.
    """
    root = _empty(0)
    for node in iter_nodes(tree):
        if node.is_virtual:
            continue
        root['count'] += 1
        current = root
        for depth, seg in enumerate(_segments(node.url), start=1):
            current = current['children'].setdefault(seg, _empty(depth))
            current['count'] += 1
    return root


def chunk_sitemap(compressed: Dict[str, Any]) -> List[Dict[str, Any]]:
    """One chunk per top-level section, or a single ``/`` chunk."""
    chunks = [
        {'path': f"/{segment}", 'structure': structure}
        for segment, structure in (compressed.get('children') or {}).items()
    ]
    if not chunks:
        chunks.append({'path': '/', 'structure': compressed})
    return chunks


async def generate_recommendations(
    generator: Optional[RecommendationGenerator],
    tree: SitemapNode,
) -> List[Recommendation]:
    """
    Run the external generator on the compressed tree.

    Generator failures are logged and yield an empty list.
    """
    if generator is None:
        return []
    compressed = compress_sitemap(tree)
    try:
        result = generator.generate(compressed)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        logger.warning(f"[RECOMMEND] Generator failed: {e}")
        return []

    recommendations: List[Recommendation] = []
    for item in result or []:
        if isinstance(item, Recommendation):
            recommendations.append(item)
        elif isinstance(item, Mapping):
            recommendations.append(Recommendation.from_dict(item))
        else:
            logger.debug(f"[RECOMMEND] Ignoring unrecognised item {item!r}")
    logger.info(f"[RECOMMEND] {len(recommendations)} recommendations")
    return recommendations
