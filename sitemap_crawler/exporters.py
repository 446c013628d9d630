"""
Sitemap Exporters
=================
Renders crawl results as:

- JSON   ``{version, totalPages, generatedAt, pages: [{url, title, depth, parentUrl}]}``
- XML    sitemaps.org ``<urlset>`` with lastmod / changefreq / priority
- Tree   indented text diagram of the reconstructed hierarchy

Exporters only need ``url``, ``title``, ``depth`` and ``parent_url`` from
each record.  Error and empty titles are replaced by a URL-derived title.
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .models import SitemapNode
from .sitemap_tree import build_sitemap_tree, record_field
from .utils import display_title, origin_of

logger = logging.getLogger(__name__)

SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
SITEMAP_VERSION = "1.0"

FORMATS = ("json", "xml", "tree")

_CONTENT_TYPES = {
    "json": "application/json",
    "xml": "application/xml",
    "tree": "text/plain",
}
_EXTENSIONS = {"json": "json", "xml": "xml", "tree": "txt"}


@dataclass
class RenderedSitemap:
    content: str
    content_type: str
    filename: str


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _base_url(records: List[Any], base_url: Optional[str]) -> str:
    if base_url:
        return origin_of(base_url if '://' in base_url else 'https://' + base_url)
    if records:
        first = record_field(records[0], 'url', '')
        return origin_of(first) if '://' in first else "/"
    return ""


def calculate_priority(depth: int) -> str:
    """Homepage 1.0, then 0.2 less per level, never below 0.1."""
    return f"{max(0.1, 1.0 - depth * 0.2):.1f}"


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def sitemap_json(records: Iterable[Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """JSON-ready dict with cleaned titles."""
    pages = []
    for rec in records:
        url = record_field(rec, 'url', '')
        pages.append({
            'url': url,
            'title': display_title(record_field(rec, 'title'), url),
            'depth': record_field(rec, 'depth', 0),
            'parentUrl': record_field(rec, 'parent_url'),
        })
    return {
        'version': SITEMAP_VERSION,
        'totalPages': len(pages),
        'generatedAt': _now(now).isoformat(),
        'pages': pages,
    }


# ---------------------------------------------------------------------------
# XML
# ---------------------------------------------------------------------------

def sitemap_xml(records: Iterable[Any], now: Optional[datetime] = None) -> str:
    """sitemaps.org XML document."""
    lastmod = _now(now).date().isoformat()
    urlset = ET.Element("urlset", xmlns=SITEMAP_NS)
    for rec in records:
        url_el = ET.SubElement(urlset, "url")
        ET.SubElement(url_el, "loc").text = record_field(rec, 'url', '')
        ET.SubElement(url_el, "lastmod").text = lastmod
        ET.SubElement(url_el, "changefreq").text = "weekly"
        ET.SubElement(url_el, "priority").text = calculate_priority(int(record_field(rec, 'depth', 0) or 0))
    ET.indent(urlset, space="  ")
    body = ET.tostring(urlset, encoding="unicode")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + body + "\n"


# ---------------------------------------------------------------------------
# Text tree
# ---------------------------------------------------------------------------

def _tree_lines(node: SitemapNode, prefix: str, is_last: bool, out: List[str]) -> None:
    connector = "└── " if is_last else "├── "
    extension = "    " if is_last else "│   "
    out.append(f"{prefix}{connector}{display_title(node.title, node.url)}")
    out.append(f"{prefix}{extension}   {node.url}")
    for i, child in enumerate(node.children):
        _tree_lines(child, prefix + extension, i == len(node.children) - 1, out)


def sitemap_tree_text(records: Iterable[Any], base_url: Optional[str] = None) -> str:
    """Indented text diagram, one title line and one URL line per page."""
    records = list(records)
    base = _base_url(records, base_url)
    if not records:
        return f"{base}\n└── (No pages found)\n"

    tree = build_sitemap_tree(records)
    top_level = tree.children if tree.is_virtual else [tree]
    lines = [base]
    for i, node in enumerate(top_level):
        _tree_lines(node, "", i == len(top_level) - 1, lines)
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def render_sitemap(
    records: Iterable[Any],
    fmt: str = "json",
    base_url: Optional[str] = None,
    job_id: str = "",
    now: Optional[datetime] = None,
) -> RenderedSitemap:
    """Render records in ``fmt`` (json, xml or tree)."""
    fmt = (fmt or "json").lower()
    if fmt not in FORMATS:
        raise ValueError(f"Unknown sitemap format {fmt!r} (expected one of {', '.join(FORMATS)})")
    records = list(records)
    if fmt == "xml":
        content = sitemap_xml(records, now=now)
    elif fmt == "tree":
        content = sitemap_tree_text(records, base_url=base_url)
    else:
        content = json.dumps(sitemap_json(records, now=now), indent=2, ensure_ascii=False)
    stem = f"sitemap-{job_id}" if job_id else "sitemap"
    return RenderedSitemap(content, _CONTENT_TYPES[fmt], f"{stem}.{_EXTENSIONS[fmt]}")


def export_sitemap(
    records: Iterable[Any],
    fmt: str,
    filepath: Union[str, Path],
    base_url: Optional[str] = None,
) -> str:
    """Write the rendered sitemap to ``filepath`` and return its absolute path."""
    rendered = render_sitemap(records, fmt, base_url=base_url)
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(rendered.content)
    logger.info(f"[EXPORT] {fmt} sitemap written to {path}")
    return str(path.absolute())
