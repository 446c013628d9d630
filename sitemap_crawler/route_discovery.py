"""
SPA Route Discovery
===================
Collects candidate URLs from a rendered page using several independent
strategies:

  1. ``<a href>`` anchors
  2. Alternate navigation attributes (``data-href``, ``router-link``, ``to`` ...)
  3. Client-side router introspection (React / Vue / Angular / global arrays)
  4. The page's own ``#/`` hash route
  5. Bounded simulated navigation through ``#/`` links

Every strategy is best-effort: a failure is logged at debug level and
contributes nothing.  Output is de-duplicated in first-seen order and is
*not* normalized; the frontier runs every candidate through the same
normalizer and scope filters.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from urllib.parse import urljoin, urlparse, urlunparse

logger = logging.getLogger(__name__)


NAV_ATTRIBUTES = (
    'data-href', 'data-route', 'data-link', 'data-navigate', 'data-path',
    'data-route-path', 'router-link', 'ng-href', 'to',
)

# Raw href attribute values; resolved against page.url in Python
ANCHORS_JS = """
() => Array.from(document.querySelectorAll('a[href]'))
    .map(a => (a.getAttribute('href') || '').trim())
    .filter(Boolean)
"""

NAV_ATTRIBUTES_JS = """
(attrs) => {
    const values = [];
    const selector = attrs.map(a => '[' + a + ']').join(', ');
    document.querySelectorAll(selector).forEach(el => {
        for (const attr of attrs) {
            const v = el.getAttribute(attr);
            if (v && v.trim()) { values.push(v.trim()); break; }
        }
    });
    return values;
}
"""

HASH_LINKS_JS = """
() => Array.from(document.querySelectorAll('a[href^="#/"]'))
    .map(a => a.getAttribute('href'))
"""

CURRENT_HASH_JS = "() => window.location.hash"

SET_HASH_JS = "(h) => { window.location.hash = h; }"

# Turns an arbitrary router config into plain JSON: {path, children}
_SNAPSHOT_HELPER = """
    const snap = (routes, seen) => {
        if (!Array.isArray(routes)) return [];
        return routes.map(r => {
            if (typeof r === 'string') return {path: r, children: []};
            if (!r || typeof r !== 'object' || seen.has(r)) return null;
            seen.add(r);
            return {
                path: typeof r.path === 'string' ? r.path : '',
                children: snap(r.children || [], seen),
            };
        }).filter(Boolean);
    };
    const hashMode = () => window.location.hash.startsWith('#/') ? 'hash' : 'history';
"""


# ---------------------------------------------------------------------------
# Router introspection
# ---------------------------------------------------------------------------

def _is_dynamic(path: str) -> bool:
    """True for paths containing ``:param`` or wildcard segments."""
    return any(seg.startswith(':') or '*' in seg for seg in path.split('/'))


def _join_route(parent: str, path: str) -> str:
    if path.startswith('/'):
        return path
    if not path:
        return parent or '/'
    return (parent.rstrip('/') or '') + '/' + path


def walk_routes(routes: Iterable[Any], parent: str = '') -> List[str]:
    """
    Flatten a router snapshot into absolute route paths.

    Nested relative paths are joined onto their parent.  A dynamic or
    wildcard route is skipped together with its subtree.

    Args:
        routes: List of ``{"path": str, "children": [...]}`` dicts or strings

    Returns:
        Route paths in depth-first order, e.g. ``['/', '/docs', '/docs/api']``
    """
    found: List[str] = []
    for route in routes or []:
        if isinstance(route, str):
            route = {'path': route, 'children': []}
        if not isinstance(route, dict):
            continue
        path = route.get('path') or ''
        if path.startswith('#'):
            path = path[1:]
        if _is_dynamic(path):
            continue
        full = _join_route(parent, path)
        if path or not parent:
            found.append(full)
        found.extend(walk_routes(route.get('children') or [], full))
    return found


def route_to_url(page_url: str, route_path: str, mode: str) -> str:
    """Absolute URL for a router path; hash-mode routers produce ``#/...``."""
    parsed = urlparse(page_url)
    if mode == 'hash':
        fragment = route_path if route_path.startswith('/') else '/' + route_path
        return urlunparse((parsed.scheme, parsed.netloc, parsed.path or '/', '', '', fragment))
    return urlunparse((parsed.scheme, parsed.netloc, route_path, '', '', ''))


class RouteExtractor:
    """
    Reads one framework's route table from the page.

    Subclasses provide ``snapshot_js``: a function evaluated in the page
    that returns ``{mode: 'hash'|'history', routes: [...]}`` or ``null``
    when the framework is not present.
    """

    name = "base"
    snapshot_js = "() => null"

    async def snapshot(self, page) -> Optional[Dict[str, Any]]:
        snap = await page.evaluate(self.snapshot_js)
        if not snap or not isinstance(snap, dict):
            return None
        return snap

    async def extract(self, page) -> List[str]:
        """Return absolute URLs for every static route the router knows."""
        snap = await self.snapshot(page)
        if snap is None:
            return []
        mode = snap.get('mode') or 'history'
        paths = walk_routes(snap.get('routes') or [])
        urls = [route_to_url(page.url, p, mode) for p in paths]
        if urls:
            logger.debug(f"[ROUTES] {self.name}: {len(urls)} routes ({mode} mode)")
        return urls


class ReactRouterExtractor(RouteExtractor):
    name = "react-router"
    snapshot_js = "() => {" + _SNAPSHOT_HELPER + """
        const router = window.__REACT_ROUTER__ || window.ReactRouter;
        let routes = null;
        if (router) {
            routes = router.routes || router._internalSetRoutes
                || (router.__router && router.__router.match && router.__router.match.routes);
        }
        if (!routes && Array.isArray(window.__REACT_ROUTER_CONFIG__)) {
            routes = window.__REACT_ROUTER_CONFIG__;
        }
        if (!routes) return null;
        return {mode: hashMode(), routes: snap(routes, new Set())};
    }"""


class VueRouterExtractor(RouteExtractor):
    name = "vue-router"
    snapshot_js = "() => {" + _SNAPSHOT_HELPER + """
        let router = window.$router || window.__VUE_ROUTER__;
        if (!router) {
            const el = document.querySelector('#app');
            const app = el && (el.__vue_app__ || el.__vue__);
            router = app && (app.config ? app.config.globalProperties.$router : app.$router);
        }
        let routes = router && router.options && router.options.routes;
        if (!routes && Array.isArray(window.__VUE_ROUTER_CONFIG__)) {
            routes = window.__VUE_ROUTER_CONFIG__;
        }
        if (!routes) return null;
        let mode = router && router.mode;
        if (!mode && router && router.options && router.options.history) {
            mode = String(router.options.history.base || '').includes('#') ? 'hash' : 'history';
        }
        return {mode: mode || hashMode(), routes: snap(routes, new Set())};
    }"""


class AngularRouterExtractor(RouteExtractor):
    name = "angular-router"
    snapshot_js = "() => {" + _SNAPSHOT_HELPER + """
        if (!window.ng || !window.ng.probe) return null;
        const root = window.ng.probe(document.body);
        if (!root || !root.injector || !window.ng.router) return null;
        const router = root.injector.get(window.ng.router.Router);
        if (!router || !router.config) return null;
        return {mode: hashMode(), routes: snap(router.config, new Set())};
    }"""


class GlobalRoutesExtractor(RouteExtractor):
    """``window.__ROUTES__`` / ``window.routes`` arrays of strings or route objects."""
    name = "global-routes"
    snapshot_js = "() => {" + _SNAPSHOT_HELPER + """
        const routes = Array.isArray(window.__ROUTES__) ? window.__ROUTES__
            : (Array.isArray(window.routes) ? window.routes : null);
        if (!routes) return null;
        return {mode: hashMode(), routes: snap(routes, new Set())};
    }"""


DEFAULT_EXTRACTORS = (
    ReactRouterExtractor,
    VueRouterExtractor,
    AngularRouterExtractor,
    GlobalRoutesExtractor,
)


# ---------------------------------------------------------------------------
# Discoverer
# ---------------------------------------------------------------------------

def _with_fragment(url: str, fragment: str) -> str:
    return urlunparse(urlparse(url)._replace(fragment=fragment))


def resolve_nav_value(page_url: str, value: str) -> Optional[str]:
    """Resolve a navigation attribute value against the page URL."""
    value = value.strip()
    if not value:
        return None
    if value.startswith('#'):
        if len(value) == 1:
            return None
        return _with_fragment(page_url, value[1:])
    return urljoin(page_url, value)


class RouteDiscoverer:
    """
    Runs every discovery strategy against a live page.

    Args:
        extractors: ``RouteExtractor`` instances (defaults to all frameworks)
        hash_nav_budget: Max ``#/`` links to navigate through per page
        stabilizer: ``async (page) -> None`` awaited after each simulated
            hash navigation so the router can render
    """

    def __init__(
        self,
        extractors: Optional[List[RouteExtractor]] = None,
        hash_nav_budget: int = 5,
        stabilizer: Optional[Callable[[Any], Awaitable[Any]]] = None,
    ):
        self.extractors = list(extractors) if extractors is not None else [cls() for cls in DEFAULT_EXTRACTORS]
        self.hash_nav_budget = hash_nav_budget
        self.stabilizer = stabilizer

    async def discover(self, page) -> List[str]:
        """Return every candidate URL found on ``page``, de-duplicated."""
        found: List[str] = []
        seen = set()

        def add(urls: Iterable[str]) -> int:
            added = 0
            for u in urls:
                if u and u not in seen:
                    seen.add(u)
                    found.append(u)
                    added += 1
            return added

        n_anchors = add(await self._safe("anchors", self.anchor_links(page)))
        n_attrs = add(await self._safe("nav-attributes", self.attribute_links(page)))
        n_routes = 0
        for extractor in self.extractors:
            n_routes += add(await self._safe(extractor.name, extractor.extract(page)))
        add(await self._safe("current-hash", self.current_hash_route(page)))
        n_hash = add(await self._safe("hash-navigation", self.hash_navigation(page)))

        logger.debug(
            f"[ROUTES] {page.url}: {len(found)} candidates "
            f"(anchors={n_anchors}, attrs={n_attrs}, routers={n_routes}, hash-nav={n_hash})"
        )
        return found

    async def _safe(self, source: str, coro) -> List[str]:
        try:
            return list(await coro or [])
        except Exception as e:
            logger.debug(f"[ROUTES] {source} failed: {e}")
            return []

    # ---- individual strategies ------------------------------------------

    async def anchor_links(self, page) -> List[str]:
        hrefs = await page.evaluate(ANCHORS_JS) or []
        base = page.url
        return [urljoin(base, h) for h in hrefs if h and h != '#']

    async def attribute_links(self, page) -> List[str]:
        values = await page.evaluate(NAV_ATTRIBUTES_JS, list(NAV_ATTRIBUTES)) or []
        base = page.url
        urls = []
        for value in values:
            resolved = resolve_nav_value(base, value)
            if resolved:
                urls.append(resolved)
        return urls

    async def current_hash_route(self, page) -> List[str]:
        if urlparse(page.url).fragment:
            return [page.url]
        return []

    async def hash_navigation(self, page) -> List[str]:
        """
        Visit up to ``hash_nav_budget`` ``#/`` links in place and collect
        the anchors each one renders.  The original hash is restored
        afterwards.
        """
        if self.hash_nav_budget <= 0:
            return []

        hrefs = await page.evaluate(HASH_LINKS_JS) or []
        prior_hash = await page.evaluate(CURRENT_HASH_JS) or ''
        targets: List[str] = []
        for h in hrefs:
            if h and h != prior_hash and h not in targets:
                targets.append(h)
            if len(targets) >= self.hash_nav_budget:
                break
        if not targets:
            return []

        collected: List[str] = []
        try:
            for target in targets:
                try:
                    await page.evaluate(SET_HASH_JS, target)
                    if self.stabilizer is not None:
                        await self.stabilizer(page)
                    collected.extend(await self.anchor_links(page))
                except Exception as e:
                    logger.debug(f"[ROUTES] hash navigation to {target} failed: {e}")
        finally:
            try:
                await page.evaluate(SET_HASH_JS, prior_hash)
            except Exception as e:
                logger.debug(f"[ROUTES] could not restore hash {prior_hash!r}: {e}")
        return collected
