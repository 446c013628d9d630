"""
Tests for SPA route discovery.

``FakePage.scripts`` is keyed by the JS constants the discoverer evaluates,
so each strategy can be fed (or broken) independently.
"""

from unittest.mock import AsyncMock

import pytest

from sitemap_crawler.route_discovery import (
    ANCHORS_JS,
    CURRENT_HASH_JS,
    HASH_LINKS_JS,
    NAV_ATTRIBUTES,
    NAV_ATTRIBUTES_JS,
    SET_HASH_JS,
    GlobalRoutesExtractor,
    ReactRouterExtractor,
    RouteDiscoverer,
    VueRouterExtractor,
    resolve_nav_value,
    route_to_url,
    walk_routes,
)

from conftest import FakePage


# ====================================================================
# Router snapshots
# ====================================================================

class TestWalkRoutes:

    def test_nested_relative_paths_are_joined(self):
        routes = [{"path": "/", "children": [
            {"path": "docs", "children": [{"path": "api", "children": []}]},
        ]}]
        assert walk_routes(routes) == ["/", "/docs", "/docs/api"]

    def test_empty_path_is_root_and_dynamic_segments_skipped(self):
        """Angular-style config: '' is the root, ':id' and '**' are not crawlable."""
        routes = [
            {"path": "", "children": [{"path": "home"}]},
            {"path": "users/:id", "children": [{"path": "edit"}]},
            {"path": "**"},
        ]
        assert walk_routes(routes) == ["/", "/home"]

    def test_plain_string_routes(self):
        assert walk_routes(["/a", "/b/*", "/c"]) == ["/a", "/c"]

    def test_garbage_entries_are_ignored(self):
        assert walk_routes([None, 42, {"path": "/ok"}]) == ["/ok"]
        assert walk_routes(None) == []


class TestRouteToUrl:

    def test_hash_mode(self):
        assert route_to_url("https://x.io/app/", "/users", "hash") == "https://x.io/app/#/users"
        assert route_to_url("https://x.io", "users", "hash") == "https://x.io/#/users"

    def test_history_mode(self):
        assert route_to_url("https://x.io/app/?q=1#/x", "/users", "history") == "https://x.io/users"


class TestResolveNavValue:

    def test_bare_hash_is_ignored(self):
        assert resolve_nav_value("https://x.io/docs/", "#") is None
        assert resolve_nav_value("https://x.io/docs/", "   ") is None

    def test_fragment_replaces_page_fragment(self):
        assert resolve_nav_value("https://x.io/docs/#/old", "#/about") == "https://x.io/docs/#/about"

    def test_relative_value_joins_page_url(self):
        assert resolve_nav_value("https://x.io/docs/", "pricing") == "https://x.io/docs/pricing"
        assert resolve_nav_value("https://x.io/docs/", "/pricing") == "https://x.io/pricing"


# ====================================================================
# Extractors
# ====================================================================

class TestExtractors:

    @pytest.mark.asyncio
    async def test_hash_mode_router(self):
        page = FakePage("https://x.io/", scripts={
            ReactRouterExtractor.snapshot_js: {
                "mode": "hash",
                "routes": [{"path": "/", "children": []}, {"path": "/about", "children": []}],
            },
        })
        urls = await ReactRouterExtractor().extract(page)
        assert urls == ["https://x.io/#/", "https://x.io/#/about"]

    @pytest.mark.asyncio
    async def test_history_mode_router(self):
        page = FakePage("https://x.io/shop", scripts={
            VueRouterExtractor.snapshot_js: {"mode": "history", "routes": [{"path": "/cart"}]},
        })
        assert await VueRouterExtractor().extract(page) == ["https://x.io/cart"]

    @pytest.mark.asyncio
    async def test_absent_framework_yields_nothing(self):
        assert await GlobalRoutesExtractor().extract(FakePage()) == []


# ====================================================================
# Discoverer
# ====================================================================

class TestDiscover:

    @pytest.mark.asyncio
    async def test_anchors_and_attributes_in_first_seen_order(self):
        page = FakePage("https://x.io/", scripts={
            ANCHORS_JS: ["/a", "#", "https://x.io/b", "/a"],
            NAV_ATTRIBUTES_JS: ["#/settings", "/c", "#"],
        })
        urls = await RouteDiscoverer().discover(page)
        assert urls == [
            "https://x.io/a",
            "https://x.io/b",
            "https://x.io/#/settings",
            "https://x.io/c",
        ]
        assert (NAV_ATTRIBUTES_JS, list(NAV_ATTRIBUTES)) in page.evaluated

    @pytest.mark.asyncio
    async def test_failing_strategy_is_isolated(self):
        page = FakePage("https://x.io/", scripts={
            ANCHORS_JS: RuntimeError("Execution context was destroyed"),
            NAV_ATTRIBUTES_JS: ["/still-here"],
        })
        assert await RouteDiscoverer().discover(page) == ["https://x.io/still-here"]

    @pytest.mark.asyncio
    async def test_failing_extractor_is_isolated(self):
        broken = ReactRouterExtractor()
        broken.extract = AsyncMock(side_effect=RuntimeError("boom"))
        page = FakePage("https://x.io/", scripts={ANCHORS_JS: ["/a"]})
        urls = await RouteDiscoverer(extractors=[broken, GlobalRoutesExtractor()]).discover(page)
        assert urls == ["https://x.io/a"]

    @pytest.mark.asyncio
    async def test_current_hash_route_is_included(self):
        page = FakePage("https://x.io/#/dashboard")
        assert await RouteDiscoverer().discover(page) == ["https://x.io/#/dashboard"]

    @pytest.mark.asyncio
    async def test_empty_page_yields_nothing(self):
        assert await RouteDiscoverer().discover(FakePage("https://x.io/")) == []


class TestHashNavigation:

    def _spa_page(self):
        rendered = {
            "https://x.io/#/a": ["/from-a"],
            "https://x.io/#/b": ["/from-b"],
            "https://x.io/#/c": ["/from-c"],
        }
        hashes_set = []

        def set_hash(page, h):
            hashes_set.append(h)
            page.url = "https://x.io/" + (h or "")

        page = FakePage("https://x.io/", scripts={
            ANCHORS_JS: lambda page, arg: rendered.get(page.url, []),
            HASH_LINKS_JS: ["#/a", "#/b", "#/a", "#/c"],
            CURRENT_HASH_JS: lambda page, arg: "",
            SET_HASH_JS: set_hash,
        })
        return page, hashes_set

    @pytest.mark.asyncio
    async def test_budget_limits_navigations_and_hash_is_restored(self):
        page, hashes_set = self._spa_page()
        stabilizer = AsyncMock()
        discoverer = RouteDiscoverer(extractors=[], hash_nav_budget=2, stabilizer=stabilizer)

        urls = await discoverer.hash_navigation(page)

        assert urls == ["https://x.io/from-a", "https://x.io/from-b"]
        assert hashes_set == ["#/a", "#/b", ""]
        assert stabilizer.await_count == 2
        assert page.url == "https://x.io/"

    @pytest.mark.asyncio
    async def test_zero_budget_skips_navigation(self):
        page, hashes_set = self._spa_page()
        assert await RouteDiscoverer(hash_nav_budget=0).hash_navigation(page) == []
        assert hashes_set == []

    @pytest.mark.asyncio
    async def test_current_hash_is_not_revisited(self):
        page, hashes_set = self._spa_page()
        page.scripts[CURRENT_HASH_JS] = lambda page, arg: "#/a"
        discoverer = RouteDiscoverer(extractors=[], hash_nav_budget=5)
        urls = await discoverer.hash_navigation(page)
        assert urls == ["https://x.io/from-b", "https://x.io/from-c"]
        assert hashes_set[-1] == "#/a"

    @pytest.mark.asyncio
    async def test_discover_includes_hash_navigation_results(self):
        page, _ = self._spa_page()
        urls = await RouteDiscoverer(extractors=[], hash_nav_budget=5).discover(page)
        assert urls == ["https://x.io/from-a", "https://x.io/from-b", "https://x.io/from-c"]
