"""
Tests for sitemap rendering and the page stores.
"""

import json
import xml.etree.ElementTree as ET
from datetime import datetime, timezone

import pytest

from sitemap_crawler.errors import PersistenceFailure
from sitemap_crawler.exporters import (
    SITEMAP_NS,
    calculate_priority,
    export_sitemap,
    render_sitemap,
    sitemap_json,
    sitemap_tree_text,
    sitemap_xml,
)
from sitemap_crawler.models import PageRecord
from sitemap_crawler.storage import InMemoryPageStore, JsonlPageStore, iter_records


NOW = datetime(2026, 1, 2, 12, 30, tzinfo=timezone.utc)


@pytest.fixture
def site_records():
    return [
        PageRecord(1, "https://x.io/", 0, None, "Home", 200),
        PageRecord(2, "https://x.io/a", 1, "https://x.io/", "A", 200),
        PageRecord(3, "https://x.io/a/b", 2, "https://x.io/a", "ERROR: NavigationTimeout", 408),
    ]


class TestJson:

    def test_shape(self, site_records):
        data = sitemap_json(site_records, now=NOW)
        assert data["version"] == "1.0"
        assert data["totalPages"] == 3
        assert data["generatedAt"] == "2026-01-02T12:30:00+00:00"
        assert data["pages"][1] == {
            "url": "https://x.io/a",
            "title": "A",
            "depth": 1,
            "parentUrl": "https://x.io/",
        }

    def test_error_titles_are_replaced(self, site_records):
        data = sitemap_json(site_records, now=NOW)
        assert data["pages"][2]["title"] == "B"

    def test_accepts_plain_dicts(self, chain_records):
        data = sitemap_json(chain_records, now=NOW)
        assert [p["parentUrl"] for p in data["pages"]] == [None, "/", "/a"]


class TestXml:

    def test_urlset(self, site_records):
        content = sitemap_xml(site_records, now=NOW)
        assert content.startswith('<?xml version="1.0" encoding="UTF-8"?>')

        root = ET.fromstring(content.encode("utf-8"))
        assert root.tag == f"{{{SITEMAP_NS}}}urlset"
        urls = root.findall(f"{{{SITEMAP_NS}}}url")
        assert len(urls) == 3
        first = urls[0]
        assert first.find(f"{{{SITEMAP_NS}}}loc").text == "https://x.io/"
        assert first.find(f"{{{SITEMAP_NS}}}lastmod").text == "2026-01-02"
        assert first.find(f"{{{SITEMAP_NS}}}changefreq").text == "weekly"
        assert [u.find(f"{{{SITEMAP_NS}}}priority").text for u in urls] == ["1.0", "0.8", "0.6"]

    def test_special_characters_are_escaped(self):
        records = [PageRecord(1, "https://x.io/search&lang=en", 0, None, "S", 200)]
        content = sitemap_xml(records, now=NOW)
        assert "search&amp;lang=en" in content

    @pytest.mark.parametrize("depth,expected", [(0, "1.0"), (1, "0.8"), (4, "0.2"), (5, "0.1"), (12, "0.1")])
    def test_priority(self, depth, expected):
        assert calculate_priority(depth) == expected


class TestTree:

    def test_chain(self):
        records = [
            PageRecord(1, "https://x.io/", 0, None, "Home", 200),
            PageRecord(2, "https://x.io/a", 1, "https://x.io/", "A", 200),
            PageRecord(3, "https://x.io/b", 1, "https://x.io/", "", 200),
        ]
        expected = (
            "https://x.io\n"
            "└── Home\n"
            "       https://x.io/\n"
            "    ├── A\n"
            "    │      https://x.io/a\n"
            "    └── B\n"
            "           https://x.io/b\n"
        )
        assert sitemap_tree_text(records) == expected

    def test_virtual_root_is_not_drawn(self):
        records = [
            PageRecord(1, "https://x.io/", 0, None, "Home", 200),
            PageRecord(2, "https://x.io/orphan", 2, "https://x.io/gone", "Orphan", 200),
        ]
        lines = sitemap_tree_text(records).splitlines()
        assert lines[0] == "https://x.io"
        assert lines[1] == "├── Home"
        assert lines[3] == "└── Orphan"
        assert "Root" not in lines

    def test_empty(self):
        assert sitemap_tree_text([], base_url="x.io") == "https://x.io\n└── (No pages found)\n"


class TestRender:

    def test_unknown_format(self, site_records):
        with pytest.raises(ValueError):
            render_sitemap(site_records, "csv")

    def test_filenames_and_content_types(self, site_records):
        rendered = render_sitemap(site_records, "xml", job_id="abc")
        assert rendered.filename == "sitemap-abc.xml"
        assert rendered.content_type == "application/xml"
        assert render_sitemap(site_records, "TREE").filename == "sitemap.txt"

    def test_export_writes_file(self, site_records, tmp_path):
        path = export_sitemap(site_records, "json", tmp_path / "out" / "sitemap.json")
        data = json.loads(open(path, encoding="utf-8").read())
        assert data["totalPages"] == 3


# ====================================================================
# Stores
# ====================================================================

class TestStores:

    def test_in_memory_ids_and_filtering(self):
        store = InMemoryPageStore()
        assert store.insert_page("j1", "https://x.io/", 0, None, "Home", 200) == 1
        assert store.insert_page("j2", "https://y.io/", 0, None, "Y", 200) == 2
        assert [r.url for r in store.records("j1")] == ["https://x.io/"]
        assert len(store.records()) == 2

    def test_jsonl_round_trip(self, tmp_path):
        path = tmp_path / "pages.jsonl"
        store = JsonlPageStore(path)
        store.insert_page("j", "https://x.io/", 0, None, "Home", 200)
        store.insert_page("j", "https://x.io/a", 1, "https://x.io/", "A", 404)

        records = list(iter_records(path))
        assert [r.id for r in records] == [1, 2]
        assert records[1].parent_url == "https://x.io/"
        assert records[1].status_code == 404
        assert not records[1].ok

    def test_jsonl_truncates_unless_appending(self, tmp_path):
        path = tmp_path / "pages.jsonl"
        JsonlPageStore(path).insert_page("j", "https://x.io/", 0, None, "Home", 200)

        appended = JsonlPageStore(path, append=True)
        assert appended.insert_page("j", "https://x.io/a", 1, "https://x.io/", "A", 200) == 2
        assert len(list(iter_records(path))) == 2

        JsonlPageStore(path)
        assert list(iter_records(path)) == []

    def test_unserializable_row_is_persistence_failure(self, tmp_path):
        store = JsonlPageStore(tmp_path / "pages.jsonl")
        with pytest.raises(PersistenceFailure):
            store.insert_page("j", "https://x.io/", 0, None, object(), 200)
        assert store.insert_page("j", "https://x.io/", 0, None, "Home", 200) == 1

    def test_bad_line_reports_line_number(self, tmp_path):
        path = tmp_path / "pages.jsonl"
        path.write_text('{"url": "https://x.io/"}\n\nnot json\n', encoding="utf-8")
        with pytest.raises(ValueError, match=":3:"):
            list(iter_records(path))
