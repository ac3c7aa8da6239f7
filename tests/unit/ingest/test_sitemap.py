"""Tests for sitemap parsing and detection."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from kbindex.errors import FetchError, ParseError
from kbindex.ingest.fetch import HttpResponse
from kbindex.ingest.sitemap import SitemapParser

NS = 'xmlns="http://www.sitemaps.org/schemas/sitemap/0.9"'


def _urlset(*locs: str, namespaced: bool = True) -> str:
    body = "".join(f"<url><loc>{loc}</loc></url>" for loc in locs)
    return f"<urlset {NS if namespaced else ''}>{body}</urlset>"


def _index(*locs: str) -> str:
    body = "".join(f"<sitemap><loc>{loc}</loc></sitemap>" for loc in locs)
    return f"<sitemapindex {NS}>{body}</sitemapindex>"


def _fetcher(documents: dict[str, str]):
    """Fetcher double serving *documents* by URL; anything else is a 404."""

    def request(url, **kwargs):
        if url not in documents:
            raise FetchError("Failed to fetch content. Status code: 404", url=url, status=404)
        return HttpResponse(
            url=url, status=200, body=documents[url].encode("utf-8"), content_type="application/xml"
        )

    fetcher = MagicMock()
    fetcher.request.side_effect = request
    return fetcher


# ------------------------------------------------------------------
# urlset
# ------------------------------------------------------------------


def test_urlset_entries_with_metadata():
    xml = (
        f"<urlset {NS}><url>"
        "<loc>https://shop.example/about</loc>"
        "<lastmod>2024-05-01T10:00:00+00:00</lastmod>"
        "<changefreq>weekly</changefreq>"
        "<priority>0.8</priority>"
        "</url></urlset>"
    )
    parser = SitemapParser(_fetcher({"https://shop.example/sitemap.xml": xml}))
    [entry] = parser.parse("https://shop.example/sitemap.xml")
    assert entry.url == "https://shop.example/about"
    assert entry.lastmod == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert entry.changefreq == "weekly"
    assert entry.priority == pytest.approx(0.8)


def test_urlset_without_namespace():
    xml = _urlset("https://a.example/x", namespaced=False)
    parser = SitemapParser(_fetcher({"https://a.example/s.xml": xml}))
    assert [e.url for e in parser.parse("https://a.example/s.xml")] == ["https://a.example/x"]


def test_entries_without_http_loc_are_dropped():
    xml = _urlset("https://a.example/ok", "ftp://a.example/file", "")
    parser = SitemapParser(_fetcher({"https://a.example/s.xml": xml}))
    assert [e.url for e in parser.parse("https://a.example/s.xml")] == ["https://a.example/ok"]


def test_url_cap():
    xml = _urlset(*(f"https://a.example/{i}" for i in range(10)))
    parser = SitemapParser(_fetcher({"https://a.example/s.xml": xml}), max_urls=3)
    assert len(parser.parse("https://a.example/s.xml")) == 3


# ------------------------------------------------------------------
# sitemapindex
# ------------------------------------------------------------------


def test_index_follows_children_in_order():
    docs = {
        "https://a.example/index.xml": _index(
            "https://a.example/one.xml", "https://a.example/two.xml"
        ),
        "https://a.example/one.xml": _urlset("https://a.example/1"),
        "https://a.example/two.xml": _urlset("https://a.example/2", "https://a.example/3"),
    }
    urls = [e.url for e in SitemapParser(_fetcher(docs)).parse("https://a.example/index.xml")]
    assert urls == ["https://a.example/1", "https://a.example/2", "https://a.example/3"]


def test_broken_child_sitemap_is_skipped():
    docs = {
        "https://a.example/index.xml": _index(
            "https://a.example/gone.xml", "https://a.example/ok.xml"
        ),
        "https://a.example/ok.xml": _urlset("https://a.example/ok"),
    }
    urls = [e.url for e in SitemapParser(_fetcher(docs)).parse("https://a.example/index.xml")]
    assert urls == ["https://a.example/ok"]


def test_depth_limit_stops_nested_indexes():
    docs = {
        "https://a.example/0.xml": _index("https://a.example/1.xml"),
        "https://a.example/1.xml": _index("https://a.example/2.xml"),
        "https://a.example/2.xml": _urlset("https://a.example/deep"),
    }
    assert SitemapParser(_fetcher(docs), max_depth=1).parse("https://a.example/0.xml") == []
    deep = SitemapParser(_fetcher(docs), max_depth=2).parse("https://a.example/0.xml")
    assert [e.url for e in deep] == ["https://a.example/deep"]


def test_self_referencing_index_terminates():
    docs = {"https://a.example/loop.xml": _index("https://a.example/loop.xml")}
    parser = SitemapParser(_fetcher(docs), max_depth=3)
    assert parser.parse("https://a.example/loop.xml") == []


# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------


def test_malformed_xml_raises_parse_error():
    parser = SitemapParser(_fetcher({"https://a.example/s.xml": "<urlset><url>"}))
    with pytest.raises(ParseError, match="Failed to parse sitemap"):
        parser.parse("https://a.example/s.xml")


def test_other_root_element_raises_parse_error():
    parser = SitemapParser(_fetcher({"https://a.example/s.xml": "<rss><channel/></rss>"}))
    with pytest.raises(ParseError, match="not a sitemap"):
        parser.parse("https://a.example/s.xml")


def test_unreachable_sitemap_raises_fetch_error():
    with pytest.raises(FetchError):
        SitemapParser(_fetcher({})).parse("https://a.example/missing.xml")


# ------------------------------------------------------------------
# Detection
# ------------------------------------------------------------------


def test_detect_sitemap_urls_keeps_answering_locations():
    fetcher = MagicMock()
    fetcher.exists.side_effect = lambda url: url.endswith(("/sitemap.xml", "/wp-sitemap.xml"))
    found = SitemapParser(fetcher).detect_sitemap_urls("https://a.example/")
    assert found == ["https://a.example/sitemap.xml", "https://a.example/wp-sitemap.xml"]
