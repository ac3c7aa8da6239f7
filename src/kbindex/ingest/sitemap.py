"""XML sitemaps: ``<urlset>`` documents and ``<sitemapindex>`` files that nest them.

Sitemaps are fetched through the guarded Fetcher. Tags are matched by local
name, so documents with or without the sitemaps.org namespace both parse.
"""

from __future__ import annotations

import urllib.parse
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime

from kbindex import timestamps
from kbindex.errors import FetchError, ParseError
from kbindex.ingest.fetch import Fetcher
from kbindex.logging import get_logger

DEFAULT_MAX_DEPTH = 5
DEFAULT_MAX_URLS = 10000

# tried in order by detect_sitemap_urls; every one that answers is returned
SITEMAP_PATHS = ("/sitemap.xml", "/sitemap_index.xml", "/wp-sitemap.xml", "/sitemap-index.xml")


@dataclass
class SitemapEntry:
    url: str
    lastmod: datetime | None = None
    changefreq: str = ""
    priority: float | None = None


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> str:
    for child in element:
        if _local(child.tag) == name:
            return (child.text or "").strip()
    return ""


class SitemapParser:
    """Collect page URLs from a sitemap, following sitemap indexes.

    Args:
        fetcher: Guarded HTTP client.
        max_depth: Deepest index nesting followed; 0 reads only the given file.
        max_urls: Entries returned per ``parse`` call; the rest are dropped.
    """

    def __init__(
        self,
        fetcher: Fetcher | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_urls: int = DEFAULT_MAX_URLS,
        logger=None,
    ) -> None:
        self._fetcher = fetcher or Fetcher()
        self.max_depth = max_depth
        self.max_urls = max_urls
        self._log = logger or get_logger(__name__)

    def parse(self, url: str) -> list[SitemapEntry]:
        """Entries of the sitemap at *url*, in document order.

        A nested sitemap that cannot be fetched or parsed is logged and skipped.

        Raises:
            FetchError: *url* itself could not be fetched.
            ParseError: *url* is not a well-formed sitemap.
        """
        entries: list[SitemapEntry] = []
        self._collect(url, 0, entries)
        self._log.info("sitemap_parsed", url=url, urls=len(entries))
        return entries

    def _collect(self, url: str, depth: int, entries: list[SitemapEntry]) -> None:
        root = self._load(url)
        kind = _local(root.tag)
        if kind == "sitemapindex":
            for node in root:
                if len(entries) >= self.max_urls:
                    return
                if _local(node.tag) != "sitemap":
                    continue
                child = _child_text(node, "loc")
                if not child:
                    continue
                if depth >= self.max_depth:
                    self._log.warning("sitemap_depth_exceeded", url=child, max_depth=self.max_depth)
                    continue
                try:
                    self._collect(child, depth + 1, entries)
                except (FetchError, ParseError) as exc:
                    self._log.warning("sitemap_child_failed", url=child, error=str(exc))
        elif kind == "urlset":
            for node in root:
                if len(entries) >= self.max_urls:
                    self._log.warning("sitemap_url_cap_reached", url=url, max_urls=self.max_urls)
                    return
                if _local(node.tag) != "url":
                    continue
                entry = _entry(node)
                if entry is not None:
                    entries.append(entry)
        else:
            raise ParseError(f"'{url}' is not a sitemap (root element <{kind}>)")

    def _load(self, url: str) -> ET.Element:
        response = self._fetcher.request(url)
        try:
            return ET.fromstring(response.body)
        except ET.ParseError as exc:
            self._log.error("sitemap_xml_parse_failed", url=url, error=str(exc))
            raise ParseError(f"Failed to parse sitemap '{url}': {exc}") from exc

    def detect_sitemap_urls(self, site_url: str) -> list[str]:
        """Well-known sitemap locations under *site_url* that answer a HEAD request."""
        base = site_url.rstrip("/")
        found = [base + path for path in SITEMAP_PATHS if self._fetcher.exists(base + path)]
        self._log.info("sitemaps_detected", site_url=site_url, found=len(found))
        return found


def _entry(node: ET.Element) -> SitemapEntry | None:
    loc = _child_text(node, "loc")
    if not loc or urllib.parse.urlparse(loc).scheme not in ("http", "https"):
        return None
    priority: float | None
    try:
        priority = float(_child_text(node, "priority"))
    except ValueError:
        priority = None
    return SitemapEntry(
        url=loc,
        lastmod=timestamps.parse(_child_text(node, "lastmod")),
        changefreq=_child_text(node, "changefreq"),
        priority=priority,
    )
