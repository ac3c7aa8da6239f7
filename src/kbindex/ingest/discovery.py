"""Discover URLs to crawl from every configured origin.

Origins, in merge order: content-store pages, catalog items, sitemap entries
(configured sitemaps, else those auto-detected under ``site_url``), then manual
URLs. Duplicates are dropped by normalised URL; the first occurrence wins and
borrows a missing title or modification time from later ones.
"""

from __future__ import annotations

import urllib.parse
from dataclasses import dataclass
from datetime import datetime

from kbindex.config import DiscoveryCfg
from kbindex.db.models import SourceType
from kbindex.errors import FetchError, ParseError
from kbindex.ingest.catalog import CatalogProvider
from kbindex.ingest.content_store import ContentStore
from kbindex.ingest.sitemap import SitemapParser
from kbindex.logging import get_logger


@dataclass
class DiscoveredUrl:
    url: str
    source_type: str = SourceType.URL.value
    source_id: int | None = None
    title: str = ""
    last_modified: datetime | None = None


def normalize_url(url: str) -> str:
    """Dedup key: lowercased scheme, host and path, without query, fragment or trailing slash."""
    parts = urllib.parse.urlsplit(url.strip().rstrip("/").lower())
    return f"{parts.scheme}://{parts.netloc}{parts.path}".rstrip("/")


def deduplicate(urls: list[DiscoveredUrl]) -> list[DiscoveredUrl]:
    seen: dict[str, DiscoveredUrl] = {}
    for entry in urls:
        key = normalize_url(entry.url)
        first = seen.get(key)
        if first is None:
            seen[key] = entry
            continue
        if not first.title and entry.title:
            first.title = entry.title
        if first.last_modified is None and entry.last_modified is not None:
            first.last_modified = entry.last_modified
    return list(seen.values())


class UrlDiscovery:
    """Merge crawlable URLs from the content store, catalog, sitemaps and config.

    Args:
        config: ``discovery`` config section.
        sitemap_parser: Parser bound to the guarded Fetcher.
        content_store: Internal pages; skipped when None.
        catalog: Catalog provider; skipped when None.
    """

    def __init__(
        self,
        config: DiscoveryCfg,
        sitemap_parser: SitemapParser,
        content_store: ContentStore | None = None,
        catalog: CatalogProvider | None = None,
        logger=None,
    ) -> None:
        self._config = config
        self._sitemaps = sitemap_parser
        self._store = content_store
        self._catalog = catalog
        self._log = logger or get_logger(__name__)

    def discover_urls(
        self,
        include_pages: bool = True,
        include_catalog: bool = True,
        include_sitemaps: bool = True,
        include_manual: bool = True,
        sitemap_urls: list[str] | None = None,
        limit: int = 0,
        offset: int = 0,
    ) -> list[DiscoveredUrl]:
        """Deduplicated URLs from the selected origins.

        Args:
            sitemap_urls: Sitemaps to read instead of the configured ones.
            limit: Maximum number returned; 0 means no limit.
            offset: Entries skipped from the front of the merged list.
        """
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must be >= 0")
        found: list[DiscoveredUrl] = []
        if include_pages:
            found.extend(self._pages())
        if include_catalog:
            found.extend(self._catalog_items())
        if include_sitemaps:
            found.extend(self._sitemap_entries(sitemap_urls))
        if include_manual:
            found.extend(self._manual())

        unique = deduplicate(found)
        selected = unique[offset:offset + limit] if limit else unique[offset:]
        self._log.info(
            "urls_discovered", found=len(found), unique=len(unique), returned=len(selected)
        )
        return selected

    # ------------------------------------------------------------------
    # Origins
    # ------------------------------------------------------------------

    def _pages(self) -> list[DiscoveredUrl]:
        if self._store is None:
            return []
        return [
            DiscoveredUrl(
                url=page.url,
                source_type=SourceType.PAGE.value,
                source_id=page.id,
                title=page.title,
                last_modified=page.modified_at,
            )
            for page in self._store.list_pages()
        ]

    def _catalog_items(self) -> list[DiscoveredUrl]:
        if self._catalog is None:
            return []
        return [
            DiscoveredUrl(
                url=item.source_url,
                source_type=SourceType.CATALOG_ITEM.value,
                source_id=item.id,
                title=item.name,
                last_modified=item.modified_at,
            )
            for item in self._catalog.list_items()
        ]

    def _sitemap_entries(self, sitemap_urls: list[str] | None) -> list[DiscoveredUrl]:
        sitemaps = list(sitemap_urls or self._config.sitemap_urls)
        if not sitemaps and self._config.site_url:
            sitemaps = self._sitemaps.detect_sitemap_urls(self._config.site_url)
        entries: list[DiscoveredUrl] = []
        for sitemap in sitemaps:
            try:
                parsed = self._sitemaps.parse(sitemap)
            except (FetchError, ParseError) as exc:
                self._log.warning("sitemap_skipped", url=sitemap, error=str(exc))
                continue
            entries.extend(DiscoveredUrl(url=e.url, last_modified=e.lastmod) for e in parsed)
        return entries

    def _manual(self) -> list[DiscoveredUrl]:
        entries = []
        for url in self._config.manual_urls:
            url = url.strip()
            if urllib.parse.urlparse(url).scheme not in ("http", "https"):
                self._log.warning("manual_url_invalid", url=url)
                continue
            entries.append(DiscoveredUrl(url=url))
        return entries
