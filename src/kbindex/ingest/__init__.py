"""kbindex ingest pipeline: fetching, extraction, chunking and source adapters."""

from kbindex.ingest.api_endpoint import ApiEndpointProcessor, ApiOptions
from kbindex.ingest.catalog import CatalogItem, CatalogProvider, InMemoryCatalog, format_catalog_item
from kbindex.ingest.chunker import TextChunk, chunk_content
from kbindex.ingest.content_store import ContentStore, InMemoryContentStore, StoredPage
from kbindex.ingest.discovery import DiscoveredUrl, UrlDiscovery
from kbindex.ingest.extract import extract_clean_text
from kbindex.ingest.fetch import Fetcher
from kbindex.ingest.pdf import PdfExtractor
from kbindex.ingest.processor import ChunkOptions, ContentProcessor, ProcessedSource
from kbindex.ingest.sitemap import SitemapEntry, SitemapParser

__all__ = [
    "ApiEndpointProcessor",
    "ApiOptions",
    "CatalogItem",
    "CatalogProvider",
    "ChunkOptions",
    "ContentProcessor",
    "ContentStore",
    "DiscoveredUrl",
    "Fetcher",
    "InMemoryCatalog",
    "InMemoryContentStore",
    "PdfExtractor",
    "ProcessedSource",
    "SitemapEntry",
    "SitemapParser",
    "StoredPage",
    "TextChunk",
    "UrlDiscovery",
    "chunk_content",
    "extract_clean_text",
    "format_catalog_item",
]
