"""Indexer: the only writer of content chunks.

For each chunk of a source:
1. Skip empty text.
2. Ask the DuplicateDetector; a match is recorded as a ``DuplicateSkip``.
3. Store the chunk (and its FTS5 row) via ``Repository.add_chunk()``.
4. Embed it and store the vector in the model's vec table.

A failed embedding leaves the chunk text-searchable and is reported in
``IndexResult.errors``; ``repair_embeddings()`` fills the gap later. If not a
single chunk of a call succeeds, the chunks that call wrote are removed again
and ``IndexingError`` is raised so the job queue can retry the whole source.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from kbindex import timestamps
from kbindex.db.models import ContentChunk, SourceType, content_hash, count_words, estimate_tokens
from kbindex.db.repository import Repository
from kbindex.db.vectors import VectorStore
from kbindex.dedup import DuplicateDetector, DuplicateSkip
from kbindex.embeddings import EmbeddingGenerator
from kbindex.errors import EmbeddingError, IndexingError, KbindexError, NoContentError, PersistenceError
from kbindex.freshness import FreshnessTracker
from kbindex.ingest.api_endpoint import ApiEndpointProcessor, ApiOptions
from kbindex.ingest.catalog import CatalogProvider, format_catalog_item
from kbindex.ingest.chunker import TextChunk
from kbindex.ingest.pdf import PdfExtractor
from kbindex.ingest.processor import ChunkOptions, ContentProcessor
from kbindex.logging import get_logger
from kbindex.queue import (
    CrawlUrlPayload,
    IndexChunksPayload,
    JobType,
    ProcessApiPayload,
    ProcessCatalogItemPayload,
    ProcessContentPayload,
    ProcessDocumentPayload,
)


@dataclass
class IndexResult:
    source_url: str = ""
    indexed_count: int = 0
    skipped: list[DuplicateSkip] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    total: int = 0
    chunk_ids: list[int] = field(default_factory=list)
    already_indexed: bool = False

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


class Indexer:
    """Drive sources through extraction, dedup, storage and embedding.

    Args:
        repo: Open Repository.
        vectors: Vector store on the same connection.
        processor: Fetch/extract/chunk front end.
        detector: Duplicate detector consulted for every chunk.
        embedder: Embedding generator.
        freshness: Tracker stamped after every successful call.
        pdf: PDF extractor for ``index_document``.
        catalog: Catalog provider for ``index_catalog_item``; None disables it.
        api: API endpoint processor for ``index_api_endpoint``.
        currency: Prefix for rendered catalog prices.
    """

    def __init__(
        self,
        repo: Repository,
        vectors: VectorStore,
        processor: ContentProcessor,
        detector: DuplicateDetector,
        embedder: EmbeddingGenerator,
        freshness: FreshnessTracker,
        pdf: PdfExtractor | None = None,
        catalog: CatalogProvider | None = None,
        api: ApiEndpointProcessor | None = None,
        currency: str = "",
        clock: timestamps.Clock = timestamps.utcnow,
        logger=None,
    ) -> None:
        self._repo = repo
        self._vectors = vectors
        self._processor = processor
        self._detector = detector
        self._embedder = embedder
        self._freshness = freshness
        self._pdf = pdf or PdfExtractor(fetcher=processor.fetcher)
        self._catalog = catalog
        self._api = api or ApiEndpointProcessor(fetcher=processor.fetcher)
        self._currency = currency
        self._clock = clock
        self._log = logger or get_logger(__name__)

    # ------------------------------------------------------------------
    # Source entry points
    # ------------------------------------------------------------------

    def index_url(
        self,
        url: str,
        source_type: str = SourceType.URL.value,
        source_id: int | None = None,
        force_reindex: bool = False,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
        method: str | None = None,
    ) -> IndexResult:
        """Fetch, extract, chunk and index *url*.

        Without *force_reindex* a URL that already has chunks is left alone;
        the check is presence-based and does not look at the origin.
        """
        if not force_reindex and self._repo.has_chunks(source_url=url):
            return self._already_indexed(url)
        processed = self._processor.process_url(
            url, ChunkOptions(chunk_size=chunk_size, chunk_overlap=chunk_overlap, method=method)
        )
        if force_reindex:
            self.purge_source(url)
        return self.index_chunks(processed.chunks, source_type, url, source_id)

    def index_document(
        self, path_or_url: str, source_id: int | None = None, force_reindex: bool = False
    ) -> IndexResult:
        """Index a PDF from a local path or URL."""
        source_type = SourceType.DOCUMENT.value
        if not force_reindex and self._repo.has_chunks(source_url=path_or_url, source_type=source_type):
            return self._already_indexed(path_or_url)
        document = self._pdf.extract(path_or_url)
        chunks = self._processor.chunk_text(document.text)
        if force_reindex:
            self.purge_source(path_or_url)
        return self.index_chunks(chunks, source_type, path_or_url, source_id)

    def index_catalog_item(self, item_id: int, force_reindex: bool = False) -> IndexResult:
        """Render a catalog item to text and index it under its source URL.

        Raises:
            NoContentError: The item does not exist or renders to nothing.
        """
        source_type = SourceType.CATALOG_ITEM.value
        item = self._catalog.get_item(item_id) if self._catalog is not None else None
        if item is None:
            raise NoContentError(f"Catalog item {item_id} not found")
        if not force_reindex and self._repo.has_chunks(source_type=source_type, source_id=item_id):
            return self._already_indexed(item.source_url)
        text = format_catalog_item(item, self._currency)
        if not text.strip():
            raise NoContentError(f"Catalog item {item_id} has no content")
        chunks = self._processor.chunk_text(text)
        if force_reindex:
            self.purge_source(item.source_url)
        return self.index_chunks(chunks, source_type, item.source_url, item.id)

    def index_api_endpoint(
        self,
        url: str,
        options: ApiOptions | dict[str, Any] | None = None,
        force_reindex: bool = False,
    ) -> IndexResult:
        source_type = SourceType.API.value
        if not force_reindex and self._repo.has_chunks(source_url=url, source_type=source_type):
            return self._already_indexed(url)
        opts = options if isinstance(options, ApiOptions) else ApiOptions.from_dict(options)
        result = self._api.process(url, opts)
        if not result.content.strip():
            raise NoContentError(f"No content could be extracted from API endpoint '{url}'.")
        chunks = self._processor.chunk_text(result.content)
        if force_reindex:
            self.purge_source(url)
        return self.index_chunks(chunks, source_type, url)

    def index_text(
        self,
        source_url: str,
        content: str,
        source_type: str = SourceType.TEXT.value,
        source_id: int | None = None,
        force_reindex: bool = False,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
        method: str | None = None,
    ) -> IndexResult:
        """Chunk and index raw text supplied by the caller."""
        if source_url and not force_reindex and self._repo.has_chunks(source_url=source_url):
            return self._already_indexed(source_url)
        chunks = self._processor.chunk_text(
            content, ChunkOptions(chunk_size=chunk_size, chunk_overlap=chunk_overlap, method=method)
        )
        if not chunks:
            raise NoContentError(f"No content to index for '{source_url}'.")
        if force_reindex and source_url:
            self.purge_source(source_url)
        return self.index_chunks(chunks, source_type, source_url, source_id)

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    def index_chunks(
        self,
        chunks: Sequence[str | TextChunk],
        source_type: str = SourceType.TEXT.value,
        source_url: str = "",
        source_id: int | None = None,
        embedding_model: str | None = None,
    ) -> IndexResult:
        """Store, embed and stamp *chunks* of one source.

        Raises:
            NoContentError: *chunks* is empty.
            IndexingError: Every attempted chunk failed; nothing from this call
                remains stored.
        """
        if not chunks:
            raise NoContentError("No chunks provided for indexing.")

        model = embedding_model or self._embedder.model
        now = timestamps.to_sql(self._clock())
        result = IndexResult(source_url=source_url, total=len(chunks))
        log = self._log.bind(source_url=source_url, source_type=source_type)

        for index, chunk in enumerate(chunks):
            content = chunk.content if isinstance(chunk, TextChunk) else chunk
            if not content or not content.strip():
                continue

            match = self._detector.detect_duplicate(content, source_url)
            if match is not None:
                result.skipped.append(DuplicateSkip(chunk_index=index, match=match))
                log.debug(
                    "duplicate_skipped",
                    chunk_index=index,
                    duplicate_type=match.type,
                    duplicate_of=match.chunk_id,
                    similarity=match.similarity,
                )
                continue

            record = ContentChunk(
                source_type=source_type,
                source_url=source_url,
                source_id=source_id,
                chunk_index=index,
                content=content,
                content_hash=content_hash(content),
                word_count=count_words(content),
                token_count=estimate_tokens(content),
                embedding_model=model,
                last_updated=now,
                indexed_at=now,
            )
            try:
                chunk_id = self._repo.add_chunk(record)
            except PersistenceError as exc:
                result.errors.append(str(exc))
                log.warning("chunk_store_failed", chunk_index=index, error=str(exc))
                continue
            result.chunk_ids.append(chunk_id)

            try:
                vector = self._embedder.generate(content, model)
                self._vectors.store(chunk_id, vector, model)
            except EmbeddingError as exc:
                result.errors.append(f"Chunk {index}: {exc}")
                log.warning("chunk_embedding_failed", chunk_id=chunk_id, error=str(exc))
                continue

            result.indexed_count += 1

        if result.indexed_count == 0 and result.errors:
            if result.chunk_ids:
                self._repo.delete_chunks(result.chunk_ids)
            log.error("indexing_failed", errors=len(result.errors))
            raise IndexingError(
                f"Failed to index any chunks of '{source_url}'.", errors=result.errors
            )

        if result.indexed_count and source_url:
            self._stamp_freshness(source_url, source_type, source_id)

        log.info(
            "chunks_indexed",
            total=result.total,
            indexed=result.indexed_count,
            skipped=result.skipped_count,
            errors=len(result.errors),
        )
        return result

    def _stamp_freshness(self, source_url: str, source_type: str, source_id: int | None) -> None:
        origin = None
        if source_id is not None:
            try:
                origin = self._freshness.source_timestamp(source_url, source_type, source_id)
            except KbindexError as exc:
                self._log.warning("origin_timestamp_failed", source_url=source_url, error=str(exc))
        self._freshness.update_freshness(source_url, origin)

    def _already_indexed(self, source_url: str) -> IndexResult:
        self._log.info("already_indexed", source_url=source_url)
        return IndexResult(source_url=source_url, already_indexed=True)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reindex_url(
        self,
        url: str,
        source_type: str | None = None,
        source_id: int | None = None,
    ) -> IndexResult:
        """Re-read *url* from its origin, replacing its stored chunks.

        The recorded source type picks the pipeline; *source_type* and
        *source_id* are used for sources that were never indexed.

        Raises:
            NoContentError: The source was indexed from inline text and has no
                origin to re-read.
        """
        ref = self._repo.get_source_ref(url)
        kind = ref.source_type if ref is not None else (source_type or SourceType.URL.value)
        origin_id = ref.source_id if ref is not None and ref.source_id is not None else source_id

        if kind == SourceType.TEXT.value:
            raise NoContentError(f"Source '{url}' was indexed from inline text and cannot be re-read")
        if kind == SourceType.DOCUMENT.value:
            return self.index_document(url, source_id=origin_id, force_reindex=True)
        if kind == SourceType.CATALOG_ITEM.value:
            if origin_id is None:
                raise NoContentError(f"Catalog source '{url}' has no item id")
            return self.index_catalog_item(origin_id, force_reindex=True)
        if kind == SourceType.API.value:
            return self.index_api_endpoint(url, force_reindex=True)
        return self.index_url(url, source_type=kind, source_id=origin_id, force_reindex=True)

    def purge_source(self, url: str) -> int:
        """Delete every chunk of *url* with its embeddings, FTS rows and duplicate edges."""
        removed = self._repo.delete_source_chunks(url)
        if removed:
            self._log.info("source_purged", source_url=url, chunks=removed)
        return removed

    def repair_embeddings(self, limit: int = 100) -> IndexResult:
        """Embed stored chunks that have no vector for the current model."""
        model = self._embedder.model
        ids = self._vectors.chunk_ids_missing_embedding(model, limit)
        result = IndexResult(total=len(ids))
        for chunk_id in ids:
            chunk = self._repo.get_chunk(chunk_id)
            if chunk is None:
                continue
            try:
                self._vectors.store(chunk_id, self._embedder.generate(chunk.content, model), model)
            except EmbeddingError as exc:
                result.errors.append(f"Chunk {chunk_id}: {exc}")
                continue
            result.indexed_count += 1
            result.chunk_ids.append(chunk_id)
        if ids:
            self._log.info(
                "embeddings_repaired", repaired=result.indexed_count, errors=len(result.errors)
            )
        return result

    def get_indexing_stats(self) -> dict:
        stats = self._repo.chunk_stats()
        stats["total_embeddings"] = self._vectors.count()
        return stats

    # ------------------------------------------------------------------
    # Job handlers
    # ------------------------------------------------------------------

    def job_handlers(self) -> dict[JobType, Any]:
        """Dispatch table for ``JobQueue``; handlers raise to request a retry."""
        return {
            JobType.CRAWL_URL: self._handle_crawl_url,
            JobType.PROCESS_CONTENT: self._handle_process_content,
            JobType.INDEX_CHUNKS: self._handle_index_chunks,
            JobType.PROCESS_DOCUMENT: self._handle_process_document,
            JobType.PROCESS_CATALOG_ITEM: self._handle_process_catalog_item,
            JobType.PROCESS_API: self._handle_process_api,
        }

    def _handle_crawl_url(self, payload: CrawlUrlPayload) -> IndexResult:
        if payload.force_reindex:
            return self.reindex_url(payload.url, payload.source_type, payload.source_id)
        return self.index_url(
            payload.url,
            source_type=payload.source_type or SourceType.URL.value,
            source_id=payload.source_id,
        )

    def _handle_process_content(self, payload: ProcessContentPayload) -> IndexResult:
        return self.index_text(
            payload.source_url,
            payload.content,
            source_type=payload.source_type,
            source_id=payload.source_id,
            chunk_size=payload.chunk_size,
            chunk_overlap=payload.chunk_overlap,
            method=payload.method,
        )

    def _handle_index_chunks(self, payload: IndexChunksPayload) -> IndexResult:
        return self.index_chunks(
            payload.chunks, payload.source_type, payload.source_url, payload.source_id
        )

    def _handle_process_document(self, payload: ProcessDocumentPayload) -> IndexResult:
        return self.index_document(payload.path, payload.source_id, payload.force_reindex)

    def _handle_process_catalog_item(self, payload: ProcessCatalogItemPayload) -> IndexResult:
        return self.index_catalog_item(payload.item_id, payload.force_reindex)

    def _handle_process_api(self, payload: ProcessApiPayload) -> IndexResult:
        return self.index_api_endpoint(payload.url, payload.options, payload.force_reindex)
