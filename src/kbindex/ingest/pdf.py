"""PDF text extraction via pypdf.

Strategy:
- Accept a local path or an http(s) URL (downloaded through the guarded Fetcher).
- Reject anything without a ``%PDF`` header or larger than 10 MB.
- Extract text page-by-page via ``pypdf.PdfReader``; pages that yield no text
  (scanned images, etc.) are skipped; pages are joined with blank lines.
"""

from __future__ import annotations

import io
import urllib.parse
from dataclasses import dataclass, field
from pathlib import Path

import pypdf
from pypdf.errors import PdfReadError

from kbindex.errors import NoContentError, ParseError
from kbindex.ingest.extract import clean_text
from kbindex.ingest.fetch import Fetcher
from kbindex.logging import get_logger

MAX_PDF_BYTES = 10 * 1024 * 1024  # 10 MB
_PDF_MAGIC = b"%PDF"


@dataclass
class PdfDocument:
    source: str
    text: str
    metadata: dict[str, object] = field(default_factory=dict)

    @property
    def char_count(self) -> int:
        return len(self.text)


def is_url(value: str) -> bool:
    return urllib.parse.urlparse(value).scheme in ("http", "https")


class PdfExtractor:
    """Turn a PDF file or URL into plain text plus document metadata."""

    def __init__(
        self,
        fetcher: Fetcher | None = None,
        max_bytes: int = MAX_PDF_BYTES,
        logger=None,
    ) -> None:
        self._fetcher = fetcher or Fetcher()
        self._max_bytes = max_bytes
        self._log = logger or get_logger(__name__)

    def extract(self, path_or_url: str) -> PdfDocument:
        """Read the PDF at *path_or_url*.

        Raises:
            FetchError: Download failed.
            ParseError: Missing file, not a PDF, too large, or unreadable.
            NoContentError: The PDF contains no extractable text.
        """
        data = self._load_bytes(path_or_url)
        self._validate(data, path_or_url)

        try:
            reader = pypdf.PdfReader(io.BytesIO(data))
            pages = [(page.extract_text() or "").strip() for page in reader.pages]
            metadata = _metadata(reader)
        except (PdfReadError, ValueError, KeyError, TypeError) as exc:
            self._log.error("pdf_extraction_failed", source=path_or_url, error=str(exc))
            raise ParseError(f"Cannot read PDF '{path_or_url}': {exc}") from exc

        text = clean_text("\n\n".join(p for p in pages if p))
        if not text:
            raise NoContentError(f"No text could be extracted from the PDF file '{path_or_url}'.")
        return PdfDocument(source=path_or_url, text=text, metadata=metadata)

    def _load_bytes(self, path_or_url: str) -> bytes:
        if is_url(path_or_url):
            response = self._fetcher.request(path_or_url)
            if len(response.body) > self._max_bytes:
                raise ParseError(f"PDF at '{path_or_url}' exceeds the size limit")
            return response.body

        path = Path(path_or_url)
        if not path.is_file():
            raise ParseError(f"PDF file not found: {path_or_url}")
        if path.stat().st_size > self._max_bytes:
            raise ParseError(
                f"PDF file exceeds the {self._max_bytes // (1024 * 1024)} MB limit: {path_or_url}"
            )
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ParseError(f"Cannot read PDF file '{path_or_url}': {exc}") from exc

    def _validate(self, data: bytes, source: str) -> None:
        if len(data) > self._max_bytes:
            raise ParseError(f"PDF '{source}' exceeds the size limit")
        if not data.startswith(_PDF_MAGIC):
            raise ParseError(f"'{source}' is not a valid PDF file")


def _metadata(reader: pypdf.PdfReader) -> dict[str, object]:
    info = reader.metadata
    result: dict[str, object] = {"pages": len(reader.pages)}
    if info is None:
        return result
    result.update(
        {
            "title": info.title or "",
            "author": info.author or "",
            "subject": info.subject or "",
            "creator": info.creator or "",
            "producer": info.producer or "",
            "creation_date": str(info.get("/CreationDate", "") or ""),
            "modification_date": str(info.get("/ModDate", "") or ""),
        }
    )
    return result
