"""Internal content store: pages the knowledge base owns directly.

The fetcher consults the store before going to the network, and the freshness
tracker reads page modification times from it.
"""

from __future__ import annotations

import html
import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

from kbindex import timestamps
from kbindex.errors import ParseError


@dataclass
class StoredPage:
    id: int
    url: str
    title: str
    body: str  # HTML
    modified_at: datetime | None = None

    def to_html(self) -> str:
        """Title and body wrapped as one ``<article>`` for extraction."""
        return f"<article><h1>{html.escape(self.title)}</h1>{self.body}</article>"


class ContentStore(Protocol):
    def get_page(self, page_id: int) -> StoredPage | None: ...

    def get_page_by_url(self, url: str) -> StoredPage | None: ...

    def list_pages(self) -> list[StoredPage]: ...


class InMemoryContentStore:
    """Dict-backed ContentStore, optionally loaded from a JSON file."""

    def __init__(self, pages: list[StoredPage] | None = None) -> None:
        self._by_id: dict[int, StoredPage] = {}
        self._by_url: dict[str, StoredPage] = {}
        for page in pages or []:
            self.add_page(page)

    def add_page(self, page: StoredPage) -> None:
        self._by_id[page.id] = page
        self._by_url[page.url.rstrip("/")] = page

    def get_page(self, page_id: int) -> StoredPage | None:
        return self._by_id.get(page_id)

    def get_page_by_url(self, url: str) -> StoredPage | None:
        return self._by_url.get(url.rstrip("/"))

    def list_pages(self) -> list[StoredPage]:
        return sorted(self._by_id.values(), key=lambda p: p.id)

    def __len__(self) -> int:
        return len(self._by_id)

    @classmethod
    def from_json(cls, path: Path | str) -> InMemoryContentStore:
        """Load ``[{"id", "url", "title", "body", "modified_at"}, ...]`` from *path*.

        Raises:
            ParseError: If the file is not a JSON list of page objects.
        """
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ParseError(f"Cannot read pages file '{path}': {exc}") from exc
        if not isinstance(data, list):
            raise ParseError(f"Pages file '{path}' must contain a JSON list")
        pages = []
        for entry in data:
            try:
                pages.append(
                    StoredPage(
                        id=int(entry["id"]),
                        url=str(entry["url"]),
                        title=str(entry.get("title", "")),
                        body=str(entry.get("body", "")),
                        modified_at=timestamps.parse(entry.get("modified_at")),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise ParseError(f"Invalid page entry in '{path}': {exc}") from exc
        return cls(pages)
