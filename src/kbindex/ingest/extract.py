"""Boilerplate-stripping text extraction from HTML.

Strategy:
- Parse with BeautifulSoup (``html.parser``).
- Drop navigation/chrome elements matched by CSS selectors.
- Narrow to the first main-content container, falling back to ``<body>``.
- Walk the tree depth-first, emitting a newline after block elements.
- Normalise whitespace: runs of spaces/tabs collapse, at most one blank line
  in a row, control characters removed.

If the markup cannot be parsed at all, a regex tag-stripper is used instead.
"""

from __future__ import annotations

import html
import re

from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from bs4.builder import ParserRejectedMarkup
from bs4.element import Declaration, Doctype, ProcessingInstruction

REMOVE_SELECTORS: tuple[str, ...] = (
    "nav",
    "header",
    "footer",
    ".navigation",
    ".nav",
    ".header",
    ".footer",
    ".sidebar",
    ".widget",
    ".comments",
    ".comment-form",
    ".breadcrumb",
    ".breadcrumbs",
    '[role="navigation"]',
    '[role="banner"]',
    '[role="contentinfo"]',
    '[role="complementary"]',
    "script",
    "style",
    "noscript",
    "iframe",
    "form",
    ".wp-block-navigation",
    ".wp-block-site-header",
    ".wp-block-site-footer",
)

CONTENT_SELECTORS: tuple[str, ...] = (
    "main",
    "article",
    ".entry-content",
    ".post-content",
    ".content",
    '[role="main"]',
    ".wp-block-post-content",
    "#content",
    "#main-content",
)

_BLOCK_ELEMENTS = frozenset(
    [
        "p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "li", "br",
        "tr", "section", "article", "blockquote", "pre",
    ]
)
# Never text, whether or not boilerplate removal ran.
_SKIP_ELEMENTS = frozenset(["script", "style", "noscript", "template", "head"])
_NON_TEXT_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)

_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_HSPACE_RE = re.compile(r"[ \t\xa0]+")
_EDGE_SPACE_RE = re.compile(r" *\n *")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")


def extract_clean_text(
    raw_markup: str,
    remove_boilerplate: bool = True,
    extract_main_content: bool = True,
) -> str:
    """Return the readable text of *raw_markup* (empty string if there is none)."""
    if not raw_markup or not raw_markup.strip():
        return ""

    try:
        soup = BeautifulSoup(raw_markup, "html.parser")
        if remove_boilerplate:
            _remove_elements(soup, REMOVE_SELECTORS)

        root: Tag = soup
        if extract_main_content:
            root = _main_content(soup)
        elif soup.body is not None:
            root = soup.body

        return clean_text(_node_text(root))
    except (ParserRejectedMarkup, AssertionError, ValueError, RecursionError):
        return strip_markup_fallback(raw_markup)


def strip_markup_fallback(raw_markup: str) -> str:
    """Regex tag-stripping for markup the parser rejects."""
    without_code = _SCRIPT_STYLE_RE.sub("", raw_markup)
    text = _TAG_RE.sub(" ", without_code)
    return clean_text(html.unescape(text))


def clean_text(text: str) -> str:
    text = _CONTROL_RE.sub("", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _HSPACE_RE.sub(" ", text)
    text = _EDGE_SPACE_RE.sub("\n", text)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


# ------------------------------------------------------------------
# Tree helpers
# ------------------------------------------------------------------

def _remove_elements(soup: BeautifulSoup, selectors: tuple[str, ...]) -> None:
    for selector in selectors:
        for node in soup.select(selector):
            # A match nested inside an earlier match is already gone.
            if not node.decomposed:
                node.decompose()


def _main_content(soup: BeautifulSoup) -> Tag:
    for selector in CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node is not None:
            return node
    return soup.body if soup.body is not None else soup


def _node_text(root: Tag) -> str:
    """Depth-first text of *root* with an explicit stack, so nesting depth is unbounded."""
    parts: list[str] = []
    # (node, closing): closing entries emit the newline after a block element
    stack: list[tuple[object, bool]] = [(root, False)]
    while stack:
        node, closing = stack.pop()
        if closing:
            parts.append("\n")
            continue
        if isinstance(node, NavigableString):
            if not isinstance(node, _NON_TEXT_STRINGS):
                parts.append(str(node))
            continue
        if not isinstance(node, Tag) or node.name in _SKIP_ELEMENTS:
            continue
        if node.name in _BLOCK_ELEMENTS:
            stack.append((node, True))
        stack.extend((child, False) for child in reversed(node.contents))
    return "".join(parts)
