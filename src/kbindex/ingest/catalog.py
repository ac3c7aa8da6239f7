"""Commerce catalog items: provider interface and text rendering."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from kbindex import timestamps
from kbindex.errors import ParseError
from kbindex.ingest.extract import extract_clean_text


@dataclass
class CatalogItem:
    id: int
    name: str
    url: str = ""
    sku: str = ""
    short_description: str = ""
    description: str = ""
    price: float | None = None
    regular_price: float | None = None
    sale_price: float | None = None
    in_stock: bool | None = None
    manage_stock: bool = False
    stock_quantity: int | None = None
    categories: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    attributes: dict[str, list[str]] = field(default_factory=dict)
    variations: list[dict[str, Any]] = field(default_factory=list)
    weight: str = ""
    length: str = ""
    width: str = ""
    height: str = ""
    weight_unit: str = "kg"
    dimension_unit: str = "cm"
    average_rating: float | None = None
    rating_count: int = 0
    modified_at: datetime | None = None

    @property
    def source_url(self) -> str:
        """Stable source URL: the storefront link, or a catalog URI when there is none."""
        return self.url or f"catalog://item/{self.id}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CatalogItem:
        """Build an item from a JSON object, ignoring unknown keys."""
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in data.items() if k in known}
        try:
            kwargs["id"] = int(data["id"])
            kwargs["name"] = str(data.get("name", ""))
        except (KeyError, TypeError, ValueError) as exc:
            raise ParseError(f"Catalog item needs an integer 'id': {exc}") from exc
        for money in ("price", "regular_price", "sale_price", "average_rating"):
            if kwargs.get(money) in ("", None):
                kwargs[money] = None
            else:
                try:
                    kwargs[money] = float(kwargs[money])
                except (TypeError, ValueError) as exc:
                    raise ParseError(f"Catalog item {kwargs['id']}: bad {money}: {exc}") from exc
        kwargs["modified_at"] = timestamps.parse(data.get("modified_at"))
        return cls(**kwargs)


class CatalogProvider(Protocol):
    def get_item(self, item_id: int) -> CatalogItem | None: ...

    def list_items(self) -> list[CatalogItem]: ...


class InMemoryCatalog:
    """Dict-backed CatalogProvider, optionally loaded from a JSON file."""

    def __init__(self, items: list[CatalogItem] | None = None) -> None:
        self._items: dict[int, CatalogItem] = {}
        for item in items or []:
            self.add_item(item)

    def add_item(self, item: CatalogItem) -> None:
        self._items[item.id] = item

    def get_item(self, item_id: int) -> CatalogItem | None:
        return self._items.get(item_id)

    def list_items(self) -> list[CatalogItem]:
        return sorted(self._items.values(), key=lambda i: i.id)

    @classmethod
    def from_json(cls, path: Path | str) -> InMemoryCatalog:
        """Load a JSON list of catalog item objects from *path*."""
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ParseError(f"Cannot read catalog file '{path}': {exc}") from exc
        if not isinstance(data, list):
            raise ParseError(f"Catalog file '{path}' must contain a JSON list")
        return cls([CatalogItem.from_dict(entry) for entry in data])


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------

def format_catalog_item(item: CatalogItem, currency: str = "") -> str:
    """Render *item* as labelled plain text, one section per block."""
    parts: list[str] = []

    if item.name:
        parts.append(f"Product: {item.name}")
    if item.sku:
        parts.append(f"SKU: {item.sku}")
    for html_text in (item.short_description, item.description):
        text = _plain(html_text)
        if text:
            parts.append(text)

    if item.price:
        price_text = f"Price: {_money(item.price, currency)}"
        if (
            item.sale_price
            and item.regular_price
            and item.sale_price < item.regular_price
        ):
            price_text += (
                f" (Regular: {_money(item.regular_price, currency)}, "
                f"Sale: {_money(item.sale_price, currency)})"
            )
        parts.append(price_text)

    if item.in_stock is not None:
        stock_text = "Stock Status: " + ("In Stock" if item.in_stock else "Out of Stock")
        if item.manage_stock and item.stock_quantity is not None:
            stock_text += f" (Quantity: {item.stock_quantity})"
        parts.append(stock_text)

    if item.categories:
        parts.append("Categories: " + ", ".join(item.categories))
    if item.tags:
        parts.append("Tags: " + ", ".join(item.tags))

    if item.attributes:
        lines = ["Attributes:"]
        for name, options in item.attributes.items():
            values = options if isinstance(options, list) else [options]
            lines.append(f"- {name}: {', '.join(str(v) for v in values)}")
        parts.append("\n".join(lines))

    if item.variations:
        lines = ["Variations:"]
        for variation in item.variations:
            line = f"- Variation #{variation.get('id', '?')}"
            if variation.get("sku"):
                line += f" (SKU: {variation['sku']})"
            if variation.get("price"):
                line += f" - Price: {_money(float(variation['price']), currency)}"
            attrs = variation.get("attributes") or {}
            if attrs:
                rendered = ", ".join(
                    f"{str(k).removeprefix('attribute_')}: {v}" for k, v in attrs.items()
                )
                line += f" ({rendered})"
            lines.append(line)
        parts.append("\n".join(lines))

    dims: list[str] = []
    if item.weight:
        dims.append(f"Weight: {item.weight} {item.weight_unit}")
    if item.length:
        dims.append(
            f"Dimensions: {item.length} × {item.width} × {item.height} {item.dimension_unit}"
        )
    if dims:
        parts.append(", ".join(dims))

    if item.average_rating:
        parts.append(
            f"Rating: {item.average_rating:g} out of 5 stars ({item.rating_count} reviews)"
        )

    return "\n\n".join(parts)


def _money(value: float, currency: str) -> str:
    return f"{currency}{value:,.2f}"


def _plain(markup: str) -> str:
    if not markup:
        return ""
    return extract_clean_text(markup, remove_boilerplate=False, extract_main_content=False)
