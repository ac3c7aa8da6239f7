"""Tests for catalog items, catalog text rendering and the internal content store."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from kbindex.errors import ParseError
from kbindex.ingest.catalog import CatalogItem, InMemoryCatalog, format_catalog_item
from kbindex.ingest.content_store import InMemoryContentStore, StoredPage


# ------------------------------------------------------------------
# CatalogItem
# ------------------------------------------------------------------


def test_from_dict_coerces_and_ignores_unknown_keys():
    item = CatalogItem.from_dict(
        {
            "id": "42",
            "name": "Mug",
            "price": "9.50",
            "sale_price": "",
            "modified_at": "2024-04-01T08:00:00Z",
            "warehouse": "north",
        }
    )
    assert item.id == 42
    assert item.price == pytest.approx(9.5)
    assert item.sale_price is None
    assert item.modified_at == datetime(2024, 4, 1, 8, tzinfo=timezone.utc)


def test_from_dict_requires_integer_id():
    with pytest.raises(ParseError, match="integer 'id'"):
        CatalogItem.from_dict({"name": "No id"})


def test_from_dict_bad_price():
    with pytest.raises(ParseError, match="price"):
        CatalogItem.from_dict({"id": 1, "price": "cheap"})


def test_source_url_falls_back_to_catalog_uri():
    assert CatalogItem(id=3, name="x").source_url == "catalog://item/3"
    assert CatalogItem(id=3, name="x", url="https://shop.example/x").source_url == (
        "https://shop.example/x"
    )


def test_catalog_from_json(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps([{"id": 2, "name": "B"}, {"id": 1, "name": "A"}]), encoding="utf-8")
    catalog = InMemoryCatalog.from_json(path)
    assert [i.name for i in catalog.list_items()] == ["A", "B"]
    assert catalog.get_item(2).name == "B"
    assert catalog.get_item(99) is None


def test_catalog_from_json_rejects_non_list(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text('{"id": 1}', encoding="utf-8")
    with pytest.raises(ParseError, match="JSON list"):
        InMemoryCatalog.from_json(path)


# ------------------------------------------------------------------
# format_catalog_item
# ------------------------------------------------------------------


def test_format_full_item():
    item = CatalogItem(
        id=7,
        name="Travel Mug",
        sku="MUG-1",
        description="<p>Great <b>mug</b>.</p>",
        price=19.99,
        regular_price=24.99,
        sale_price=19.99,
        in_stock=True,
        manage_stock=True,
        stock_quantity=5,
        categories=["Kitchen", "Travel"],
        tags=["steel"],
        attributes={"Color": ["Red", "Blue"]},
        variations=[
            {"id": 70, "sku": "MUG-1-R", "price": "19.99", "attributes": {"attribute_color": "Red"}}
        ],
        weight="0.4",
        length="10",
        width="8",
        height="12",
        average_rating=4.5,
        rating_count=12,
    )

    text = format_catalog_item(item, currency="$")

    assert text.split("\n\n") == [
        "Product: Travel Mug",
        "SKU: MUG-1",
        "Great mug.",
        "Price: $19.99 (Regular: $24.99, Sale: $19.99)",
        "Stock Status: In Stock (Quantity: 5)",
        "Categories: Kitchen, Travel",
        "Tags: steel",
        "Attributes:\n- Color: Red, Blue",
        "Variations:\n- Variation #70 (SKU: MUG-1-R) - Price: $19.99 (color: Red)",
        "Weight: 0.4 kg, Dimensions: 10 × 8 × 12 cm",
        "Rating: 4.5 out of 5 stars (12 reviews)",
    ]


def test_format_minimal_item_omits_empty_sections():
    item = CatalogItem(id=1, name="Plain", in_stock=False)
    assert format_catalog_item(item) == "Product: Plain\n\nStock Status: Out of Stock"


def test_format_price_without_discount():
    item = CatalogItem(id=1, name="x", price=1234.5, regular_price=1234.5, sale_price=1234.5)
    assert "Price: 1,234.50" in format_catalog_item(item)
    assert "Regular" not in format_catalog_item(item)


# ------------------------------------------------------------------
# Content store
# ------------------------------------------------------------------


def test_content_store_lookup_ignores_trailing_slash():
    store = InMemoryContentStore([StoredPage(id=1, url="https://kb.example/faq/", title="FAQ", body="")])
    assert store.get_page_by_url("https://kb.example/faq").id == 1
    assert store.get_page(1).title == "FAQ"
    assert len(store) == 1


def test_stored_page_html_escapes_title():
    page = StoredPage(id=1, url="u", title="Q&A <new>", body="<p>Body</p>")
    assert page.to_html() == "<article><h1>Q&amp;A &lt;new&gt;</h1><p>Body</p></article>"


def test_content_store_from_json(tmp_path):
    path = tmp_path / "pages.json"
    path.write_text(
        json.dumps(
            [{"id": 5, "url": "https://kb.example/a", "title": "A", "modified_at": "2024-01-02 03:04:05"}]
        ),
        encoding="utf-8",
    )
    store = InMemoryContentStore.from_json(path)
    page = store.get_page(5)
    assert page.body == ""
    assert page.modified_at == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_content_store_from_json_invalid_entry(tmp_path):
    path = tmp_path / "pages.json"
    path.write_text('[{"title": "no id"}]', encoding="utf-8")
    with pytest.raises(ParseError, match="Invalid page entry"):
        InMemoryContentStore.from_json(path)
