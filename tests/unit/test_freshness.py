"""Tests for FreshnessTracker: ages, stale sweeps, stats and origin checks."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from kbindex.config import FreshnessCfg
from kbindex.db.models import SourceRef
from kbindex.db.repository import Repository
from kbindex.freshness import (
    STALE_SENTINEL_DAYS,
    CatalogTimestamps,
    ContentStoreTimestamps,
    FreshnessTracker,
)
from kbindex.ingest.catalog import CatalogItem, InMemoryCatalog
from kbindex.ingest.content_store import InMemoryContentStore, StoredPage

TEXT_A = "Alpha source text that is comfortably longer than fifty characters."
TEXT_B = "Beta source text, also comfortably longer than the fifty character floor."


@pytest.fixture
def tracker(tmp_db, clock):
    return FreshnessTracker(Repository(tmp_db), FreshnessCfg(threshold_days=30), clock=clock)


# ------------------------------------------------------------------
# Ages
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "timestamp,expected",
    [
        ("2024-04-05 12:00:00", 40),
        ("2024-05-05 12:00:00", 10),
        ("2024-05-14 12:00:01", 0),  # 23h59m59s is still day zero
        ("2024-06-01 00:00:00", 0),  # future clamps to zero
        (None, STALE_SENTINEL_DAYS),
        ("not a date", STALE_SENTINEL_DAYS),
    ],
)
def test_calculate_age_days(tracker, timestamp, expected):
    assert tracker.calculate_age_days(timestamp) == expected


def test_is_fresh_uses_threshold(tracker):
    assert tracker.is_fresh("2024-05-05 12:00:00") is True
    assert tracker.is_fresh("2024-04-05 12:00:00") is False
    assert tracker.is_fresh("2024-04-05 12:00:00", threshold_days=60) is True
    assert tracker.is_fresh(None) is False


# ------------------------------------------------------------------
# Per-source views
# ------------------------------------------------------------------


def test_get_freshness_after_indexing(make_pipeline, clock):
    pipeline = make_pipeline()
    pipeline.indexer.index_text("https://a.example", TEXT_A)
    clock.advance(days=40)

    view = pipeline.freshness.get_freshness("https://a.example")
    assert view.chunk_count == 1
    assert view.last_indexed == "2024-05-15 12:00:00"
    assert view.age_days == 40
    assert view.is_fresh is False
    assert pipeline.freshness.get_freshness("https://missing.example") is None
    assert pipeline.freshness.get_freshness("") is None


def test_update_freshness_explicit_timestamp(make_pipeline):
    pipeline = make_pipeline()
    pipeline.indexer.index_text("https://a.example", TEXT_A)
    assert pipeline.freshness.update_freshness("https://a.example", "2024-01-01T00:00:00Z") == 1
    view = pipeline.freshness.get_freshness("https://a.example")
    assert view.newest_chunk == "2024-01-01 00:00:00"
    assert pipeline.freshness.update_freshness("") == 0


def test_stale_content_and_stats(make_pipeline, clock):
    pipeline = make_pipeline()
    pipeline.indexer.index_text("https://old.example", TEXT_A)
    clock.advance(days=20)
    pipeline.indexer.index_text("https://new.example", TEXT_B)
    clock.advance(days=15)

    stale = pipeline.freshness.get_stale_content()
    assert [s.source_url for s in stale] == ["https://old.example"]
    assert stale[0].chunk_count == 1
    assert pipeline.freshness.get_stale_content(threshold_days=10)[1].source_url == (
        "https://new.example"
    )

    stats = pipeline.freshness.get_freshness_stats()
    assert stats.total_sources == 2
    assert (stats.fresh_sources, stats.stale_sources) == (1, 1)
    assert stats.average_age_days == 25.0
    assert (stats.oldest_content_days, stats.newest_content_days) == (35, 15)
    assert stats.by_age_range == {"0-7": 0, "8-30": 1, "31-90": 1, "91-180": 0, "181+": 0}


def test_stats_empty(tracker):
    stats = tracker.get_freshness_stats()
    assert stats.total_sources == 0
    assert stats.average_age_days == 0.0


# ------------------------------------------------------------------
# Origin checks
# ------------------------------------------------------------------


def test_providers_first_supporting_one_wins(tmp_db, clock):
    store = InMemoryContentStore(
        [
            StoredPage(
                id=1,
                url="https://kb.example/a",
                title="A",
                body="",
                modified_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
            )
        ]
    )
    catalog = InMemoryCatalog(
        [CatalogItem(id=9, name="Mug", modified_at=datetime(2024, 2, 1, tzinfo=timezone.utc))]
    )
    tracker = FreshnessTracker(
        Repository(tmp_db),
        providers=[ContentStoreTimestamps(store), CatalogTimestamps(catalog)],
        clock=clock,
    )
    assert tracker.source_timestamp("https://kb.example/a", "page") == datetime(
        2024, 3, 1, tzinfo=timezone.utc
    )
    assert tracker.source_timestamp("catalog://item/9", "catalog_item", 9) == datetime(
        2024, 2, 1, tzinfo=timezone.utc
    )
    assert tracker.source_timestamp("catalog://item/9", "catalog_item", None) is None
    assert tracker.source_timestamp("https://x.example", "url") is None


def test_check_source_updated(make_pipeline):
    page = StoredPage(
        id=1,
        url="https://kb.example/a",
        title="A",
        body=f"<p>{TEXT_A}</p>",
        modified_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )
    pipeline = make_pipeline(content_store=InMemoryContentStore([page]))
    freshness = pipeline.freshness

    # never indexed counts as updated
    assert freshness.check_source_updated("https://kb.example/a", "page", 1) is True

    pipeline.indexer.index_url("https://kb.example/a", source_type="page", source_id=1)
    assert freshness.check_source_updated("https://kb.example/a", "page", 1) is False
    assert freshness.get_content_needing_reindex() == []

    page.modified_at = datetime(2024, 5, 20, tzinfo=timezone.utc)
    assert freshness.check_source_updated("https://kb.example/a", "page", 1) is True
    assert freshness.get_content_needing_reindex() == [
        SourceRef(source_url="https://kb.example/a", source_type="page", source_id=1)
    ]
    assert freshness.get_content_needing_reindex(source_type="url") == []


def test_unknown_origin_is_not_updated(make_pipeline):
    pipeline = make_pipeline()
    pipeline.indexer.index_text("https://a.example", TEXT_A)
    # HEAD request is blocked offline, so the origin time is unknown
    assert pipeline.freshness.check_source_updated("https://a.example", "text") is False
