"""Tests for the composition root and its tick."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest

from kbindex import timestamps
from kbindex.config import DiscoveryCfg, KbindexConfig, SourcesCfg
from kbindex.errors import ParseError
from kbindex.ingest.content_store import InMemoryContentStore, StoredPage
from kbindex.pipeline import Pipeline, load_sources
from kbindex.queue import JobType
from kbindex.scheduler import REINDEX_HOOK

PAGE_URL = "https://kb.example/about"
BODY = "<p>We build small widgets for large households all over the region.</p>"


@pytest.fixture
def pipeline(make_pipeline):
    store = InMemoryContentStore([StoredPage(id=1, url=PAGE_URL, title="About", body=BODY)])
    return make_pipeline(content_store=store)


def test_tick_processes_queue(pipeline):
    pipeline.queue.add_job(JobType.CRAWL_URL, {"url": PAGE_URL})
    result = pipeline.tick()
    assert result.hooks_run == {}
    assert result.queue.completed == 1
    assert pipeline.repo.count_chunks(url=PAGE_URL) == 1


def test_tick_runs_due_hook_then_queue(pipeline, clock):
    pipeline.indexer.index_url(PAGE_URL)
    pipeline.reindexer.schedule("daily")

    assert pipeline.tick().hooks_run == {}

    clock.advance(days=100)
    result = pipeline.tick()

    assert result.hooks_run[REINDEX_HOOK].queued == 1
    # the job queued by the sweep runs in the same tick
    assert result.queue.completed == 1
    next_run = pipeline.scheduler.next_run(REINDEX_HOOK)
    assert next_run == (clock.now + timedelta(days=1)).replace(hour=2, minute=0, second=0)
    assert pipeline.repo.get_chunks_by_url(PAGE_URL)[0].indexed_at == timestamps.to_sql(clock.now)


def test_unknown_hook_is_advanced_without_running(pipeline, clock):
    past = timestamps.to_sql(clock.now - timedelta(hours=1))
    pipeline.repo.upsert_schedule("mystery", "daily", past)
    assert pipeline.run_due() == {}
    schedule = pipeline.repo.get_schedule("mystery")
    assert schedule.next_run_at > timestamps.to_sql(clock.now)
    # not due again on the next tick
    assert "mystery" not in [s.hook for s in pipeline.scheduler.due(clock.now)]


def test_unknown_one_shot_hook_is_dropped(pipeline, clock):
    past = timestamps.to_sql(clock.now - timedelta(hours=1))
    pipeline.repo.upsert_schedule("mystery", None, past)
    assert pipeline.run_due() == {}
    assert pipeline.repo.get_schedule("mystery") is None


def test_load_sources(tmp_path):
    pages = tmp_path / "pages.json"
    pages.write_text(json.dumps([{"id": 1, "url": PAGE_URL, "title": "About"}]), encoding="utf-8")
    catalog = tmp_path / "catalog.json"
    catalog.write_text(json.dumps([{"id": 3, "name": "Mug"}]), encoding="utf-8")

    store, items = load_sources(SourcesCfg(pages_file=str(pages), catalog_file=str(catalog)))
    assert store.get_page_by_url(PAGE_URL).title == "About"
    assert items.get_item(3).name == "Mug"
    assert load_sources(SourcesCfg()) == (None, None)


def test_open_creates_database_and_closes(tmp_path, embedder):
    db_path = tmp_path / "kb.db"
    with Pipeline.open(KbindexConfig(), db_path=db_path, embedder=embedder) as pipeline:
        pipeline.indexer.index_text("https://t.example", "Some text long enough to be stored.")
        assert pipeline.repo.count_chunks() == 1
    assert db_path.exists()


def test_open_bad_sources_file_raises(tmp_path, embedder):
    bad = tmp_path / "pages.json"
    bad.write_text("{}", encoding="utf-8")
    config = KbindexConfig(sources=SourcesCfg(pages_file=str(bad)))
    with pytest.raises(ParseError):
        Pipeline.open(config, db_path=tmp_path / "kb.db", embedder=embedder)


def test_discovery_sees_store_and_manual_urls(make_pipeline):
    store = InMemoryContentStore([StoredPage(id=1, url=PAGE_URL, title="About", body=BODY)])
    manual = [PAGE_URL + "/", "https://kb.example/faq"]
    config = KbindexConfig(discovery=DiscoveryCfg(manual_urls=manual))
    pipeline = make_pipeline(config=config, content_store=store)
    found = pipeline.discovery.discover_urls()
    assert [(u.url, u.source_type) for u in found] == [
        (PAGE_URL, "page"),
        ("https://kb.example/faq", "url"),
    ]
