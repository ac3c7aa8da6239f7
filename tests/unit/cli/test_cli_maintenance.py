"""Tests for kbindex remove, scan-duplicates, repair and stale."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from kbindex.cli.main import app

runner = CliRunner()


@pytest.fixture
def indexed(notes_file):
    result = runner.invoke(app, ["ingest", "notes.txt"])
    assert result.exit_code == 0, result.output
    return notes_file


# ---------------------------------------------------------------------------
# remove
# ---------------------------------------------------------------------------


def test_remove_with_yes(indexed):
    result = runner.invoke(app, ["remove", "--source", "notes.txt", "--yes"])
    assert result.exit_code == 0, result.output
    assert "Removed 1 chunk(s)" in result.output

    status = runner.invoke(app, ["status"])
    assert "No sources indexed yet" in status.output


def test_remove_cancelled(indexed):
    result = runner.invoke(app, ["remove", "--source", "notes.txt"], input="n\n")
    assert result.exit_code == 0, result.output
    assert "Cancelled" in result.output
    assert "Chunks: 1" in runner.invoke(app, ["status"]).output


def test_remove_unknown_source(project):
    result = runner.invoke(app, ["remove", "--source", "ghost.txt", "--yes"])
    assert result.exit_code == 0
    assert "Source not found" in result.output


# ---------------------------------------------------------------------------
# scan-duplicates
# ---------------------------------------------------------------------------


def test_scan_duplicates_hash(indexed):
    result = runner.invoke(app, ["scan-duplicates", "--all"])
    assert result.exit_code == 0, result.output
    assert "Scanned 1 chunk(s)" in result.output
    assert "0 duplicate(s)" in result.output


def test_scan_duplicates_similarity_uses_provider(indexed, litellm_embedding):
    litellm_embedding.reset_mock()
    result = runner.invoke(app, ["scan-duplicates", "--method", "similarity"])
    assert result.exit_code == 0, result.output
    assert litellm_embedding.called


def test_scan_duplicates_bad_method(project):
    result = runner.invoke(app, ["scan-duplicates", "--method", "fuzzy"])
    assert result.exit_code == 1
    assert "--method must be one of" in result.output


# ---------------------------------------------------------------------------
# repair / stale
# ---------------------------------------------------------------------------


def test_repair_nothing_missing(indexed):
    result = runner.invoke(app, ["repair"])
    assert result.exit_code == 0, result.output
    assert "Every chunk has an embedding" in result.output


def test_repair_without_api_key(indexed, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY")
    result = runner.invoke(app, ["repair"])
    assert result.exit_code == 1
    assert "No API key" in result.output


def test_stale_fresh_content(indexed):
    result = runner.invoke(app, ["stale"])
    assert result.exit_code == 0, result.output
    assert "No stale content" in result.output


def test_stale_lists_old_content(indexed):
    result = runner.invoke(app, ["stale", "--days=-1"])
    assert result.exit_code == 0, result.output
    assert "notes.txt" in result.output
