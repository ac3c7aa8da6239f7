"""Fixtures for CLI tests: an initialized project directory with a mocked provider."""

from __future__ import annotations

import hashlib
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from kbindex.cli.main import app

NOTES = (
    "Widgets ship from the north warehouse every Tuesday. "
    "Orders placed after noon leave the following week. "
    "Returns are accepted for thirty days with the original receipt. "
    "Gift cards never expire and can be used online or in store."
)


def _fake_embedding(model, input, num_retries=None):
    digest = hashlib.sha256(input[0].encode("utf-8")).digest()
    response = MagicMock()
    response.data = [{"embedding": [(b + 1) / 256 for b in digest[:8]]}]
    return response


@pytest.fixture
def litellm_embedding():
    with patch("kbindex.embeddings.litellm.embedding", side_effect=_fake_embedding) as mock:
        yield mock


@pytest.fixture
def project(tmp_path, monkeypatch, litellm_embedding):
    """tmp_path as the working directory, with ``kbindex init`` already run."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    result = CliRunner().invoke(app, ["init"])
    assert result.exit_code == 0, result.output
    return tmp_path


@pytest.fixture
def notes_file(project):
    path = project / "notes.txt"
    path.write_text(NOTES, encoding="utf-8")
    return path
