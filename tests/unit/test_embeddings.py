"""Tests for the LiteLLM embedding generator. litellm.embedding is always mocked."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from kbindex.config import EmbeddingCfg
from kbindex.embeddings import EmbeddingGenerator, validate_api_key
from kbindex.errors import EmbeddingError


def _response(vector):
    response = MagicMock()
    response.data = [{"embedding": vector}]
    return response


# ------------------------------------------------------------------
# validate_api_key
# ------------------------------------------------------------------


def test_missing_key_raises(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EmbeddingError, match="OPENAI_API_KEY"):
        validate_api_key("openai/text-embedding-3-small")


def test_bare_model_name_means_openai(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EmbeddingError, match="OPENAI_API_KEY"):
        validate_api_key("text-embedding-3-small")


def test_present_key_passes(monkeypatch):
    monkeypatch.setenv("COHERE_API_KEY", "co-test")
    validate_api_key("cohere/embed-english-v3.0")


@pytest.mark.parametrize("model", ["ollama/nomic-embed-text", "local/all-minilm-l6-v2"])
def test_keyless_providers_pass(monkeypatch, model):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    validate_api_key(model)


# ------------------------------------------------------------------
# EmbeddingGenerator
# ------------------------------------------------------------------


def test_generate_calls_litellm():
    generator = EmbeddingGenerator(EmbeddingCfg(model="openai/text-embedding-3-small", num_retries=2))
    with patch("kbindex.embeddings.litellm.embedding", return_value=_response([0.1, 0.2])) as emb:
        vector = generator.generate("hello")

    assert vector == [0.1, 0.2]
    emb.assert_called_once_with(
        model="openai/text-embedding-3-small", input=["hello"], num_retries=2
    )


def test_generate_model_override():
    generator = EmbeddingGenerator()
    with patch("kbindex.embeddings.litellm.embedding", return_value=_response([1.0])) as emb:
        generator.generate("hello", model="cohere/embed-english-v3.0")
    assert emb.call_args.kwargs["model"] == "cohere/embed-english-v3.0"
    assert generator.model == "openai/text-embedding-3-small"


def test_provider_error_wrapped():
    with patch("kbindex.embeddings.litellm.embedding", side_effect=RuntimeError("rate limited")):
        with pytest.raises(EmbeddingError, match="rate limited"):
            EmbeddingGenerator().generate("hello")


def test_empty_vector_rejected():
    with patch("kbindex.embeddings.litellm.embedding", return_value=_response([])):
        with pytest.raises(EmbeddingError, match="Empty embedding"):
            EmbeddingGenerator().generate("hello")


def test_empty_text_never_calls_provider():
    with patch("kbindex.embeddings.litellm.embedding") as emb:
        with pytest.raises(EmbeddingError, match="empty text"):
            EmbeddingGenerator().generate("   ")
    emb.assert_not_called()
