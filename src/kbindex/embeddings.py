"""LiteLLM embedding generator.

All embedding calls in the pipeline route through this module. LiteLLM's
built-in retry is used (``num_retries``); anything it still cannot recover
from surfaces as ``EmbeddingError`` so the indexer can record it per chunk.
"""

from __future__ import annotations

import os

import litellm

from kbindex.config import EmbeddingCfg
from kbindex.errors import EmbeddingError

litellm.suppress_debug_info = True


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "ollama": None,  # Local, no key required
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        EmbeddingError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)
    if env_var is None:
        return
    if not os.getenv(env_var):
        raise EmbeddingError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


class EmbeddingGenerator:
    """Turn text into a vector with ``litellm.embedding()``.

    Args:
        config: Embedding section of the loaded configuration.
    """

    def __init__(self, config: EmbeddingCfg | None = None) -> None:
        self._config = config or EmbeddingCfg()

    @property
    def model(self) -> str:
        return self._config.model

    def generate(self, text: str, model: str | None = None) -> list[float]:
        """Return the embedding of *text* (with *model*, default the configured one).

        Raises:
            EmbeddingError: Empty input, provider failure, or an empty vector.
        """
        if not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        model = model or self._config.model
        try:
            response = litellm.embedding(
                model=model,
                input=[text],
                num_retries=self._config.num_retries,
            )
            vector = response.data[0]["embedding"]
        except Exception as exc:  # litellm wraps provider errors in many types
            raise EmbeddingError(f"Embedding failed ({model}): {exc}") from exc
        if not vector:
            raise EmbeddingError(f"Empty embedding returned by {model}")
        return list(vector)
