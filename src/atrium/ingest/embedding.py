"""Embedding client: LiteLLM embeddings with batching.

One vector per input, order-preserving. A response whose item count differs
from the input count is treated as a provider failure rather than silently
truncated.
"""

from __future__ import annotations

import asyncio
import logging
import os

import litellm

from atrium.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 32

# Provider → env var mapping; providers not listed need no key (e.g. ollama).
_PROVIDER_ENV: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "cohere": "COHERE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}


class EmbeddingClient:
    """Turn texts into vectors via ``litellm.aembedding()``.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        api_key: Explicit key; when None the provider's env var is used.
        api_base: Base URL for self-hosted embedding servers.
        batch_size: Inputs per request in ``embed_batched()``.
        max_concurrency: Batches in flight at once in ``embed_batched()``.
    """

    def __init__(
        self,
        model: str = "openai/text-embedding-3-small",
        api_key: str | None = None,
        api_base: str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_concurrency: int = 2,
        num_retries: int = 2,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.model = model
        self._api_key = api_key
        self._api_base = api_base
        self.batch_size = batch_size
        self._max_concurrency = max(1, max_concurrency)
        self._num_retries = num_retries

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in a single request.

        Raises:
            ProviderError: Missing API key, provider failure, or a response
                whose length does not match ``len(texts)``.
        """
        if not texts:
            return []
        self._check_api_key()
        kwargs: dict = {"model": self.model, "input": texts, "num_retries": self._num_retries}
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        try:
            response = await litellm.aembedding(**kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise ProviderError(
                f"Embedding request to '{self.model}' failed: {exc}",
                status_code=getattr(exc, "status_code", None),
            ) from exc

        data = list(response.data or [])
        if len(data) != len(texts):
            raise ProviderError(
                f"Embedding provider returned {len(data)} vectors for {len(texts)} inputs"
            )
        return [_vector(item) for item in data]

    async def embed_batched(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in batches of ``batch_size``; batches are pipelined.

        The result order matches *texts*. Any failing batch fails the call.
        """
        batches = [
            texts[i : i + self.batch_size] for i in range(0, len(texts), self.batch_size)
        ]
        if not batches:
            return []
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _run(batch: list[str]) -> list[list[float]]:
            async with semaphore:
                return await self.embed(batch)

        results = await asyncio.gather(*(_run(b) for b in batches))
        vectors = [v for batch in results for v in batch]
        logger.debug("Embedded %d texts in %d batches", len(vectors), len(batches))
        return vectors

    def _check_api_key(self) -> None:
        """Raise ProviderError if no key is available, before any network call."""
        if self._api_key or self._api_base:
            return
        provider = self.model.split("/")[0].lower() if "/" in self.model else "openai"
        env_var = _PROVIDER_ENV.get(provider)
        if env_var and not os.environ.get(env_var):
            raise ProviderError(
                f"No API key for embedding provider '{provider}'. "
                f"Set the {env_var} environment variable."
            )


def _vector(item) -> list[float]:
    # litellm returns dicts for most providers and objects for a few.
    if isinstance(item, dict):
        return list(item["embedding"])
    return list(item.embedding)
