# =============================================================================
# Embedding Service — Batch Vector Generation (Provider-Agnostic)
# =============================================================================
#
# Two implementations behind one Embedder protocol:
#   - OpenAIEmbedder: any OpenAI-compatible embeddings endpoint (OpenAI,
#     DashScope, ...) selected via embedding_base_url
#   - HashingEmbedder: deterministic feature-hashing vectors, no network;
#     used for local development and tests
#
# Both are synchronous. Async callers (the Indexer) wrap calls in
# asyncio.to_thread() so the event loop is never blocked.
#
# No retry logic here. Failures surface to the Indexer, which converts them
# into EmbeddingServiceFailure for the whole batch.
#
# TOKEN LIMITS (OpenAI):
# - Each text: max 8,191 tokens (passages are capped at chunk_size)
# - embedding_batch_size texts per API call
# =============================================================================

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from hashlib import blake2b
from math import sqrt
from typing import Protocol

from openai import OpenAI

from earnings_qa.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class Embedder(Protocol):
    """Converts text into fixed-dimension vectors."""

    def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed many texts; output order matches input order."""
        ...

    def embed_query(self, text: str) -> list[float]:
        """Embed a single search query."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: OpenAI-compatible API
# ---------------------------------------------------------------------------


class OpenAIEmbedder:
    """
    Embeddings through the OpenAI SDK.

    API key resolution order:
      1. OPENAI_API_KEY (explicit embedding key)
      2. LLM_API_KEY (shared key, e.g. one DashScope key for LLM + embeddings)
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        batch_size: int | None = None,
    ) -> None:
        resolved_key = api_key or settings.openai_api_key or settings.llm_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for embeddings. "
                "Set OPENAI_API_KEY or LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.embedding_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = OpenAI(**client_kwargs)
        self._model = model or settings.embedding_model
        self._batch_size = batch_size or settings.embedding_batch_size

        logger.info(
            "Initialized embedding client (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []

        all_embeddings: list[list[float]] = [[] for _ in texts]

        for i in range(0, len(texts), self._batch_size):
            batch = list(texts[i : i + self._batch_size])
            logger.debug(
                "Embedding texts %d–%d of %d (model=%s)",
                i + 1,
                min(i + self._batch_size, len(texts)),
                len(texts),
                self._model,
            )

            create_kwargs: dict = {"model": self._model, "input": batch}
            if settings.embedding_dimensions:
                create_kwargs["dimensions"] = settings.embedding_dimensions

            response = self._client.embeddings.create(**create_kwargs)

            # Items carry their input index; order by it so vectors can
            # never be attached to the wrong passage.
            for item in sorted(response.data, key=lambda x: x.index):
                all_embeddings[i + item.index] = item.embedding

        return all_embeddings

    def embed_query(self, text: str) -> list[float]:
        return self.embed_documents([text])[0]


# ---------------------------------------------------------------------------
# Implementation 2: Deterministic hashing embedder
# ---------------------------------------------------------------------------

_TOKEN = re.compile(r"[a-z0-9$%.]+")


class HashingEmbedder:
    """
    Bag-of-words feature hashing into a fixed number of buckets.

    Identical text always yields the identical vector, so it satisfies the
    stability requirement of the index without any external service.
    """

    def __init__(self, dimensions: int = 256) -> None:
        self.dimensions = dimensions

    def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        for token in _TOKEN.findall(text.lower()):
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        norm = sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_embedder: OpenAIEmbedder | HashingEmbedder | None = None


def get_embedder() -> OpenAIEmbedder | HashingEmbedder:
    """
    Lazy singleton returning the configured embedder.

    Reads `embedding_provider` from settings:
    - "openai" → OpenAIEmbedder (default)
    - "hashing" → HashingEmbedder
    """
    global _embedder
    if _embedder is None:
        if settings.embedding_provider == "hashing":
            _embedder = HashingEmbedder()
        else:
            _embedder = OpenAIEmbedder()
    return _embedder
