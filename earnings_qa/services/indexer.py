# =============================================================================
# Indexer — Batched Embed + Upsert, Similarity Search
# =============================================================================
#
# Owns the long-lived vector store handle for the process.
#
# INITIALIZATION:
# `initialize()` is idempotent and safe under concurrent first calls: the
# first caller builds the store behind an asyncio.Lock, everyone else gets
# the cached handle. `get_indexer()` exposes one Indexer per process.
#
# WRITES:
# Passages are embedded and upserted in fixed-size batches with a pause
# between batches. A failing batch aborts the whole call with
# EmbeddingServiceFailure or StorageFailure; earlier batches stay written
# (ids are deterministic, so a retry simply overwrites them).
#
# Re-ingesting a report with a shorter split leaves higher chunk indexes
# behind; `delete_stale()` removes them once the new passages are written.
#
# READS:
# `search()` takes no lock; concurrent searches run side by side.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from earnings_qa.config import settings
from earnings_qa.errors import EmbeddingServiceFailure, StorageFailure
from earnings_qa.services.chunker import Passage
from earnings_qa.services.embedder import Embedder, get_embedder
from earnings_qa.services.vectorstore import (
    SearchHit,
    VectorRecord,
    VectorStore,
    initialize_or_attach,
)

logger = logging.getLogger(__name__)


class Indexer:
    """Embeds passages into, and searches, a single vector store."""

    def __init__(
        self,
        embedder: Embedder | None = None,
        store_factory: Callable[[], VectorStore] | None = None,
    ) -> None:
        self._embedder = embedder
        self._store_factory = store_factory or initialize_or_attach
        self._store: VectorStore | None = None
        self._init_lock = asyncio.Lock()

    @property
    def embedder(self) -> Embedder:
        if self._embedder is None:
            self._embedder = get_embedder()
        return self._embedder

    @property
    def initialized(self) -> bool:
        return self._store is not None

    async def initialize(self) -> VectorStore:
        """Create or attach to the vector store once; return the handle."""
        if self._store is not None:
            return self._store

        async with self._init_lock:
            if self._store is None:
                self._store = await asyncio.to_thread(self._store_factory)
                logger.info("Vector store initialized")
        return self._store

    async def upsert_batched(
        self,
        passages: Sequence[Passage],
        batch_size: int | None = None,
        inter_batch_delay: float | None = None,
    ) -> int:
        """
        Embed and store passages in fixed-size batches.

        Args:
            passages: Passages to write.
            batch_size: Passages per batch (default settings.index_batch_size).
            inter_batch_delay: Seconds to pause between batches
                (default settings.index_batch_delay_seconds).

        Returns:
            Number of passages written.

        Raises:
            ValueError: If batch_size < 1.
            EmbeddingServiceFailure: The embedder failed for a batch.
            StorageFailure: The store rejected a batch.
        """
        size = batch_size if batch_size is not None else settings.index_batch_size
        delay = (
            inter_batch_delay
            if inter_batch_delay is not None
            else settings.index_batch_delay_seconds
        )
        if size < 1:
            raise ValueError(f"batch_size must be >= 1, got {size}")

        store = await self.initialize()
        written = 0

        for start in range(0, len(passages), size):
            if start > 0 and delay > 0:
                await asyncio.sleep(delay)

            batch = list(passages[start : start + size])
            logger.info(
                "Adding batch of %d passages (%d–%d of %d)",
                len(batch), start + 1, start + len(batch), len(passages),
            )

            try:
                embeddings = await asyncio.to_thread(
                    self.embedder.embed_documents, [p.content for p in batch]
                )
            except Exception as e:
                logger.error("Embedding failed for batch starting at %d: %s", start, e)
                raise EmbeddingServiceFailure(
                    f"embedding failed for batch starting at {start}: {e}",
                    batch_start=start,
                ) from e

            if len(embeddings) != len(batch):
                raise EmbeddingServiceFailure(
                    f"expected {len(batch)} embeddings, got {len(embeddings)}",
                    batch_start=start,
                )

            records = [
                VectorRecord.from_passage(passage, embedding)
                for passage, embedding in zip(batch, embeddings, strict=True)
            ]

            try:
                await asyncio.to_thread(store.upsert, records)
            except Exception as e:
                logger.error("Upsert failed for batch starting at %d: %s", start, e)
                raise StorageFailure(
                    f"upsert failed for batch starting at {start}: {e}",
                    batch_start=start,
                ) from e

            written += len(batch)

        return written

    async def delete_stale(self, source: str, keep_below: int) -> int:
        """
        Remove passages of `source` left over from an earlier, longer split.

        Raises:
            StorageFailure: The store rejected the delete.
        """
        store = await self.initialize()
        try:
            removed = await asyncio.to_thread(store.delete_stale, source, keep_below)
        except Exception as e:
            logger.error("Stale-passage cleanup failed for '%s': %s", source, e)
            raise StorageFailure(f"delete of stale passages failed for {source}: {e}") from e

        if removed:
            logger.info(
                "Removed %d stale passages of '%s' (chunk_index >= %d)",
                removed, source, keep_below,
            )
        return removed

    async def search(self, query: str, k: int | None = None) -> list[SearchHit]:
        """
        Rank stored passages by similarity to `query`.

        Raises:
            ValueError: If k < 1.
            EmbeddingServiceFailure: The query could not be embedded.
            StorageFailure: The store could not be queried.
        """
        top_k = k if k is not None else settings.retrieval_top_k
        if top_k < 1:
            raise ValueError(f"k must be >= 1, got {top_k}")

        store = await self.initialize()

        try:
            embedding = await asyncio.to_thread(self.embedder.embed_query, query)
        except Exception as e:
            raise EmbeddingServiceFailure(f"query embedding failed: {e}") from e

        try:
            hits = await asyncio.to_thread(store.search, embedding, top_k)
        except Exception as e:
            raise StorageFailure(f"vector search failed: {e}") from e

        logger.info(
            "Search returned %d passages (k=%d) for query '%s'",
            len(hits), top_k, query[:80],
        )
        return hits


# ---------------------------------------------------------------------------
# Process Singleton
# ---------------------------------------------------------------------------

_indexer: Indexer | None = None


def get_indexer() -> Indexer:
    """Return the process-wide Indexer, creating it on first use."""
    global _indexer
    if _indexer is None:
        _indexer = Indexer()
    return _indexer


def reset_indexer(indexer: Indexer | None = None) -> None:
    """Replace (or clear) the process-wide Indexer. Used by tests."""
    global _indexer
    _indexer = indexer
