# =============================================================================
# Unit Tests — Indexer
# =============================================================================
#
# Uses the in-memory store and the hashing embedder: no API keys or
# services needed.
# =============================================================================

import asyncio
import threading
from unittest.mock import AsyncMock, patch

import pytest

from earnings_qa.errors import EmbeddingServiceFailure, StorageFailure
from earnings_qa.services.chunker import Passage
from earnings_qa.services.embedder import HashingEmbedder
from earnings_qa.services.indexer import Indexer
from earnings_qa.services.vectorstore import InMemoryVectorStore


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class RecordingEmbedder(HashingEmbedder):
    """Hashing embedder that records batch sizes and can fail on demand."""

    def __init__(self, fail_on_call: int | None = None) -> None:
        super().__init__(dimensions=64)
        self.batch_sizes: list[int] = []
        self.fail_on_call = fail_on_call

    def embed_documents(self, texts):
        self.batch_sizes.append(len(texts))
        if self.fail_on_call is not None and len(self.batch_sizes) == self.fail_on_call:
            raise RuntimeError("rate limited")
        return super().embed_documents(texts)


class FailingStore(InMemoryVectorStore):
    def upsert(self, records):
        raise RuntimeError("disk full")

    def delete_stale(self, source, keep_below):
        raise RuntimeError("disk full")


def _passages(n: int, source: str = "https://ir.example.com/2023/First") -> list[Passage]:
    return [
        Passage(
            content=f"Passage {i} about net sales and operating income",
            token_count=8,
            chunk_index=i,
            metadata={"source": source, "chunk_index": i},
        )
        for i in range(n)
    ]


class TestUpsertBatched:

    def test_passages_are_written_in_batches(self):
        embedder = RecordingEmbedder()
        indexer = Indexer(embedder=embedder, store_factory=InMemoryVectorStore)

        written = _run(indexer.upsert_batched(_passages(5), batch_size=2, inter_batch_delay=0))

        assert written == 5
        assert embedder.batch_sizes == [2, 2, 1]
        assert indexer._store.count() == 5

    def test_delay_only_between_batches(self):
        indexer = Indexer(embedder=RecordingEmbedder(), store_factory=InMemoryVectorStore)

        with patch("earnings_qa.services.indexer.asyncio.sleep", new=AsyncMock()) as sleep:
            _run(indexer.upsert_batched(_passages(5), batch_size=2, inter_batch_delay=0.5))

        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.5)

    def test_reindexing_overwrites(self):
        indexer = Indexer(embedder=RecordingEmbedder(), store_factory=InMemoryVectorStore)

        _run(indexer.upsert_batched(_passages(4), batch_size=10, inter_batch_delay=0))
        _run(indexer.upsert_batched(_passages(4), batch_size=10, inter_batch_delay=0))

        assert indexer._store.count() == 4

    def test_invalid_batch_size(self):
        indexer = Indexer(embedder=RecordingEmbedder(), store_factory=InMemoryVectorStore)
        with pytest.raises(ValueError):
            _run(indexer.upsert_batched(_passages(2), batch_size=0))

    def test_embedding_failure_reports_batch_start(self):
        indexer = Indexer(
            embedder=RecordingEmbedder(fail_on_call=2),
            store_factory=InMemoryVectorStore,
        )

        with pytest.raises(EmbeddingServiceFailure) as excinfo:
            _run(indexer.upsert_batched(_passages(5), batch_size=2, inter_batch_delay=0))

        assert excinfo.value.batch_start == 2
        # The first batch stays written.
        assert indexer._store.count() == 2

    def test_storage_failure(self):
        indexer = Indexer(embedder=RecordingEmbedder(), store_factory=FailingStore)

        with pytest.raises(StorageFailure, match="disk full"):
            _run(indexer.upsert_batched(_passages(3), batch_size=2, inter_batch_delay=0))

    def test_empty_input_writes_nothing(self):
        embedder = RecordingEmbedder()
        indexer = Indexer(embedder=embedder, store_factory=InMemoryVectorStore)

        assert _run(indexer.upsert_batched([], batch_size=2)) == 0
        assert embedder.batch_sizes == []


    def test_delete_stale_after_shorter_split(self):
        indexer = Indexer(embedder=RecordingEmbedder(), store_factory=InMemoryVectorStore)
        _run(indexer.upsert_batched(_passages(5), batch_size=10, inter_batch_delay=0))

        removed = _run(indexer.delete_stale("https://ir.example.com/2023/First", keep_below=2))

        assert removed == 3
        assert indexer._store.count() == 2

    def test_delete_stale_failure_is_a_storage_failure(self):
        indexer = Indexer(embedder=RecordingEmbedder(), store_factory=FailingStore)

        with pytest.raises(StorageFailure, match="stale passages"):
            _run(indexer.delete_stale("https://ir.example.com/2023/First", keep_below=0))


class TestInitialize:

    def test_concurrent_first_calls_create_one_store(self):
        calls = 0
        lock = threading.Lock()

        def factory():
            nonlocal calls
            with lock:
                calls += 1
            return InMemoryVectorStore()

        indexer = Indexer(embedder=RecordingEmbedder(), store_factory=factory)

        async def main():
            return await asyncio.gather(*(indexer.initialize() for _ in range(5)))

        stores = _run(main())

        assert calls == 1
        assert all(s is stores[0] for s in stores)
        assert indexer.initialized


class TestSearch:

    def test_most_similar_passage_first(self):
        indexer = Indexer(embedder=HashingEmbedder(), store_factory=InMemoryVectorStore)
        passages = [
            Passage("Net sales increased 9% to $127.4 billion", 8, 0, {"source": "a"}),
            Passage("Headcount and fulfillment network expansion", 6, 1, {"source": "a"}),
        ]
        _run(indexer.upsert_batched(passages, inter_batch_delay=0))

        hits = _run(indexer.search("net sales increased", k=2))

        assert hits[0].passage.chunk_index == 0
        assert hits[0].similarity >= hits[1].similarity

    def test_empty_index_returns_no_hits(self):
        indexer = Indexer(embedder=HashingEmbedder(), store_factory=InMemoryVectorStore)
        assert _run(indexer.search("anything", k=3)) == []

    def test_invalid_k(self):
        indexer = Indexer(embedder=HashingEmbedder(), store_factory=InMemoryVectorStore)
        with pytest.raises(ValueError):
            _run(indexer.search("revenue", k=0))

    def test_query_embedding_failure(self):
        class BrokenEmbedder(HashingEmbedder):
            def embed_query(self, text):
                raise RuntimeError("timeout")

        indexer = Indexer(embedder=BrokenEmbedder(), store_factory=InMemoryVectorStore)
        with pytest.raises(EmbeddingServiceFailure):
            _run(indexer.search("revenue", k=2))
