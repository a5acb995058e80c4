# =============================================================================
# Vector Store Abstraction — Pluggable Backend Protocol
# =============================================================================
#
# Common interface for storing passage embeddings and ranking them by cosine
# similarity, with two implementations:
#
#   VectorStore (Protocol)
#   ├── ChromaVectorStore   — ChromaDB (in-process, persistent, or HTTP)
#   └── InMemoryVectorStore — process-local dict, for tests and dev
#
# Both are synchronous; the Indexer wraps calls in asyncio.to_thread().
#
# IDEMPOTENCY:
# Record ids are derived from (source locator, chunk_index) with UUIDv5, so
# re-ingesting a report overwrites its passages instead of duplicating them.
# When the new split is shorter, delete_stale() drops the leftover tail.
#
# RANKING:
# Results are ordered by descending similarity; equal similarities keep the
# order in which the records were first inserted.
# =============================================================================

from __future__ import annotations

import itertools
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from math import sqrt
from typing import Protocol

import chromadb

from earnings_qa.config import settings
from earnings_qa.services.chunker import Passage

logger = logging.getLogger(__name__)

_RECORD_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "earnings-qa/passages")

# Metadata keys the store manages itself; stripped before a Passage is rebuilt.
_INTERNAL_KEYS = ("token_count", "indexed_seq")


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


def record_id(source_locator: str, chunk_index: int) -> str:
    """Stable record id for a passage; same inputs, same id, every run."""
    return str(uuid.uuid5(_RECORD_NAMESPACE, f"{source_locator}#{chunk_index}"))


@dataclass
class VectorRecord:
    """A passage with its embedding, keyed by a deterministic id."""

    id: str
    embedding: list[float]
    passage: Passage

    @classmethod
    def from_passage(cls, passage: Passage, embedding: list[float]) -> VectorRecord:
        return cls(
            id=record_id(passage.source, passage.chunk_index),
            embedding=embedding,
            passage=passage,
        )


@dataclass
class SearchHit:
    """A retrieved passage and its cosine similarity to the query."""

    passage: Passage
    similarity: float


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class VectorStore(Protocol):
    """Storage contract needed by the Indexer."""

    def upsert(self, records: list[VectorRecord]) -> None:
        """Insert records, overwriting any existing record with the same id."""
        ...

    def search(self, query_embedding: list[float], k: int) -> list[SearchHit]:
        """Return at most k hits by non-increasing similarity."""
        ...

    def delete_stale(self, source: str, keep_below: int) -> int:
        """Drop records of `source` with chunk_index >= keep_below; return how many."""
        ...

    def count(self) -> int:
        """Number of stored records."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: In-memory
# ---------------------------------------------------------------------------


@dataclass
class _StoredRecord:
    seq: int
    record: VectorRecord


class InMemoryVectorStore:
    """
    Deterministic dict-backed store.

    Writers replace the whole mapping (copy-on-write) under a lock; readers
    take the current mapping without locking, so searches never wait on each
    other or on a writer.
    """

    def __init__(self) -> None:
        self._records: dict[str, _StoredRecord] = {}
        self._write_lock = threading.Lock()
        self._seq = itertools.count()

    def upsert(self, records: list[VectorRecord]) -> None:
        with self._write_lock:
            updated = dict(self._records)
            for record in records:
                existing = updated.get(record.id)
                seq = existing.seq if existing else next(self._seq)
                updated[record.id] = _StoredRecord(seq=seq, record=record)
            self._records = updated

    def delete_stale(self, source: str, keep_below: int) -> int:
        with self._write_lock:
            kept = {
                rid: stored for rid, stored in self._records.items()
                if stored.record.passage.source != source
                or stored.record.passage.chunk_index < keep_below
            }
            removed = len(self._records) - len(kept)
            self._records = kept
        return removed

    def search(self, query_embedding: list[float], k: int) -> list[SearchHit]:
        snapshot = self._records
        scored = [
            (_cosine_similarity(query_embedding, stored.record.embedding), stored)
            for stored in snapshot.values()
        ]
        scored.sort(key=lambda item: (-item[0], item[1].seq))
        return [
            SearchHit(passage=stored.record.passage, similarity=round(score, 6))
            for score, stored in scored[:k]
        ]

    def count(self) -> int:
        return len(self._records)


# ---------------------------------------------------------------------------
# Implementation 2: ChromaDB
# ---------------------------------------------------------------------------


class ChromaVectorStore:
    """
    ChromaDB-backed store, one collection per corpus.

    Client selection:
    - CHROMA_URL set → HttpClient (Docker / remote deployment)
    - CHROMA_PERSIST_DIR set → PersistentClient (local, survives restarts)
    - otherwise → in-process ephemeral client
    """

    def __init__(
        self,
        collection_name: str | None = None,
        url: str | None = None,
        persist_dir: str | None = None,
    ) -> None:
        if url:
            self._client = chromadb.HttpClient(host=url)
        elif persist_dir:
            self._client = chromadb.PersistentClient(path=persist_dir)
        else:
            self._client = chromadb.Client()

        self.collection_name = collection_name or settings.collection_name
        # Cosine space so 1 - distance is the cosine similarity.
        self._collection = self._client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def upsert(self, records: list[VectorRecord]) -> None:
        if not records:
            return

        base_seq = time.time_ns()
        metadatas = [
            _sanitise_chroma_metadata({
                **record.passage.metadata,
                "chunk_index": record.passage.chunk_index,
                "token_count": record.passage.token_count,
                "indexed_seq": base_seq + offset,
            })
            for offset, record in enumerate(records)
        ]

        self._collection.upsert(
            ids=[r.id for r in records],
            documents=[r.passage.content for r in records],
            embeddings=[r.embedding for r in records],
            metadatas=metadatas,
        )
        logger.debug(
            "Upserted %d records into Chroma collection '%s'",
            len(records), self.collection_name,
        )

    def search(self, query_embedding: list[float], k: int) -> list[SearchHit]:
        n_results = min(k, self._collection.count())
        if n_results == 0:
            return []

        results = self._collection.query(
            query_embeddings=[query_embedding],
            n_results=n_results,
            include=["documents", "metadatas", "distances"],
        )

        hits: list[tuple[float, int, SearchHit]] = []
        if results and results["ids"] and results["ids"][0]:
            for i in range(len(results["ids"][0])):
                distance = results["distances"][0][i] if results["distances"] else 0.0
                metadata = dict(results["metadatas"][0][i] or {}) if results["metadatas"] else {}
                content = results["documents"][0][i] if results["documents"] else ""
                similarity = round(1.0 - distance, 6)
                seq = int(metadata.get("indexed_seq", 0))

                passage = Passage(
                    content=content,
                    token_count=int(metadata.get("token_count", 0)),
                    chunk_index=int(metadata.get("chunk_index", 0)),
                    metadata={
                        k_: v for k_, v in metadata.items()
                        if k_ not in _INTERNAL_KEYS
                    },
                )
                hits.append((similarity, seq, SearchHit(passage, similarity)))

        hits.sort(key=lambda item: (-item[0], item[1]))
        return [hit for _, _, hit in hits]

    def delete_stale(self, source: str, keep_below: int) -> int:
        stale = self._collection.get(
            where={"$and": [
                {"source": source},
                {"chunk_index": {"$gte": keep_below}},
            ]},
            include=[],
        )
        if stale["ids"]:
            self._collection.delete(ids=stale["ids"])
        return len(stale["ids"])

    def count(self) -> int:
        return self._collection.count()


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def initialize_or_attach(
    collection_name: str | None = None,
    connection: str | None = None,
    store_type: str | None = None,
) -> ChromaVectorStore | InMemoryVectorStore:
    """
    Create or attach to the configured vector store.

    Args:
        collection_name: Chroma collection; defaults to settings.collection_name.
        connection: Chroma server URL; defaults to settings.chroma_url.
        store_type: "chroma" or "memory"; defaults to settings.vectorstore_type.
    """
    resolved_type = store_type or settings.vectorstore_type

    if resolved_type == "memory":
        logger.info("Using in-memory vector store")
        return InMemoryVectorStore()

    name = collection_name or settings.collection_name
    url = connection or settings.chroma_url
    logger.info(
        "Attaching to Chroma collection '%s' (%s)",
        name, url or settings.chroma_persist_dir or "in-process",
    )
    return ChromaVectorStore(
        collection_name=name,
        url=url,
        persist_dir=settings.chroma_persist_dir,
    )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _sanitise_chroma_metadata(metadata: dict) -> dict:
    """
    Chroma metadata values must be str, int, float, or bool.

    - None → ""
    - list → comma-separated string
    - anything else → str()
    """
    sanitised = {}
    for key, value in metadata.items():
        if value is None:
            sanitised[key] = ""
        elif isinstance(value, list):
            sanitised[key] = ",".join(str(v) for v in value)
        elif isinstance(value, (str, int, float, bool)):
            sanitised[key] = value
        else:
            sanitised[key] = str(value)
    return sanitised


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)
