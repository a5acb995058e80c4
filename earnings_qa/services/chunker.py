# =============================================================================
# Token-Based Passage Chunker — tiktoken
# =============================================================================
#
# Splits a fetched report into overlapping passages bounded by a token
# budget. Passages are the unit of embedding and retrieval.
#
# ALGORITHM:
# 1. Encode the full report text into tokens (cl100k_base by default)
# 2. Take a window of up to chunk_size tokens, ending on a character boundary
# 3. Start the next window chunk_overlap tokens before the previous end,
#    moved forward to the next character boundary
# 4. Stop once a window reaches the final token
#
# CHARACTER BOUNDARIES:
# BPE tokens are byte sequences; a multi-byte character ("€", CJK, emoji) can
# be spread over several tokens. A window edge inside such a character would
# decode to U+FFFD on both sides, so edges only fall where a token starts a
# new UTF-8 character.
#
# Invariants:
# - every passage holds at most chunk_size tokens (unless a single character
#   alone needs more)
# - consecutive passages share chunk_overlap tokens, fewer only where that
#   would split a character; only the final passage may be shorter
# - passage text is always valid, lossless UTF-8 of the report
# - a report shorter than chunk_size becomes exactly one passage
# - the same text and config always produce identical passages, which is
#   what makes re-ingestion idempotent (record ids derive from chunk_index)
#
# Pure computation: no I/O, safe to call from any thread or coroutine.
# =============================================================================

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Protocol

import tiktoken

from earnings_qa.services.fetcher import RawDocument

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class Passage:
    """
    A bounded slice of a report, ready for embedding and storage.

    `metadata` carries the report provenance (source, year, quarter, label,
    retrieved_at) plus chunk_index and the token span inside the report.
    """

    content: str
    token_count: int
    chunk_index: int
    metadata: dict = field(default_factory=dict)

    @property
    def source(self) -> str:
        return self.metadata.get("source", "")


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


class Tokenizer(Protocol):
    """Turns text into token ids and gives the raw bytes behind each id."""

    def encode(self, text: str) -> list[int]:
        ...

    def token_bytes(self, token: int) -> bytes:
        ...


class TiktokenTokenizer:
    """tiktoken adapter that treats special-token text as ordinary text."""

    def __init__(self, encoding_name: str = "cl100k_base") -> None:
        self._encoding = tiktoken.get_encoding(encoding_name)

    def encode(self, text: str) -> list[int]:
        # Press releases occasionally contain strings like "<|endoftext|>";
        # tiktoken refuses them unless special handling is disabled.
        return self._encoding.encode(text, disallowed_special=())

    def token_bytes(self, token: int) -> bytes:
        return self._encoding.decode_single_token_bytes(token)


# Loading the BPE ranks reads ~1.7MB from disk (or the network on first
# use), so one instance is shared per process.
_tokenizer: TiktokenTokenizer | None = None


def get_tokenizer() -> TiktokenTokenizer:
    """Lazily initialize and cache the default tokenizer."""
    global _tokenizer
    if _tokenizer is None:
        _tokenizer = TiktokenTokenizer()
    return _tokenizer


def count_tokens(text: str, tokenizer: Tokenizer | None = None) -> int:
    """Length function used for the chunk budget."""
    return len((tokenizer or get_tokenizer()).encode(text))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def split_document(
    doc: RawDocument,
    chunk_size: int = 2000,
    chunk_overlap: int = 200,
    tokenizer: Tokenizer | None = None,
) -> list[Passage]:
    """
    Split a report into overlapping token-bounded passages.

    Args:
        doc: The fetched report.
        chunk_size: Maximum tokens per passage.
        chunk_overlap: Tokens shared by consecutive passages.
        tokenizer: Token metric; defaults to tiktoken cl100k_base.

    Returns:
        Passages in document order; empty when the report has no content.

    Raises:
        ValueError: If chunk_size < 1, chunk_overlap < 0, or
            chunk_overlap >= chunk_size.
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
    if chunk_overlap < 0 or chunk_overlap >= chunk_size:
        raise ValueError(
            f"chunk_overlap must be in [0, chunk_size), got {chunk_overlap} "
            f"with chunk_size={chunk_size}"
        )

    source = doc.metadata.get("source", "<unknown>")
    if not doc.content.strip():
        logger.warning("No content to chunk in '%s'", source)
        return []

    tok = tokenizer or get_tokenizer()
    tokens = tok.encode(doc.content)
    total_tokens = len(tokens)

    logger.debug(
        "Chunking '%s': %d tokens total, chunk_size=%d, overlap=%d",
        source, total_tokens, chunk_size, chunk_overlap,
    )

    pieces = [tok.token_bytes(t) for t in tokens]
    data = b"".join(pieces)
    offsets = list(itertools.accumulate((len(p) for p in pieces), initial=0))
    boundary = _character_boundaries(data, offsets)

    passages: list[Passage] = []
    start = 0
    while True:
        end = _window_end(boundary, start, chunk_size, total_tokens)
        text = data[offsets[start]:offsets[end]].decode("utf-8")

        if text.strip():
            passages.append(Passage(
                content=text,
                token_count=end - start,
                chunk_index=len(passages),
                metadata={
                    **doc.metadata,
                    "chunk_index": len(passages),
                    "token_start": start,
                    "token_end": end,
                },
            ))

        if end >= total_tokens:
            break
        start = max(end - chunk_overlap, start + 1)
        while not boundary[start]:
            start += 1

    logger.info(
        "Chunked '%s' into %d passages (avg %d tokens/passage)",
        source,
        len(passages),
        total_tokens // max(len(passages), 1),
    )
    return passages


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _character_boundaries(data: bytes, offsets: list[int]) -> list[bool]:
    """
    boundary[i] is True when token i begins a UTF-8 character (or i is the
    end of the text), i.e. its first byte is not a continuation byte.
    """
    end = len(data)
    return [
        offset == end or (data[offset] & 0xC0) != 0x80
        for offset in offsets
    ]


def _window_end(boundary: list[bool], start: int, chunk_size: int, total: int) -> int:
    end = min(start + chunk_size, total)
    while end > start and not boundary[end]:
        end -= 1
    if end > start:
        return end

    # One character needs more than chunk_size tokens; keep it whole.
    end = min(start + chunk_size, total)
    while not boundary[end]:
        end += 1
    logger.warning(
        "Passage at token %d exceeds chunk_size=%d to avoid splitting a character",
        start, chunk_size,
    )
    return end
