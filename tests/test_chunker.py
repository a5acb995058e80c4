# =============================================================================
# Unit Tests — Chunker Service
# =============================================================================
#
# Most tests use a one-token-per-character tokenizer so window boundaries
# and overlaps can be checked exactly. A few run against tiktoken itself.
# No API keys, databases, or network calls needed beyond tiktoken's ranks.
# =============================================================================

import pytest

from earnings_qa.services.chunker import count_tokens, split_document
from earnings_qa.services.fetcher import RawDocument


class _CharTokenizer:
    """Every character is one token."""

    def encode(self, text: str) -> list[int]:
        return [ord(c) for c in text]

    def token_bytes(self, token: int) -> bytes:
        return chr(token).encode("utf-8")


class _ByteTokenizer:
    """Every UTF-8 byte is one token, so multi-byte characters span tokens."""

    def encode(self, text: str) -> list[int]:
        return list(text.encode("utf-8"))

    def token_bytes(self, token: int) -> bytes:
        return bytes([token])


def _make_doc(content: str, source: str = "https://ir.example.com/q1-2023") -> RawDocument:
    return RawDocument(
        content=content,
        metadata={"source": source, "year": 2023, "quarter": "First", "label": "Q1-2023"},
    )


def _split(content: str, chunk_size: int, chunk_overlap: int):
    return split_document(
        _make_doc(content),
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        tokenizer=_CharTokenizer(),
    )


class TestSplitDocument:
    """Tests for split_document() with an exact tokenizer."""

    def test_empty_document_returns_no_passages(self):
        assert _split("", chunk_size=8, chunk_overlap=2) == []

    def test_whitespace_document_returns_no_passages(self):
        assert _split("   \n\t  ", chunk_size=8, chunk_overlap=2) == []

    def test_short_document_produces_one_passage(self):
        passages = _split("Net sales up 9%", chunk_size=64, chunk_overlap=8)
        assert len(passages) == 1
        assert passages[0].content == "Net sales up 9%"
        assert passages[0].token_count == len("Net sales up 9%")
        assert passages[0].chunk_index == 0

    def test_windows_overlap_by_exactly_chunk_overlap(self):
        passages = _split("abcdefghij", chunk_size=4, chunk_overlap=1)
        assert [p.content for p in passages] == ["abcd", "defg", "ghij"]
        for prev, nxt in zip(passages, passages[1:]):
            assert prev.content[-1:] == nxt.content[:1]

    def test_no_passage_exceeds_chunk_size(self):
        passages = _split("x" * 103, chunk_size=10, chunk_overlap=3)
        assert all(p.token_count <= 10 for p in passages)
        # Only the last passage may be short.
        assert all(p.token_count == 10 for p in passages[:-1])

    def test_exact_fit_without_overlap(self):
        passages = _split("abcdefgh", chunk_size=4, chunk_overlap=0)
        assert [p.content for p in passages] == ["abcd", "efgh"]

    def test_whitespace_windows_are_skipped_and_indices_stay_sequential(self):
        passages = _split("ab" + " " * 4 + "cd", chunk_size=2, chunk_overlap=0)
        assert [p.content for p in passages] == ["ab", "cd"]
        assert [p.chunk_index for p in passages] == [0, 1]

    def test_metadata_carries_provenance_and_token_span(self):
        passages = _split("abcdefghij", chunk_size=4, chunk_overlap=1)
        second = passages[1]
        assert second.source == "https://ir.example.com/q1-2023"
        assert second.metadata["label"] == "Q1-2023"
        assert second.metadata["chunk_index"] == 1
        assert second.metadata["token_start"] == 3
        assert second.metadata["token_end"] == 7

    def test_document_metadata_is_not_mutated(self):
        doc = _make_doc("abcdefghij")
        split_document(doc, chunk_size=4, chunk_overlap=1, tokenizer=_CharTokenizer())
        assert "chunk_index" not in doc.metadata

    def test_same_input_gives_identical_passages(self):
        first = _split("The quick brown fox " * 20, chunk_size=30, chunk_overlap=5)
        second = _split("The quick brown fox " * 20, chunk_size=30, chunk_overlap=5)
        assert first == second

    @pytest.mark.parametrize(
        ("chunk_size", "chunk_overlap"),
        [(0, 0), (10, -1), (10, 10), (10, 11)],
    )
    def test_invalid_parameters_raise(self, chunk_size, chunk_overlap):
        with pytest.raises(ValueError):
            _split("some text", chunk_size=chunk_size, chunk_overlap=chunk_overlap)


class TestMultiByteText:
    """Window edges never fall inside a multi-byte character."""

    @pytest.mark.parametrize(
        "content",
        [
            " ".join(["Sales €127 billion €3"] * 3),
            "净销售额增长9%，达到1274亿美元。" * 4,
            " ".join(["AWS 📈 up 12% 🚀 ads 💰"] * 3),
        ],
    )
    def test_passages_are_clean_slices_of_the_source(self, content):
        raw = content.encode("utf-8")
        passages = split_document(
            _make_doc(content), chunk_size=8, chunk_overlap=2, tokenizer=_ByteTokenizer(),
        )

        assert passages
        for passage in passages:
            assert "\ufffd" not in passage.content
            assert passage.token_count <= 8
            start, end = passage.metadata["token_start"], passage.metadata["token_end"]
            assert passage.content.encode("utf-8") == raw[start:end]

        # Together the windows cover the whole report without gaps.
        assert passages[0].metadata["token_start"] == 0
        assert passages[-1].metadata["token_end"] == len(raw)
        for prev, nxt in zip(passages, passages[1:]):
            assert nxt.metadata["token_start"] <= prev.metadata["token_end"]

    def test_currency_amounts_survive_intact(self):
        content = "Sales €127 billion €3 " * 3
        passages = split_document(
            _make_doc(content), chunk_size=8, chunk_overlap=2, tokenizer=_ByteTokenizer(),
        )
        assert any("€127" in p.content for p in passages)

    def test_character_wider_than_chunk_size_is_kept_whole(self):
        passages = split_document(
            _make_doc("a😀b"), chunk_size=2, chunk_overlap=0, tokenizer=_ByteTokenizer(),
        )
        assert [p.content for p in passages] == ["a", "😀", "b"]


class TestTiktokenChunking:
    """Tests against the default cl100k_base tokenizer."""

    def test_long_text_is_split_within_budget(self):
        doc = _make_doc("Operating income increased to $4.8 billion. " * 200)
        passages = split_document(doc, chunk_size=64, chunk_overlap=8)
        assert len(passages) > 1
        assert all(p.token_count <= 64 for p in passages)
        for i, passage in enumerate(passages):
            assert passage.chunk_index == i

    def test_special_token_text_is_treated_as_plain_text(self):
        doc = _make_doc("Guidance <|endoftext|> follows.")
        passages = split_document(doc, chunk_size=64, chunk_overlap=8)
        assert len(passages) == 1
        assert "<|endoftext|>" in passages[0].content

    def test_non_ascii_text_has_no_replacement_characters(self):
        content = "Umsatz stieg auf 127,4 Mrd. € 📈 净销售额 " * 40
        passages = split_document(_make_doc(content), chunk_size=16, chunk_overlap=4)
        assert len(passages) > 1
        assert all("\ufffd" not in p.content for p in passages)
        assert all(p.content in content for p in passages)

    def test_count_tokens(self):
        assert count_tokens("") == 0
        assert count_tokens("revenue") >= 1
