# =============================================================================
# Ingestion Pipeline — Fetch → Chunk → Embed → Store
# =============================================================================
#
#   descriptors ──▶ Fetcher.fetch_all ──▶ split_document (per report)
#               ──▶ concatenate passages ──▶ Indexer.upsert_batched
#               ──▶ Indexer.delete_stale (per report)
#
# REPORTING:
# The result always carries requested vs. processed report counts so a caller
# can spot silently missing quarters. Zero fetched reports (including the
# all-sources-failed case) is an empty success, not an error.
#
# Whole-batch indexing failures (EmbeddingServiceFailure, StorageFailure)
# propagate; the Celery task decides whether to retry.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field

from earnings_qa.config import settings
from earnings_qa.errors import AllFetchesFailed, FetchFailure
from earnings_qa.services.chunker import Passage, split_document
from earnings_qa.services.fetcher import Fetcher, FetchResult, SourceDescriptor
from earnings_qa.services.indexer import Indexer, get_indexer

logger = logging.getLogger(__name__)


@dataclass
class FailedSource:
    """A report that could not be fetched, for the ingestion summary."""

    locator: str
    reason: str
    status_code: int | None = None

    @classmethod
    def from_failure(cls, failure: FetchFailure) -> FailedSource:
        return cls(
            locator=failure.locator,
            reason=failure.reason,
            status_code=failure.status_code,
        )


@dataclass
class IngestReport:
    """Outcome of one ingestion run."""

    reports_requested: int
    reports_processed: int
    chunks_processed: int
    failed_sources: list[FailedSource] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


async def ingest_reports(
    descriptors: Sequence[SourceDescriptor],
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
    fetcher: Fetcher | None = None,
    indexer: Indexer | None = None,
    batch_size: int | None = None,
    inter_batch_delay: float | None = None,
) -> IngestReport:
    """
    Fetch, chunk, and index the given reports.

    Args:
        descriptors: Periods to ingest. Duplicates are fetched once.
        chunk_size / chunk_overlap: Token budget overrides.
        fetcher / indexer: Injected collaborators (defaults: HTTP fetcher,
            process-wide indexer).
        batch_size / inter_batch_delay: Indexer batching overrides.

    Returns:
        IngestReport with requested/processed counts and failed sources.

    Raises:
        ValueError: Invalid chunking parameters.
        EmbeddingServiceFailure / StorageFailure: A batch could not be written.
    """
    _chunk_size = settings.chunk_size if chunk_size is None else chunk_size
    _chunk_overlap = settings.chunk_overlap if chunk_overlap is None else chunk_overlap
    unique = list(dict.fromkeys(descriptors))
    _fetcher = fetcher or Fetcher()
    _indexer = indexer or get_indexer()

    logger.info(
        "Starting ingestion: %d reports requested, chunk_size=%d, overlap=%d",
        len(unique), _chunk_size, _chunk_overlap,
    )

    try:
        fetched = await _fetcher.fetch_all(unique)
    except AllFetchesFailed as e:
        logger.warning("No reports fetched: %s", e)
        fetched = FetchResult(failures=e.failures)
    finally:
        if fetcher is None:
            await _fetcher.aclose()

    failed = [FailedSource.from_failure(f) for f in fetched.failures]

    if not fetched.documents:
        return IngestReport(
            reports_requested=len(unique),
            reports_processed=0,
            chunks_processed=0,
            failed_sources=failed,
        )

    passages: list[Passage] = []
    passage_counts: dict[str, int] = {}
    for document in fetched.documents:
        split = split_document(
            document,
            chunk_size=_chunk_size,
            chunk_overlap=_chunk_overlap,
        )
        passage_counts[document.metadata["source"]] = len(split)
        passages.extend(split)

    written = 0
    if passages:
        written = await _indexer.upsert_batched(
            passages,
            batch_size=batch_size,
            inter_batch_delay=inter_batch_delay,
        )

    # A shorter split than last time leaves old tail passages behind.
    for source, count in passage_counts.items():
        await _indexer.delete_stale(source, keep_below=count)

    report = IngestReport(
        reports_requested=len(unique),
        reports_processed=len(fetched.documents),
        chunks_processed=written,
        failed_sources=failed,
    )
    logger.info(
        "Ingestion complete: %d/%d reports, %d passages",
        report.reports_processed, report.reports_requested, report.chunks_processed,
    )
    return report
