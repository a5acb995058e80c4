# =============================================================================
# Celery Task Definitions — Report Ingestion Job
# =============================================================================
#
#   1. Expand (start_year, end_year, quarters) into source descriptors
#   2. Run the async ingestion pipeline to completion (asyncio.run)
#   3. Return the IngestReport as a JSON-serialisable dict
#
# Celery workers are synchronous, so the coroutine is driven by asyncio.run()
# inside the task.
#
# RETRY STRATEGY:
# Only whole-batch indexing failures (EmbeddingServiceFailure, StorageFailure)
# are retried: up to 3 times, 60s apart. Passages already written are simply
# overwritten on the next attempt. Fetch failures are never retried here;
# they are reported in `failed_sources`.
# =============================================================================

import asyncio
import logging

from earnings_qa.errors import IndexingFailure
from earnings_qa.services.fetcher import descriptors_for_range
from earnings_qa.services.ingestion import ingest_reports
from earnings_qa.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="ingest_reports",
    max_retries=3,
    default_retry_delay=60,
)
def ingest_reports_task(
    self,
    start_year: int,
    end_year: int,
    quarters: list[str] | None = None,
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> dict:
    """
    Ingest every quarterly report in an inclusive year range.

    Returns:
        dict with reports_requested, reports_processed, chunks_processed
        and failed_sources.
    """
    task_id = self.request.id
    descriptors = descriptors_for_range(start_year, end_year, quarters)

    logger.info(
        "[%s] Starting ingestion: %d-%d, %d reports, chunk_size=%s, overlap=%s",
        task_id, start_year, end_year, len(descriptors), chunk_size, chunk_overlap,
    )

    try:
        report = asyncio.run(ingest_reports(
            descriptors,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
        ))
    except IndexingFailure as exc:
        logger.warning(
            "[%s] Indexing failed at passage %d: %s (attempt %d)",
            task_id, exc.batch_start, exc, self.request.retries + 1,
        )
        raise self.retry(exc=exc)
    except Exception:
        logger.exception("[%s] Ingestion failed", task_id)
        raise

    summary = report.to_dict()
    logger.info("[%s] Ingestion complete: %s", task_id, summary)
    return summary
