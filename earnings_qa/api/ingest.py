# =============================================================================
# Ingestion API — Report Range Ingestion and Status Tracking
# =============================================================================
#
# ENDPOINTS:
#   POST /ingest           — Expand a year range, dispatch Celery task
#   GET  /ingest/{task_id} — Poll ingestion status (PENDING → SUCCESS/FAILURE)
#
# Ingestion fetches every quarterly report in the range, embeds the
# passages and upserts them, which takes minutes at the configured pacing.
# The endpoint answers 202 with a task_id straight away; the job runs in
# a Celery worker and its IngestReport lands in the result backend.
# =============================================================================

import logging

from celery.result import AsyncResult
from fastapi import APIRouter, HTTPException

from earnings_qa.models.requests import IngestRequest
from earnings_qa.models.responses import (
    IngestResponse,
    IngestStatusResponse,
    IngestSummary,
)
from earnings_qa.services.fetcher import descriptors_for_range
from earnings_qa.workers.tasks import ingest_reports_task

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Ingestion"])


# ---------------------------------------------------------------------------
# POST /ingest — Ingest a range of quarterly reports
# ---------------------------------------------------------------------------


@router.post(
    "/ingest",
    response_model=IngestResponse,
    status_code=202,
    summary="Ingest quarterly reports for a range of years",
    description=(
        "Fetch, split, embed and index every quarterly report between "
        "start_year and end_year (inclusive). Returns immediately with a "
        "task_id for polling. Re-ingesting a range overwrites its passages."
    ),
)
async def ingest_reports_endpoint(request: IngestRequest) -> IngestResponse:
    try:
        descriptors = descriptors_for_range(
            request.start_year, request.end_year, request.quarters,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    task = ingest_reports_task.delay(
        start_year=request.start_year,
        end_year=request.end_year,
        quarters=request.quarters,
        chunk_size=request.chunk_size,
        chunk_overlap=request.chunk_overlap,
    )

    logger.info(
        "Dispatched ingestion task: %d-%d (%d reports), task_id=%s",
        request.start_year, request.end_year, len(descriptors), task.id,
    )

    return IngestResponse(
        task_id=task.id,
        status="processing",
        reports_requested=len(descriptors),
        message=(
            f"Ingesting {len(descriptors)} reports for "
            f"{request.start_year}-{request.end_year}."
        ),
    )


# ---------------------------------------------------------------------------
# GET /ingest/{task_id} — Poll ingestion status
# ---------------------------------------------------------------------------


@router.get(
    "/ingest/{task_id}",
    response_model=IngestStatusResponse,
    summary="Check ingestion status",
    description=(
        "Poll until status is SUCCESS or FAILURE. On success the response "
        "carries the ingestion counts and any sources that could not be fetched."
    ),
)
async def get_ingest_status(task_id: str) -> IngestStatusResponse:
    """
    Celery task states:
    - PENDING: Task not yet picked up by a worker (or unknown id)
    - STARTED: Worker has begun processing
    - RETRY: An indexing batch failed; the job will run again
    - SUCCESS: Ingestion finished (possibly with failed sources)
    - FAILURE: Ingestion aborted (check error field)
    """
    result = AsyncResult(task_id, app=ingest_reports_task.app)
    status = result.status

    summary: IngestSummary | None = None
    error: str | None = None

    if status == "SUCCESS":
        summary = IngestSummary.model_validate(result.result or {})
    elif status == "FAILURE":
        error = str(result.result) if result.result else "Unknown error"

    return IngestStatusResponse(
        task_id=task_id,
        status=status,
        result=summary,
        error=error,
    )
