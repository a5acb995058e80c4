# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# Shapes of data going OUT of the API. Embeddings and raw passages never
# leave the service; answers carry only their text and source URLs.
# =============================================================================

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class IngestResponse(BaseModel):
    """
    Response for POST /ingest — the job was queued.

    Poll GET /ingest/{task_id} until status is SUCCESS or FAILURE.
    """

    task_id: str = Field(description="Celery task ID for tracking the ingestion job")
    status: str = Field(default="processing")
    reports_requested: int = Field(description="Reports covered by the requested range")
    message: str = Field(default="Ingestion in progress.")


class FailedSourceResponse(BaseModel):
    locator: str
    reason: str
    status_code: int | None = None


class IngestSummary(BaseModel):
    """Counts reported by a finished ingestion job."""

    reports_requested: int
    reports_processed: int
    chunks_processed: int
    failed_sources: list[FailedSourceResponse] = Field(default_factory=list)


class IngestStatusResponse(BaseModel):
    """Response for GET /ingest/{task_id}."""

    task_id: str
    status: str = Field(description="PENDING, STARTED, RETRY, SUCCESS or FAILURE")
    result: IngestSummary | None = Field(
        default=None,
        description="Ingestion counts (available when status is SUCCESS)",
    )
    error: str | None = Field(
        default=None,
        description="Error message (available when status is FAILURE)",
    )


class AskResponse(BaseModel):
    """
    Response for POST /ask.

    `insufficient_evidence` is true when the reports do not contain the
    requested information; the answer text then says so explicitly.
    """

    answer: str = Field(description="Direct answer followed by supporting reasoning")
    cited_sources: list[str] = Field(
        default_factory=list,
        description="Report URLs the answer draws on, in retrieval order",
    )
    insufficient_evidence: bool = False
    question: str
    thoughts_generated: int = 0
    thoughts_evaluated: int = 0
