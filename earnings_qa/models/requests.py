# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Shapes of data coming INTO the API. FastAPI uses them for body validation
# (automatic 422s) and OpenAPI docs.
# =============================================================================

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from earnings_qa.config import settings

Quarter = Literal["First", "Second", "Third", "Fourth"]


class IngestRequest(BaseModel):
    """
    Request body for POST /ingest — ingest a range of quarterly reports.

    Example:
        {"start_year": 2022, "end_year": 2023}
    """

    start_year: int = Field(..., ge=1995, le=2100, examples=[2022])
    end_year: int = Field(..., ge=1995, le=2100, examples=[2023])

    # Optional: restrict to specific quarters; all four when omitted.
    quarters: list[Quarter] | None = Field(
        default=None,
        min_length=1,
        description="Quarters to ingest for each year. Defaults to all four.",
    )

    chunk_size: int | None = Field(
        default=None,
        ge=64,
        le=8000,
        description="Override passage size in tokens (default from config).",
    )
    chunk_overlap: int | None = Field(
        default=None,
        ge=0,
        le=2000,
        description="Override passage overlap in tokens (default from config).",
    )

    @model_validator(mode="after")
    def _check_ranges(self) -> "IngestRequest":
        if self.start_year > self.end_year:
            raise ValueError("start_year must not be after end_year")
        # Omitted fields fall back to config; check the values the worker
        # will actually use.
        size = settings.chunk_size if self.chunk_size is None else self.chunk_size
        overlap = (
            settings.chunk_overlap if self.chunk_overlap is None else self.chunk_overlap
        )
        if overlap >= size:
            raise ValueError(
                f"chunk_overlap ({overlap}) must be smaller than chunk_size ({size})"
            )
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"start_year": 2022, "end_year": 2023},
                {"start_year": 2023, "end_year": 2023, "quarters": ["First"]},
            ]
        }
    )


class AskRequest(BaseModel):
    """
    Request body for POST /ask — ask a question about the ingested reports.

    `include_sources` is a presentation option: reasoning is identical
    either way, only the response's `cited_sources` is emptied when False.
    """

    question: str = Field(
        ...,
        min_length=3,
        max_length=2000,
        description="The question to answer from the quarterly reports",
        examples=["What was revenue in Q1 2023?"],
    )
    include_sources: bool = Field(
        default=True,
        description="Return the source report URLs backing the answer.",
    )
    top_k: int | None = Field(
        default=None,
        ge=1,
        le=20,
        description="Passages to retrieve (default from config).",
    )
