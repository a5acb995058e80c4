# =============================================================================
# Pipeline Error Taxonomy
# =============================================================================
#
# Per-item failures (one source, one thought) are caught at their own stage
# boundary and excluded from downstream aggregation:
#   FetchFailure, ExtractionEmpty, EvaluationFailure
#
# Whole-batch / whole-query failures propagate to the orchestrator and on to
# the API layer, which reports them as structured errors:
#   AllFetchesFailed, EmbeddingServiceFailure, StorageFailure,
#   GenerationFailure, SynthesisFailure
#
# "No evidence" is NOT an error; it is a defined Answer shape
# (see agents/reasoner.py).
# =============================================================================

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every failure raised by the ingestion/reasoning core."""


# ---------------------------------------------------------------------------
# Acquisition
# ---------------------------------------------------------------------------


class FetchFailure(PipelineError):
    """A single source could not be fetched (network error, non-2xx status)."""

    def __init__(
        self,
        locator: str,
        reason: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(f"{locator}: {reason}")
        self.locator = locator
        self.reason = reason
        self.status_code = status_code


class ExtractionEmpty(FetchFailure):
    """The source responded but no report text could be extracted."""

    def __init__(self, locator: str) -> None:
        super().__init__(locator, "no report content extracted")


class AllFetchesFailed(PipelineError):
    """Every requested source failed."""

    def __init__(self, failures: list[FetchFailure]) -> None:
        super().__init__(f"all {len(failures)} source fetches failed")
        self.failures = failures


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------


class IndexingFailure(PipelineError):
    """A batch could not be written; nothing from `batch_start` on was stored."""

    def __init__(self, message: str, batch_start: int = 0) -> None:
        super().__init__(message)
        self.batch_start = batch_start


class EmbeddingServiceFailure(IndexingFailure):
    """The embedding service rejected or failed a request."""


class StorageFailure(IndexingFailure):
    """The vector store rejected or failed a write."""


# ---------------------------------------------------------------------------
# Reasoning
# ---------------------------------------------------------------------------


class GenerationFailure(PipelineError):
    """The generate stage failed; the query cannot continue."""


class EvaluationFailure(PipelineError):
    """Evaluation of one candidate thought failed."""

    def __init__(self, label: str, reason: str) -> None:
        super().__init__(f"{label}: {reason}")
        self.label = label
        self.reason = reason


class SynthesisFailure(PipelineError):
    """The synthesize stage failed; the query cannot continue."""
