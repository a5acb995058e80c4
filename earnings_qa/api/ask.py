# =============================================================================
# Ask API — Question Answering over Indexed Reports
# =============================================================================
#
# FLOW:
#   1. Receive question + optional top_k and include_sources
#   2. Invoke the query graph (retrieve → generate → evaluate → synthesize)
#   3. Return the answer, its cited sources and the evidence flag
#
# Error mapping:
#   - ValueError (missing API key, bad configuration) → 503
#   - Pipeline failures (retrieval, generation, synthesis) → 502
#   - No evidence in the reports → 200 with insufficient_evidence=true
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from earnings_qa.agents.orchestrator import ask
from earnings_qa.errors import PipelineError
from earnings_qa.models.requests import AskRequest
from earnings_qa.models.responses import AskResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Question Answering"])


@router.post(
    "/ask",
    response_model=AskResponse,
    summary="Ask a question about the quarterly reports",
    description=(
        "Retrieves the most similar report passages, proposes several lines "
        "of reasoning, scores each against the evidence and synthesizes one "
        "answer. When the reports lack the information the answer says so."
    ),
)
async def ask_endpoint(request: AskRequest) -> AskResponse:
    logger.info(
        "Ask request: question='%s', top_k=%s, include_sources=%s",
        request.question[:80], request.top_k, request.include_sources,
    )

    try:
        result = await ask(question=request.question, k=request.top_k)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
    except PipelineError as e:
        logger.exception("Query pipeline failed: %s", e)
        raise HTTPException(
            status_code=502,
            detail={"error": type(e).__name__, "message": str(e)},
        ) from e
    except Exception as e:
        logger.exception("Query graph failed: %s", e)
        raise HTTPException(
            status_code=502,
            detail=f"LLM service error: {e}",
        ) from e

    answer = result.answer
    return AskResponse(
        answer=answer.final_text,
        cited_sources=list(answer.cited_sources) if request.include_sources else [],
        insufficient_evidence=answer.insufficient_evidence,
        question=request.question,
        thoughts_generated=len(result.trace.thoughts),
        thoughts_evaluated=len(result.trace.evaluations),
    )
