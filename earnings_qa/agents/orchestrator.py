# =============================================================================
# LangGraph Orchestrator — Question Answering Graph
# =============================================================================
#
# GRAPH TOPOLOGY:
#   START ──▶ retrieve ──▶ generate ──▶ evaluate ──▶ synthesize ──▶ END
#
# - retrieve:   Indexer.search(question, k) → passages + cited locators
# - generate:   Reasoner.generate (runs even with zero passages, so the model
#               can say it has no evidence)
# - evaluate:   Reasoner.evaluate (concurrent fan-out, order-preserving)
# - synthesize: Reasoner.synthesize (fan-in to one Answer)
#
# The graph is linear and compiled once at import. Collaborators (indexer,
# reasoner) travel in the state so one compiled graph serves every request.
# Exceptions raised by a node (GenerationFailure, SynthesisFailure,
# retrieval failures) propagate out of `ask()` unchanged.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from earnings_qa.agents.reasoner import (
    Answer,
    EvaluatedThought,
    Reasoner,
    ReasoningTrace,
    Thought,
)
from earnings_qa.services.chunker import Passage
from earnings_qa.services.indexer import Indexer, get_indexer
from earnings_qa.services.llm import LLMProvider, get_llm_provider
from earnings_qa.services.vectorstore import SearchHit

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Agent State Schema
# ---------------------------------------------------------------------------


class QueryState(TypedDict, total=False):
    """
    State flowing through the graph. Nodes return only the keys they set.

    `indexer` and `reasoner` are live objects, not JSON-serialisable; this
    holds as long as no checkpointer is attached to the graph.
    """

    # --- Input ---
    question: str
    k: int | None
    indexer: Indexer
    reasoner: Reasoner

    # --- Set by nodes ---
    hits: list[SearchHit]
    passages: list[Passage]
    sources: list[str]
    thoughts: list[Thought]
    evaluations: list[EvaluatedThought]
    failed_labels: list[str]
    answer: Answer


@dataclass
class QueryResult:
    """What a caller gets back for one question."""

    answer: Answer
    passages: list[Passage] = field(default_factory=list)
    trace: ReasoningTrace = field(default_factory=ReasoningTrace)

    @property
    def cited_sources(self) -> list[str]:
        return self.answer.cited_sources


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def retrieve_node(state: QueryState) -> dict:
    """Search the index and collect provenance for citation."""
    hits = await state["indexer"].search(state["question"], state.get("k"))
    passages = [hit.passage for hit in hits]
    return {
        "hits": hits,
        "passages": passages,
        "sources": cited_locators(passages),
    }


async def generate_node(state: QueryState) -> dict:
    passages = state.get("passages", [])
    if not passages:
        logger.info("No passages retrieved; generating with an empty evidence set")
    thoughts = await state["reasoner"].generate(state["question"], passages)
    return {"thoughts": thoughts}


async def evaluate_node(state: QueryState) -> dict:
    evaluations, failed = await state["reasoner"].evaluate(
        state["question"],
        state.get("thoughts", []),
        state.get("passages", []),
    )
    return {"evaluations": evaluations, "failed_labels": failed}


async def synthesize_node(state: QueryState) -> dict:
    answer = await state["reasoner"].synthesize(
        state["question"],
        state.get("evaluations", []),
        state.get("sources", []),
    )
    return {"answer": answer}


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(QueryState)
_builder.add_node("retrieve", retrieve_node)
_builder.add_node("generate", generate_node)
_builder.add_node("evaluate", evaluate_node)
_builder.add_node("synthesize", synthesize_node)

_builder.add_edge(START, "retrieve")
_builder.add_edge("retrieve", "generate")
_builder.add_edge("generate", "evaluate")
_builder.add_edge("evaluate", "synthesize")
_builder.add_edge("synthesize", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def ask(
    question: str,
    k: int | None = None,
    indexer: Indexer | None = None,
    llm: LLMProvider | None = None,
    reasoner: Reasoner | None = None,
) -> QueryResult:
    """
    Answer a question over the indexed reports.

    Args:
        question: Free-text question.
        k: Passages to retrieve (default settings.retrieval_top_k).
        indexer: Index to search (default: process-wide indexer).
        llm: Provider for the reasoner (default: configured singleton).
        reasoner: Fully built reasoner; takes precedence over `llm`.

    Raises:
        ValueError: Missing provider configuration or k < 1.
        EmbeddingServiceFailure / StorageFailure: Retrieval failed.
        GenerationFailure / SynthesisFailure: Reasoning failed.
    """
    initial_state: QueryState = {
        "question": question,
        "k": k,
        "indexer": indexer or get_indexer(),
        "reasoner": reasoner or Reasoner(llm or get_llm_provider()),
    }

    logger.info("Invoking query graph: question='%s', k=%s", question[:80], k)

    result = await graph.ainvoke(initial_state)

    answer: Answer = result["answer"]
    trace = ReasoningTrace(
        thoughts=result.get("thoughts", []),
        evaluations=result.get("evaluations", []),
        failed_labels=result.get("failed_labels", []),
        answer=answer,
    )

    logger.info(
        "Query graph complete: %d passages, %d/%d thoughts evaluated, "
        "insufficient_evidence=%s",
        len(result.get("passages", [])),
        len(trace.evaluations),
        len(trace.thoughts),
        answer.insufficient_evidence,
    )

    return QueryResult(
        answer=answer,
        passages=result.get("passages", []),
        trace=trace,
    )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def cited_locators(passages: list[Passage]) -> list[str]:
    """Source locators in retrieval order, each listed once."""
    return list(dict.fromkeys(p.source for p in passages if p.source))
