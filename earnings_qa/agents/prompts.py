# =============================================================================
# Reasoning Prompts — Static Templates
# =============================================================================
#
# Built once at import and reused for every question. Each stage gets a
# system prompt (role + rules) and a user template filled with
# str.format().
#
#   GENERATE   — N independent candidate reasoning paths, one per section
#   EVALUATE   — JSON critique of one path against the passages
#   SYNTHESIZE — final answer from the evaluated paths
# =============================================================================

from __future__ import annotations

from collections.abc import Sequence

from earnings_qa.services.chunker import Passage

# The exact sentence the synthesizer must use when the evidence does not
# contain the answer. The reasoner looks for it to flag the Answer.
NO_EVIDENCE_SENTENCE = (
    "The retrieved reports do not contain the information needed to "
    "answer this question."
)

NO_PASSAGES_PLACEHOLDER = "(no passages were retrieved)"


# ---------------------------------------------------------------------------
# GENERATE
# ---------------------------------------------------------------------------

GENERATE_SYSTEM = (
    "You are an expert financial analyst reading quarterly earnings "
    "releases. Propose distinct lines of reasoning that could answer the "
    "user's question from the provided report passages.\n\n"
    "Rules:\n"
    "- Write exactly {breadth} candidate thoughts\n"
    "- Number them 'Thought 1:', 'Thought 2:', ... one per paragraph\n"
    "- Each thought names the figures or passages it would rely on\n"
    "- If the passages hold no relevant figures, say so in the thought "
    "instead of inventing numbers"
)

GENERATE_USER = (
    "Question: {question}\n\n"
    "Report passages ({count} total):\n\n{passages}"
)


# ---------------------------------------------------------------------------
# EVALUATE
# ---------------------------------------------------------------------------

EVALUATE_SYSTEM = (
    "You are a meticulous financial fact-checker. Judge one candidate line "
    "of reasoning against the report passages.\n\n"
    "Respond with ONLY valid JSON (no markdown, no explanation):\n"
    "{\n"
    '  "score": integer from 1 (unsupported) to 10 (fully supported),\n'
    '  "evidence": ["exact figures or statements quoted from the passages"],\n'
    '  "caveats": ["gaps, ambiguities, or period mismatches"],\n'
    '  "conclusion": "refined conclusion this thought supports"\n'
    "}\n\n"
    "Guidelines:\n"
    "- Only quote evidence that appears in the passages\n"
    "- A thought citing a period or figure absent from the passages scores "
    "at most 2\n"
    "- Copy figures verbatim; never round or estimate"
)

EVALUATE_USER = (
    "Question: {question}\n\n"
    "{label}: {thought}\n\n"
    "Report passages ({count} total):\n\n{passages}"
)


# ---------------------------------------------------------------------------
# SYNTHESIZE
# ---------------------------------------------------------------------------

SYNTHESIZE_SYSTEM = (
    "You are an expert financial analyst. Write the final answer to the "
    "user's question from the evaluated lines of reasoning.\n\n"
    "Format:\n"
    "Direct answer: <one or two sentences>\n"
    "Supporting reasoning: <the evidence and how it leads to the answer>\n\n"
    "Rules:\n"
    "- Prefer the highest-scoring, best-supported conclusions\n"
    "- Use only figures quoted as evidence; never fabricate numbers\n"
    "- If the evidence does not answer the question, the direct answer must "
    "be exactly: '" + NO_EVIDENCE_SENTENCE + "'"
)

SYNTHESIZE_USER = (
    "Question: {question}\n\n"
    "Evaluated reasoning ({count} paths):\n\n{evaluations}"
)


# ---------------------------------------------------------------------------
# Rendering Helpers
# ---------------------------------------------------------------------------


def format_passages(passages: Sequence[Passage]) -> str:
    """
    Render passages as numbered context blocks.

    Example:
        [1] (Q1-2023 | https://ir.example.com/...):
        Net sales increased 9% to $127.4 billion...
    """
    if not passages:
        return NO_PASSAGES_PLACEHOLDER

    sections = []
    for i, passage in enumerate(passages, 1):
        label = passage.metadata.get("label")
        provenance = " | ".join(p for p in (label, passage.source) if p)
        header = f"[{i}] ({provenance}):" if provenance else f"[{i}]:"
        sections.append(f"{header}\n{passage.content}")
    return "\n\n---\n\n".join(sections)
