# =============================================================================
# Tree-of-Thought Reasoner — Generate → Evaluate → Synthesize
# =============================================================================
#
# Turns a question plus retrieved passages into a cited answer by exploring
# several candidate reasoning paths before committing:
#
#                 ┌──▶ evaluate(Thought 1) ──┐
#   generate ─────┼──▶ evaluate(Thought 2) ──┼──▶ synthesize ──▶ Answer
#   (1 call)      └──▶ evaluate(Thought N) ──┘    (1 call)
#                     (N calls, concurrent)
#
# Tree width = reasoning_breadth, depth = 2. Stages run strictly in order;
# nothing loops back.
#
# FAILURE SEMANTICS:
# - GENERATE fails        → GenerationFailure (query fails)
# - one EVALUATE fails    → logged, that thought is dropped
# - every EVALUATE fails  → fixed insufficient-evidence Answer, no model call
# - SYNTHESIZE fails      → SynthesisFailure (query fails)
#
# ORDERING:
# Evaluations run concurrently but are reassembled positionally, so the
# synthesizer always sees them in the order the thoughts were generated.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from earnings_qa.agents import prompts
from earnings_qa.config import settings
from earnings_qa.errors import EvaluationFailure, GenerationFailure, SynthesisFailure
from earnings_qa.services.chunker import Passage
from earnings_qa.services.llm import LLMProvider

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class Thought:
    """One candidate reasoning path from the generate stage."""

    label: str
    text: str


@dataclass
class EvaluatedThought:
    """A thought plus its critique. Fields other than the text are best-effort."""

    thought: Thought
    evaluation_text: str
    score: int | None = None
    evidence: list[str] = field(default_factory=list)
    caveats: list[str] = field(default_factory=list)
    conclusion: str | None = None


@dataclass
class Answer:
    """Final answer and the ordered source locators backing it."""

    final_text: str
    cited_sources: list[str] = field(default_factory=list)
    insufficient_evidence: bool = False


@dataclass
class ReasoningTrace:
    """Everything one query produced; discarded when the query ends."""

    thoughts: list[Thought] = field(default_factory=list)
    evaluations: list[EvaluatedThought] = field(default_factory=list)
    failed_labels: list[str] = field(default_factory=list)
    answer: Answer | None = None


INSUFFICIENT_EVIDENCE_TEXT = (
    f"Direct answer: {prompts.NO_EVIDENCE_SENTENCE}\n"
    "Supporting reasoning: none of the candidate lines of reasoning could be "
    "evaluated against the retrieved passages."
)


# ---------------------------------------------------------------------------
# Output Parsing
# ---------------------------------------------------------------------------

# "Thought 1:", "**Thought 1**:", "Thought 1 -", "1.", "1)" ...
# A number must be followed by whitespace after "." or ")" so figures such
# as "1.5%" at the start of a line stay content.
_SECTION_HEADER = re.compile(
    r"^\s*[#*_]*\s*"
    r"(?:(?:thought|path|option)\s*#?\s*(\d+)|(\d+)[.)](?=\s|$))"
    r"\s*[*_]*\s*[:.)\-]?\s*[*_]*\s*(.*)$",
    re.IGNORECASE,
)
_BULLET = re.compile(r"^\s*(?:[-*•]+)\s+")
_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _is_header(line: str) -> re.Match | None:
    return _SECTION_HEADER.match(line)


def parse_thoughts(text: str, expected: int) -> list[Thought]:
    """
    Best-effort split of a generate-stage reply into thoughts.

    - Numbered sections start a new thought; following unnumbered lines
      continue it.
    - Without any numbering, every non-empty line is its own thought.
    - At most `expected` thoughts are kept. Fewer is not an error.
    """
    lines = [line for line in text.splitlines() if line.strip()]
    numbered = any(_is_header(line) for line in lines)

    sections: list[str] = []
    for line in lines:
        if numbered:
            match = _is_header(line)
            if match:
                sections.append(match.group(3).strip())
            elif sections:
                sections[-1] = f"{sections[-1]} {line.strip()}".strip()
            else:
                # Preamble before the first numbered section.
                continue
        else:
            sections.append(_BULLET.sub("", line).strip())

    sections = [s for s in sections if s]
    if len(sections) < expected:
        logger.warning(
            "Parsed %d of %d expected thoughts; continuing with what was parsed",
            len(sections), expected,
        )

    return [
        Thought(label=f"Thought {i}", text=section)
        for i, section in enumerate(sections[:expected], 1)
    ]


def parse_evaluation(thought: Thought, text: str) -> EvaluatedThought:
    """Read the JSON critique; keep the raw text if it is not valid JSON."""
    cleaned = _FENCE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.debug("Evaluation for %s is not JSON; keeping raw text", thought.label)
        return EvaluatedThought(thought=thought, evaluation_text=text.strip())

    if not isinstance(data, dict):
        return EvaluatedThought(thought=thought, evaluation_text=text.strip())

    score = data.get("score")
    try:
        score = int(score) if score is not None else None
    except (TypeError, ValueError):
        score = None

    return EvaluatedThought(
        thought=thought,
        evaluation_text=text.strip(),
        score=score,
        evidence=_as_str_list(data.get("evidence")),
        caveats=_as_str_list(data.get("caveats")),
        conclusion=str(data["conclusion"]) if data.get("conclusion") else None,
    )


def _as_str_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value if v is not None]
    return [str(value)]


def format_evaluations(evaluations: Sequence[EvaluatedThought]) -> str:
    """Render evaluated thoughts, in stage order, for the synthesizer."""
    blocks = []
    for evaluated in evaluations:
        lines = [f"{evaluated.thought.label}: {evaluated.thought.text}"]
        if evaluated.score is not None:
            lines.append(f"Score: {evaluated.score}/10")
        if evaluated.evidence:
            lines.append("Evidence:")
            lines.extend(f"- {e}" for e in evaluated.evidence)
        if evaluated.caveats:
            lines.append("Caveats:")
            lines.extend(f"- {c}" for c in evaluated.caveats)
        if evaluated.conclusion:
            lines.append(f"Conclusion: {evaluated.conclusion}")
        if evaluated.score is None and not evaluated.conclusion:
            lines.append(f"Evaluation: {evaluated.evaluation_text}")
        blocks.append("\n".join(lines))
    return "\n\n---\n\n".join(blocks)


# ---------------------------------------------------------------------------
# Reasoner
# ---------------------------------------------------------------------------


class Reasoner:
    """Runs the three reasoning stages against one LLM provider."""

    def __init__(self, llm: LLMProvider, breadth: int | None = None) -> None:
        self.llm = llm
        self.breadth = breadth or settings.reasoning_breadth

    async def generate(
        self,
        question: str,
        passages: Sequence[Passage],
    ) -> list[Thought]:
        """GENERATE: one call, parsed into up to `breadth` thoughts."""
        user_message = prompts.GENERATE_USER.format(
            question=question,
            count=len(passages),
            passages=prompts.format_passages(passages),
        )

        try:
            completion = await self.llm.complete(
                prompts.GENERATE_SYSTEM.format(breadth=self.breadth),
                user_message,
                stage="generate",
                max_tokens=settings.reasoning_max_tokens,
            )
        except Exception as e:
            logger.error("Generate stage failed: %s", e)
            raise GenerationFailure(f"thought generation failed: {e}") from e

        thoughts = parse_thoughts(completion.text, self.breadth)
        logger.info("Generated %d thoughts (model=%s)", len(thoughts), completion.model)
        return thoughts

    async def evaluate_one(
        self,
        question: str,
        thought: Thought,
        passages: Sequence[Passage],
    ) -> EvaluatedThought:
        """EVALUATE a single thought. Raises EvaluationFailure."""
        user_message = prompts.EVALUATE_USER.format(
            question=question,
            label=thought.label,
            thought=thought.text,
            count=len(passages),
            passages=prompts.format_passages(passages),
        )

        try:
            completion = await self.llm.complete(
                prompts.EVALUATE_SYSTEM,
                user_message,
                stage=f"evaluate {thought.label}",
                temperature=settings.reasoning_evaluation_temperature,
                max_tokens=settings.reasoning_max_tokens,
            )
        except Exception as e:
            raise EvaluationFailure(thought.label, str(e)) from e

        return parse_evaluation(thought, completion.text)

    async def evaluate(
        self,
        question: str,
        thoughts: Sequence[Thought],
        passages: Sequence[Passage],
    ) -> tuple[list[EvaluatedThought], list[str]]:
        """
        EVALUATE every thought concurrently.

        Returns:
            (successful evaluations in thought order, labels that failed)
        """
        outcomes = await asyncio.gather(
            *(self.evaluate_one(question, t, passages) for t in thoughts),
            return_exceptions=True,
        )

        evaluations: list[EvaluatedThought] = []
        failed: list[str] = []
        for thought, outcome in zip(thoughts, outcomes, strict=True):
            if isinstance(outcome, EvaluatedThought):
                evaluations.append(outcome)
            elif isinstance(outcome, Exception):
                logger.warning("Evaluation of %s failed: %s", thought.label, outcome)
                failed.append(thought.label)
            else:
                # CancelledError and other BaseExceptions are not per-thought
                # failures.
                raise outcome

        logger.info(
            "Evaluated %d/%d thoughts", len(evaluations), len(thoughts),
        )
        return evaluations, failed

    async def synthesize(
        self,
        question: str,
        evaluations: Sequence[EvaluatedThought],
        sources: Sequence[str] = (),
    ) -> Answer:
        """SYNTHESIZE: fan-in to one Answer."""
        if not evaluations:
            logger.info("No evaluated thoughts; returning insufficient-evidence answer")
            return Answer(
                final_text=INSUFFICIENT_EVIDENCE_TEXT,
                cited_sources=[],
                insufficient_evidence=True,
            )

        user_message = prompts.SYNTHESIZE_USER.format(
            question=question,
            count=len(evaluations),
            evaluations=format_evaluations(evaluations),
        )

        try:
            completion = await self.llm.complete(
                prompts.SYNTHESIZE_SYSTEM,
                user_message,
                stage="synthesize",
                max_tokens=settings.reasoning_max_tokens,
            )
        except Exception as e:
            logger.error("Synthesize stage failed: %s", e)
            raise SynthesisFailure(f"answer synthesis failed: {e}") from e

        final_text = completion.text.strip()
        if not final_text:
            raise SynthesisFailure("answer synthesis returned no text")

        insufficient = _mentions_no_evidence(final_text)
        return Answer(
            final_text=final_text,
            cited_sources=[] if insufficient else list(sources),
            insufficient_evidence=insufficient,
        )

    async def reason(
        self,
        question: str,
        passages: Sequence[Passage],
        sources: Sequence[str] = (),
    ) -> ReasoningTrace:
        """Run all three stages and return the full trace."""
        trace = ReasoningTrace()
        trace.thoughts = await self.generate(question, passages)
        trace.evaluations, trace.failed_labels = await self.evaluate(
            question, trace.thoughts, passages,
        )
        trace.answer = await self.synthesize(question, trace.evaluations, sources)
        return trace


def _mentions_no_evidence(text: str) -> bool:
    normalised = " ".join(text.lower().split())
    return prompts.NO_EVIDENCE_SENTENCE.lower().rstrip(".") in normalised
