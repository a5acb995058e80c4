# =============================================================================
# Shared Test Fixtures
# =============================================================================

from __future__ import annotations

import asyncio
import json

import pytest

from earnings_qa.agents import prompts
from earnings_qa.services.llm import Completion

DEFAULT_THOUGHTS = (
    "Thought 1: Net sales grew 9% year over year.\n"
    "Thought 2: Operating income rose to $4.8 billion.\n"
    "Thought 3: AWS segment sales reached $21.4 billion."
)

DEFAULT_ANSWER = (
    "Direct answer: Net sales were $127.4 billion.\n"
    "Supporting reasoning: the first quarter release reports a 9% increase."
)


def make_response(text: str) -> Completion:
    return Completion(text=text, model="test-model", input_tokens=10, output_tokens=5)


class ScriptedLLM:
    """
    LLM provider that answers each reasoning stage from a script.

    `fail_labels` makes the evaluation of those thoughts raise;
    `delays` holds per-label sleep times for evaluations.
    """

    def __init__(
        self,
        thoughts: str = DEFAULT_THOUGHTS,
        answer: str = DEFAULT_ANSWER,
        fail_labels: set[str] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.thoughts = thoughts
        self.answer = answer
        self.fail_labels = fail_labels or set()
        self.delays = delays or {}
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system, prompt, *, stage="completion", temperature=None, max_tokens=None):
        if system == prompts.EVALUATE_SYSTEM:
            label = stage.removeprefix("evaluate ")
            self.calls.append(("evaluate", label))
            await asyncio.sleep(self.delays.get(label, 0))
            if label in self.fail_labels:
                raise RuntimeError(f"evaluation timeout for {label}")
            return make_response(json.dumps({
                "score": 8,
                "evidence": ["Net sales increased 9% to $127.4 billion"],
                "caveats": [],
                "conclusion": f"{label} is supported",
            }))
        if system == prompts.SYNTHESIZE_SYSTEM:
            self.calls.append(("synthesize", prompt))
            return make_response(self.answer)
        self.calls.append(("generate", prompt))
        return make_response(self.thoughts)

    def stages(self) -> list[str]:
        return [stage for stage, _ in self.calls]


@pytest.fixture
def scripted_llm():
    """Factory for ScriptedLLM instances."""
    return ScriptedLLM
