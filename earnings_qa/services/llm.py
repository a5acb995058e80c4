# =============================================================================
# LLM Completion Backends — Anthropic and OpenAI-Compatible
# =============================================================================
#
# The reasoner makes three kinds of calls (generate, evaluate, synthesize),
# each a stateless system prompt + one rendered user prompt. Providers expose
# exactly that shape:
#
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — Claude; system prompt as `system=` kwarg
#   └── OpenAICompatibleProvider — OpenAI, DeepSeek, vLLM, ...; system message
#
#   get_llm_provider() — lazy singleton chosen by settings.llm_provider
#
# Every call is logged with its reasoning stage, token usage and latency so
# a slow or expensive stage shows up in the worker logs.
# =============================================================================

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Protocol

from earnings_qa.config import settings

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    """Text produced for one reasoning stage."""

    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


class LLMProvider(Protocol):
    """Single-turn completion backend used by the reasoner."""

    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        stage: str = "completion",
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        """
        Run one system + user prompt pair.

        `temperature` / `max_tokens` fall back to settings.llm_temperature /
        settings.llm_max_tokens when None. `stage` only labels the log line.
        """
        ...


# ---------------------------------------------------------------------------
# Shared plumbing
# ---------------------------------------------------------------------------


def _require_key(*candidates: str | None, env_hint: str) -> str:
    for key in candidates:
        if key:
            return key
    raise ValueError(f"No LLM API key configured. Set {env_hint} in .env")


class _TimedProvider:
    """Resolves per-call defaults and logs each stage; subclasses do the I/O."""

    def __init__(self, model: str | None) -> None:
        self.model = model or settings.llm_model

    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        stage: str = "completion",
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        started = time.monotonic()
        completion = await self._send(
            system,
            prompt,
            settings.llm_temperature if temperature is None else temperature,
            max_tokens or settings.llm_max_tokens,
        )
        logger.info(
            "LLM %s via %s: %d prompt / %d completion tokens in %.2fs",
            stage, completion.model, completion.input_tokens,
            completion.output_tokens, time.monotonic() - started,
        )
        return completion

    async def _send(
        self, system: str, prompt: str, temperature: float, max_tokens: int,
    ) -> Completion:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicProvider(_TimedProvider):
    """Claude through AsyncAnthropic."""

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        from anthropic import AsyncAnthropic

        super().__init__(model)
        key = _require_key(
            api_key, settings.llm_api_key, settings.anthropic_api_key,
            env_hint="LLM_API_KEY or ANTHROPIC_API_KEY",
        )
        self._client = AsyncAnthropic(api_key=key)
        logger.info("LLM backend: Anthropic (model=%s)", self.model)

    async def _send(
        self, system: str, prompt: str, temperature: float, max_tokens: int,
    ) -> Completion:
        message = await self._client.messages.create(
            model=self.model,
            system=system,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        # A reply may be split over several text blocks.
        text = "".join(
            block.text for block in message.content if block.type == "text"
        )
        return Completion(
            text=text,
            model=message.model,
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider(_TimedProvider):
    """
    Chat-completions backend. Point LLM_BASE_URL at any server speaking the
    OpenAI protocol; leave it unset for api.openai.com.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        super().__init__(model)
        key = _require_key(
            api_key, settings.llm_api_key, settings.openai_api_key,
            env_hint="LLM_API_KEY or OPENAI_API_KEY",
        )
        self.base_url = base_url or settings.llm_base_url
        self._client = AsyncOpenAI(api_key=key, base_url=self.base_url)
        logger.info(
            "LLM backend: OpenAI-compatible (model=%s, base_url=%s)",
            self.model, self.base_url or "default",
        )

    async def _send(
        self, system: str, prompt: str, temperature: float, max_tokens: int,
    ) -> Completion:
        reply = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        usage = reply.usage
        return Completion(
            text=reply.choices[0].message.content or "",
            model=reply.model or self.model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Configured backend
# ---------------------------------------------------------------------------

_BACKENDS: dict[str, type[_TimedProvider]] = {
    "anthropic": AnthropicProvider,
    "openai_compatible": OpenAICompatibleProvider,
}

_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    """
    Build the backend named by settings.llm_provider on first use.

    Raises:
        ValueError: Unknown provider name or missing API key.
    """
    global _provider
    if _provider is None:
        backend = _BACKENDS.get(settings.llm_provider)
        if backend is None:
            raise ValueError(
                f"Unknown LLM_PROVIDER '{settings.llm_provider}'. "
                f"Choose one of: {', '.join(sorted(_BACKENDS))}"
            )
        _provider = backend()
    return _provider
