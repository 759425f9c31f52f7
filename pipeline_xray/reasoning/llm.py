"""Language-model tier of the explanation chain."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Optional, Protocol

from pydantic_ai import Agent

from ..config import LLMConfig
from ..contracts import Step

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "You are an observability assistant for arbitrary multi-step pipelines "
    "(data processing, recommendation, lead scoring, etc.). Given one step, "
    "write ONE concise sentence explaining what it did, focusing on counts, "
    "thresholds and key decisions. Do not restate raw data verbatim and "
    "return only the sentence, no JSON."
)

_REASONING_LABEL = re.compile(r"^\s*Reasoning:\s*", re.IGNORECASE)
_CODE_FENCE = re.compile(r"```(?:json)?\s*")


class LLMClient(Protocol):
    """Single request/response text completion."""

    async def complete(self, prompt: str) -> str:
        """Return generated text for ``prompt``."""


class PydanticAIClient:
    """``LLMClient`` backed by a pydantic-ai agent.

    The agent is built on first use so a missing provider key only disables
    the tier when it is actually reached.
    """

    def __init__(self, model: str, max_tokens: int = 150, temperature: float = 0.1) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._agent: Agent | None = None

    @classmethod
    def from_config(cls, config: LLMConfig) -> Optional["PydanticAIClient"]:
        if not config.model:
            return None
        return cls(config.model, max_tokens=config.max_tokens, temperature=config.temperature)

    @property
    def agent(self) -> Agent:
        if self._agent is None:
            self._agent = Agent(
                self.model,
                instructions=INSTRUCTIONS,
                model_settings={
                    "max_tokens": self.max_tokens,
                    "temperature": self.temperature,
                },
            )
        return self._agent

    async def complete(self, prompt: str) -> str:
        result = await self.agent.run(prompt)
        return str(result.output)


def build_prompt(step: Step) -> str:
    """Compact description of ``step`` for the model."""
    return (
        f"Step name: {step.name}\n"
        f"Input: {json.dumps(step.input if step.input is not None else {}, default=str)}\n"
        f"Output: {json.dumps(step.output if step.output is not None else {}, default=str)}\n"
        f"Duration: {step.duration_ms or 0}ms\n\n"
        "Reasoning:"
    )


def clean_response(raw: str) -> Optional[str]:
    """Strip labels and code fences; reject empty or truncated-JSON answers."""
    text = _REASONING_LABEL.sub("", raw or "")
    text = _CODE_FENCE.sub("", text).strip()
    if not text:
        return None
    if text.startswith("{") and not text.endswith("}"):
        return None
    return text


class LLMReasoner:
    """Asks a language model to explain a step."""

    def __init__(self, client: LLMClient, timeout: Optional[float] = 30.0) -> None:
        self.client = client
        self.timeout = timeout

    async def explain(self, step: Step) -> Optional[str]:
        """Return the model's explanation, or ``None`` if unusable.

        Raises whatever the client raises, including ``asyncio.TimeoutError``.
        """
        prompt = build_prompt(step)
        raw = await asyncio.wait_for(self.client.complete(prompt), timeout=self.timeout)
        reasoning = clean_response(raw)
        if reasoning is None:
            logger.debug(f"Discarding unusable model response for step {step.name}: {raw!r}")
        return reasoning
