"""Explanation chain: error short-circuit, rules, language model, fallback."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..config import XRayConfig
from ..contracts import Step
from .detectors import DEFAULT_DETECTORS, StepDetector, run_detectors
from .llm import LLMReasoner, PydanticAIClient

logger = logging.getLogger(__name__)


def error_explanation(step: Step) -> str:
    return f'Step "{step.name}" failed after {step.duration_ms or 0}ms with error: {step.error}'


def generic_fallback(step: Step) -> str:
    return f'Completed "{step.name}" step in {step.duration_ms or 0}ms'


class ExplanationChain:
    """Turns a completed step into a short explanation.

    Tiers are tried cheapest first and the chain never raises: any failure
    in a tier lands on the generic fallback.
    """

    def __init__(
        self,
        detectors: Optional[Iterable[StepDetector]] = None,
        llm: Optional[LLMReasoner] = None,
    ) -> None:
        self.detectors = tuple(detectors) if detectors is not None else DEFAULT_DETECTORS
        self.llm = llm

    @classmethod
    def from_config(cls, config: XRayConfig) -> "ExplanationChain":
        client = PydanticAIClient.from_config(config.llm)
        llm = LLMReasoner(client, timeout=config.reasoning.llm_timeout) if client else None
        return cls(llm=llm)

    async def explain(self, step: Step) -> str:
        try:
            if step.error:
                return error_explanation(step)

            reasoning = run_detectors(step, self.detectors)
            if reasoning:
                return reasoning

            if self.llm is not None:
                reasoning = await self._ask_llm(step)
                if reasoning:
                    return reasoning
        except Exception as e:
            logger.warning(f"Explanation failed for step {step.name}: {e}")
        return generic_fallback(step)

    async def _ask_llm(self, step: Step) -> Optional[str]:
        try:
            return await self.llm.explain(step)
        except Exception as e:
            logger.warning(
                f"Language model explanation failed for step {step.name}: {e!r}; using fallback"
            )
            return None
