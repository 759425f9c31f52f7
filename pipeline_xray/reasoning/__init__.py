"""Step explanation tiers."""

from .chain import ExplanationChain, error_explanation, generic_fallback
from .detectors import (
    DEFAULT_DETECTORS,
    EvaluationListDetector,
    PassFailDetector,
    RetrievalDetector,
    SelectionDetector,
    ShrinkageDetector,
    SizeChangeDetector,
    StepDetector,
    ThemeExtractionDetector,
    run_detectors,
)
from .llm import LLMClient, LLMReasoner, PydanticAIClient, build_prompt, clean_response

__all__ = [
    "DEFAULT_DETECTORS",
    "EvaluationListDetector",
    "ExplanationChain",
    "LLMClient",
    "LLMReasoner",
    "PassFailDetector",
    "PydanticAIClient",
    "RetrievalDetector",
    "SelectionDetector",
    "ShrinkageDetector",
    "SizeChangeDetector",
    "StepDetector",
    "ThemeExtractionDetector",
    "build_prompt",
    "clean_response",
    "error_explanation",
    "generic_fallback",
    "run_detectors",
]
