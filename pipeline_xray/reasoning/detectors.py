"""Rule-based detectors that explain a step from the shape of its data.

Each detector inspects ``step.input`` / ``step.output`` (never the step name
alone) and either returns a sentence or ``None``. Detectors run in the order
of ``DEFAULT_DETECTORS`` and the first hit wins.
"""

from __future__ import annotations

import abc
import math
from typing import Any, Iterable, List, Optional

from ..contracts import Step

FILTER_KEY_HINTS = ("rating", "price", "review", "age", "year", "score")
SELECTION_NESTED_KEYS = ("item", "entity", "target", "movie", "product")


def as_count(value: Any) -> Optional[int | float]:
    """Interpret ``value`` as a count: a real number or a list's length."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and math.isnan(value) else value
    if isinstance(value, list):
        return len(value)
    return None


def first_count(data: Any, *keys: str) -> Optional[int | float]:
    """Return the first key of ``data`` that reads as a count."""
    if not isinstance(data, dict):
        return None
    for key in keys:
        count = as_count(data.get(key))
        if count is not None:
            return count
    return None


def fmt(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


class StepDetector(abc.ABC):
    """Explains a step when its data matches a known pattern."""

    name: str = "detector"

    @abc.abstractmethod
    def try_match(self, step: Step) -> Optional[str]:
        """Return an explanation, or ``None`` if the pattern does not apply."""
        raise NotImplementedError


class PassFailDetector(StepDetector):
    """Explicit pass/fail counters, e.g. a filtering step."""

    name = "pass_fail"

    def try_match(self, step: Step) -> Optional[str]:
        output = _as_dict(step.output)
        total = first_count(output, "total_evaluated", "totalEvaluated", "evaluated")
        passed = first_count(output, "passed", "accepted")
        failed = first_count(output, "failed", "rejected")
        # Any two of the three counters determine the third.
        if sum(c is not None for c in (total, passed, failed)) < 2:
            return None
        if total is None:
            total = passed + failed
        elif passed is None:
            passed = total - failed
        elif failed is None:
            failed = total - passed

        message = f"Evaluated {fmt(total)} items: {fmt(passed)} passed, {fmt(failed)} failed"
        criteria = self._filter_criteria(step.input)
        if criteria:
            message += f" (filters: {', '.join(criteria)})"
        return message

    @staticmethod
    def _filter_criteria(step_input: Any) -> List[str]:
        data = _as_dict(step_input)
        filters = data.get("filters_applied")
        source = filters if isinstance(filters, dict) else data
        return [
            key.replace("_", " ")
            for key in source
            if any(hint in key.lower() for hint in FILTER_KEY_HINTS)
        ]


class ThemeExtractionDetector(StepDetector):
    """Keyword or theme extraction from a seed item."""

    name = "theme_extraction"

    def try_match(self, step: Step) -> Optional[str]:
        output = _as_dict(step.output)
        themes = output.get("extracted_themes")
        if not isinstance(themes, list):
            themes = output.get("keywords")
        if not isinstance(themes, list) or not themes:
            return None
        data = _as_dict(step.input)
        seed = data.get("seed_movie") or data.get("product_title") or data.get("title") or "input"
        return f'Extracted "{", ".join(str(t) for t in themes)}" from "{seed}"'


class RetrievalDetector(StepDetector):
    """Search steps reporting a total hit count and how many were returned."""

    name = "retrieval"

    def try_match(self, step: Step) -> Optional[str]:
        output = _as_dict(step.output)
        total = first_count(output, "total_results", "total_found", "total")
        fetched = first_count(output, "candidates_fetched", "returned", "candidates")
        if total is None or fetched is None:
            return None
        return f'Found {fmt(total)} results for "{self._query(step.input)}", returned {fmt(fetched)}'

    @staticmethod
    def _query(step_input: Any) -> str:
        data = _as_dict(step_input)
        for key in ("keyword", "query"):
            if isinstance(data.get(key), str) and data[key]:
                return data[key]
        for key in ("themes", "keywords"):
            if isinstance(data.get(key), list) and data[key]:
                return ", ".join(str(v) for v in data[key])
        return "query"


class ShrinkageDetector(StepDetector):
    """Candidate count going down between input and output."""

    name = "shrinkage"

    def try_match(self, step: Step) -> Optional[str]:
        before = first_count(step.input, "candidates_count", "candidates")
        after = first_count(step.output, "remaining", "filtered", "passed")
        if before is None or after is None or before == after:
            return None
        return f"Filtered {fmt(before)} candidates down to {fmt(after)}"


class EvaluationListDetector(StepDetector):
    """Per-candidate evaluation verdicts."""

    name = "evaluation_list"
    verdict_keys = ("is_relevant", "is_competitor", "passed", "ok")

    def try_match(self, step: Step) -> Optional[str]:
        evaluations = _as_dict(step.output).get("evaluations")
        if not isinstance(evaluations, list):
            return None
        accepted = sum(1 for e in evaluations if self._verdict(e, True))
        rejected = sum(1 for e in evaluations if self._verdict(e, False))
        return (
            f"Evaluated {len(evaluations)} candidates: "
            f"{accepted} accepted, {rejected} rejected"
        )

    def _verdict(self, entry: Any, expected: bool) -> bool:
        if not isinstance(entry, dict):
            return False
        return any(entry.get(key) is expected for key in self.verdict_keys)


class SelectionDetector(StepDetector):
    """Ranking steps that pick a winner."""

    name = "selection"

    def try_match(self, step: Step) -> Optional[str]:
        output = _as_dict(step.output)
        selection = output.get("selection")
        if not selection:
            return None
        ranked = first_count(output, "ranked_candidates", "rankedItems") or 1
        return (
            f'Selected "{self.label(selection)}" as top choice '
            f"from {fmt(ranked)} candidate(s)"
        )

    @staticmethod
    def label(selection: Any) -> str:
        if not isinstance(selection, dict):
            return "one item"
        if isinstance(selection.get("label"), str):
            return selection["label"]
        for key in SELECTION_NESTED_KEYS:
            nested = selection.get(key)
            if isinstance(nested, dict):
                for field in ("title", "name", "id"):
                    if isinstance(nested.get(field), str):
                        return nested[field]
                break
        for field in ("title", "name", "id", "asin"):
            if isinstance(selection.get(field), str):
                return selection[field]
        return "one item"


class SizeChangeDetector(StepDetector):
    """Generic collection-size change."""

    name = "size_change"

    def try_match(self, step: Step) -> Optional[str]:
        before = self._size(step.input)
        after = self._size(step.output)
        if before is None or after is None or before == after:
            return None
        return f"Transformed {fmt(before)} items into {fmt(after)} items"

    @staticmethod
    def _size(data: Any) -> Optional[int | float]:
        if isinstance(data, list):
            return len(data)
        return first_count(data, "items", "rows")


DEFAULT_DETECTORS: tuple[StepDetector, ...] = (
    PassFailDetector(),
    ThemeExtractionDetector(),
    RetrievalDetector(),
    ShrinkageDetector(),
    EvaluationListDetector(),
    SelectionDetector(),
    SizeChangeDetector(),
)


def run_detectors(step: Step, detectors: Iterable[StepDetector] = DEFAULT_DETECTORS) -> Optional[str]:
    """Return the first detector explanation for ``step``."""
    for detector in detectors:
        message = detector.try_match(step)
        if message:
            return message
    return None
