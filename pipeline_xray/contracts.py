"""Core data contracts for recorded pipeline executions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .errors import InvalidExecutionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def duration_between(started_at: Optional[datetime], ended_at: Optional[datetime]) -> Optional[int]:
    """Whole milliseconds between two timestamps, or ``None`` if either is unset."""
    if started_at is None or ended_at is None:
        return None
    return int((ended_at - started_at).total_seconds() * 1000)


class Step(BaseModel):
    """One instrumented unit of work inside an execution."""

    name: str
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    reasoning: Optional[str] = None

    @property
    def has_reasoning(self) -> bool:
        """``True`` once an explanation has been written for this step."""
        return bool(self.reasoning)

    @property
    def failed(self) -> bool:
        return self.error is not None


class Execution(BaseModel):
    """One recorded run of an instrumented pipeline."""

    execution_id: str
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None
    final_outcome: Any = None
    steps: List[Step] = Field(default_factory=list)

    def get_step(self, name: str) -> Optional[Step]:
        """Return the first step called ``name``."""
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def steps_missing_reasoning(self) -> List[Step]:
        return [step for step in self.steps if not step.has_reasoning]

    def validate_for_save(self) -> None:
        """Reject executions that must never be persisted.

        Raises:
            InvalidExecutionError: If the id is blank or no step was recorded.
        """
        if not self.execution_id:
            raise InvalidExecutionError("Execution is missing an execution_id")
        if not self.steps:
            raise InvalidExecutionError(
                f"Execution {self.execution_id} has no steps and cannot be saved"
            )

    def to_json(self) -> str:
        """Serialize execution to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "Execution":
        """Deserialize execution from JSON."""
        return cls.model_validate_json(data)
