"""Execution tracker: records the lifecycle of one pipeline run."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from .contracts import Execution, Step, duration_between, utcnow

logger = logging.getLogger(__name__)


class StepOutput:
    """Holder the ``step`` context manager hands to the caller."""

    def __init__(self) -> None:
        self.value: Any = None

    def set(self, value: Any) -> None:
        self.value = value


class ExecutionTracker:
    """Records steps of one execution.

    Explanations are never produced here; completed steps leave
    ``reasoning`` unset for the reasoning queue to fill in later. No method
    raises on misuse, since the tracker runs inside the instrumented
    pipeline.
    """

    def __init__(self, execution_id: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._execution = Execution(execution_id=execution_id, metadata=metadata)
        self._active_steps: Dict[str, Step] = {}

    @property
    def execution_id(self) -> str:
        return self._execution.execution_id

    @property
    def active_steps(self) -> List[str]:
        """Names of steps started but not yet ended."""
        return list(self._active_steps)

    @property
    def steps(self) -> List[Step]:
        return list(self._execution.steps)

    def log_step(
        self,
        name: str,
        input: Any,
        output: Any,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record an already finished step in one call, without timing."""
        self._execution.steps.append(
            Step(name=name, input=input, output=output, metadata=metadata)
        )

    def start_step(
        self, name: str, input: Any, metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Register an in-flight step.

        Starting a name that is still active replaces the pending record.
        """
        if name in self._active_steps:
            logger.warning(
                f"Step {name} started again before it ended in execution {self.execution_id}; "
                "replacing the pending record"
            )
        now = utcnow()
        self._active_steps[name] = Step(
            name=name, input=input, metadata=metadata, timestamp=now, started_at=now
        )

    def end_step(self, name: str, output: Any) -> None:
        """Complete an active step with its output."""
        step = self._pop_active(name, "end_step")
        if step is None:
            return
        step.output = output
        self._finish(step)

    def error_step(self, name: str, error: BaseException | str) -> None:
        """Complete an active step with a failure message."""
        step = self._pop_active(name, "error_step")
        if step is None:
            return
        step.error = error if isinstance(error, str) else (str(error) or type(error).__name__)
        self._finish(step)

    def end(self, final_outcome: Any = None) -> Execution:
        """Close the execution and return a snapshot of it.

        Steps still active are dropped: they are not completed and will not
        be explained.
        """
        if self._active_steps:
            logger.warning(
                f"Execution {self.execution_id} ended with unfinished steps "
                f"{sorted(self._active_steps)}; they are not recorded"
            )
        self._execution.ended_at = utcnow()
        self._execution.final_outcome = final_outcome
        return self._execution.model_copy(deep=True)

    @asynccontextmanager
    async def step(
        self, name: str, input: Any, metadata: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[StepOutput]:
        """Track a step around a block of code.

        The block sets its result on the yielded holder. An exception marks
        the step as errored and is re-raised unchanged.
        """
        self.start_step(name, input, metadata)
        holder = StepOutput()
        try:
            yield holder
        except Exception as exc:
            self.error_step(name, exc)
            raise
        self.end_step(name, holder.value)

    # ------------------------------------------------------------------
    def _pop_active(self, name: str, operation: str) -> Step | None:
        step = self._active_steps.pop(name, None)
        if step is None:
            logger.warning(
                f"{operation} called for unknown step {name} in execution {self.execution_id}"
            )
        return step

    def _finish(self, step: Step) -> None:
        step.ended_at = utcnow()
        step.duration_ms = duration_between(step.started_at, step.ended_at)
        self._execution.steps.append(step)
