"""Repository abstraction for executions and reasoning jobs."""

from __future__ import annotations

from typing import Protocol

from ..contracts import Execution
from .models import JobStatus, ReasoningJob


class ExecutionRepository(Protocol):
    """Protocol for execution and job persistence backends."""

    async def save_execution(self, execution: Execution) -> None:
        """Upsert an execution by id, keeping stored reasoning for steps
        whose incoming ``reasoning`` is unset.

        Raises:
            InvalidExecutionError: If the execution has no steps.
        """

    async def get_execution(self, execution_id: str) -> Execution | None:
        """Retrieve the execution by id."""

    async def list_executions(self) -> list[Execution]:
        """Return all persisted executions."""

    async def update_step_reasoning(
        self, execution_id: str, step_name: str, reasoning: str
    ) -> bool:
        """Set the reasoning of one step without touching anything else.

        Returns ``False`` when the step does not exist.
        """

    async def create_job(self, job: ReasoningJob) -> None:
        """Persist a new job.

        Raises:
            DuplicateJobError: If a pending or processing job already
                exists for the same execution and step.
        """

    async def update_job(self, job: ReasoningJob) -> None:
        """Persist the current state of a job."""

    async def get_job(self, job_id: str) -> ReasoningJob | None:
        """Retrieve a job by id."""

    async def find_jobs_by_status(self, *statuses: JobStatus) -> list[ReasoningJob]:
        """Return jobs in any of ``statuses``, oldest first."""

    async def count_jobs_by_status(self) -> dict[str, int]:
        """Return job counts keyed by status value."""
