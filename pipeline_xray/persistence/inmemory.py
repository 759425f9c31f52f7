"""In-memory implementation of the execution repository."""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Dict

from ..contracts import Execution
from ..errors import DuplicateJobError
from .models import LIVE_STATUSES, JobStatus, ReasoningJob
from .repository import ExecutionRepository


def merge_step_reasoning(incoming: Execution, existing: Execution | None) -> Execution:
    """Carry stored reasoning over to steps the incoming copy leaves unset."""
    if existing is None:
        return incoming
    known = {step.name: step.reasoning for step in existing.steps if step.reasoning}
    for step in incoming.steps:
        if not step.reasoning and step.name in known:
            step.reasoning = known[step.name]
    return incoming


class InMemoryExecutionRepository(ExecutionRepository):
    """Store executions and jobs in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._executions: Dict[str, Execution] = {}
        self._jobs: Dict[str, ReasoningJob] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def save_execution(self, execution: Execution) -> None:
        execution.validate_for_save()
        incoming = execution.model_copy(deep=True)
        async with self._lock:
            existing = self._executions.get(incoming.execution_id)
            self._executions[incoming.execution_id] = merge_step_reasoning(
                incoming, existing
            )

    async def get_execution(self, execution_id: str) -> Execution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list_executions(self) -> list[Execution]:
        return [e.model_copy(deep=True) for e in self._executions.values()]

    async def update_step_reasoning(
        self, execution_id: str, step_name: str, reasoning: str
    ) -> bool:
        async with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None:
                return False
            step = execution.get_step(step_name)
            if step is None:
                return False
            step.reasoning = reasoning
            return True

    # ------------------------------------------------------------------
    async def create_job(self, job: ReasoningJob) -> None:
        async with self._lock:
            for other in self._jobs.values():
                if (
                    other.id != job.id
                    and other.key == job.key
                    and other.status in LIVE_STATUSES
                ):
                    raise DuplicateJobError(job.execution_id, job.step_name)
            self._jobs[job.id] = job.model_copy()

    async def update_job(self, job: ReasoningJob) -> None:
        async with self._lock:
            self._jobs[job.id] = job.model_copy()

    async def get_job(self, job_id: str) -> ReasoningJob | None:
        job = self._jobs.get(job_id)
        return job.model_copy() if job else None

    async def find_jobs_by_status(self, *statuses: JobStatus) -> list[ReasoningJob]:
        wanted = set(statuses)
        jobs = [j.model_copy() for j in self._jobs.values() if j.status in wanted]
        return sorted(jobs, key=lambda j: j.created_at)

    async def count_jobs_by_status(self) -> dict[str, int]:
        return dict(Counter(job.status.value for job in self._jobs.values()))
