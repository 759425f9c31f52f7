"""Asynchronous reasoning queue.

Runs the explanation chain for every step that lacks reasoning, off the
caller's critical path. Jobs are written to the repository before they are
scheduled, so a restarted process can pick up work left pending or
processing by its predecessor.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Dict, List, Optional, Set

from .config import ReasoningConfig
from .contracts import utcnow
from .errors import (
    DuplicateJobError,
    ErrorKind,
    ExecutionNotFoundError,
    StepNotFoundError,
    classify_error,
)
from .persistence import ExecutionRepository
from .persistence.models import LIVE_STATUSES, JobStats, JobStatus, ReasoningJob
from .reasoning import ExplanationChain
from .utils.retry import next_retry_at, retry_delay

logger = logging.getLogger(__name__)


class ReasoningQueue:
    """Bounded worker pool for reasoning jobs.

    Build one per process at the composition root and pass it to whatever
    needs it. Configuration is read once, here.
    """

    def __init__(
        self,
        repository: ExecutionRepository,
        chain: ExplanationChain,
        config: Optional[ReasoningConfig] = None,
    ) -> None:
        self._repository = repository
        self._chain = chain
        self.config = config or ReasoningConfig()
        self._jobs: Dict[str, ReasoningJob] = {}
        self._semaphore = asyncio.Semaphore(self.config.concurrency)
        self._tasks: Set[asyncio.Task] = set()
        self._timers: Dict[str, asyncio.Task] = {}
        self._recovery: Optional[asyncio.Task] = None

        if self.config.debug:
            logger.setLevel(logging.DEBUG)
        logger.debug(
            f"Reasoning queue initialized (concurrency={self.config.concurrency}, "
            f"max_retries={self.config.max_retries}, auto_process={self.config.auto_process})"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    async def start(self) -> None:
        """Begin recovering unfinished jobs from the repository in the background."""
        if self._recovery is None:
            self._recovery = asyncio.create_task(self.recover())
            self._tasks.add(self._recovery)
            self._recovery.add_done_callback(self._tasks.discard)

    async def recover(self) -> List[str]:
        """Resubmit jobs a previous process left pending or processing.

        Status and attempt count are kept as stored until the job runs again,
        so retries stay bounded across restarts. Returns the ids of
        resubmitted jobs.
        """
        try:
            unfinished = await self._repository.find_jobs_by_status(*LIVE_STATUSES)
        except Exception as e:
            logger.error(f"Could not scan for unfinished reasoning jobs: {e}")
            return []

        recovered: List[str] = []
        for job in unfinished:
            if job.id in self._jobs:
                continue
            recovered.append(self._adopt(job))

        if recovered:
            logger.info(f"Recovered {len(recovered)} unfinished reasoning job(s)")
        return recovered

    async def drain(self) -> None:
        """Wait until no job is queued, running, or waiting to be retried."""
        while self._tasks or self._timers:
            pending = list(self._tasks) + list(self._timers.values())
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel retry timers and in-flight jobs."""
        pending = list(self._timers.values()) + list(self._tasks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._timers.clear()
        self._tasks.clear()

    async def __aenter__(self) -> "ReasoningQueue":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Enqueueing
    async def enqueue(self, execution_id: str, step_name: str) -> str:
        """Create a reasoning job for one step and schedule it.

        If a job for the same step is still pending or processing, its id is
        returned instead and nothing new is created. An unfinished job found
        only in the repository is taken over and scheduled here. A stored row
        left live by a lost terminal write is repaired first.
        """
        existing = self._live_job(execution_id, step_name)
        if existing is not None:
            logger.debug(
                f"Reasoning job {existing.id} already live for {execution_id}/{step_name}"
            )
            return existing.id

        job = ReasoningJob(execution_id=execution_id, step_name=step_name)
        self._jobs[job.id] = job
        try:
            await self._repository.create_job(job)
        except DuplicateJobError:
            stored = await self._stored_live_job(execution_id, step_name)
            if stored is None:
                logger.warning(
                    f"Reasoning job {job.id} for {execution_id}/{step_name} conflicted with a "
                    "job that has since finished; continuing in memory only"
                )
            elif stored.id in self._jobs and self._jobs[stored.id].status.is_terminal:
                # The stored row missed its terminal write; repair it and retry.
                await self._persist(self._jobs[stored.id])
                await self._create_or_log(job)
            else:
                del self._jobs[job.id]
                return self._adopt(stored)
        except Exception as e:
            logger.error(
                f"Failed to persist reasoning job {job.id} for {execution_id}/{step_name}: {e}; "
                "continuing in memory only"
            )

        self._submit(job.id)
        logger.info(f"Reasoning job enqueued: {execution_id}/{step_name}")
        return job.id

    async def enqueue_execution(self, execution_id: str) -> List[str]:
        """Enqueue every step of an execution that has no reasoning yet.

        Raises:
            ExecutionNotFoundError: If the execution does not exist.
        """
        execution = await self._repository.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)

        job_ids: List[str] = []
        for step in execution.steps_missing_reasoning():
            job_id = await self.enqueue(execution_id, step.name)
            if job_id not in job_ids:
                job_ids.append(job_id)
        return job_ids

    async def process_execution(self, execution_id: str) -> List[str]:
        """Enqueue an execution's missing steps and wait for the queue to drain."""
        job_ids = await self.enqueue_execution(execution_id)
        if not job_ids:
            logger.info(f"No pending reasoning for execution {execution_id}")
            return job_ids

        logger.info(f"Processing {len(job_ids)} steps for execution {execution_id}")
        await self.drain()
        logger.info(f"Completed processing for execution {execution_id}")
        return job_ids

    # ------------------------------------------------------------------
    # Inspection
    def get_job(self, job_id: str) -> Optional[ReasoningJob]:
        job = self._jobs.get(job_id)
        return job.model_copy() if job else None

    def get_stats(self) -> JobStats:
        """Job counts held by this process."""
        counts = Counter(job.status.value for job in self._jobs.values())
        return JobStats.from_counts(counts)

    async def get_stats_from_database(self) -> JobStats:
        """Job counts as recorded in the repository."""
        return JobStats.from_counts(await self._repository.count_jobs_by_status())

    def clear(self) -> None:
        """Forget finished jobs held in memory."""
        for job_id in [j.id for j in self._jobs.values() if j.status.is_terminal]:
            del self._jobs[job_id]
        logger.info("Reasoning queue cleared")

    # ------------------------------------------------------------------
    # Processing
    async def process_job(self, job_id: str) -> None:
        """Generate and store the reasoning for one job's step."""
        job = self._jobs.get(job_id)
        if job is None:
            logger.error(f"Reasoning job {job_id} not found")
            return
        if job.status.is_terminal:
            return

        job.status = JobStatus.PROCESSING
        job.started_at = utcnow()
        job.next_retry_at = None
        await self._persist(job)
        logger.debug(
            f"Processing job {job_id} (attempt {job.attempt}/{self.config.max_retries})"
        )

        try:
            execution = await self._repository.get_execution(job.execution_id)
            if execution is None:
                raise ExecutionNotFoundError(job.execution_id)
            step = execution.get_step(job.step_name)
            if step is None:
                raise StepNotFoundError(job.execution_id, job.step_name)

            if step.has_reasoning:
                logger.debug(
                    f"Reasoning already exists for {job.execution_id}/{job.step_name}, skipping"
                )
                await self._complete(job)
                return

            reasoning = await self._chain.explain(step)
            if not await self._repository.update_step_reasoning(
                job.execution_id, job.step_name, reasoning
            ):
                raise StepNotFoundError(job.execution_id, job.step_name)

            await self._complete(job, reasoning)
            logger.info(f"Generated reasoning for {job.execution_id}/{job.step_name}")
        except Exception as e:
            logger.error(f"Error processing reasoning job {job_id}: {e}")
            await self._handle_job_error(job, e)

    async def _handle_job_error(self, job: ReasoningJob, error: Exception) -> None:
        job.error = str(error) or type(error).__name__
        kind = classify_error(error)

        if kind is ErrorKind.TRANSIENT and job.attempt < self.config.max_retries:
            delay = retry_delay(job.attempt, self.config.retry_delays)
            job.next_retry_at = next_retry_at(job.attempt, self.config.retry_delays)
            job.attempt += 1
            job.status = JobStatus.PENDING
            await self._persist(job)
            logger.warning(
                f"Retry {job.attempt}/{self.config.max_retries} for {job.step_name} "
                f"in {delay}s ({job.error})"
            )
            self._schedule_retry(job.id, delay)
            return

        job.status = JobStatus.FAILED
        job.completed_at = utcnow()
        await self._persist(job)
        logger.error(
            f"Failed to generate reasoning for {job.execution_id}/{job.step_name} "
            f"after {job.attempt} attempts: {job.error}"
        )

    # ------------------------------------------------------------------
    # Helpers
    def _live_job(self, execution_id: str, step_name: str) -> Optional[ReasoningJob]:
        for job in self._jobs.values():
            if job.key == (execution_id, step_name) and job.status in LIVE_STATUSES:
                return job
        return None

    async def _stored_live_job(
        self, execution_id: str, step_name: str
    ) -> Optional[ReasoningJob]:
        for stored in await self._repository.find_jobs_by_status(*LIVE_STATUSES):
            if stored.key == (execution_id, step_name):
                return stored
        return None

    async def _create_or_log(self, job: ReasoningJob) -> None:
        try:
            await self._repository.create_job(job)
        except Exception as e:
            logger.error(
                f"Failed to persist reasoning job {job.id} for {job.execution_id}/"
                f"{job.step_name}: {e}; continuing in memory only"
            )

    def _adopt(self, stored: ReasoningJob) -> str:
        """Track and schedule an unfinished job read back from the repository."""
        if stored.id not in self._jobs:
            self._jobs[stored.id] = stored
            self._submit(stored.id)
            logger.info(
                f"Resuming stored reasoning job {stored.id} for "
                f"{stored.execution_id}/{stored.step_name}"
            )
        return stored.id

    async def _complete(self, job: ReasoningJob, reasoning: Optional[str] = None) -> None:
        job.status = JobStatus.COMPLETED
        job.completed_at = utcnow()
        job.error = None
        if reasoning is not None:
            job.reasoning = reasoning
        await self._persist(job)

    async def _persist(self, job: ReasoningJob) -> None:
        try:
            await self._repository.update_job(job)
        except Exception as e:
            logger.error(f"Failed to persist reasoning job {job.id} ({job.status.value}): {e}")

    def _submit(self, job_id: str) -> None:
        task = asyncio.create_task(self._run(job_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, job_id: str) -> None:
        async with self._semaphore:
            await self.process_job(job_id)

    def _schedule_retry(self, job_id: str, delay: float) -> None:
        # The timer waits outside the semaphore so sleeping retries never
        # hold a worker slot.
        timer = asyncio.create_task(self._retry_after(job_id, delay))
        self._timers[job_id] = timer
        timer.add_done_callback(lambda t: self._forget_timer(job_id, t))

    def _forget_timer(self, job_id: str, timer: asyncio.Task) -> None:
        if self._timers.get(job_id) is timer:
            del self._timers[job_id]

    async def _retry_after(self, job_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self._submit(job_id)
