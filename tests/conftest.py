import asyncio
from typing import Dict, List, Optional, Set

import pytest

import pipeline_xray.persistence as persistence
from pipeline_xray.contracts import Execution, Step
from pipeline_xray.persistence import InMemoryExecutionRepository, JobStatus
from pipeline_xray.reasoning import ExplanationChain


class FakeLLMClient:
    """Returns canned responses and records prompts."""

    def __init__(self, response: str = "Scored the leads", error: Exception | None = None, delay: float = 0):
        self.response = response
        self.error = error
        self.delay = delay
        self.prompts: List[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


class RecordingChain(ExplanationChain):
    """Explanation chain that records which steps it explained."""

    def __init__(self, delay: float = 0, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay
        self.calls: List[str] = []
        self.running = 0
        self.max_running = 0

    async def explain(self, step: Step) -> str:
        self.calls.append(step.name)
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return await super().explain(step)
        finally:
            self.running -= 1


class FlakyRepository(InMemoryExecutionRepository):
    """In-memory repository with scripted failures."""

    def __init__(self) -> None:
        super().__init__()
        self.write_failures: Dict[str, List[Exception]] = {}
        self.create_job_error: Optional[Exception] = None
        self.failing_job_statuses: Set[JobStatus] = set()
        self.written: List[str] = []

    async def update_step_reasoning(self, execution_id, step_name, reasoning):
        failures = self.write_failures.get(step_name)
        if failures:
            raise failures.pop(0)
        self.written.append(step_name)
        return await super().update_step_reasoning(execution_id, step_name, reasoning)

    async def create_job(self, job):
        if self.create_job_error is not None:
            raise self.create_job_error
        await super().create_job(job)

    async def update_job(self, job):
        if job.status in self.failing_job_statuses:
            raise RuntimeError(f"could not write {job.status.value} job")
        await super().update_job(job)


def build_execution(execution_id: str = "exec-1", count: int = 3) -> Execution:
    return Execution(
        execution_id=execution_id,
        steps=[
            Step(
                name=f"step_{i}",
                input={"items": list(range(i + 2))},
                output={"items": list(range(i + 1))},
                duration_ms=10 * i,
            )
            for i in range(count)
        ],
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or ``timeout`` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture(autouse=True)
def reset_repository_singleton():
    persistence._repository_instance = None
    yield
    persistence._repository_instance = None


@pytest.fixture
def make_execution():
    return build_execution


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


@pytest.fixture
def flaky_repo():
    return FlakyRepository()
