"""Composition root wiring repository, explanation chain and queue."""

from __future__ import annotations

import logging
from typing import List, Optional

from .config import XRayConfig, load_config
from .contracts import Execution
from .persistence import ExecutionRepository, get_repository
from .queue import ReasoningQueue
from .reasoning import ExplanationChain

logger = logging.getLogger(__name__)


class ReasoningService:
    """Stores tracked executions and hands them to the reasoning queue."""

    def __init__(
        self,
        repository: ExecutionRepository,
        queue: ReasoningQueue,
        config: Optional[XRayConfig] = None,
    ) -> None:
        self.repository = repository
        self.queue = queue
        self.config = config or XRayConfig()

    async def record(self, execution: Execution) -> List[str]:
        """Persist ``execution`` and, with auto-processing on, enqueue its steps.

        Returns the ids of enqueued reasoning jobs.

        Raises:
            InvalidExecutionError: If the execution has no steps.
        """
        await self.repository.save_execution(execution)
        logger.info(
            f"Saved execution {execution.execution_id} with {len(execution.steps)} steps"
        )
        if not self.config.reasoning.auto_process:
            return []
        return await self.queue.enqueue_execution(execution.execution_id)


def build_service(
    config: Optional[XRayConfig] = None,
    repository: Optional[ExecutionRepository] = None,
    chain: Optional[ExplanationChain] = None,
) -> ReasoningService:
    """Create the process-wide service from configuration.

    Call once at startup, then ``await service.queue.start()`` inside the
    running event loop to recover unfinished jobs.
    """
    config = config or load_config()
    repository = repository or get_repository(config=config)
    chain = chain or ExplanationChain.from_config(config)
    queue = ReasoningQueue(repository, chain, config.reasoning)
    return ReasoningService(repository, queue, config)
