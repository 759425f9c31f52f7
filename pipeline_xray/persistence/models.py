"""Data models for persisted reasoning jobs."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..contracts import utcnow


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


LIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class ReasoningJob(BaseModel):
    """Deferred work: generate and persist the explanation for one step."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    execution_id: str
    step_name: str
    attempt: int = 1
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    reasoning: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.execution_id, self.step_name)


class JobStats(BaseModel):
    """Job counts by status."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total_jobs(self) -> int:
        return self.pending + self.processing + self.completed + self.failed

    @classmethod
    def from_counts(cls, counts: dict[str, int]) -> "JobStats":
        return cls(**{status.value: counts.get(status.value, 0) for status in JobStatus})
