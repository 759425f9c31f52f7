"""Storage for recorded executions and their reasoning jobs.

One repository holds both halves: executions with their steps (the
reasoning column being the only part written after the initial save) and
the reasoning job rows the queue recovers from after a restart.
"""

from __future__ import annotations

import os
from typing import Optional

from ..config import XRayConfig, load_config
from .inmemory import InMemoryExecutionRepository
from .models import JobStats, JobStatus, ReasoningJob
from .repository import ExecutionRepository
from .sqlite import SQLiteExecutionRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresExecutionRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresExecutionRepository = None  # type: ignore

_repository_instance: ExecutionRepository | None = None


def _open_repository(database_url: str) -> ExecutionRepository:
    if database_url.startswith("sqlite://"):
        return SQLiteExecutionRepository(database_url[len("sqlite://"):])
    if database_url.startswith(("postgres://", "postgresql://")):
        if PostgresExecutionRepository is None:
            raise RuntimeError("Postgres support not available; install the 'postgres' extra")
        return PostgresExecutionRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[XRayConfig] = None
) -> ExecutionRepository:
    """Return the process-wide execution and job store.

    ``sqlite://<path>`` and ``postgres(ql)://`` URLs select a durable
    backend, so pending reasoning jobs survive a restart. Without a URL
    (argument, ``XRAY_DATABASE_URL``/``DATABASE_URL``, or ``database_url``
    in the config file) everything lives in memory and is lost on exit.
    The first repository built without explicit arguments is reused.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("XRAY_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if database_url:
        _repository_instance = _open_repository(database_url)
    else:
        _repository_instance = InMemoryExecutionRepository()
    return _repository_instance


__all__ = [
    "ExecutionRepository",
    "InMemoryExecutionRepository",
    "JobStats",
    "JobStatus",
    "PostgresExecutionRepository",
    "ReasoningJob",
    "SQLiteExecutionRepository",
    "get_repository",
]
