"""PostgreSQL implementation of the execution repository."""

from __future__ import annotations

import json
from typing import Any, Optional

import asyncpg

from ..contracts import Execution, Step
from ..errors import DuplicateJobError
from .models import JobStatus, ReasoningJob
from .repository import ExecutionRepository

JOB_COLUMNS = (
    "id, execution_id, step_name, attempt, status, created_at, started_at, "
    "completed_at, error, next_retry_at, reasoning"
)


def _dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _loads(value: Optional[str]) -> Any:
    return json.loads(value) if value is not None else None


class PostgresExecutionRepository(ExecutionRepository):
    """Persist executions and reasoning jobs using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                execution_id TEXT PRIMARY KEY,
                started_at TIMESTAMPTZ NOT NULL,
                ended_at TIMESTAMPTZ,
                metadata JSONB,
                final_outcome JSONB
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS steps (
                id SERIAL PRIMARY KEY,
                execution_id TEXT NOT NULL REFERENCES executions(execution_id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                name TEXT NOT NULL,
                input JSONB,
                output JSONB,
                error TEXT,
                metadata JSONB,
                timestamp TIMESTAMPTZ NOT NULL,
                started_at TIMESTAMPTZ,
                ended_at TIMESTAMPTZ,
                duration_ms INTEGER,
                reasoning TEXT
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS steps_execution_idx ON steps (execution_id, name)"
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS reasoning_jobs (
                id TEXT PRIMARY KEY,
                execution_id TEXT NOT NULL,
                step_name TEXT NOT NULL,
                attempt INTEGER NOT NULL DEFAULT 1,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                error TEXT,
                next_retry_at TIMESTAMPTZ,
                reasoning TEXT
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS reasoning_jobs_status_idx ON reasoning_jobs (status)"
        )
        await conn.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS reasoning_jobs_live_key
            ON reasoning_jobs (execution_id, step_name)
            WHERE status IN ('pending', 'processing')
            """
        )

    def _record_to_job(self, r: asyncpg.Record) -> ReasoningJob:
        return ReasoningJob(
            id=r["id"],
            execution_id=r["execution_id"],
            step_name=r["step_name"],
            attempt=r["attempt"],
            status=JobStatus(r["status"]),
            created_at=r["created_at"],
            started_at=r["started_at"],
            completed_at=r["completed_at"],
            error=r["error"],
            next_retry_at=r["next_retry_at"],
            reasoning=r["reasoning"],
        )

    # ------------------------------------------------------------------
    async def save_execution(self, execution: Execution) -> None:
        execution.validate_for_save()
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO executions (execution_id, started_at, ended_at, metadata, final_outcome)
                    VALUES ($1, $2, $3, $4, $5)
                    ON CONFLICT (execution_id) DO UPDATE SET
                        started_at = EXCLUDED.started_at,
                        ended_at = EXCLUDED.ended_at,
                        metadata = EXCLUDED.metadata,
                        final_outcome = EXCLUDED.final_outcome
                    """,
                    execution.execution_id,
                    execution.started_at,
                    execution.ended_at,
                    _dumps(execution.metadata),
                    _dumps(execution.final_outcome),
                )
                rows = await conn.fetch(
                    """
                    SELECT name, reasoning FROM steps
                    WHERE execution_id = $1 AND reasoning IS NOT NULL
                    FOR UPDATE
                    """,
                    execution.execution_id,
                )
                known = {r["name"]: r["reasoning"] for r in rows}
                await conn.execute(
                    "DELETE FROM steps WHERE execution_id = $1", execution.execution_id
                )
                await conn.executemany(
                    """
                    INSERT INTO steps (execution_id, position, name, input, output, error,
                        metadata, timestamp, started_at, ended_at, duration_ms, reasoning)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                    """,
                    [
                        (
                            execution.execution_id,
                            position,
                            step.name,
                            _dumps(step.input),
                            _dumps(step.output),
                            step.error,
                            _dumps(step.metadata),
                            step.timestamp,
                            step.started_at,
                            step.ended_at,
                            step.duration_ms,
                            step.reasoning or known.get(step.name),
                        )
                        for position, step in enumerate(execution.steps)
                    ],
                )
        finally:
            await conn.close()

    async def get_execution(self, execution_id: str) -> Execution | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT execution_id, started_at, ended_at, metadata, final_outcome FROM executions WHERE execution_id = $1",
                execution_id,
            )
            if not row:
                return None
            step_rows = await conn.fetch(
                "SELECT * FROM steps WHERE execution_id = $1 ORDER BY position",
                execution_id,
            )
        finally:
            await conn.close()
        steps = [
            Step(
                name=r["name"],
                input=_loads(r["input"]),
                output=_loads(r["output"]),
                error=r["error"],
                metadata=_loads(r["metadata"]),
                timestamp=r["timestamp"],
                started_at=r["started_at"],
                ended_at=r["ended_at"],
                duration_ms=r["duration_ms"],
                reasoning=r["reasoning"],
            )
            for r in step_rows
        ]
        return Execution(
            execution_id=row["execution_id"],
            started_at=row["started_at"],
            ended_at=row["ended_at"],
            metadata=_loads(row["metadata"]),
            final_outcome=_loads(row["final_outcome"]),
            steps=steps,
        )

    async def list_executions(self) -> list[Execution]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT execution_id FROM executions ORDER BY started_at"
            )
        finally:
            await conn.close()
        executions: list[Execution] = []
        for r in rows:
            execution = await self.get_execution(r["execution_id"])
            if execution is not None:
                executions.append(execution)
        return executions

    async def update_step_reasoning(
        self, execution_id: str, step_name: str, reasoning: str
    ) -> bool:
        conn = await self._connect()
        try:
            async with conn.transaction():
                # Waits out a concurrent save_execution, which holds the
                # execution row while it rewrites the steps.
                found = await conn.fetchval(
                    "SELECT 1 FROM executions WHERE execution_id = $1 FOR SHARE",
                    execution_id,
                )
                if not found:
                    return False
                status = await conn.execute(
                    "UPDATE steps SET reasoning = $1 WHERE execution_id = $2 AND name = $3",
                    reasoning,
                    execution_id,
                    step_name,
                )
        finally:
            await conn.close()
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        return not status.endswith(" 0")

    # ------------------------------------------------------------------
    async def create_job(self, job: ReasoningJob) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO reasoning_jobs ({JOB_COLUMNS}) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)",
                job.id,
                job.execution_id,
                job.step_name,
                job.attempt,
                job.status.value,
                job.created_at,
                job.started_at,
                job.completed_at,
                job.error,
                job.next_retry_at,
                job.reasoning,
            )
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateJobError(job.execution_id, job.step_name) from exc
        finally:
            await conn.close()

    async def update_job(self, job: ReasoningJob) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE reasoning_jobs
                SET attempt = $1, status = $2, started_at = $3, completed_at = $4,
                    error = $5, next_retry_at = $6, reasoning = $7
                WHERE id = $8
                """,
                job.attempt,
                job.status.value,
                job.started_at,
                job.completed_at,
                job.error,
                job.next_retry_at,
                job.reasoning,
                job.id,
            )
        finally:
            await conn.close()

    async def get_job(self, job_id: str) -> ReasoningJob | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {JOB_COLUMNS} FROM reasoning_jobs WHERE id = $1", job_id
            )
        finally:
            await conn.close()
        return self._record_to_job(row) if row else None

    async def find_jobs_by_status(self, *statuses: JobStatus) -> list[ReasoningJob]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {JOB_COLUMNS} FROM reasoning_jobs WHERE status = ANY($1::text[]) ORDER BY created_at",
                [s.value for s in statuses],
            )
        finally:
            await conn.close()
        return [self._record_to_job(r) for r in rows]

    async def count_jobs_by_status(self) -> dict[str, int]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT status, COUNT(*) AS total FROM reasoning_jobs GROUP BY status"
            )
        finally:
            await conn.close()
        return {r["status"]: r["total"] for r in rows}
