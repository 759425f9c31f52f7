"""SQLite implementation of the execution repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..contracts import Execution, Step
from ..errors import DuplicateJobError
from .models import JobStatus, ReasoningJob
from .repository import ExecutionRepository

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS executions (
        execution_id TEXT PRIMARY KEY,
        started_at TEXT NOT NULL,
        ended_at TEXT,
        metadata TEXT,
        final_outcome TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS steps (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        execution_id TEXT NOT NULL REFERENCES executions(execution_id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        name TEXT NOT NULL,
        input TEXT,
        output TEXT,
        error TEXT,
        metadata TEXT,
        timestamp TEXT NOT NULL,
        started_at TEXT,
        ended_at TEXT,
        duration_ms INTEGER,
        reasoning TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS steps_execution_idx ON steps (execution_id, name)",
    """
    CREATE TABLE IF NOT EXISTS reasoning_jobs (
        id TEXT PRIMARY KEY,
        execution_id TEXT NOT NULL,
        step_name TEXT NOT NULL,
        attempt INTEGER NOT NULL DEFAULT 1,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT,
        error TEXT,
        next_retry_at TEXT,
        reasoning TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS reasoning_jobs_status_idx ON reasoning_jobs (status)",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS reasoning_jobs_live_key
    ON reasoning_jobs (execution_id, step_name)
    WHERE status IN ('pending', 'processing')
    """,
)

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


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteExecutionRepository(ExecutionRepository):
    """Persist executions and reasoning jobs using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        # One connection is shared by worker threads; serialize its use.
        self._guard = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._guard:
            cur = self._conn.cursor()
            for statement in SCHEMA:
                cur.execute(statement)
            self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._guard:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._guard:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._guard:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _row_to_step(self, row: sqlite3.Row) -> Step:
        return Step(
            name=row["name"],
            input=_loads(row["input"]),
            output=_loads(row["output"]),
            error=row["error"],
            metadata=_loads(row["metadata"]),
            timestamp=_parse_ts(row["timestamp"]),
            started_at=_parse_ts(row["started_at"]),
            ended_at=_parse_ts(row["ended_at"]),
            duration_ms=row["duration_ms"],
            reasoning=row["reasoning"],
        )

    def _row_to_job(self, row: sqlite3.Row) -> ReasoningJob:
        return ReasoningJob(
            id=row["id"],
            execution_id=row["execution_id"],
            step_name=row["step_name"],
            attempt=row["attempt"],
            status=JobStatus(row["status"]),
            created_at=_parse_ts(row["created_at"]),
            started_at=_parse_ts(row["started_at"]),
            completed_at=_parse_ts(row["completed_at"]),
            error=row["error"],
            next_retry_at=_parse_ts(row["next_retry_at"]),
            reasoning=row["reasoning"],
        )

    def _save_execution(self, execution: Execution) -> None:
        with self._guard:
            cur = self._conn.cursor()
            try:
                cur.execute(
                    """
                    INSERT INTO executions (execution_id, started_at, ended_at, metadata, final_outcome)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT (execution_id) DO UPDATE SET
                        started_at = excluded.started_at,
                        ended_at = excluded.ended_at,
                        metadata = excluded.metadata,
                        final_outcome = excluded.final_outcome
                    """,
                    (
                        execution.execution_id,
                        _ts(execution.started_at),
                        _ts(execution.ended_at),
                        _dumps(execution.metadata),
                        _dumps(execution.final_outcome),
                    ),
                )
                cur.execute(
                    "SELECT name, reasoning FROM steps WHERE execution_id = ? AND reasoning IS NOT NULL",
                    (execution.execution_id,),
                )
                known = {r["name"]: r["reasoning"] for r in cur.fetchall()}
                cur.execute(
                    "DELETE FROM steps WHERE execution_id = ?", (execution.execution_id,)
                )
                for position, step in enumerate(execution.steps):
                    cur.execute(
                        """
                        INSERT INTO steps (execution_id, position, name, input, output, error,
                            metadata, timestamp, started_at, ended_at, duration_ms, reasoning)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            execution.execution_id,
                            position,
                            step.name,
                            _dumps(step.input),
                            _dumps(step.output),
                            step.error,
                            _dumps(step.metadata),
                            _ts(step.timestamp),
                            _ts(step.started_at),
                            _ts(step.ended_at),
                            step.duration_ms,
                            step.reasoning or known.get(step.name),
                        ),
                    )
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _insert_job(self, job: ReasoningJob) -> None:
        try:
            self._execute(
                f"INSERT INTO reasoning_jobs ({JOB_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                job.id,
                job.execution_id,
                job.step_name,
                job.attempt,
                job.status.value,
                _ts(job.created_at),
                _ts(job.started_at),
                _ts(job.completed_at),
                job.error,
                _ts(job.next_retry_at),
                job.reasoning,
            )
        except sqlite3.IntegrityError as exc:
            with self._guard:
                self._conn.rollback()
            raise DuplicateJobError(job.execution_id, job.step_name) from exc

    # ------------------------------------------------------------------
    # Repository API
    async def save_execution(self, execution: Execution) -> None:
        execution.validate_for_save()
        await asyncio.to_thread(self._save_execution, execution)

    async def get_execution(self, execution_id: str) -> Execution | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT execution_id, started_at, ended_at, metadata, final_outcome FROM executions WHERE execution_id = ?",
            execution_id,
        )
        if not row:
            return None
        step_rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM steps WHERE execution_id = ? ORDER BY position",
            execution_id,
        )
        return Execution(
            execution_id=row["execution_id"],
            started_at=_parse_ts(row["started_at"]),
            ended_at=_parse_ts(row["ended_at"]),
            metadata=_loads(row["metadata"]),
            final_outcome=_loads(row["final_outcome"]),
            steps=[self._row_to_step(r) for r in step_rows],
        )

    async def list_executions(self) -> list[Execution]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT execution_id FROM executions ORDER BY started_at",
        )
        executions: list[Execution] = []
        for row in rows:
            execution = await self.get_execution(row["execution_id"])
            if execution is not None:
                executions.append(execution)
        return executions

    async def update_step_reasoning(
        self, execution_id: str, step_name: str, reasoning: str
    ) -> bool:
        updated = await asyncio.to_thread(
            self._execute,
            "UPDATE steps SET reasoning = ? WHERE execution_id = ? AND name = ?",
            reasoning,
            execution_id,
            step_name,
        )
        return updated > 0

    async def create_job(self, job: ReasoningJob) -> None:
        await asyncio.to_thread(self._insert_job, job)

    async def update_job(self, job: ReasoningJob) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE reasoning_jobs
            SET attempt = ?, status = ?, started_at = ?, completed_at = ?,
                error = ?, next_retry_at = ?, reasoning = ?
            WHERE id = ?
            """,
            job.attempt,
            job.status.value,
            _ts(job.started_at),
            _ts(job.completed_at),
            job.error,
            _ts(job.next_retry_at),
            job.reasoning,
            job.id,
        )

    async def get_job(self, job_id: str) -> ReasoningJob | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {JOB_COLUMNS} FROM reasoning_jobs WHERE id = ?",
            job_id,
        )
        return self._row_to_job(row) if row else None

    async def find_jobs_by_status(self, *statuses: JobStatus) -> list[ReasoningJob]:
        if not statuses:
            return []
        placeholders = ", ".join("?" for _ in statuses)
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {JOB_COLUMNS} FROM reasoning_jobs WHERE status IN ({placeholders}) ORDER BY created_at",
            *(s.value for s in statuses),
        )
        return [self._row_to_job(r) for r in rows]

    async def count_jobs_by_status(self) -> dict[str, int]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT status, COUNT(*) AS total FROM reasoning_jobs GROUP BY status",
        )
        return {r["status"]: r["total"] for r in rows}

    def close(self) -> None:
        with self._guard:
            self._conn.close()
