"""Command line interface for inspecting executions and generating reasoning."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from pipeline_xray.config import load_config
from pipeline_xray.errors import ExecutionNotFoundError
from pipeline_xray.persistence import get_repository
from pipeline_xray.service import ReasoningService, build_service

app = typer.Typer(help="CLI for pipeline-xray")

# Command groups
reasoning_app = typer.Typer(help="Commands for generating step reasoning")
execution_app = typer.Typer(help="Commands for inspecting executions")

app.add_typer(reasoning_app, name="reasoning")
app.add_typer(execution_app, name="execution")


@app.callback()
def main(debug: bool = typer.Option(False, help="Enable verbose logging")) -> None:
    """pipeline-xray CLI entry point."""
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO)


def _service() -> ReasoningService:
    return build_service(load_config(), repository=get_repository())


async def _process(service: ReasoningService, execution_ids: list[str]) -> int:
    queue = service.queue
    await queue.recover()
    failures = 0
    for index, execution_id in enumerate(execution_ids, start=1):
        typer.echo(f"[{index}/{len(execution_ids)}] Processing execution: {execution_id}")
        try:
            job_ids = await queue.process_execution(execution_id)
        except ExecutionNotFoundError as exc:
            typer.secho(f"    Error: {exc}", fg=typer.colors.RED)
            failures += 1
            continue
        typer.echo(f"    {len(job_ids)} step(s) queued")
    await queue.drain()
    return failures


@reasoning_app.command("process")
def reasoning_process(
    execution_id: Optional[str] = typer.Argument(None),
    all_executions: bool = typer.Option(False, "--all", help="Process every execution"),
) -> None:
    """
    Generate missing reasoning for one execution or all of them.

    Blocks until every queued job has completed or failed, then prints the
    queue statistics.

    Example:
        xray reasoning process exec-abc123
        xray reasoning process --all
    """
    if not execution_id and not all_executions:
        typer.echo("Usage: xray reasoning process <execution_id> | --all")
        raise typer.Exit(code=1)

    service = _service()

    async def run() -> int:
        if all_executions:
            executions = await service.repository.list_executions()
            ids = [e.execution_id for e in executions]
            if not ids:
                typer.echo("No executions found to process.")
                return 0
        else:
            ids = [execution_id]
        return await _process(service, ids)

    failures = asyncio.run(run())
    stats = service.queue.get_stats()
    typer.echo(
        f"Completed: {stats.completed}  Failed: {stats.failed}  "
        f"Pending: {stats.pending}  Total: {stats.total_jobs}"
    )
    if failures and not all_executions:
        raise typer.Exit(code=1)


@reasoning_app.command("stats")
def reasoning_stats() -> None:
    """Show reasoning job counts recorded in the repository."""
    service = _service()
    stats = asyncio.run(service.queue.get_stats_from_database())
    typer.echo(f"pending\t{stats.pending}")
    typer.echo(f"processing\t{stats.processing}")
    typer.echo(f"completed\t{stats.completed}")
    typer.echo(f"failed\t{stats.failed}")
    typer.echo(f"total\t{stats.total_jobs}")


@execution_app.command("list")
def execution_list() -> None:
    """List stored executions with step counts and reasoning coverage."""
    service = _service()
    executions = asyncio.run(service.repository.list_executions())
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        explained = len(execution.steps) - len(execution.steps_missing_reasoning())
        typer.echo(
            f"{execution.execution_id}\t{len(execution.steps)} steps\t"
            f"{explained} explained"
        )


@execution_app.command("show")
def execution_show(execution_id: str) -> None:
    """Show the steps of an execution with their reasoning."""
    service = _service()
    execution = asyncio.run(service.repository.get_execution(execution_id))
    if execution is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)
    typer.echo(f"Execution {execution.execution_id} (started {execution.started_at})")
    for step in execution.steps:
        status = "error" if step.failed else "ok"
        typer.echo(f"- {step.name} [{status}] {step.duration_ms or 0}ms")
        typer.echo(f"    {step.reasoning or '(no reasoning yet)'}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
