"""
CLI: ``jobqueue`` - operator commands and process entry points.
"""

import asyncio
import json
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict

import typer
from rich.console import Console
from rich.table import Table

from jobqueue.constants import DEFAULT_DLQ_INSPECT_LIMIT
from jobqueue.db import close_db, init_db
from jobqueue.engine.container import Engine
from jobqueue.errors import JobQueueError, NotFound
from jobqueue.observability.logging import setup_logging
from jobqueue.types.api import DeadLetterResponse
from jobqueue.types.job import DeadLetterRecord
from jobqueue.types.payloads import ValidationError, validate_payload

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(no_args_is_help=True, help="Idempotent job queue.")
dlq_app = typer.Typer(no_args_is_help=True, help="Dead-letter queue commands.")
app.add_typer(dlq_app, name="dlq")


@asynccontextmanager
async def open_engine() -> AsyncIterator[Engine]:
    """Connect to the database and build the engine for one command."""
    await init_db()
    try:
        yield Engine.from_settings()
    finally:
        await close_db()


def _record_to_dict(record: DeadLetterRecord) -> dict:
    return DeadLetterResponse.model_validate(asdict(record)).model_dump(mode="json", by_alias=True)


def _fail(message: str) -> None:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=1)


# ── dlq ──────────────────────────────────────────────────────────────────


async def _inspect(limit: int) -> list[DeadLetterRecord]:
    async with open_engine() as engine:
        return await engine.escalator.inspect(limit)


async def _show(record_id: str) -> DeadLetterRecord:
    async with open_engine() as engine:
        return await engine.escalator.get(record_id)


async def _replay(record_id: str) -> str:
    async with open_engine() as engine:
        return await engine.escalator.replay(record_id)


@dlq_app.command("inspect")
def inspect_dead_letters(
    limit: int = typer.Option(DEFAULT_DLQ_INSPECT_LIMIT, "--limit", "-n", min=1),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the most recent dead-letter records."""
    setup_logging("cli")
    try:
        records = asyncio.run(_inspect(limit))
    except JobQueueError as e:
        _fail(str(e))

    if json_out:
        console.print_json(json.dumps([_record_to_dict(r) for r in records]))
        return

    if not records:
        console.print("[dim]No jobs in the dead letter queue[/dim]")
        return

    table = Table(title=f"Dead Letters ({len(records)})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Type")
    table.add_column("Queue")
    table.add_column("Attempts", justify="right")
    table.add_column("Failed At")
    table.add_column("Replays", justify="right")
    table.add_column("Reason")

    for record in records:
        table.add_row(
            str(record.id),
            record.job_type,
            record.queue,
            str(record.attempts_made),
            record.failed_at.isoformat(),
            str(record.replay_count),
            record.failed_reason,
        )

    console.print(table)


@dlq_app.command("show")
def show_dead_letter(
    record_id: str = typer.Argument(..., help="Dead-letter record ID"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one dead-letter record with its payload."""
    setup_logging("cli")
    try:
        record = asyncio.run(_show(record_id))
    except JobQueueError as e:
        _fail(str(e))

    if json_out:
        console.print_json(json.dumps(_record_to_dict(record)))
        return

    console.print(f"[bold]Dead letter[/bold] [cyan]{record.id}[/cyan]")
    console.print(f"  Job:       {record.original_job_id}")
    console.print(f"  Type:      {record.job_type} ({record.queue})")
    console.print(f"  Attempts:  {record.attempts_made}")
    console.print(f"  Failed at: {record.failed_at.isoformat()}")
    console.print(f"  Reason:    {record.failed_reason}")
    console.print(f"  Replays:   {record.replay_count}")
    if record.last_replay_job_id:
        console.print(f"  Last replay job: {record.last_replay_job_id}")
    console.print("  Payload:")
    console.print_json(json.dumps(record.payload))


@dlq_app.command("replay")
def replay_dead_letter(
    record_id: str = typer.Argument(..., help="Dead-letter record ID"),
) -> None:
    """Re-enqueue a dead-lettered job on its original queue."""
    setup_logging("cli")
    try:
        job_id = asyncio.run(_replay(record_id))
    except NotFound as e:
        _fail(str(e))
    except JobQueueError as e:
        _fail(f"Replay failed: {e}")

    console.print(f"[green]Replayed[/green] {record_id} as job [cyan]{job_id}[/cyan]")


# ── producer ─────────────────────────────────────────────────────────────


async def _enqueue(job_type: str, payload: dict, key: str):
    async with open_engine() as engine:
        engine.router.route_for(job_type)
        validate_payload(job_type, payload)
        return await engine.router.enqueue(job_type, payload, key)


@app.command("enqueue")
def enqueue(
    job_type: str = typer.Argument(..., help="Job type, e.g. welcome-email"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    key: str | None = typer.Option(None, "--key", "-k", help="Idempotency key"),
) -> None:
    """Enqueue a job without going through the HTTP API."""
    setup_logging("cli")
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON payload: {e}")
    if not isinstance(data, dict):
        _fail("Payload must be a JSON object")

    key = key or f"system:{job_type}:startup-{int(time.time() * 1000)}"

    try:
        result = asyncio.run(_enqueue(job_type, data, key))
    except ValidationError as e:
        _fail(f"Invalid payload for {job_type}: {e.error_count()} error(s)\n{e}")
    except JobQueueError as e:
        _fail(str(e))

    status = "Enqueued" if result.created else "Already enqueued"
    console.print(f"[green]{status}[/green] job [cyan]{result.job_id}[/cyan]")


# ── processes ────────────────────────────────────────────────────────────


@app.command("worker")
def worker() -> None:
    """Run the worker process."""
    from jobqueue.worker.main import run

    run()


@app.command("reaper")
def reaper() -> None:
    """Run the lease reaper."""
    from jobqueue.reaper.main import run

    run()


@app.command("scheduler")
def scheduler() -> None:
    """Run the heartbeat scheduler."""
    from jobqueue.scheduler.main import run

    run()


@app.command("api")
def api() -> None:
    """Run the HTTP API server."""
    from jobqueue.api.main import run

    run()


if __name__ == "__main__":
    app()
