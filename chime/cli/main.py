"""
Chime CLI entry point.

Commands:
    chime run             — Start the bot (Telegram long-poll + scheduler)
    chime jobs            — List scheduled jobs
    chime schedule        — Create a job
    chime cancel          — Cancel a job
    chime agents          — List agents
    chime add-agent       — Create an agent
    chime set-engagement  — Change an agent's engagement factor
    chime logs            — Show today's log
    chime version         — Show version

Job commands write straight to storage. A running `chime run` process
picks the change up on its next reconcile pass.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from chime.core.config import ChimeConfig
from chime.core.errors import ChimeError
from chime.store.sqlite import SQLiteGateway

app = typer.Typer(
    name="chime",
    help="Chime — an engagement-aware chat bot with scheduled messages.",
    add_completion=False,
)

console = Console()

T = TypeVar("T")

DB_OPTION = typer.Option(None, "--db", help="SQLite database path (overrides config)")


def _load_config(db: Path | None) -> ChimeConfig:
    overrides = {"storage": {"db_path": str(db)}} if db else None
    try:
        return ChimeConfig.load(overrides=overrides)
    except ChimeError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)


def _with_gateway(db: Path | None, action: Callable[[SQLiteGateway], Awaitable[T]]) -> T:
    """Run action against the configured database, mapping errors to exit code 1."""
    config = _load_config(db)

    async def _run() -> T:
        gateway = SQLiteGateway(config.get_db_path())
        await gateway.initialize()
        try:
            return await action(gateway)
        finally:
            await gateway.close()

    try:
        return asyncio.run(_run())
    except ChimeError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)


def _format_time(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


# ━━━ Runtime ━━━


@app.command()
def run(
    db: Path = DB_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Start the bot: scheduler plus Telegram long-polling, until Ctrl+C."""
    from chime.core.logging import setup_logging

    setup_logging(console_level=logging.DEBUG if verbose else logging.INFO)
    config = _load_config(db)
    asyncio.run(_run_bot(config))


async def _run_bot(config: ChimeConfig) -> None:
    from chime.runtime import ChimeRuntime

    try:
        runtime = ChimeRuntime.from_config(config)
    except ChimeError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    await runtime.initialize()
    console.print(
        f"[green]Chime is running[/green] "
        f"[dim]({len(runtime.scheduler.scheduled_ids)} job(s) armed, Ctrl+C to stop)[/dim]"
    )
    try:
        await runtime.serve()
    finally:
        await runtime.shutdown()
        console.print("[dim]Stopped.[/dim]")


# ━━━ Jobs ━━━


@app.command()
def jobs(
    db: Path = DB_OPTION,
    all_jobs: bool = typer.Option(False, "--all", "-a", help="Include inactive jobs"),
) -> None:
    """List scheduled jobs."""
    result = _with_gateway(
        db, lambda g: g.find_jobs(active=None if all_jobs else True)
    )
    if not result:
        console.print("[dim]No jobs.[/dim]")
        return

    table = Table(title="Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Due")
    table.add_column("Owner")
    table.add_column("Active")
    table.add_column("Payload")
    for job in result:
        table.add_row(
            job.id,
            job.kind.value,
            _format_time(job.due_at),
            job.owner_id or "-",
            "[green]yes[/green]" if job.active else "[dim]no[/dim]",
            job.payload if len(job.payload) <= 50 else job.payload[:47] + "...",
        )
    console.print(table)


@app.command()
def schedule(
    payload: str = typer.Argument(..., help="Message text, or media file name"),
    at: str = typer.Option(..., "--at", help="Due time, ISO 8601 (e.g. 2025-03-01T09:00)"),
    agent: str = typer.Option(None, "--agent", help="Owning agent id"),
    kind: str = typer.Option("TEXT", "--kind", "-k", help="TEXT, IMAGE, VIDEO or PROMPT"),
    db: Path = DB_OPTION,
) -> None:
    """Create a job."""
    from chime.scheduler.job import Job, JobKind

    try:
        job_kind = JobKind(kind.upper())
    except ValueError:
        console.print(f"[red]Unknown kind: {kind}[/red]")
        raise typer.Exit(1)
    try:
        due_at = datetime.fromisoformat(at).timestamp()
    except ValueError:
        console.print(f"[red]Unrecognised date: {at}[/red]")
        raise typer.Exit(1)

    job = _with_gateway(
        db,
        lambda g: g.create_job(Job(kind=job_kind, payload=payload, due_at=due_at, owner_id=agent)),
    )
    console.print(f"[green]Scheduled {job.kind.value} job {job.id}[/green] for {_format_time(job.due_at)}")


@app.command()
def cancel(
    job_id: str = typer.Argument(..., help="Job id"),
    db: Path = DB_OPTION,
) -> None:
    """Cancel a job (it stays in storage, marked inactive)."""

    async def _cancel(gateway: SQLiteGateway) -> bool:
        job = await gateway.get_job(job_id)
        if job is None:
            return False
        if job.active:
            await gateway.update_job(job_id, active=False)
        return True

    if not _with_gateway(db, _cancel):
        console.print(f"[yellow]No job with id {job_id}[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]Cancelled job {job_id}[/green]")


# ━━━ Agents ━━━


@app.command()
def agents(db: Path = DB_OPTION) -> None:
    """List agents."""
    result = _with_gateway(db, lambda g: g.find_agents())
    if not result:
        console.print("[dim]No agents. Create one with 'chime add-agent'.[/dim]")
        return

    table = Table(title="Agents")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Model")
    table.add_column("Engagement")
    table.add_column("Chat")
    table.add_column("Active")
    for a in result:
        table.add_row(
            a.id,
            a.name,
            a.model or "-",
            f"{a.engagement_factor:.2f}",
            a.linked_chat_id or "-",
            "[green]yes[/green]" if a.is_active else "[dim]no[/dim]",
        )
    console.print(table)


@app.command("add-agent")
def add_agent(
    name: str = typer.Argument(..., help="Agent name (also its mention trigger)"),
    api_key: str = typer.Option("", "--api-key", help="LLM API key for this agent"),
    model: str = typer.Option("", "--model", "-m", help="Chat model (default from config)"),
    chat: str = typer.Option(None, "--chat", help="Telegram chat id to link"),
    context: str = typer.Option("", "--context", help="Long-lived context text"),
    engagement: float = typer.Option(0.5, "--engagement", "-e", help="Engagement factor 0..1"),
    db: Path = DB_OPTION,
) -> None:
    """Create an agent."""
    from chime.store.records import Agent

    async def _create(gateway: SQLiteGateway) -> Agent:
        return await gateway.create_agent(
            Agent(
                name=name,
                api_key=api_key,
                model=model,
                context=context,
                engagement_factor=engagement,
                linked_chat_id=chat,
            )
        )

    created = _with_gateway(db, _create)
    console.print(f"[green]Created agent {created.name}[/green] [dim]({created.id})[/dim]")


@app.command("set-engagement")
def set_engagement(
    agent_id: str = typer.Argument(..., help="Agent id"),
    factor: float = typer.Argument(..., help="New engagement factor 0..1"),
    db: Path = DB_OPTION,
) -> None:
    """Change an agent's engagement factor."""

    async def _update(gateway: SQLiteGateway) -> Any:
        return await gateway.update_agent(agent_id, engagement_factor=factor)

    updated = _with_gateway(db, _update)
    console.print(f"[green]{updated.name}[/green] engagement factor is now {updated.engagement_factor:.2f}")


# ━━━ Misc ━━━


@app.command()
def logs(
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
) -> None:
    """Show the end of today's log."""
    from chime.core.logging import default_log_dir, log_file_for

    log_file = log_file_for(default_log_dir())
    if not log_file.exists():
        console.print(f"[dim]No log file for today: {log_file}[/dim]")
        raise typer.Exit(0)

    with open(log_file, "r", encoding="utf-8") as f:
        all_lines = f.readlines()
    for line in all_lines[-lines:]:
        console.print(line.rstrip(), markup=False)


@app.command()
def version() -> None:
    """Show Chime version."""
    from chime import __version__
    console.print(f"Chime v{__version__}")


if __name__ == "__main__":
    app()
