"""ReviewBot CLI - Main Entry Point"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from cli.utils.formatting import (
    create_jobs_table,
    create_stats_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from reviewbot.config.settings import settings
from reviewbot.infra.database import Database
from reviewbot.v1.infra.jobs.models import JobStatus
from reviewbot.v1.infra.jobs.store import JobStore

console = Console()

app = typer.Typer(
    name="reviewbot",
    help="🤖 ReviewBot - durable pull request review queue",
    rich_markup_mode="rich",
)


def _run(coro_fn):
    """Run a coroutine against a store bound to the configured database."""

    async def _main():
        database = Database(settings)
        try:
            store = JobStore(
                database.SessionLocal, default_max_attempts=settings.job_max_attempts
            )
            return await coro_fn(store)
        finally:
            await database.close()

    return asyncio.run(_main())


@app.command()
def serve(
    host: str = typer.Option(settings.host, help="Bind address"),
    port: int = typer.Option(settings.port, help="Bind port"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """🚀 Run the API with the review worker"""
    import uvicorn

    print_info(
        f"Starting worker: concurrency={settings.queue_concurrency}, "
        f"per installation={settings.queue_max_per_tenant}"
    )
    uvicorn.run(
        "reviewbot.main:create_worker_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def stats():
    """📊 Show job counts by status"""
    try:
        counts = _run(lambda store: store.status_counts())
    except Exception as e:
        print_error(f"Failed to read queue: {e}")
        raise typer.Exit(1)

    console.print(create_stats_table(counts))
    if counts.active and counts.pending == 0:
        print_info("No pending work; active jobs are still running")


@app.command()
def recover():
    """🛟 Return active jobs to pending (only while no worker is running)"""
    if not typer.confirm("Stop all workers before recovering. Continue?"):
        raise typer.Abort()

    try:
        # Outcome is reported on the console, not through the app logger
        recovered = _run(lambda store: store.reset_active_to_pending())
    except Exception as e:
        print_error(f"Recovery failed: {e}")
        raise typer.Exit(1)

    if recovered:
        print_warning(f"Recovered {recovered} orphaned job(s)")
    else:
        print_success("No orphaned jobs found")


@app.command()
def jobs(
    status: Optional[JobStatus] = typer.Option(None, help="Filter by status"),
    installation: Optional[int] = typer.Option(None, help="Filter by installation id"),
    limit: int = typer.Option(20, min=1, max=1000, help="Maximum rows"),
):
    """📋 List recent jobs"""

    async def _list(store: JobStore):
        return await store.list_jobs(
            status=[status] if status else None,
            installation_id=installation,
            limit=limit,
        )

    try:
        rows, total = _run(_list)
    except Exception as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1)

    if not rows:
        print_info("No jobs found")
        return

    console.print(create_jobs_table(rows, total))


@app.command()
def version():
    """📎 Show version information"""
    console.print(Panel(
        f"🤖 [bold cyan]{settings.app_name}[/bold cyan]\n\n"
        f"• Version: [green]{settings.version}[/green]\n"
        f"• Environment: [yellow]{settings.environment}[/yellow]",
        title="Version Info",
        border_style="cyan"
    ))


if __name__ == "__main__":
    app()
