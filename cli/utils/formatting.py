"""Rich formatting helpers for queue output"""

from datetime import datetime

from rich import box
from rich.console import Console
from rich.table import Table

from reviewbot.v1.infra.jobs.models import JobStatus, ReviewJob
from reviewbot.v1.infra.jobs.schemas import QueueStats

console = Console()

STATUS_STYLES = {
    JobStatus.PENDING: "yellow",
    JobStatus.ACTIVE: "cyan",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def create_stats_table(stats: QueueStats) -> Table:
    """Create a table of job counts by status"""
    table = Table(title="Review Queue", box=box.ROUNDED)

    table.add_column("Status", justify="left", style="bold")
    table.add_column("Jobs", justify="right")

    for status in JobStatus:
        count = getattr(stats, status.value)
        style = STATUS_STYLES[status]
        table.add_row(f"[{style}]{status.value}[/{style}]", str(count))

    return table


def create_jobs_table(jobs: list[ReviewJob], total: int) -> Table:
    """Create a table of jobs, newest first"""
    table = Table(title=f"Jobs ({len(jobs)} of {total})", box=box.ROUNDED)

    table.add_column("ID", justify="right", style="cyan", no_wrap=True)
    table.add_column("Installation", justify="right")
    table.add_column("Pull Request", justify="left", style="white")
    table.add_column("Commit", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center")
    table.add_column("Created", justify="left", style="dim")
    table.add_column("Error", justify="left", style="red")

    for job in jobs:
        style = STATUS_STYLES.get(JobStatus(job.status), "white")
        table.add_row(
            str(job.id),
            str(job.installation_id),
            f"{job.repo_full_name}#{job.pr_number}",
            job.commit_sha[:8],
            f"[{style}]{job.status}[/{style}]",
            f"{job.attempts}/{job.max_attempts}",
            _format_time(job.created_at),
            _truncate(job.error_message or "—", 40),
        )

    return table


def _format_time(value: datetime | None) -> str:
    if value is None:
        return "—"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."
