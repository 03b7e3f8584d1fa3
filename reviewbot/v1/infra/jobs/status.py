"""
External status objects (GitHub check runs) that mirror a job's phase.
"""

from enum import Enum
from typing import Protocol

from reviewbot.v1.infra.github import GitHubClient
from reviewbot.v1.infra.jobs.models import ReviewJob


class StatusPhase(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class StatusConclusion(str, Enum):
    SUCCESS = "success"
    NEUTRAL = "neutral"
    FAILURE = "failure"


class StatusReporter(Protocol):
    """Creates and updates the status object the job's originator sees."""

    async def create(self, job: ReviewJob) -> int:
        """Create the status object in the queued phase and return its handle."""
        ...

    async def update(
        self,
        job: ReviewJob,
        handle: int,
        phase: StatusPhase,
        title: str,
        summary: str,
        conclusion: StatusConclusion | None = None,
    ) -> None:
        ...


def success_status(summary: str, finding_count: int) -> tuple[StatusConclusion, str, str]:
    """Conclusion, title and summary for a finished review."""
    if finding_count > 0:
        return (
            StatusConclusion.NEUTRAL,
            f"Review complete ({finding_count} findings)",
            summary or "Review completed.",
        )
    return (
        StatusConclusion.SUCCESS,
        "Review complete - no issues found",
        summary or "Review completed.",
    )


def failure_summary(error_message: str) -> str:
    return f"Review could not be completed.\n\n**Error:** {error_message}"


def retry_summary(error_message: str, attempts: int, max_attempts: int) -> str:
    return (
        f"Attempt {attempts} of {max_attempts} failed and the review will be "
        f"retried.\n\n**Error:** {error_message}"
    )


class CheckRunReporter:
    """StatusReporter backed by the GitHub checks API."""

    def __init__(self, client: GitHubClient, check_name: str = "ReviewBot"):
        self.client = client
        self.check_name = check_name

    async def create(self, job: ReviewJob) -> int:
        return await self.client.create_check_run(
            job.installation_id,
            job.owner,
            job.repo,
            {
                "name": self.check_name,
                "head_sha": job.commit_sha,
                "status": StatusPhase.QUEUED.value,
                "output": {
                    "title": "Review queued",
                    "summary": f"Review is queued for processing. PR #{job.pr_number}",
                },
            },
        )

    async def update(
        self,
        job: ReviewJob,
        handle: int,
        phase: StatusPhase,
        title: str,
        summary: str,
        conclusion: StatusConclusion | None = None,
    ) -> None:
        payload: dict[str, object] = {
            "status": phase.value,
            "output": {"title": title, "summary": summary},
        }
        if conclusion is not None:
            payload["conclusion"] = conclusion.value

        await self.client.update_check_run(
            job.installation_id, job.owner, job.repo, handle, payload
        )
