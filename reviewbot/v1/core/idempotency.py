"""
Idempotency support for review submissions.

Several webhook events can fire for the same pull request revision in quick
succession. The guard collapses them into a single job per
(installation, repository, pull request, commit).
"""

from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import IntegrityError

from reviewbot.config.logging import get_logger
from reviewbot.v1.infra.jobs.models import OUTSTANDING_STATUSES, JobStatus, ReviewJob
from reviewbot.v1.infra.jobs.schemas import SubmissionResult, WorkDescriptor
from reviewbot.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


class IdempotencyGuard:
    """Checks for existing work before enqueueing a review job."""

    def __init__(self, store: JobStore, window_seconds: int = 300):
        self.store = store
        self.window = timedelta(seconds=window_seconds)

    async def submit(
        self, installation_id: int, descriptor: WorkDescriptor
    ) -> SubmissionResult:
        """
        Enqueue a review unless the same unit of work is already covered.

        Skips when a job for the same revision is pending or active, or
        completed within the dedupe window. The partial unique index on
        outstanding jobs catches submissions that race past both checks.
        """
        outstanding = await self._find(installation_id, descriptor, OUTSTANDING_STATUSES)
        if outstanding is not None:
            return self._deduplicated(outstanding, "outstanding")

        completed = await self._find(
            installation_id, descriptor, (JobStatus.COMPLETED.value,)
        )
        if completed is not None and self._within_window(completed):
            return self._deduplicated(completed, "recently_completed")

        try:
            job_id = await self.store.enqueue(installation_id, descriptor)
        except IntegrityError:
            # Another submission inserted the same revision between our check and insert
            existing = await self._find(
                installation_id, descriptor, OUTSTANDING_STATUSES
            )
            if existing is None:
                raise
            return self._deduplicated(existing, "conflict")

        return SubmissionResult(job_id=job_id, status=JobStatus.PENDING)

    async def _find(
        self,
        installation_id: int,
        descriptor: WorkDescriptor,
        statuses: tuple[str, ...],
    ) -> ReviewJob | None:
        return await self.store.find_latest_for_unit(
            installation_id,
            descriptor.repo_full_name,
            descriptor.pr_number,
            descriptor.commit_sha,
            statuses=statuses,
        )

    def _within_window(self, job: ReviewJob) -> bool:
        if job.completed_at is None:
            return False
        completed_at = job.completed_at
        # SQLite hands back naive datetimes; everything is stored in UTC
        if completed_at.tzinfo is None:
            completed_at = completed_at.replace(tzinfo=UTC)
        return datetime.now(UTC) - completed_at < self.window

    def _deduplicated(self, job: ReviewJob, reason: str) -> SubmissionResult:
        logger.info(
            "Job deduplicated",
            job_id=job.id,
            installation_id=job.installation_id,
            repo=job.repo_full_name,
            pr=job.pr_number,
            commit_sha=job.commit_sha,
            reason=reason,
        )
        return SubmissionResult(
            job_id=job.id,
            status=JobStatus(job.status),
            deduplicated=True,
            reason=reason,
        )
