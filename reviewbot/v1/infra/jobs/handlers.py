"""
Job handler boundary for review jobs.

Maps the outcome of one execution attempt onto store transitions and onto
the external status object. Status object failures are logged and never
change the outcome already recorded in the store.
"""

import time

import structlog

from reviewbot.config.logging import bind_job_context, get_logger
from reviewbot.v1.core.exceptions import NonRetryableError, TenantConfigurationError
from reviewbot.v1.infra.jobs.backoff import is_retryable_error
from reviewbot.v1.infra.jobs.models import JobStatus, ReviewJob
from reviewbot.v1.infra.jobs.pipeline import ReviewExecutor
from reviewbot.v1.infra.jobs.schemas import TenantConfig, WorkDescriptor
from reviewbot.v1.infra.jobs.status import (
    StatusConclusion,
    StatusPhase,
    StatusReporter,
    failure_summary,
    retry_summary,
    success_status,
)
from reviewbot.v1.infra.jobs.store import JobStore
from reviewbot.v1.infra.tenants import TenantConfigProvider

logger = get_logger(__name__)


def descriptor_for(job: ReviewJob) -> WorkDescriptor:
    return WorkDescriptor(
        owner=job.owner,
        repo=job.repo,
        repo_full_name=job.repo_full_name,
        pr_number=job.pr_number,
        pr_title=job.pr_title,
        commit_sha=job.commit_sha,
        base_branch=job.base_branch,
    )


class ReviewJobHandler:
    """
    Runs one claimed review job.

    Steps:
    1. Resolve the installation's configuration (fail fast when unusable)
    2. Create or reuse the check run and mark it in progress
    3. Execute the review
    4. Record completion or failure in the store, then on the check run
    """

    def __init__(
        self,
        store: JobStore,
        tenants: TenantConfigProvider,
        executor: ReviewExecutor,
        reporter: StatusReporter | None = None,
    ):
        self.store = store
        self.tenants = tenants
        self.executor = executor
        self.reporter = reporter

    async def handle(self, job: ReviewJob) -> None:
        """Process a single job; never raises for job-level failures."""
        structlog.contextvars.clear_contextvars()
        bind_job_context(
            job.id, job.installation_id, repo=job.repo_full_name, pr=job.pr_number
        )
        started = time.monotonic()
        logger.info("Processing job started", attempts=job.attempts)

        try:
            config = await self.tenants.lookup(job.installation_id)
        except Exception as e:
            logger.exception("Tenant configuration lookup failed", error=str(e))
            await self._fail(job, await self._ensure_status_object(job), e)
            return

        handle = await self._ensure_status_object(job)

        problem = self._configuration_problem(config)
        if problem is not None:
            await self._fail(job, handle, TenantConfigurationError(problem, job.installation_id))
            return

        await self._report(
            job,
            handle,
            StatusPhase.IN_PROGRESS,
            "Review in progress",
            "Analyzing your PR changes...",
        )

        try:
            result = await self.executor.execute(descriptor_for(job), config)
        except Exception as e:
            logger.exception(
                "Processing job failed",
                error=str(e),
                retryable=is_retryable_error(e),
            )
            await self._fail(job, handle, e)
            return

        try:
            await self.store.complete(job.id)
        except Exception as e:
            # The review was posted; the job stays active until recovery re-runs it
            logger.exception("Failed to record job completion", error=str(e))

        conclusion, title, summary = success_status(result.summary, result.finding_count)
        await self._report(
            job, handle, StatusPhase.COMPLETED, title, summary, conclusion
        )

        logger.info(
            "Processing job completed successfully",
            findings=result.finding_count,
            prompt_tokens=result.usage.prompt_tokens if result.usage else 0,
            completion_tokens=result.usage.completion_tokens if result.usage else 0,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    @staticmethod
    def _configuration_problem(config: TenantConfig | None) -> str | None:
        if config is None:
            return "Installation not found"
        if not config.enabled:
            return "Reviews disabled for this installation"
        if not config.api_key:
            return "No API key configured"
        return None

    async def _fail(self, job: ReviewJob, handle: int | None, error: Exception) -> None:
        message = str(error) or error.__class__.__name__

        try:
            if isinstance(error, NonRetryableError):
                failed = await self.store.fail_permanently(job.id, message)
                status = JobStatus.FAILED if failed else None
            else:
                status = await self.store.fail_or_requeue(job.id, message)
        except Exception as e:
            logger.exception("Failed to record job failure", error=str(e), cause=message)
            status = JobStatus.FAILED

        if status is None:
            return

        if status == JobStatus.PENDING:
            await self._report(
                job,
                handle,
                StatusPhase.QUEUED,
                "Review retry scheduled",
                retry_summary(message, job.attempts + 1, job.max_attempts),
            )
            return

        await self._report(
            job,
            handle,
            StatusPhase.COMPLETED,
            "Review failed",
            failure_summary(message),
            StatusConclusion.FAILURE,
        )

    async def _ensure_status_object(self, job: ReviewJob) -> int | None:
        """Reuse the job's check run, or create one. Best effort."""
        if self.reporter is None:
            return None
        if job.check_run_id is not None:
            return job.check_run_id

        try:
            handle = await self.reporter.create(job)
        except Exception as e:
            logger.warning("Failed to create check run", error=str(e))
            return None

        try:
            await self.store.set_status_handle(job.id, handle)
        except Exception as e:
            logger.warning("Failed to store check run id", check_run_id=handle, error=str(e))
        return handle

    async def _report(
        self,
        job: ReviewJob,
        handle: int | None,
        phase: StatusPhase,
        title: str,
        summary: str,
        conclusion: StatusConclusion | None = None,
    ) -> None:
        if self.reporter is None or handle is None:
            return

        try:
            await self.reporter.update(job, handle, phase, title, summary, conclusion)
        except Exception as e:
            logger.warning(
                "Failed to update check run",
                check_run_id=handle,
                phase=phase.value,
                error=str(e),
            )
