"""
Durable job store for review jobs.

Every operation opens its own session and commits before returning, so the
database is the single source of truth shared by all pollers. Store errors
(connectivity loss and the like) are not retried here; callers decide.
"""

from collections.abc import Iterable
from datetime import UTC, datetime

from sqlalchemy import (
    TIMESTAMP,
    and_,
    case,
    desc,
    func,
    literal,
    null,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from reviewbot.config.logging import get_logger
from reviewbot.v1.infra.jobs.models import JobStatus, ReviewJob
from reviewbot.v1.infra.jobs.schemas import QueueStats, WorkDescriptor

logger = get_logger(__name__)


class JobStore:
    """Postgres-backed table of review jobs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        default_max_attempts: int = 3,
    ):
        self.session_factory = session_factory
        self.default_max_attempts = default_max_attempts

    async def enqueue(
        self,
        installation_id: int,
        descriptor: WorkDescriptor,
        max_attempts: int | None = None,
    ) -> int:
        """Insert a new pending job. Duplicate detection lives a layer above."""
        job = ReviewJob(
            installation_id=installation_id,
            owner=descriptor.owner,
            repo=descriptor.repo,
            repo_full_name=descriptor.repo_full_name,
            pr_number=descriptor.pr_number,
            pr_title=descriptor.pr_title,
            commit_sha=descriptor.commit_sha,
            base_branch=descriptor.base_branch,
            status=JobStatus.PENDING.value,
            attempts=0,
            max_attempts=max_attempts or self.default_max_attempts,
            created_at=datetime.now(UTC),
        )

        async with self.session_factory() as session:
            session.add(job)
            await session.flush()
            job_id = job.id
            await session.commit()

        logger.info(
            "Job enqueued",
            job_id=job_id,
            installation_id=installation_id,
            repo=descriptor.repo_full_name,
            pr=descriptor.pr_number,
            commit_sha=descriptor.commit_sha,
        )
        return job_id

    async def claim_one(
        self, exclude_tenants: Iterable[int] = ()
    ) -> ReviewJob | None:
        """
        Atomically move the oldest eligible pending job to active.

        The candidate row is selected with FOR UPDATE SKIP LOCKED inside the
        UPDATE itself, so a row being evaluated by one claimer is invisible
        to every concurrent claimer. The outer status predicate keeps the
        statement safe on stores that ignore the locking clause.
        """
        excluded = sorted(set(exclude_tenants))
        now = datetime.now(UTC)

        # Aliased so the subquery is not correlated against the UPDATE target
        pending = aliased(ReviewJob)
        candidate = (
            select(pending.id)
            .where(
                and_(
                    pending.status == JobStatus.PENDING.value,
                    pending.attempts < pending.max_attempts,
                )
            )
            .order_by(pending.created_at, pending.id)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        if excluded:
            candidate = candidate.where(pending.installation_id.not_in(excluded))

        claim = (
            update(ReviewJob)
            .where(
                and_(
                    ReviewJob.id == candidate.scalar_subquery(),
                    ReviewJob.status == JobStatus.PENDING.value,
                )
            )
            .values(status=JobStatus.ACTIVE.value, started_at=now)
            .returning(ReviewJob)
        )

        async with self.session_factory() as session:
            result = await session.execute(claim)
            job = result.scalar_one_or_none()
            await session.commit()

        if job is not None:
            logger.info("Claimed job", **job.log_context(), attempts=job.attempts)
        return job

    async def complete(self, job_id: int) -> bool:
        """Mark an active job completed."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(ReviewJob)
                .where(
                    and_(
                        ReviewJob.id == job_id,
                        ReviewJob.status == JobStatus.ACTIVE.value,
                    )
                )
                .values(
                    status=JobStatus.COMPLETED.value,
                    completed_at=datetime.now(UTC),
                )
            )
            await session.commit()

        updated = result.rowcount > 0
        if not updated:
            logger.warning("Complete ignored for job that is not active", job_id=job_id)
        return updated

    async def fail_or_requeue(
        self, job_id: int, error_message: str
    ) -> JobStatus | None:
        """
        Record a failed attempt.

        The job returns to pending with its start time cleared while attempts
        remain, and becomes failed once attempts reach max_attempts. The
        error is recorded either way. Returns the new status, or None when the
        job was not active.
        """
        exhausted = ReviewJob.attempts + 1 >= ReviewJob.max_attempts
        now = literal(datetime.now(UTC), TIMESTAMP(timezone=True))

        async with self.session_factory() as session:
            result = await session.execute(
                update(ReviewJob)
                .where(
                    and_(
                        ReviewJob.id == job_id,
                        ReviewJob.status == JobStatus.ACTIVE.value,
                    )
                )
                .values(
                    attempts=ReviewJob.attempts + 1,
                    status=case(
                        (exhausted, JobStatus.FAILED.value),
                        else_=JobStatus.PENDING.value,
                    ),
                    started_at=case((exhausted, ReviewJob.started_at), else_=null()),
                    completed_at=case((exhausted, now), else_=null()),
                    error_message=error_message,
                )
                .returning(ReviewJob.status, ReviewJob.attempts)
            )
            row = result.one_or_none()
            await session.commit()

        if row is None:
            logger.warning("Failure ignored for job that is not active", job_id=job_id)
            return None

        status = JobStatus(row.status)
        logger.info(
            "Job attempt failed",
            job_id=job_id,
            attempts=row.attempts,
            status=status.value,
            error=error_message,
        )
        return status

    async def fail_permanently(self, job_id: int, error_message: str) -> bool:
        """Fail an active job now, without spending its remaining attempts."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(ReviewJob)
                .where(
                    and_(
                        ReviewJob.id == job_id,
                        ReviewJob.status == JobStatus.ACTIVE.value,
                    )
                )
                .values(
                    status=JobStatus.FAILED.value,
                    attempts=case(
                        (
                            ReviewJob.attempts < ReviewJob.max_attempts,
                            ReviewJob.attempts + 1,
                        ),
                        else_=ReviewJob.max_attempts,
                    ),
                    error_message=error_message,
                    completed_at=datetime.now(UTC),
                )
            )
            await session.commit()

        if result.rowcount == 0:
            logger.warning("Failure ignored for job that is not active", job_id=job_id)
            return False

        logger.info("Job failed permanently", job_id=job_id, error=error_message)
        return True

    async def reset_active_to_pending(self) -> int:
        """Move every active job back to pending. Returns the number moved."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(ReviewJob)
                .where(ReviewJob.status == JobStatus.ACTIVE.value)
                .values(status=JobStatus.PENDING.value, started_at=None)
            )
            await session.commit()
        return result.rowcount

    async def status_counts(self) -> QueueStats:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ReviewJob.status, func.count(ReviewJob.id)).group_by(
                    ReviewJob.status
                )
            )
            by_status = dict(result.all())

        return QueueStats(
            pending=by_status.get(JobStatus.PENDING.value, 0),
            active=by_status.get(JobStatus.ACTIVE.value, 0),
            completed=by_status.get(JobStatus.COMPLETED.value, 0),
            failed=by_status.get(JobStatus.FAILED.value, 0),
        )

    async def set_status_handle(self, job_id: int, check_run_id: int) -> bool:
        """Store the external status handle once; later calls change nothing."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(ReviewJob)
                .where(
                    and_(ReviewJob.id == job_id, ReviewJob.check_run_id.is_(None))
                )
                .values(check_run_id=check_run_id)
            )
            await session.commit()
        return result.rowcount > 0

    async def get(self, job_id: int) -> ReviewJob | None:
        async with self.session_factory() as session:
            return await session.get(ReviewJob, job_id)

    async def find_latest_for_unit(
        self,
        installation_id: int,
        repo_full_name: str,
        pr_number: int,
        commit_sha: str,
        statuses: Iterable[str] | None = None,
    ) -> ReviewJob | None:
        """Most recent job for one unit of work, optionally limited by status."""
        query = select(ReviewJob).where(
            and_(
                ReviewJob.installation_id == installation_id,
                ReviewJob.repo_full_name == repo_full_name,
                ReviewJob.pr_number == pr_number,
                ReviewJob.commit_sha == commit_sha,
            )
        )
        if statuses is not None:
            query = query.where(ReviewJob.status.in_(list(statuses)))

        query = query.order_by(desc(ReviewJob.created_at), desc(ReviewJob.id)).limit(1)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalar_one_or_none()

    async def list_jobs(
        self,
        status: list[JobStatus] | None = None,
        installation_id: int | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ReviewJob], int]:
        """Newest-first page of jobs plus the total matching count."""
        base_query = select(ReviewJob)
        if status:
            base_query = base_query.where(
                ReviewJob.status.in_([s.value for s in status])
            )
        if installation_id is not None:
            base_query = base_query.where(ReviewJob.installation_id == installation_id)

        async with self.session_factory() as session:
            count_query = select(func.count()).select_from(base_query.subquery())
            total = (await session.execute(count_query)).scalar() or 0

            jobs_result = await session.execute(
                base_query.order_by(desc(ReviewJob.created_at), desc(ReviewJob.id))
                .offset(offset)
                .limit(limit)
            )
            jobs = list(jobs_result.scalars().all())

        return jobs, total

