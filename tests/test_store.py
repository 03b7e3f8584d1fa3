import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from reviewbot.v1.infra.jobs.models import JobStatus, ReviewJob


async def _age_job(store, job_id: int, seconds: int) -> None:
    """Push a job's created_at into the past."""
    async with store.session_factory() as session:
        await session.execute(
            update(ReviewJob)
            .where(ReviewJob.id == job_id)
            .values(created_at=datetime.now(UTC) - timedelta(seconds=seconds))
        )
        await session.commit()


@pytest.mark.asyncio
async def test_enqueue_creates_pending_job(store, make_descriptor):
    descriptor = make_descriptor()
    job_id = await store.enqueue(101, descriptor)

    job = await store.get(job_id)
    assert job is not None
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 0
    assert job.max_attempts == 3
    assert job.started_at is None
    assert job.completed_at is None
    assert job.check_run_id is None
    assert job.repo_full_name == "acme/widgets"
    assert job.commit_sha == descriptor.commit_sha


@pytest.mark.asyncio
async def test_enqueue_honours_explicit_max_attempts(store, make_descriptor):
    job_id = await store.enqueue(101, make_descriptor(), max_attempts=5)
    job = await store.get(job_id)
    assert job.max_attempts == 5


@pytest.mark.asyncio
async def test_claim_returns_none_when_queue_empty(store):
    assert await store.claim_one() is None


@pytest.mark.asyncio
async def test_claim_is_fifo_by_creation_time(store, make_descriptor):
    newer = await store.enqueue(101, make_descriptor(pr_number=1))
    older = await store.enqueue(102, make_descriptor(pr_number=2))
    await _age_job(store, older, 60)

    first = await store.claim_one()
    second = await store.claim_one()

    assert first.id == older
    assert second.id == newer
    assert await store.claim_one() is None


@pytest.mark.asyncio
async def test_claim_marks_job_active_with_start_time(store, make_descriptor):
    job_id = await store.enqueue(101, make_descriptor())

    claimed = await store.claim_one()

    assert claimed.id == job_id
    assert claimed.status == JobStatus.ACTIVE.value
    assert claimed.started_at is not None

    stored = await store.get(job_id)
    assert stored.status == JobStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_claim_skips_excluded_installations(store, make_descriptor):
    first = await store.enqueue(101, make_descriptor(pr_number=1))
    second = await store.enqueue(202, make_descriptor(pr_number=2))
    await _age_job(store, first, 60)

    claimed = await store.claim_one(exclude_tenants={101})
    assert claimed.id == second

    # Only installation 101 has pending work left
    assert await store.claim_one(exclude_tenants={101}) is None
    assert (await store.claim_one()).id == first


@pytest.mark.asyncio
async def test_concurrent_claims_have_single_winner(store, make_descriptor):
    job_id = await store.enqueue(101, make_descriptor())

    results = await asyncio.gather(*(store.claim_one() for _ in range(5)))

    winners = [job for job in results if job is not None]
    assert len(winners) == 1
    assert winners[0].id == job_id


@pytest.mark.asyncio
async def test_concurrent_claims_never_share_a_job(store, make_descriptor):
    for pr in range(1, 4):
        await store.enqueue(100 + pr, make_descriptor(pr_number=pr))

    results = await asyncio.gather(*(store.claim_one() for _ in range(6)))

    claimed_ids = [job.id for job in results if job is not None]
    assert len(claimed_ids) == 3
    assert len(set(claimed_ids)) == 3


@pytest.mark.asyncio
async def test_complete_only_applies_to_active_jobs(store, make_descriptor):
    job_id = await store.enqueue(101, make_descriptor())

    assert await store.complete(job_id) is False

    await store.claim_one()
    assert await store.complete(job_id) is True

    job = await store.get(job_id)
    assert job.status == JobStatus.COMPLETED.value
    assert job.completed_at is not None

    # Completed is terminal
    assert await store.complete(job_id) is False


@pytest.mark.asyncio
async def test_fail_or_requeue_returns_job_to_pending(store, make_descriptor):
    job_id = await store.enqueue(101, make_descriptor())
    await store.claim_one()

    status = await store.fail_or_requeue(job_id, "GitHub returned 502")

    assert status == JobStatus.PENDING
    job = await store.get(job_id)
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 1
    assert job.started_at is None
    assert job.completed_at is None
    assert job.error_message == "GitHub returned 502"


@pytest.mark.asyncio
async def test_fail_or_requeue_exhausts_attempts(store, make_descriptor):
    """Three failed attempts with a ceiling of three leave the job failed."""
    job_id = await store.enqueue(101, make_descriptor())

    observed = []
    for _ in range(3):
        claimed = await store.claim_one()
        assert claimed.id == job_id
        observed.append(await store.fail_or_requeue(job_id, "timeout"))
        observed_attempts = (await store.get(job_id)).attempts
        assert observed_attempts == len(observed)

    assert observed == [JobStatus.PENDING, JobStatus.PENDING, JobStatus.FAILED]

    job = await store.get(job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 3
    assert job.completed_at is not None
    assert job.error_message == "timeout"

    # Nothing left to claim
    assert await store.claim_one() is None


@pytest.mark.asyncio
async def test_fail_or_requeue_ignores_jobs_that_are_not_active(store, make_descriptor):
    job_id = await store.enqueue(101, make_descriptor())

    assert await store.fail_or_requeue(job_id, "boom") is None

    job = await store.get(job_id)
    assert job.attempts == 0
    assert job.error_message is None


@pytest.mark.asyncio
async def test_fail_permanently_skips_remaining_attempts(store, make_descriptor):
    job_id = await store.enqueue(101, make_descriptor())
    await store.claim_one()

    assert await store.fail_permanently(job_id, "No API key configured") is True

    job = await store.get(job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 1
    assert job.error_message == "No API key configured"
    assert job.completed_at is not None

    assert await store.fail_permanently(job_id, "again") is False


@pytest.mark.asyncio
async def test_reset_active_to_pending(store, make_descriptor):
    claimed_id = await store.enqueue(101, make_descriptor(pr_number=1))
    waiting_id = await store.enqueue(102, make_descriptor(pr_number=2))
    await _age_job(store, claimed_id, 60)
    await store.claim_one()

    assert await store.reset_active_to_pending() == 1

    claimed = await store.get(claimed_id)
    assert claimed.status == JobStatus.PENDING.value
    assert claimed.started_at is None
    assert claimed.attempts == 0

    waiting = await store.get(waiting_id)
    assert waiting.status == JobStatus.PENDING.value

    assert await store.reset_active_to_pending() == 0


@pytest.mark.asyncio
async def test_status_counts(store, make_descriptor):
    ids = [await store.enqueue(101 + n, make_descriptor(pr_number=n + 1)) for n in range(4)]
    for job_id in ids:
        await _age_job(store, job_id, 100 - job_id)

    await store.claim_one()
    completed = await store.claim_one()
    await store.complete(completed.id)
    failed = await store.claim_one()
    await store.fail_permanently(failed.id, "bad config")

    stats = await store.status_counts()

    assert stats.pending == 1
    assert stats.active == 1
    assert stats.completed == 1
    assert stats.failed == 1


@pytest.mark.asyncio
async def test_status_counts_empty_queue(store):
    stats = await store.status_counts()
    assert stats.model_dump() == {"pending": 0, "active": 0, "completed": 0, "failed": 0}


@pytest.mark.asyncio
async def test_set_status_handle_is_write_once(store, make_descriptor):
    job_id = await store.enqueue(101, make_descriptor())

    assert await store.set_status_handle(job_id, 555) is True
    assert await store.set_status_handle(job_id, 777) is False

    job = await store.get(job_id)
    assert job.check_run_id == 555


@pytest.mark.asyncio
async def test_status_handle_survives_requeue(store, make_descriptor):
    job_id = await store.enqueue(101, make_descriptor())
    await store.claim_one()
    await store.set_status_handle(job_id, 555)
    await store.fail_or_requeue(job_id, "timeout")

    reclaimed = await store.claim_one()
    assert reclaimed.check_run_id == 555


@pytest.mark.asyncio
async def test_find_latest_for_unit_filters_by_status(store, make_descriptor):
    descriptor = make_descriptor()
    first = await store.enqueue(101, descriptor)
    await store.claim_one()
    await store.complete(first)
    second = await store.enqueue(101, descriptor)

    latest = await store.find_latest_for_unit(
        101, descriptor.repo_full_name, descriptor.pr_number, descriptor.commit_sha
    )
    assert latest.id == second

    completed = await store.find_latest_for_unit(
        101,
        descriptor.repo_full_name,
        descriptor.pr_number,
        descriptor.commit_sha,
        statuses=[JobStatus.COMPLETED.value],
    )
    assert completed.id == first

    other_commit = await store.find_latest_for_unit(
        101, descriptor.repo_full_name, descriptor.pr_number, "ffffffff"
    )
    assert other_commit is None


@pytest.mark.asyncio
async def test_outstanding_unit_is_unique(store, make_descriptor):
    """A second pending job for the same revision is rejected by the database."""
    descriptor = make_descriptor()
    await store.enqueue(101, descriptor)

    with pytest.raises(IntegrityError):
        await store.enqueue(101, descriptor)

    # A different installation is a different unit of work
    await store.enqueue(202, descriptor)


@pytest.mark.asyncio
async def test_list_jobs_filters_and_paginates(store, make_descriptor):
    for n in range(5):
        await store.enqueue(101 if n % 2 == 0 else 202, make_descriptor(pr_number=n + 1))

    jobs, total = await store.list_jobs(installation_id=101)
    assert total == 3
    assert {job.installation_id for job in jobs} == {101}

    page, total = await store.list_jobs(limit=2, offset=0)
    assert total == 5
    assert len(page) == 2

    await store.claim_one()
    active, total = await store.list_jobs(status=[JobStatus.ACTIVE])
    assert total == 1
    assert active[0].status == JobStatus.ACTIVE.value
