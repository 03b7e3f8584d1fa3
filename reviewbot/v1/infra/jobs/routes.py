"""
Job API endpoints: submission, inspection and queue statistics.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from reviewbot.config.logging import get_logger
from reviewbot.config.settings import Settings, SettingsDep
from reviewbot.infra.database import Database, get_database
from reviewbot.v1.core.exceptions import NotFoundError, create_success_response
from reviewbot.v1.core.idempotency import IdempotencyGuard
from reviewbot.v1.infra.jobs.models import JobStatus
from reviewbot.v1.infra.jobs.schemas import (
    JobEnqueueRequest,
    JobListResponse,
    JobResponse,
)
from reviewbot.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_store(
    request: Request,
    database: Database = Depends(get_database),
    settings: Settings = SettingsDep,
) -> JobStore:
    """Use the running queue's store, or one bound to the app database."""
    queue = getattr(request.app.state, "queue", None)
    if queue is not None:
        return queue.store
    return JobStore(database.SessionLocal, default_max_attempts=settings.job_max_attempts)


def get_guard(
    request: Request,
    store: JobStore = Depends(get_job_store),
    settings: Settings = SettingsDep,
) -> IdempotencyGuard:
    queue = getattr(request.app.state, "queue", None)
    if queue is not None:
        return queue.guard
    return IdempotencyGuard(store, window_seconds=settings.dedupe_window_s)


@router.post("", response_model=dict)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    guard: IdempotencyGuard = Depends(get_guard),
) -> dict[str, Any]:
    """Submit a review job. Duplicate submissions return the existing job."""

    result = await guard.submit(job_request.installation_id, job_request.descriptor)

    logger.info(
        "Job submitted via API",
        job_id=result.job_id,
        installation_id=job_request.installation_id,
        repo=job_request.descriptor.repo_full_name,
        pr=job_request.descriptor.pr_number,
        deduplicated=result.deduplicated,
    )

    return create_success_response(data=result.model_dump(mode="json"))


@router.get("", response_model=dict)
async def list_jobs(
    status: list[JobStatus] | None = Query(
        default=None, description="Filter by status"
    ),
    installation_id: int | None = Query(
        default=None, description="Filter by installation"
    ),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    store: JobStore = Depends(get_job_store),
) -> dict[str, Any]:
    """List jobs, newest first."""

    jobs, total = await store.list_jobs(
        status=status, installation_id=installation_id, limit=limit, offset=offset
    )

    response_data = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )

    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/stats", response_model=dict)
async def get_job_stats(store: JobStore = Depends(get_job_store)) -> dict[str, Any]:
    """Job counts by status."""

    stats = await store.status_counts()
    return create_success_response(data=stats.model_dump())


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: int, store: JobStore = Depends(get_job_store)
) -> dict[str, Any]:
    """Get a specific job by ID."""

    job = await store.get(job_id)
    if not job:
        raise NotFoundError("Job not found", details={"job_id": job_id})

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )
