import time
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text

from reviewbot.config.settings import Settings, SettingsDep
from reviewbot.infra.database import Database, get_database
from reviewbot.v1.core.exceptions import create_success_response
from reviewbot.v1.infra.jobs.routes import get_job_store
from reviewbot.v1.infra.jobs.store import JobStore

router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Job queue health status."""

    running: bool
    in_flight: int = 0
    pending: int = 0
    active: int = 0
    failed: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    request: Request,
    settings: Settings = SettingsDep,
    database: Database = Depends(get_database),
    store: JobStore = Depends(get_job_store),
):
    """Health check endpoint with database status, queue counts and uptime."""

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(database)
    overall_ok = db_health.connected

    queue_health = None
    if db_health.connected:
        queue_health = await _check_queue_health(request, store)

    started = getattr(request.app.state, "started_monotonic", None)
    uptime_seconds = round(time.monotonic() - started, 3) if started is not None else None

    health_data = {
        "ok": overall_ok,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "uptime_seconds": uptime_seconds,
        "database": db_health.model_dump(),
        "queue": queue_health.model_dump() if queue_health else None,
    }

    return create_success_response(data=health_data)


async def _check_database_health(database: Database) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = time.perf_counter()

    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

        response_time_ms = (time.perf_counter() - start_time) * 1000
        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(request: Request, store: JobStore) -> QueueHealth:
    """Aggregate job counts plus this process's scheduler state."""
    counts = await store.status_counts()

    queue = getattr(request.app.state, "queue", None)
    scheduler = queue.scheduler if queue is not None else None

    return QueueHealth(
        running=scheduler.running if scheduler else False,
        in_flight=scheduler.in_flight if scheduler else 0,
        pending=counts.pending,
        active=counts.active,
        failed=counts.failed,
    )
