"""
Polling scheduler that claims review jobs with bounded concurrency.
"""

import asyncio
import os
import socket
from collections import Counter
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from reviewbot.config.logging import get_logger
from reviewbot.config.settings import Settings
from reviewbot.v1.infra.jobs.models import ReviewJob
from reviewbot.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


class JobHandler(Protocol):
    """Single-method capability that runs one claimed job to a store outcome."""

    async def handle(self, job: ReviewJob) -> None:
        ...


class JobScheduler:
    """
    Claims one job per tick and dispatches it to the handler.

    Features:
    - Global concurrency ceiling for this process
    - Per-installation ceiling passed to the store as a claim exclusion set
    - Store errors skip the tick instead of stopping the loop
    - Graceful shutdown: stop claiming, then drain in-flight jobs

    The in-flight counters are only touched from the event loop thread, in
    code paths without an await between read and write.
    """

    def __init__(
        self,
        store: JobStore,
        handler: JobHandler,
        concurrency: int = 3,
        max_per_tenant: int = 1,
        poll_interval_ms: int = 1000,
    ):
        self.store = store
        self.handler = handler
        self.concurrency = concurrency
        self.max_per_tenant = max_per_tenant
        self.poll_interval_ms = poll_interval_ms
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"

        self._stopping = asyncio.Event()
        self._loop_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._in_flight_by_tenant: Counter[int] = Counter()

    @classmethod
    def from_settings(
        cls, settings: Settings, store: JobStore, handler: JobHandler
    ) -> "JobScheduler":
        return cls(
            store,
            handler,
            concurrency=settings.queue_concurrency,
            max_per_tenant=settings.queue_max_per_tenant,
            poll_interval_ms=settings.queue_poll_interval_ms,
        )

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def in_flight_for(self, installation_id: int) -> int:
        return self._in_flight_by_tenant[installation_id]

    def start(self) -> None:
        """Start the polling loop as a background task."""
        if self.running:
            raise RuntimeError("Scheduler is already running")

        self._stopping.clear()
        self._loop_task = asyncio.create_task(
            self._poll_loop(), name=f"job-scheduler-{self.worker_id}"
        )
        logger.info(
            "Starting job scheduler",
            worker_id=self.worker_id,
            concurrency=self.concurrency,
            max_per_tenant=self.max_per_tenant,
            poll_interval_ms=self.poll_interval_ms,
        )

    async def stop(self) -> None:
        """Stop claiming new jobs. In-flight jobs keep running."""
        logger.info(
            "Stopping job scheduler",
            worker_id=self.worker_id,
            in_flight=self.in_flight,
        )
        self._stopping.set()

        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

    async def wait_for_drain(self, timeout: float | None = None) -> bool:
        """
        Block until no job is in flight.

        Returns False when the timeout expired first. With no timeout this
        waits as long as the slowest job takes.
        """
        try:
            async with asyncio.timeout(timeout):
                while self._tasks:
                    await asyncio.wait(set(self._tasks))
        except TimeoutError:
            logger.warning(
                "Scheduler stopped with jobs in flight",
                worker_id=self.worker_id,
                in_flight=self.in_flight,
            )
            return False

        logger.info("Scheduler drained", worker_id=self.worker_id)
        return True

    async def tick(self) -> ReviewJob | None:
        """
        Run one scheduling step. Returns the dispatched job, if any.
        """
        if self._stopping.is_set():
            return None

        if self.in_flight >= self.concurrency:
            return None

        excluded = self.saturated_tenants()

        try:
            job = await self.store.claim_one(exclude_tenants=excluded)
        except (SQLAlchemyError, OSError) as e:
            logger.warning(
                "Claim failed, retrying next tick",
                worker_id=self.worker_id,
                error=str(e),
            )
            return None

        if job is None:
            return None

        self._dispatch(job)
        return job

    def saturated_tenants(self) -> set[int]:
        """Installations already at their per-tenant ceiling in this process."""
        return {
            installation_id
            for installation_id, count in self._in_flight_by_tenant.items()
            if count >= self.max_per_tenant
        }

    def _dispatch(self, job: ReviewJob) -> None:
        installation_id = job.installation_id
        self._in_flight_by_tenant[installation_id] += 1

        task = asyncio.create_task(
            self._run_job(job), name=f"review-job-{job.id}"
        )
        self._tasks.add(task)

        def _release(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            self._in_flight_by_tenant[installation_id] -= 1
            if self._in_flight_by_tenant[installation_id] <= 0:
                del self._in_flight_by_tenant[installation_id]

        task.add_done_callback(_release)

    async def _run_job(self, job: ReviewJob) -> None:
        try:
            await self.handler.handle(job)
        except Exception:
            # The handler records outcomes itself; this only guards the loop
            logger.exception("Job handler crashed", **job.log_context())

    async def _poll_loop(self) -> None:
        """Main loop that claims and dispatches jobs."""
        interval = self.poll_interval_ms / 1000

        while not self._stopping.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Error in scheduler loop", worker_id=self.worker_id)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                pass
