"""
Review queue: the explicitly constructed entry point for submitting and
running review jobs.
"""

import time

from reviewbot.config.logging import get_logger
from reviewbot.config.settings import Settings
from reviewbot.v1.core.idempotency import IdempotencyGuard
from reviewbot.v1.infra.jobs.recovery import recover_orphaned_jobs
from reviewbot.v1.infra.jobs.schemas import QueueStats, SubmissionResult, WorkDescriptor
from reviewbot.v1.infra.jobs.store import JobStore
from reviewbot.v1.infra.jobs.worker import JobHandler, JobScheduler

logger = get_logger(__name__)


class ReviewQueue:
    """Owns the store, the idempotency guard and the scheduler."""

    def __init__(
        self,
        store: JobStore,
        scheduler: JobScheduler,
        guard: IdempotencyGuard | None = None,
        drain_timeout_s: float | None = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.guard = guard or IdempotencyGuard(store)
        self.drain_timeout_s = drain_timeout_s
        self.started_at: float | None = None

    @classmethod
    def from_settings(
        cls, settings: Settings, store: JobStore, handler: JobHandler
    ) -> "ReviewQueue":
        return cls(
            store=store,
            scheduler=JobScheduler.from_settings(settings, store, handler),
            guard=IdempotencyGuard(store, window_seconds=settings.dedupe_window_s),
            drain_timeout_s=settings.queue_drain_timeout_s,
        )

    async def submit(
        self, installation_id: int, descriptor: WorkDescriptor
    ) -> SubmissionResult:
        """Enqueue a review, collapsing duplicate submissions."""
        return await self.guard.submit(installation_id, descriptor)

    async def start(self) -> None:
        """Recover orphaned jobs, then begin polling."""
        await recover_orphaned_jobs(self.store)
        self.scheduler.start()
        self.started_at = time.monotonic()

    async def stop(self) -> bool:
        """Stop claiming and wait for in-flight jobs. False if the drain timed out."""
        await self.scheduler.stop()
        drained = await self.scheduler.wait_for_drain(self.drain_timeout_s)
        logger.info("Review queue stopped", drained=drained)
        return drained

    async def stats(self) -> QueueStats:
        return await self.store.status_counts()

    @property
    def uptime_seconds(self) -> float | None:
        if self.started_at is None:
            return None
        return time.monotonic() - self.started_at
