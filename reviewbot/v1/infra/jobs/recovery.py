"""
Startup recovery for jobs orphaned by a previous process.
"""

from reviewbot.config.logging import get_logger
from reviewbot.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


async def recover_orphaned_jobs(store: JobStore) -> int:
    """
    Return every active job to pending.

    Must run once, before the scheduler's first claim. In a single-process
    deployment nothing can still be running a job this process has not
    claimed, so every active row is treated as orphaned. Jobs whose side
    effects were partially applied before the crash will run again.
    """
    recovered = await store.reset_active_to_pending()

    if recovered > 0:
        logger.warning("Recovered orphaned jobs", count=recovered)
    else:
        logger.info("No orphaned jobs to recover")

    return recovered
