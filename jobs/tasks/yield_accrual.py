"""
Yield accrual task.

Runs one accrual sweep on demand through the task queue. The periodic
sweep is driven by AccrualScheduler; this actor shares its lock, so a
queued run that overlaps a scheduled one is skipped.
"""

import dramatiq
from loguru import logger

from app.config.operational_constants import (
    DRAMATIQ_MAX_RETRIES,
    DRAMATIQ_TIME_LIMIT_SWEEP,
)
from app.services.accrual.dto import SweepResult
from jobs.async_runner import local_session_maker, run_async
from jobs.broker import broker  # noqa: F401


@dramatiq.actor(max_retries=DRAMATIQ_MAX_RETRIES, time_limit=DRAMATIQ_TIME_LIMIT_SWEEP)
def run_accrual_sweep() -> None:
    """Recompute accumulated yield for all active deposits."""
    logger.info("Starting yield accrual sweep task...")

    try:
        result = run_async(run_accrual_sweep_async())

        if result.skipped:
            logger.info("Yield accrual sweep task skipped: another sweep is running")
        else:
            logger.info(
                f"Yield accrual sweep task complete: {result.updated}/{result.scanned} "
                f"updated, {result.stale} stale, {result.failed} failed"
            )

    except Exception as e:
        logger.exception(f"Yield accrual sweep task failed: {e}")


async def run_accrual_sweep_async() -> SweepResult:
    """Async implementation of the sweep task."""
    from app.config.settings import settings
    from app.services.accrual.calculator import YieldCalculator
    from app.services.accrual.sweeper import AccrualSweeper
    from app.utils.distributed_lock import DistributedLock
    from app.utils.redis_utils import get_redis_client

    redis_client = get_redis_client(settings) if settings.use_redis_lock else None

    try:
        async with local_session_maker(settings.database_url) as session_maker:
            sweeper = AccrualSweeper(
                session_maker,
                YieldCalculator(),
                DistributedLock(redis_client=redis_client),
                lock_timeout=settings.sweep_lock_timeout_seconds,
            )
            return await sweeper.run_sweep()
    finally:
        if redis_client:
            await redis_client.aclose()
