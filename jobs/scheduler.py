"""
Accrual scheduler.

Runs the accrual sweep on a fixed interval inside the service's event
loop. APScheduler never starts a second instance of the job while one
is still running, and missed ticks are coalesced into one.
"""

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from app.config.operational_constants import (
    ACCRUAL_INTERVAL_MINUTES,
    ACCRUAL_JOB_ID,
    SCHEDULER_MISFIRE_GRACE_SECONDS,
)
from app.services.accrual.dto import SweepResult
from app.services.accrual.sweeper import AccrualSweeper


class AccrualScheduler:
    """Owns the periodic sweep for the lifetime of the process."""

    def __init__(
        self,
        sweeper: AccrualSweeper,
        interval_minutes: int = ACCRUAL_INTERVAL_MINUTES,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        """
        Initialize scheduler.

        Args:
            sweeper: Sweeper executed on every tick
            interval_minutes: Minutes between sweeps
            scheduler: Optional preconfigured AsyncIOScheduler
        """
        self.sweeper = sweeper
        self.interval_minutes = interval_minutes
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        """Whether the underlying scheduler is started."""
        return self.scheduler.running

    def get_jobs(self) -> list[Job]:
        """Scheduled jobs, used by the health endpoint."""
        return self.scheduler.get_jobs()

    async def _run_job(self) -> None:
        try:
            await self.sweeper.run_sweep()
        except Exception as e:
            logger.exception(f"Scheduled accrual sweep failed: {e}")

    def start(self) -> None:
        """Register the sweep job and start the scheduler."""
        if self.scheduler.running:
            logger.warning("Accrual scheduler already running")
            return

        self.scheduler.add_job(
            self._run_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=ACCRUAL_JOB_ID,
            name="Yield accrual sweep",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=SCHEDULER_MISFIRE_GRACE_SECONDS,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            f"Accrual scheduler started: sweep every {self.interval_minutes} min"
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Stop the scheduler.

        Args:
            wait: Wait for a running sweep to finish
        """
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=wait)
        logger.info("Accrual scheduler stopped")

    async def run_now(self) -> SweepResult:
        """Run a sweep immediately, outside the interval."""
        logger.info("Manual accrual sweep requested")
        return await self.sweeper.run_sweep()
