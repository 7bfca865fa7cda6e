"""
Accrual sweeper.

One sweep recomputes the accumulated yield of every active deposit from
its pinned rate and start time and persists the result. A failure on
one deposit never aborts the sweep: the entry is skipped and picked up
again by the next run.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.business_constants import get_token_decimals
from app.config.operational_constants import LOCK_TIMEOUT_LONG, SWEEP_LOCK_KEY
from app.repositories.yield_deposit_repository import YieldDepositRepository
from app.services.accrual.calculator import YieldCalculator
from app.services.accrual.dto import SweepResult
from app.utils.datetime_utils import utc_now
from app.utils.distributed_lock import DistributedLock
from app.utils.exceptions import YieldServiceError, is_sweep_discard, is_sweep_skip


@dataclass(frozen=True)
class EntrySnapshot:
    """Plain copy of the fields a recompute needs."""

    deposit_id: int
    token: str
    principal: Decimal
    annual_rate_bps: int
    start_time: datetime
    accumulated_yield: Decimal
    version: int


class AccrualSweeper:
    """
    Periodic yield recomputation over the ledger.

    Sweeps never overlap: each one runs under a named lock and a sweep
    that finds the lock taken returns immediately as skipped.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        calculator: YieldCalculator,
        lock: DistributedLock,
        lock_timeout: int = LOCK_TIMEOUT_LONG,
        repository_factory: Callable[[AsyncSession], YieldDepositRepository] = YieldDepositRepository,
    ) -> None:
        """
        Initialize sweeper.

        Args:
            session_maker: Factory for database sessions
            calculator: Yield calculator
            lock: Lock guarding against overlapping sweeps
            lock_timeout: Lock expiry in seconds
            repository_factory: Builds the ledger repository for a session
        """
        self.session_maker = session_maker
        self.calculator = calculator
        self.lock = lock
        self.lock_timeout = lock_timeout
        self.repository_factory = repository_factory

    async def run_sweep(self, now: datetime | None = None) -> SweepResult:
        """
        Run one sweep over all active deposits.

        Args:
            now: Moment the yield is computed for, defaults to current time

        Returns:
            Sweep counters
        """
        result = SweepResult(started_at=utc_now())
        sweep_time = now or result.started_at

        async with self.lock.lock(SWEEP_LOCK_KEY, timeout=self.lock_timeout) as acquired:
            if not acquired:
                logger.warning("Accrual sweep already running, skipping this run")
                result.skipped = True
                result.finished_at = utc_now()
                return result

            logger.info(f"Accrual sweep started for {sweep_time.isoformat()}")

            async with self.session_maker() as session:
                repo = self.repository_factory(session)
                entries = await self._snapshot_active(repo)
                result.scanned = len(entries)

                for entry in entries:
                    await self._recompute_entry(session, repo, entry, sweep_time, result)

        result.finished_at = utc_now()
        logger.info(
            f"Accrual sweep finished: scanned={result.scanned}, "
            f"updated={result.updated}, stale={result.stale}, "
            f"failed={result.failed} in {result.duration_seconds:.2f}s"
        )
        return result

    async def _snapshot_active(self, repo: YieldDepositRepository) -> list[EntrySnapshot]:
        deposits = await repo.find_active()
        return [
            EntrySnapshot(
                deposit_id=deposit.id,
                token=deposit.token,
                principal=deposit.principal,
                annual_rate_bps=deposit.annual_rate_bps,
                start_time=deposit.start_time,
                accumulated_yield=deposit.accumulated_yield,
                version=deposit.version,
            )
            for deposit in deposits
        ]

    async def _recompute_entry(
        self,
        session: AsyncSession,
        repo: YieldDepositRepository,
        entry: EntrySnapshot,
        sweep_time: datetime,
        result: SweepResult,
    ) -> None:
        """Recompute and commit a single deposit, recording the outcome."""
        try:
            elapsed = self.calculator.elapsed_seconds(entry.start_time, sweep_time)
            new_yield = self.calculator.compute_yield(
                entry.principal,
                entry.annual_rate_bps,
                elapsed,
                get_token_decimals(entry.token),
            )
            await repo.record_accrual(
                entry.deposit_id,
                expected_version=entry.version,
                accumulated_yield=new_yield,
                accrued_at=sweep_time,
            )
            await session.commit()
        except (YieldServiceError, SQLAlchemyError) as e:
            await session.rollback()
            if is_sweep_discard(e):
                logger.info(f"Discarded stale recompute of deposit {entry.deposit_id}: {e}")
                result.stale += 1
                return
            if is_sweep_skip(e):
                logger.error(
                    f"Skipping deposit {entry.deposit_id} until next sweep: {e}",
                    extra={"deposit_id": entry.deposit_id},
                )
                result.failed += 1
                return
            raise

        result.updated += 1
        logger.debug(
            f"Deposit {entry.deposit_id}: yield {entry.accumulated_yield} -> {new_yield}"
        )
