"""Tests for AccrualSweeper."""

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from app.config.operational_constants import SWEEP_LOCK_KEY
from app.services.accrual.sweeper import AccrualSweeper
from app.utils.distributed_lock import DistributedLock

START = datetime(2026, 1, 1, tzinfo=UTC)
THIRTY_DAYS_LATER = START + timedelta(days=30)


async def _seed(ledger, principal: str, token: str = "USDC", rate_bps: int = 1000):
    return await ledger.create_deposit(
        user_address="0xseller",
        token=token,
        principal=Decimal(principal),
        strategy_label="aave-v3",
        annual_rate_bps=rate_bps,
        start_time=START,
    )


def _make_sweeper(session_maker, calculator, ledger, lock=None) -> AccrualSweeper:
    return AccrualSweeper(
        session_maker,
        calculator,
        lock or DistributedLock(),
        repository_factory=lambda session: ledger,
    )


class TestRunSweep:
    """Tests for a full sweep."""

    @pytest.mark.asyncio
    async def test_recomputes_active_entries(self, session_maker, calculator, ledger):
        """Every active entry gets its yield from the pinned rate."""
        first = await _seed(ledger, "1000")
        second = await _seed(ledger, "100")
        sweeper = _make_sweeper(session_maker, calculator, ledger)

        result = await sweeper.run_sweep(now=THIRTY_DAYS_LATER)

        assert result.skipped is False
        assert result.scanned == 2
        assert result.updated == 2
        assert result.failed == 0
        assert ledger.rows[first.id].accumulated_yield == Decimal("8.219178")
        assert ledger.rows[second.id].accumulated_yield == Decimal("0.821918")
        assert ledger.rows[first.id].last_accrued_at == THIRTY_DAYS_LATER
        assert result.finished_at is not None

    @pytest.mark.asyncio
    async def test_commits_per_entry(self, session_maker, calculator, ledger):
        """Each accepted write is committed on its own."""
        await _seed(ledger, "1000")
        await _seed(ledger, "2000")
        sweeper = _make_sweeper(session_maker, calculator, ledger)

        await sweeper.run_sweep(now=THIRTY_DAYS_LATER)

        session = session_maker.sessions[0]
        assert session.commit.await_count == 2

    @pytest.mark.asyncio
    async def test_withdrawn_entries_excluded(self, session_maker, calculator, ledger):
        """Withdrawn entries are not scanned and keep their frozen yield."""
        deposit = await _seed(ledger, "1000")
        await ledger.mark_withdrawn(
            deposit.id,
            final_yield=Decimal("1"),
            platform_fee=Decimal("0.2"),
            payee_yield=Decimal("0.8"),
            withdrawn_at=START + timedelta(days=3),
        )
        sweeper = _make_sweeper(session_maker, calculator, ledger)

        result = await sweeper.run_sweep(now=THIRTY_DAYS_LATER)

        assert result.scanned == 0
        assert ledger.rows[deposit.id].accumulated_yield == Decimal("1")

    @pytest.mark.asyncio
    async def test_idempotent_rerun(self, session_maker, calculator, ledger):
        """Sweeping twice for the same moment stores the same yield."""
        deposit = await _seed(ledger, "1000")
        sweeper = _make_sweeper(session_maker, calculator, ledger)

        await sweeper.run_sweep(now=THIRTY_DAYS_LATER)
        first = ledger.rows[deposit.id].accumulated_yield
        await sweeper.run_sweep(now=THIRTY_DAYS_LATER)

        assert ledger.rows[deposit.id].accumulated_yield == first

    @pytest.mark.asyncio
    async def test_failure_does_not_abort_sweep(self, session_maker, calculator, ledger):
        """A persistence failure skips one entry and the rest are updated."""
        broken = await _seed(ledger, "1000")
        healthy = await _seed(ledger, "1000")
        ledger.failing_ids.add(broken.id)
        sweeper = _make_sweeper(session_maker, calculator, ledger)

        result = await sweeper.run_sweep(now=THIRTY_DAYS_LATER)

        assert result.failed == 1
        assert result.updated == 1
        assert ledger.rows[broken.id].accumulated_yield == 0
        assert ledger.rows[healthy.id].accumulated_yield == Decimal("8.219178")
        session_maker.sessions[0].rollback.assert_awaited()

    @pytest.mark.asyncio
    async def test_skipped_entry_retried_next_run(self, session_maker, calculator, ledger):
        """An entry skipped once is picked up by the next sweep."""
        deposit = await _seed(ledger, "1000")
        ledger.failing_ids.add(deposit.id)
        sweeper = _make_sweeper(session_maker, calculator, ledger)
        await sweeper.run_sweep(now=THIRTY_DAYS_LATER)

        ledger.failing_ids.clear()
        result = await sweeper.run_sweep(now=THIRTY_DAYS_LATER)

        assert result.updated == 1
        assert ledger.rows[deposit.id].accumulated_yield == Decimal("8.219178")

    @pytest.mark.asyncio
    async def test_stale_write_discarded(self, session_maker, calculator, ledger):
        """A withdrawal between snapshot and write makes the write stale."""
        deposit = await _seed(ledger, "1000")
        sweeper = _make_sweeper(session_maker, calculator, ledger)
        original_snapshot = sweeper._snapshot_active

        async def snapshot_then_withdraw(repo):
            entries = await original_snapshot(repo)
            await ledger.mark_withdrawn(
                deposit.id,
                final_yield=Decimal("0.5"),
                platform_fee=Decimal("0.1"),
                payee_yield=Decimal("0.4"),
                withdrawn_at=START + timedelta(days=2),
            )
            return entries

        sweeper._snapshot_active = snapshot_then_withdraw

        result = await sweeper.run_sweep(now=THIRTY_DAYS_LATER)

        assert result.stale == 1
        assert result.updated == 0
        assert result.failed == 0
        assert ledger.rows[deposit.id].accumulated_yield == Decimal("0.5")
        assert ledger.rows[deposit.id].withdrawn is True

    @pytest.mark.asyncio
    async def test_eighteen_decimal_token(self, session_maker, calculator, ledger):
        """Token precision is applied per entry."""
        deposit = await _seed(ledger, "1", token="DAI")
        sweeper = _make_sweeper(session_maker, calculator, ledger)

        await sweeper.run_sweep(now=START + timedelta(days=1))

        assert ledger.rows[deposit.id].accumulated_yield == Decimal("0.000273972602739726")


class TestNonReentrancy:
    """Tests for the sweep lock."""

    @pytest.mark.asyncio
    async def test_skipped_when_lock_held(self, session_maker, calculator, ledger):
        """A sweep that finds the lock taken returns immediately."""
        await _seed(ledger, "1000")
        lock = DistributedLock()
        sweeper = _make_sweeper(session_maker, calculator, ledger, lock=lock)

        async with lock.lock(SWEEP_LOCK_KEY) as acquired:
            assert acquired is True
            result = await sweeper.run_sweep(now=THIRTY_DAYS_LATER)

        assert result.skipped is True
        assert result.scanned == 0
        assert session_maker.sessions == []

    @pytest.mark.asyncio
    async def test_concurrent_sweeps_do_not_overlap(self, session_maker, calculator, ledger):
        """Of two sweeps started together exactly one does the work."""
        await _seed(ledger, "1000")
        original_find_active = ledger.find_active

        async def slow_find_active():
            await asyncio.sleep(0.05)
            return await original_find_active()

        ledger.find_active = slow_find_active
        sweeper = _make_sweeper(session_maker, calculator, ledger)

        results = await asyncio.gather(
            sweeper.run_sweep(now=THIRTY_DAYS_LATER),
            sweeper.run_sweep(now=THIRTY_DAYS_LATER),
        )

        assert sorted(r.skipped for r in results) == [False, True]
        assert sum(r.updated for r in results) == 1
