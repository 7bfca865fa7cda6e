"""
Tests for YieldDepositRepository guarded writes.

The session is mocked; the UPDATE rowcount stands in for the outcome
of the compare-and-swap in the database.
"""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from app.repositories.yield_deposit_repository import YieldDepositRepository
from app.utils.exceptions import (
    AlreadyWithdrawnError,
    DepositNotFoundError,
    InvalidStateTransitionError,
    PersistenceError,
    StaleRecomputeError,
)

NOW = datetime(2026, 1, 31, tzinfo=UTC)


class TestRecordAccrual:
    """Tests for the optimistic accrual write."""

    @pytest.mark.asyncio
    async def test_accepted_write_bumps_version(self, mock_session, update_result):
        """A matching version is accepted and the next version returned."""
        mock_session.execute.return_value = update_result(1)
        repo = YieldDepositRepository(mock_session)

        new_version = await repo.record_accrual(1, 3, Decimal("8.219178"), NOW)

        assert new_version == 4
        mock_session.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lost_race_is_stale(self, mock_session, update_result):
        """Zero rows updated means the recompute was superseded."""
        mock_session.execute.return_value = update_result(0)
        repo = YieldDepositRepository(mock_session)

        with pytest.raises(StaleRecomputeError):
            await repo.record_accrual(1, 3, Decimal("8.219178"), NOW)

    @pytest.mark.asyncio
    async def test_statement_guards(self, mock_session, update_result):
        """The UPDATE is guarded on id, version, withdrawn and monotonic yield."""
        mock_session.execute.return_value = update_result(1)
        repo = YieldDepositRepository(mock_session)

        await repo.record_accrual(7, 2, Decimal("1.5"), NOW)

        stmt = mock_session.execute.call_args.args[0]
        where = str(stmt.whereclause)
        assert "yield_deposits.id" in where
        assert "yield_deposits.version" in where
        assert "yield_deposits.withdrawn" in where
        assert "yield_deposits.accumulated_yield <=" in where

    @pytest.mark.asyncio
    async def test_database_error_becomes_persistence_error(self, mock_session):
        """Driver errors are rolled back and reported as PersistenceError."""
        mock_session.execute.side_effect = OperationalError("UPDATE", {}, Exception("down"))
        repo = YieldDepositRepository(mock_session)

        with pytest.raises(PersistenceError):
            await repo.record_accrual(1, 1, Decimal("1"), NOW)

        mock_session.rollback.assert_awaited_once()


class TestMarkWithdrawn:
    """Tests for the terminal transition."""

    @pytest.mark.asyncio
    async def test_first_writer_wins(self, mock_session, update_result):
        """The first withdrawal updates the row."""
        mock_session.execute.return_value = update_result(1)
        repo = YieldDepositRepository(mock_session)

        await repo.mark_withdrawn(
            1,
            final_yield=Decimal("8.219178"),
            platform_fee=Decimal("1.643835"),
            payee_yield=Decimal("6.575343"),
            withdrawn_at=NOW,
        )

        stmt = mock_session.execute.call_args.args[0]
        assert "yield_deposits.withdrawn" in str(stmt.whereclause)
        assert "yield_deposits.version" not in str(stmt.whereclause)

    @pytest.mark.asyncio
    async def test_second_withdrawal_rejected(self, mock_session, update_result):
        """Zero rows updated means the entry was already withdrawn."""
        mock_session.execute.return_value = update_result(0)
        repo = YieldDepositRepository(mock_session)

        with pytest.raises(AlreadyWithdrawnError):
            await repo.mark_withdrawn(
                1,
                final_yield=Decimal("1"),
                platform_fee=Decimal("0.2"),
                payee_yield=Decimal("0.8"),
                withdrawn_at=NOW,
            )


class TestGuardedUpdate:
    """Tests for update() validation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "changes",
        [
            {"principal": Decimal("5")},
            {"start_time": NOW},
            {"annual_rate_bps": 2000},
            {"accumulated_yield": Decimal("1"), "version": 9},
        ],
    )
    async def test_immutable_fields_rejected(self, mock_session, changes):
        """Principal, start time and rate can never change."""
        repo = YieldDepositRepository(mock_session)

        with pytest.raises(InvalidStateTransitionError):
            await repo.update(1, **changes)

        mock_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_withdrawn_cannot_revert(self, mock_session):
        """withdrawn only moves from False to True."""
        repo = YieldDepositRepository(mock_session)

        with pytest.raises(InvalidStateTransitionError):
            await repo.update(1, withdrawn=False)

    @pytest.mark.asyncio
    async def test_bookkeeping_alone_rejected(self, mock_session):
        """Bookkeeping columns are only written with a real transition."""
        repo = YieldDepositRepository(mock_session)

        with pytest.raises(InvalidStateTransitionError):
            await repo.update(1, last_accrued_at=NOW)

    @pytest.mark.asyncio
    async def test_missing_deposit(self, mock_session):
        """Unknown ids raise DepositNotFoundError."""
        mock_session.get.return_value = None
        repo = YieldDepositRepository(mock_session)

        with pytest.raises(DepositNotFoundError):
            await repo.update(42, accumulated_yield=Decimal("1"))

    @pytest.mark.asyncio
    async def test_withdrawn_entry_is_immutable(self, mock_session, withdrawn_deposit):
        """No field of a withdrawn entry may change."""
        mock_session.get.return_value = withdrawn_deposit
        repo = YieldDepositRepository(mock_session)

        with pytest.raises(InvalidStateTransitionError):
            await repo.update(1, accumulated_yield=Decimal("100"))

        mock_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_accrual_uses_stored_version(
        self, mock_session, active_deposit, update_result
    ):
        """Without an explicit version the stored one is compared."""
        mock_session.get.return_value = active_deposit
        repo = YieldDepositRepository(mock_session)
        repo.record_accrual = AsyncMock(return_value=2)

        result = await repo.update(1, accumulated_yield=Decimal("2.5"))

        assert result is active_deposit
        mock_session.refresh.assert_awaited_once_with(active_deposit)
        assert repo.record_accrual.await_args.kwargs["expected_version"] == 1
        assert repo.record_accrual.await_args.kwargs["accumulated_yield"] == Decimal("2.5")

    @pytest.mark.asyncio
    async def test_withdraw_through_update(
        self, mock_session, active_deposit, update_result
    ):
        """withdrawn=True is routed to the terminal transition."""
        mock_session.get.return_value = active_deposit
        mock_session.execute.return_value = update_result(1)
        repo = YieldDepositRepository(mock_session)

        await repo.update(1, withdrawn=True, accumulated_yield=Decimal("3"))

        stmt = mock_session.execute.call_args.args[0]
        assert "yield_deposits.version" not in str(stmt.whereclause)


class TestUserTotals:
    """Tests for aggregate queries."""

    @pytest.mark.asyncio
    async def test_totals(self, mock_session):
        """Aggregates are returned as Decimals and int counts."""
        result = MagicMock()
        result.one.return_value = (Decimal("1500"), Decimal("8.2"), Decimal("4.3"), 2, 3)
        mock_session.execute = AsyncMock(return_value=result)
        repo = YieldDepositRepository(mock_session)

        totals = await repo.get_user_totals("0xseller")

        assert totals == {
            "total_deposited": Decimal("1500"),
            "realized_yield": Decimal("8.2"),
            "accrued_yield": Decimal("4.3"),
            "active_deposits": 2,
            "deposit_count": 3,
        }

    @pytest.mark.asyncio
    async def test_yield_split_by_withdrawn_flag(self, mock_session):
        """Realized and accrued yield are filtered on the withdrawn flag."""
        result = MagicMock()
        result.one.return_value = (0, 0, 0, 0, 0)
        mock_session.execute = AsyncMock(return_value=result)
        repo = YieldDepositRepository(mock_session)

        await repo.get_user_totals("0xseller")

        stmt = mock_session.execute.call_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert sql.count("FILTER (WHERE") == 3

    @pytest.mark.asyncio
    async def test_totals_for_unknown_user(self, mock_session):
        """Users without deposits get zeros."""
        result = MagicMock()
        result.one.return_value = (0, 0, 0, 0, 0)
        mock_session.execute = AsyncMock(return_value=result)
        repo = YieldDepositRepository(mock_session)

        totals = await repo.get_user_totals("0xnobody")

        assert totals["total_deposited"] == 0
        assert totals["active_deposits"] == 0
        assert totals["deposit_count"] == 0
