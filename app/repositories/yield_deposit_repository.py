"""
Yield deposit repository.

Data access layer for the accrual ledger. Every write is a guarded
compare-and-swap so that a withdrawal and a concurrent sweep can never
overwrite each other: the withdrawal wins on the withdrawn flag and any
recompute that started before it becomes stale.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.yield_deposit import YieldDeposit
from app.repositories.base import BaseRepository
from app.utils.datetime_utils import utc_now
from app.utils.db_decorators import with_persistence_errors
from app.utils.exceptions import (
    AlreadyWithdrawnError,
    DepositNotFoundError,
    InvalidStateTransitionError,
    StaleRecomputeError,
)


# Fields a caller may ask to change
MUTABLE_FIELDS = frozenset({"accumulated_yield", "withdrawn"})

# Written alongside the mutable fields, never on their own
BOOKKEEPING_FIELDS = frozenset(
    {"last_accrued_at", "withdrawn_at", "platform_fee", "payee_yield"}
)


class YieldDepositRepository(BaseRepository[YieldDeposit]):
    """Yield deposit repository with guarded mutations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize yield deposit repository."""
        super().__init__(YieldDeposit, session)

    @with_persistence_errors
    async def create_deposit(
        self,
        user_address: str,
        token: str,
        principal: Decimal,
        strategy_label: str,
        annual_rate_bps: int,
        start_time: datetime,
    ) -> YieldDeposit:
        """
        Create a ledger entry in its initial state.

        Args:
            user_address: Depositor wallet address
            token: Token symbol
            principal: Deposited amount
            strategy_label: Venue holding the principal
            annual_rate_bps: Rate pinned for the whole accrual window
            start_time: Beginning of the accrual window

        Returns:
            Created deposit
        """
        return await self.create(
            user_address=user_address,
            token=token,
            principal=principal,
            strategy_label=strategy_label,
            annual_rate_bps=annual_rate_bps,
            start_time=start_time,
            accumulated_yield=Decimal("0"),
            withdrawn=False,
            version=1,
        )

    @with_persistence_errors
    async def find_by_id(self, deposit_id: int) -> YieldDeposit | None:
        """
        Get deposit by ID.

        Args:
            deposit_id: Deposit ID

        Returns:
            Deposit or None
        """
        return await self.get_by_id(deposit_id)

    @with_persistence_errors
    async def find_active(self) -> list[YieldDeposit]:
        """
        Get all deposits that still accrue yield.

        Returns:
            Non-withdrawn deposits ordered by ID
        """
        return await self.find_all(withdrawn=False)

    @with_persistence_errors
    async def get_user_totals(self, user_address: str) -> dict[str, Any]:
        """
        Aggregate deposit totals for a user.

        Args:
            user_address: Depositor wallet address

        Returns:
            Dict with total_deposited, realized_yield (frozen yield of
            withdrawn deposits), accrued_yield (last swept yield of active
            deposits), active_deposits and deposit_count
        """
        is_active = YieldDeposit.withdrawn.is_(False)
        stmt = select(
            func.coalesce(func.sum(YieldDeposit.principal), 0),
            func.coalesce(
                func.sum(YieldDeposit.accumulated_yield).filter(
                    YieldDeposit.withdrawn.is_(True)
                ),
                0,
            ),
            func.coalesce(
                func.sum(YieldDeposit.accumulated_yield).filter(is_active), 0
            ),
            func.count(YieldDeposit.id).filter(is_active),
            func.count(YieldDeposit.id),
        ).where(YieldDeposit.user_address == user_address)

        result = await self.session.execute(stmt)
        total_deposited, realized, accrued, active, count = result.one()

        return {
            "total_deposited": Decimal(total_deposited),
            "realized_yield": Decimal(realized),
            "accrued_yield": Decimal(accrued),
            "active_deposits": int(active or 0),
            "deposit_count": int(count or 0),
        }

    @with_persistence_errors
    async def record_accrual(
        self,
        deposit_id: int,
        expected_version: int,
        accumulated_yield: Decimal,
        accrued_at: datetime,
    ) -> int:
        """
        Persist a recomputed yield with an optimistic version check.

        The write only lands if the row is still at expected_version, is
        not withdrawn, and the new value does not go below the stored one.

        Args:
            deposit_id: Deposit ID
            expected_version: Version read before the recompute
            accumulated_yield: Newly computed yield
            accrued_at: Moment the yield was computed for

        Returns:
            New version of the row

        Raises:
            StaleRecomputeError: If any of the guards failed
        """
        stmt = (
            update(YieldDeposit)
            .where(
                YieldDeposit.id == deposit_id,
                YieldDeposit.version == expected_version,
                YieldDeposit.withdrawn.is_(False),
                YieldDeposit.accumulated_yield <= accumulated_yield,
            )
            .values(
                accumulated_yield=accumulated_yield,
                last_accrued_at=accrued_at,
                version=YieldDeposit.version + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)

        if result.rowcount == 0:
            raise StaleRecomputeError(
                f"Recompute for deposit {deposit_id} at version "
                f"{expected_version} was superseded"
            )

        return expected_version + 1

    @with_persistence_errors
    async def mark_withdrawn(
        self,
        deposit_id: int,
        final_yield: Decimal,
        platform_fee: Decimal,
        payee_yield: Decimal,
        withdrawn_at: datetime,
    ) -> None:
        """
        Terminal transition: freeze the yield and mark the entry withdrawn.

        First writer wins on the withdrawn flag. The version is bumped so
        any recompute that read the row earlier is rejected as stale.

        Args:
            deposit_id: Deposit ID
            final_yield: Yield frozen at withdrawal time
            platform_fee: Platform share of final_yield
            payee_yield: Depositor share of final_yield
            withdrawn_at: Withdrawal timestamp

        Raises:
            AlreadyWithdrawnError: If the entry was already withdrawn
        """
        stmt = (
            update(YieldDeposit)
            .where(
                YieldDeposit.id == deposit_id,
                YieldDeposit.withdrawn.is_(False),
            )
            .values(
                withdrawn=True,
                withdrawn_at=withdrawn_at,
                accumulated_yield=final_yield,
                last_accrued_at=withdrawn_at,
                platform_fee=platform_fee,
                payee_yield=payee_yield,
                version=YieldDeposit.version + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)

        if result.rowcount == 0:
            raise AlreadyWithdrawnError(deposit_id)

        logger.info(
            f"Deposit {deposit_id} withdrawn: yield {final_yield} "
            f"(fee {platform_fee}, payee {payee_yield})"
        )

    async def update(
        self,
        deposit_id: int,
        expected_version: int | None = None,
        **changes: Any,
    ) -> YieldDeposit:
        """
        Apply a guarded mutation to a ledger entry.

        Only accumulated_yield (while active) and the terminal
        withdrawn = True transition are allowed. Principal, start time,
        rate and every field of a withdrawn entry are immutable.

        Args:
            deposit_id: Deposit ID
            expected_version: Version for the optimistic check, defaults
                to the version currently stored
            **changes: Fields to change

        Returns:
            Refreshed deposit

        Raises:
            InvalidStateTransitionError: On an illegal mutation
            DepositNotFoundError: If the deposit does not exist
        """
        illegal = set(changes) - MUTABLE_FIELDS - BOOKKEEPING_FIELDS
        if illegal:
            raise InvalidStateTransitionError(
                f"Fields {sorted(illegal)} of deposit {deposit_id} are immutable"
            )
        if not MUTABLE_FIELDS & set(changes):
            raise InvalidStateTransitionError(
                f"Update of deposit {deposit_id} must change accumulated_yield or withdrawn"
            )
        if "withdrawn" in changes and changes["withdrawn"] is not True:
            raise InvalidStateTransitionError(
                "withdrawn can only transition from False to True"
            )

        deposit = await self.find_by_id(deposit_id)
        if deposit is None:
            raise DepositNotFoundError(deposit_id)
        if deposit.withdrawn:
            raise InvalidStateTransitionError(
                f"Deposit {deposit_id} is withdrawn and can no longer change"
            )

        now = utc_now()
        if changes.get("withdrawn"):
            final_yield = changes.get("accumulated_yield", deposit.accumulated_yield)
            await self.mark_withdrawn(
                deposit_id,
                final_yield=final_yield,
                platform_fee=changes.get("platform_fee", Decimal("0")),
                payee_yield=changes.get("payee_yield", final_yield),
                withdrawn_at=changes.get("withdrawn_at", now),
            )
        else:
            await self.record_accrual(
                deposit_id,
                expected_version=(
                    expected_version if expected_version is not None else deposit.version
                ),
                accumulated_yield=changes["accumulated_yield"],
                accrued_at=changes.get("last_accrued_at", now),
            )

        await self.session.refresh(deposit)
        return deposit
