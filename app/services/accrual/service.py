"""
Yield deposit service.

Deposit, withdrawal and status operations over the accrual ledger.
The annual rate is pinned when the deposit is created; every later
computation uses the stored rate and start time.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.business_constants import (
    DEFAULT_PLATFORM_FEE_BPS,
    DEFAULT_STRATEGY_LABEL,
    DEFAULT_TOKEN,
    MAX_BPS,
    MAX_TOKEN_AMOUNT,
    SUPPORTED_TOKENS,
    ZERO,
    get_token_decimals,
)
from app.models.yield_deposit import YieldDeposit
from app.repositories.yield_deposit_repository import YieldDepositRepository
from app.services.accrual.calculator import YieldCalculator
from app.services.accrual.dto import (
    DepositReceipt,
    DepositStatus,
    UserYieldSummary,
    WithdrawalResult,
)
from app.services.accrual.rate_source import FixedRateSource, RateSource
from app.utils.datetime_utils import utc_now
from app.utils.db_decorators import with_auto_commit
from app.utils.exceptions import (
    AlreadyWithdrawnError,
    DepositNotFoundError,
    DepositOwnershipError,
    InvalidInputError,
    UserNotFoundError,
)


def _normalize_address(user_address: str | None) -> str:
    """Stripped, lower-cased wallet address; empty is invalid."""
    address = (user_address or "").strip().lower()
    if not address:
        raise InvalidInputError("user_address is required")
    return address


class YieldDepositService:
    """Deposit lifecycle operations."""

    def __init__(
        self,
        session: AsyncSession,
        rate_source: RateSource | FixedRateSource,
        calculator: YieldCalculator | None = None,
        strategy_label: str = DEFAULT_STRATEGY_LABEL,
        platform_fee_bps: int = DEFAULT_PLATFORM_FEE_BPS,
    ) -> None:
        """
        Initialize yield deposit service.

        Args:
            session: Database session
            rate_source: Source of the rate pinned on deposit
            calculator: Yield calculator
            strategy_label: Venue recorded on new deposits
            platform_fee_bps: Platform cut of yield, 0..10000

        Raises:
            InvalidInputError: If platform_fee_bps is out of range
        """
        if not 0 <= platform_fee_bps <= MAX_BPS:
            raise InvalidInputError(
                f"platform_fee_bps must be within [0, {MAX_BPS}], got {platform_fee_bps}"
            )

        self.session = session
        self.repo = YieldDepositRepository(session)
        self.rate_source = rate_source
        self.calculator = calculator or YieldCalculator()
        self.strategy_label = strategy_label
        self.platform_fee_bps = platform_fee_bps

    def _live_yield(self, deposit: YieldDeposit, now: datetime) -> Decimal:
        """Yield of an active deposit at `now`, never below the stored value."""
        elapsed = self.calculator.elapsed_seconds(deposit.start_time, now)
        live = self.calculator.compute_yield(
            deposit.principal,
            deposit.annual_rate_bps,
            elapsed,
            get_token_decimals(deposit.token),
        )
        return max(live, deposit.accumulated_yield)

    async def _get_deposit(self, deposit_id: int) -> YieldDeposit:
        deposit = await self.repo.find_by_id(deposit_id)
        if deposit is None:
            raise DepositNotFoundError(deposit_id)
        return deposit

    @with_auto_commit
    async def deposit(
        self,
        user_address: str,
        principal: Decimal | int | str,
        token: str = DEFAULT_TOKEN,
    ) -> DepositReceipt:
        """
        Open a new deposit.

        Args:
            user_address: Depositor wallet address
            principal: Deposited amount in whole token units
            token: Token symbol

        Returns:
            DepositReceipt with the pinned rate

        Raises:
            InvalidInputError: On empty address, negative or oversized
                amount, or unsupported token
            PersistenceError: If the deposit could not be stored
        """
        address = _normalize_address(user_address)

        token = (token or "").strip().upper()
        if token not in SUPPORTED_TOKENS:
            raise InvalidInputError(
                f"Unsupported token {token!r}, expected one of {sorted(SUPPORTED_TOKENS)}"
            )

        try:
            amount = principal if isinstance(principal, Decimal) else Decimal(str(principal))
        except InvalidOperation as e:
            raise InvalidInputError(f"Invalid amount: {principal!r}") from e
        if not amount.is_finite() or amount < 0:
            raise InvalidInputError(f"Amount must be a non-negative number, got {principal}")
        if amount >= MAX_TOKEN_AMOUNT:
            raise InvalidInputError(f"Amount must be below {MAX_TOKEN_AMOUNT:f}, got {principal}")

        rate_bps = await self.rate_source.get_current_rate(token)
        start_time = utc_now()

        deposit = await self.repo.create_deposit(
            user_address=address,
            token=token,
            principal=amount,
            strategy_label=self.strategy_label,
            annual_rate_bps=rate_bps,
            start_time=start_time,
        )

        logger.info(
            f"Deposit {deposit.id} created: {amount} {token} for {address} "
            f"at {rate_bps} bps via {self.strategy_label}"
        )

        return DepositReceipt(
            deposit_id=deposit.id,
            annual_rate_bps=rate_bps,
            strategy_label=self.strategy_label,
            start_time=start_time,
        )

    @with_auto_commit
    async def withdraw(
        self,
        deposit_id: int,
        user_address: str | None = None,
        now: datetime | None = None,
    ) -> WithdrawalResult:
        """
        Withdraw a deposit and freeze its yield.

        The platform fee is taken from the yield only; the principal is
        returned in full.

        Args:
            deposit_id: Deposit ID
            user_address: Caller wallet address, checked against the
                depositor when given
            now: Withdrawal moment, defaults to current time

        Returns:
            WithdrawalResult with the final split

        Raises:
            DepositNotFoundError: If the deposit does not exist
            DepositOwnershipError: If user_address is not the depositor
            AlreadyWithdrawnError: If the deposit was already withdrawn
            PersistenceError: If the withdrawal could not be stored
        """
        deposit = await self._get_deposit(deposit_id)
        if user_address is not None and _normalize_address(user_address) != deposit.user_address:
            raise DepositOwnershipError(deposit_id)
        if deposit.withdrawn:
            raise AlreadyWithdrawnError(deposit_id)

        withdrawn_at = now or utc_now()
        decimals = get_token_decimals(deposit.token)
        final_yield = self._live_yield(deposit, withdrawn_at)
        split = self.calculator.split_fee(final_yield, self.platform_fee_bps, decimals)

        await self.repo.mark_withdrawn(
            deposit_id,
            final_yield=final_yield,
            platform_fee=split.platform_fee,
            payee_yield=split.payee_amount,
            withdrawn_at=withdrawn_at,
        )

        return WithdrawalResult(
            deposit_id=deposit_id,
            principal=deposit.principal,
            yield_earned=final_yield,
            platform_fee=split.platform_fee,
            payee_yield=split.payee_amount,
            total_amount=deposit.principal + final_yield,
            payout_amount=deposit.principal + split.payee_amount,
        )

    async def status(
        self, deposit_id: int, now: datetime | None = None
    ) -> DepositStatus:
        """
        Get current state of a deposit.

        Args:
            deposit_id: Deposit ID
            now: Moment for the live yield, defaults to current time

        Returns:
            DepositStatus; current_yield is live for active deposits and
            frozen for withdrawn ones

        Raises:
            DepositNotFoundError: If the deposit does not exist
        """
        deposit = await self._get_deposit(deposit_id)

        if deposit.is_active:
            current_yield = self._live_yield(deposit, now or utc_now())
        else:
            current_yield = deposit.accumulated_yield

        return DepositStatus(
            deposit_id=deposit.id,
            principal=deposit.principal,
            accumulated_yield=deposit.accumulated_yield,
            withdrawn=deposit.withdrawn,
            strategy_label=deposit.strategy_label,
            token=deposit.token,
            annual_rate_bps=deposit.annual_rate_bps,
            start_time=deposit.start_time,
            current_yield=current_yield,
        )

    async def get_user_summary(self, user_address: str) -> UserYieldSummary:
        """
        Aggregate deposit figures for a user.

        Earned yield and ROI count realized yield only, i.e. the frozen
        yield of withdrawn deposits. Yield written by sweeps on deposits
        that are still active is reported separately as accrued yield.

        Args:
            user_address: Depositor wallet address

        Returns:
            UserYieldSummary with ROI in percent of deposited principal

        Raises:
            UserNotFoundError: If the address never made a deposit
        """
        address = _normalize_address(user_address)

        totals = await self.repo.get_user_totals(address)
        if totals["deposit_count"] == 0:
            raise UserNotFoundError(address)

        total_deposited = totals["total_deposited"]
        realized_yield = totals["realized_yield"]

        if total_deposited > 0:
            roi_percent = (realized_yield / total_deposited * 100).quantize(Decimal("0.01"))
        else:
            roi_percent = ZERO

        return UserYieldSummary(
            address=address,
            total_deposited=total_deposited,
            total_yield_earned=realized_yield,
            accrued_yield=totals["accrued_yield"],
            active_deposits=totals["active_deposits"],
            roi_percent=roi_percent,
        )
