"""
Pure yield accrual calculator.

This module contains standalone calculation logic without any
dependencies on database, ORM, or network code. Every call site
(sweep, deposit status, withdrawal) goes through YieldCalculator.
"""

from datetime import datetime
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, localcontext

from app.config.business_constants import (
    BPS_DENOMINATOR,
    CALCULATION_PRECISION,
    DEFAULT_TOKEN_DECIMALS,
    MAX_BPS,
    SECONDS_PER_YEAR,
)
from app.services.accrual.dto import FeeSplit
from app.utils.datetime_utils import ensure_utc
from app.utils.exceptions import InvalidInputError


# principal * bps * seconds is divided by this in one step
_YIELD_DENOMINATOR = BPS_DENOMINATOR * SECONDS_PER_YEAR


def _to_decimal(value: Decimal | int | str, name: str) -> Decimal:
    """Convert an amount to Decimal, rejecting floats and non-finite values."""
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidInputError(f"{name} must be a Decimal, int or str, got {type(value).__name__}")

    try:
        result = value if isinstance(value, Decimal) else Decimal(value)
    except (ArithmeticError, TypeError, ValueError) as e:
        raise InvalidInputError(f"{name} is not a valid amount: {value!r}") from e

    if not result.is_finite():
        raise InvalidInputError(f"{name} must be finite, got {value!r}")
    if result < 0:
        raise InvalidInputError(f"{name} must be non-negative, got {value}")

    return result


def _check_non_negative_int(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise InvalidInputError(f"{name} must be non-negative, got {value}")


def _check_fee_bps(fee_bps: int) -> None:
    _check_non_negative_int(fee_bps, "fee_bps")
    if fee_bps > MAX_BPS:
        raise InvalidInputError(f"fee_bps must be within [0, {MAX_BPS}], got {fee_bps}")


class YieldCalculator:
    """
    Time-proportional yield and platform fee calculator.

    yield = principal * (annual_rate_bps / 10000) * (elapsed / 31536000)

    The year is fixed at 365 days. Yield is always derived from the
    start of the accrual window, never from a previously stored value,
    so repeated recomputation cannot drift.
    """

    def __init__(self, precision: int = CALCULATION_PRECISION) -> None:
        """
        Initialize calculator.

        Args:
            precision: Significant digits for intermediate arithmetic
        """
        self.precision = precision

    def compute_yield(
        self,
        principal: Decimal | int | str,
        annual_rate_bps: int,
        elapsed_seconds: int,
        decimals: int = DEFAULT_TOKEN_DECIMALS,
    ) -> Decimal:
        """
        Calculate yield accrued over an accrual window.

        The numerator principal * rate * seconds is formed in full before
        the single division, and the result is rounded half-up to the
        token precision.

        Args:
            principal: Deposited amount in whole token units
            annual_rate_bps: Annual rate in basis points
            elapsed_seconds: Length of the accrual window
            decimals: Token precision of the result

        Returns:
            Accrued yield

        Raises:
            InvalidInputError: If any input is negative

        Example:
            >>> calc = YieldCalculator()
            >>> calc.compute_yield(Decimal("1000"), 1000, 2_592_000)
            Decimal('8.219178')
        """
        amount = _to_decimal(principal, "principal")
        _check_non_negative_int(annual_rate_bps, "annual_rate_bps")
        _check_non_negative_int(elapsed_seconds, "elapsed_seconds")
        _check_non_negative_int(decimals, "decimals")

        unit = Decimal(1).scaleb(-decimals)
        if amount == 0 or annual_rate_bps == 0 or elapsed_seconds == 0:
            return Decimal(0).quantize(unit)

        with localcontext() as ctx:
            ctx.prec = self.precision
            numerator = amount * annual_rate_bps * elapsed_seconds
            raw = numerator / _YIELD_DENOMINATOR
            return raw.quantize(unit, rounding=ROUND_HALF_UP)

    def compute_yield_base_units(
        self,
        principal_units: int,
        annual_rate_bps: int,
        elapsed_seconds: int,
    ) -> int:
        """
        Integer fixed-point variant of compute_yield.

        Formula: (principal_units * bps * seconds + D // 2) // D
        with D = 10000 * 31536000, i.e. round half up on the last step.

        Args:
            principal_units: Principal in smallest token units
            annual_rate_bps: Annual rate in basis points
            elapsed_seconds: Length of the accrual window

        Returns:
            Accrued yield in smallest token units
        """
        _check_non_negative_int(principal_units, "principal_units")
        _check_non_negative_int(annual_rate_bps, "annual_rate_bps")
        _check_non_negative_int(elapsed_seconds, "elapsed_seconds")

        numerator = principal_units * annual_rate_bps * elapsed_seconds
        return (numerator + _YIELD_DENOMINATOR // 2) // _YIELD_DENOMINATOR

    def split_fee(
        self,
        yield_amount: Decimal | int | str,
        fee_bps: int,
        decimals: int = DEFAULT_TOKEN_DECIMALS,
    ) -> FeeSplit:
        """
        Split yield between the platform and the depositor.

        The platform fee is floored to the token precision and the payee
        receives the remainder, so the two parts always add up to
        yield_amount exactly.

        Args:
            yield_amount: Yield to split
            fee_bps: Platform fee in basis points, 0..10000
            decimals: Token precision of the fee

        Returns:
            FeeSplit(platform_fee, payee_amount)

        Raises:
            InvalidInputError: If yield_amount is negative or fee_bps is
                out of range

        Example:
            >>> calc = YieldCalculator()
            >>> calc.split_fee(Decimal("8.219178"), 2000)
            FeeSplit(platform_fee=Decimal('1.643835'), payee_amount=Decimal('6.575343'))
        """
        amount = _to_decimal(yield_amount, "yield_amount")
        _check_fee_bps(fee_bps)
        _check_non_negative_int(decimals, "decimals")

        unit = Decimal(1).scaleb(-decimals)
        with localcontext() as ctx:
            ctx.prec = self.precision
            fee = (amount * fee_bps / BPS_DENOMINATOR).quantize(unit, rounding=ROUND_DOWN)
            payee = amount - fee

        return FeeSplit(platform_fee=fee, payee_amount=payee)

    def split_fee_base_units(self, yield_units: int, fee_bps: int) -> tuple[int, int]:
        """
        Integer variant of split_fee.

        Args:
            yield_units: Yield in smallest token units
            fee_bps: Platform fee in basis points, 0..10000

        Returns:
            Tuple of (platform_fee_units, payee_units)
        """
        _check_non_negative_int(yield_units, "yield_units")
        _check_fee_bps(fee_bps)

        fee = yield_units * fee_bps // BPS_DENOMINATOR
        return fee, yield_units - fee

    @staticmethod
    def elapsed_seconds(start: datetime, now: datetime) -> int:
        """
        Whole seconds between start and now.

        Naive datetimes are treated as UTC. A negative span (clock skew
        between writers) counts as zero.

        Args:
            start: Start of the accrual window
            now: Moment the yield is computed for

        Returns:
            Elapsed seconds, never negative
        """
        delta = ensure_utc(now) - ensure_utc(start)
        return max(0, int(delta.total_seconds()))
