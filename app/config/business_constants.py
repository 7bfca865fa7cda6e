"""
Business logic constants for the yield service.

Central location for the accrual and fee rules shared by the calculator,
the ledger and the HTTP layer.
"""

from decimal import Decimal


# ========================================================================
# ACCRUAL MATH
# ========================================================================

# 365 * 24 * 3600, no leap-year adjustment
SECONDS_PER_YEAR = 31_536_000

# 1 bps = 0.0001
BPS_DENOMINATOR = 10_000
MAX_BPS = 10_000

# Significant digits for intermediate Decimal arithmetic
CALCULATION_PRECISION = 60

# ========================================================================
# RATES AND FEES
# ========================================================================

# 10% annual, used whenever the rate feed is unreachable
DEFAULT_FALLBACK_RATE_BPS = 1000

# 20% platform cut of yield (never of principal)
DEFAULT_PLATFORM_FEE_BPS = 2000

# Lending venue that holds deposited proceeds
DEFAULT_STRATEGY_LABEL = "aave-v3"

# ========================================================================
# TOKENS
# ========================================================================

DEFAULT_TOKEN = "USDC"
DEFAULT_TOKEN_DECIMALS = 6

TOKEN_DECIMALS: dict[str, int] = {
    "USDC": 6,
    "USDT": 6,
    "DAI": 18,
    "WETH": 18,
}

SUPPORTED_TOKENS = frozenset(TOKEN_DECIMALS)

# Exclusive upper bound of TokenAmountType, NUMERIC(38, 18)
MAX_TOKEN_AMOUNT = Decimal("1e20")

ZERO = Decimal("0")


def get_token_decimals(token: str) -> int:
    """
    Get monetary precision for a token.

    Args:
        token: Token symbol (case-insensitive)

    Returns:
        Number of decimals, DEFAULT_TOKEN_DECIMALS for unknown tokens
    """
    return TOKEN_DECIMALS.get(token.upper(), DEFAULT_TOKEN_DECIMALS)
