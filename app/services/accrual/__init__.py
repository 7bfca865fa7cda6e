"""
Yield accrual package.

Calculator, rate source, deposit service and the periodic sweeper.
"""

from app.services.accrual.calculator import YieldCalculator
from app.services.accrual.dto import (
    DepositReceipt,
    DepositStatus,
    FeeSplit,
    SweepResult,
    UserYieldSummary,
    WithdrawalResult,
)
from app.services.accrual.rate_source import FixedRateSource, RateSource
from app.services.accrual.service import YieldDepositService
from app.services.accrual.sweeper import AccrualSweeper


__all__ = [
    "AccrualSweeper",
    "DepositReceipt",
    "DepositStatus",
    "FeeSplit",
    "FixedRateSource",
    "RateSource",
    "SweepResult",
    "UserYieldSummary",
    "WithdrawalResult",
    "YieldCalculator",
    "YieldDepositService",
]
