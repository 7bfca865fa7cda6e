"""
Accrual data transfer objects.

Plain result containers returned by the calculator, the deposit service
and the sweeper.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import NamedTuple


class FeeSplit(NamedTuple):
    """Yield split between the platform and the depositor."""

    platform_fee: Decimal
    payee_amount: Decimal


@dataclass
class DepositReceipt:
    """Result of a successful deposit."""

    deposit_id: int
    annual_rate_bps: int
    strategy_label: str
    start_time: datetime


@dataclass
class WithdrawalResult:
    """Result of a successful withdrawal."""

    deposit_id: int
    principal: Decimal
    yield_earned: Decimal
    platform_fee: Decimal
    payee_yield: Decimal
    total_amount: Decimal
    payout_amount: Decimal


@dataclass
class DepositStatus:
    """Snapshot of a ledger entry."""

    deposit_id: int
    principal: Decimal
    accumulated_yield: Decimal
    withdrawn: bool
    strategy_label: str
    token: str
    annual_rate_bps: int
    start_time: datetime
    current_yield: Decimal


@dataclass
class UserYieldSummary:
    """Aggregated yield figures for one depositor."""

    address: str
    total_deposited: Decimal
    total_yield_earned: Decimal
    accrued_yield: Decimal
    active_deposits: int
    roi_percent: Decimal


@dataclass
class SweepResult:
    """Outcome of one accrual sweep."""

    started_at: datetime
    finished_at: datetime | None = None
    scanned: int = 0
    updated: int = 0
    stale: int = 0
    failed: int = 0
    skipped: bool = False

    @property
    def duration_seconds(self) -> float:
        """Wall time of the sweep, 0 while still running."""
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()
