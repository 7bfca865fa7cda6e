"""Pydantic models for API requests and JSON serialization helpers."""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.config.business_constants import DEFAULT_TOKEN, MAX_TOKEN_AMOUNT
from app.services.accrual.dto import (
    DepositReceipt,
    DepositStatus,
    SweepResult,
    UserYieldSummary,
    WithdrawalResult,
)


class DepositRequest(BaseModel):
    """Body of POST /api/deposit."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    user_address: str = Field(..., alias="userAddress", min_length=1)
    amount: Decimal = Field(..., ge=0, lt=MAX_TOKEN_AMOUNT, allow_inf_nan=False)
    token: str = Field(default=DEFAULT_TOKEN, min_length=1)


class WithdrawRequest(BaseModel):
    """Body of POST /api/withdraw."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    deposit_id: int = Field(..., alias="depositId", ge=1)
    user_address: str | None = Field(default=None, alias="userAddress", min_length=1)


def _amount(value: Decimal) -> str:
    """Decimals travel as strings to keep every digit."""
    return str(value)


def receipt_to_json(receipt: DepositReceipt) -> dict[str, Any]:
    return {
        "success": True,
        "depositId": receipt.deposit_id,
        "annualRateBps": receipt.annual_rate_bps,
        "strategy": receipt.strategy_label,
        "startTime": receipt.start_time.isoformat(),
    }


def withdrawal_to_json(result: WithdrawalResult) -> dict[str, Any]:
    return {
        "success": True,
        "depositId": result.deposit_id,
        "amount": _amount(result.principal),
        "yieldEarned": _amount(result.yield_earned),
        "platformFee": _amount(result.platform_fee),
        "payeeYield": _amount(result.payee_yield),
        "totalAmount": _amount(result.total_amount),
        "payoutAmount": _amount(result.payout_amount),
    }


def status_to_json(status: DepositStatus) -> dict[str, Any]:
    return {
        "success": True,
        "depositId": status.deposit_id,
        "principal": _amount(status.principal),
        "accumulatedYield": _amount(status.accumulated_yield),
        "currentYield": _amount(status.current_yield),
        "withdrawn": status.withdrawn,
        "strategy": status.strategy_label,
        "token": status.token,
        "annualRateBps": status.annual_rate_bps,
        "startTime": status.start_time.isoformat(),
    }


def summary_to_json(summary: UserYieldSummary) -> dict[str, Any]:
    return {
        "success": True,
        "address": summary.address,
        "totalDeposited": _amount(summary.total_deposited),
        "totalYieldEarned": _amount(summary.total_yield_earned),
        "accruedYield": _amount(summary.accrued_yield),
        "activeDeposits": summary.active_deposits,
        "roiPercent": _amount(summary.roi_percent),
    }


def sweep_to_json(result: SweepResult) -> dict[str, Any]:
    return {
        "success": True,
        "skipped": result.skipped,
        "scanned": result.scanned,
        "updated": result.updated,
        "stale": result.stale,
        "failed": result.failed,
        "startedAt": result.started_at.isoformat(),
        "finishedAt": result.finished_at.isoformat() if result.finished_at else None,
    }
