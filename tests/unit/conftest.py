"""
Shared fixtures for unit tests.

This module provides common fixtures used across multiple test modules:
- Active and withdrawn ledger entries
- Mock execute results for guarded UPDATE statements
"""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from app.models.yield_deposit import YieldDeposit


def _make_deposit(**overrides) -> YieldDeposit:
    values = {
        "id": 1,
        "user_address": "0xseller",
        "token": "USDC",
        "principal": Decimal("1000"),
        "strategy_label": "aave-v3",
        "annual_rate_bps": 1000,
        "start_time": datetime(2026, 1, 1, tzinfo=UTC),
        "accumulated_yield": Decimal("0"),
        "withdrawn": False,
        "version": 1,
    }
    values.update(overrides)
    return YieldDeposit(**values)


@pytest.fixture
def active_deposit() -> YieldDeposit:
    """
    Active ledger entry.

    Default values:
    - id: 1
    - principal: 1000 USDC
    - annual_rate_bps: 1000 (10%)
    - accumulated_yield: 0
    - version: 1

    Returns:
        YieldDeposit: Transient model instance
    """
    return _make_deposit()


@pytest.fixture
def withdrawn_deposit() -> YieldDeposit:
    """Terminal ledger entry with frozen yield."""
    return _make_deposit(
        accumulated_yield=Decimal("8.219178"),
        withdrawn=True,
        version=3,
    )


@pytest.fixture
def update_result():
    """
    Factory for the result of an UPDATE statement.

    Returns:
        Callable returning a MagicMock with the given rowcount
    """
    def _make(rowcount: int) -> MagicMock:
        result = MagicMock()
        result.rowcount = rowcount
        return result

    return _make
