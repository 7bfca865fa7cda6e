"""
Yield deposit model.

Ledger entry for sale proceeds routed into a yield-bearing venue.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.types import TokenAmountType


class YieldDeposit(Base):
    """
    Yield deposit model - one accrual ledger entry.

    The entry is created with accumulated_yield = 0 and withdrawn = False.
    Only the accrual sweep (accumulated_yield) and the withdrawal
    (withdrawn and the frozen split) ever change it; once withdrawn the
    row is terminal. Rows are never deleted.
    """

    __tablename__ = "yield_deposits"
    __table_args__ = (
        CheckConstraint(
            "principal >= 0", name="check_yield_deposit_principal_non_negative"
        ),
        CheckConstraint(
            "accumulated_yield >= 0",
            name="check_yield_deposit_yield_non_negative"
        ),
        CheckConstraint(
            "annual_rate_bps >= 0",
            name="check_yield_deposit_rate_non_negative"
        ),
        Index("idx_yield_deposit_active", "withdrawn", "id"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Depositor (seller wallet)
    user_address: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )

    # Deposit details
    token: Mapped[str] = mapped_column(String(20), nullable=False)
    principal: Mapped[Decimal] = mapped_column(
        TokenAmountType, nullable=False
    )
    strategy_label: Mapped[str] = mapped_column(
        String(64), nullable=False
    )  # e.g. aave-v3, informational only
    annual_rate_bps: Mapped[int] = mapped_column(
        Integer, nullable=False
    )  # pinned at deposit time

    # Accrual window
    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    accumulated_yield: Mapped[Decimal] = mapped_column(
        TokenAmountType, nullable=False, default=Decimal("0")
    )
    last_accrued_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Terminal state
    withdrawn: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    withdrawn_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    platform_fee: Mapped[Decimal | None] = mapped_column(
        TokenAmountType, nullable=True
    )
    payee_yield: Mapped[Decimal | None] = mapped_column(
        TokenAmountType, nullable=True
    )

    # Optimistic concurrency: bumped on every accepted write
    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<YieldDeposit(id={self.id}, user={self.user_address}, "
            f"principal={self.principal} {self.token}, "
            f"rate={self.annual_rate_bps}bps, withdrawn={self.withdrawn})>"
        )

    @property
    def is_active(self) -> bool:
        """Entry still accrues yield."""
        return not self.withdrawn
