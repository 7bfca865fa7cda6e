"""Create yield_deposits ledger table.

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261017_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create yield_deposits with its guards and indexes."""
    op.create_table(
        'yield_deposits',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_address', sa.String(length=64), nullable=False),
        sa.Column('token', sa.String(length=20), nullable=False),
        sa.Column('principal', sa.DECIMAL(38, 18), nullable=False),
        sa.Column('strategy_label', sa.String(length=64), nullable=False, comment='Venue holding the principal, informational'),
        sa.Column('annual_rate_bps', sa.Integer(), nullable=False, comment='Annual rate pinned at deposit time'),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('accumulated_yield', sa.DECIMAL(38, 18), nullable=False, server_default='0'),
        sa.Column('last_accrued_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('withdrawn', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('withdrawn_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('platform_fee', sa.DECIMAL(38, 18), nullable=True),
        sa.Column('payee_yield', sa.DECIMAL(38, 18), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1', comment='Optimistic concurrency counter'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('principal >= 0', name='check_yield_deposit_principal_non_negative'),
        sa.CheckConstraint('accumulated_yield >= 0', name='check_yield_deposit_yield_non_negative'),
        sa.CheckConstraint('annual_rate_bps >= 0', name='check_yield_deposit_rate_non_negative'),
    )
    op.create_index('ix_yield_deposits_user_address', 'yield_deposits', ['user_address'])
    op.create_index('idx_yield_deposit_active', 'yield_deposits', ['withdrawn', 'id'])


def downgrade() -> None:
    """Drop yield_deposits."""
    op.drop_index('idx_yield_deposit_active', table_name='yield_deposits')
    op.drop_index('ix_yield_deposits_user_address', table_name='yield_deposits')
    op.drop_table('yield_deposits')
