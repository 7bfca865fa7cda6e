"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from app.models.base import Base
from app.models.yield_deposit import YieldDeposit


__all__ = [
    "Base",
    "YieldDeposit",
]
