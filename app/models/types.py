"""
Standard type definitions for database models.

Provides consistent types for monetary fields across all models.
"""

from sqlalchemy import DECIMAL

# Token amount type for principal, yield and fees
# Precision: 38 digits total, 18 after decimal point
# Suitable for: 6-decimal stablecoins and 18-decimal tokens alike
TokenAmountType = DECIMAL(38, 18)
