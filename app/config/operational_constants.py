"""
Operational constants for the yield service.

Technical constants: timeouts, lock keys, scheduler and task limits.
"""

# =============================================================================
# LOCKS (seconds)
# =============================================================================
# Used by distributed_lock.py

# Only one accrual sweep may run per ledger
SWEEP_LOCK_KEY = "yield_accrual_sweep"

# Upper bound on a single sweep holding the lock
LOCK_TIMEOUT_LONG = 300


# =============================================================================
# RATE FEED
# =============================================================================

RATE_FEED_TIMEOUT_SECONDS = 5.0
RATE_CACHE_TTL_SECONDS = 60


# =============================================================================
# SCHEDULER
# =============================================================================

ACCRUAL_JOB_ID = "yield_accrual_sweep"
ACCRUAL_INTERVAL_MINUTES = 60

# Late ticks inside this window still run
SCHEDULER_MISFIRE_GRACE_SECONDS = 300


# =============================================================================
# DRAMATIQ TASK TIME LIMITS (milliseconds)
# =============================================================================

# Must be greater than LOCK_TIMEOUT_LONG
DRAMATIQ_TIME_LIMIT_SWEEP = 360_000
DRAMATIQ_MAX_RETRIES = 0
