"""
Exception handling utilities.

Defines the error taxonomy of the yield service and the categories
that decide how each error is handled.
"""

from sqlalchemy.exc import SQLAlchemyError


class YieldServiceError(Exception):
    """Base class for all yield service errors."""

    code = "yield_error"


class InvalidInputError(YieldServiceError, ValueError):
    """Negative amounts, out-of-range basis points or malformed identifiers."""

    code = "invalid_input"


class RateFeedUnavailableError(YieldServiceError):
    """Rate feed failed, timed out or returned a malformed payload."""

    code = "rate_feed_unavailable"


class DepositNotFoundError(YieldServiceError):
    """No ledger entry with the requested id."""

    code = "deposit_not_found"

    def __init__(self, deposit_id: int) -> None:
        super().__init__(f"Deposit {deposit_id} not found")
        self.deposit_id = deposit_id


class UserNotFoundError(YieldServiceError):
    """No ledger entry was ever recorded for the address."""

    code = "user_not_found"

    def __init__(self, user_address: str) -> None:
        super().__init__(f"User {user_address} not found")
        self.user_address = user_address


class DepositOwnershipError(YieldServiceError):
    """Caller address does not match the depositor of the entry."""

    code = "unauthorized"

    def __init__(self, deposit_id: int) -> None:
        super().__init__(f"Deposit {deposit_id} does not belong to the caller")
        self.deposit_id = deposit_id


class InvalidStateTransitionError(YieldServiceError):
    """Mutation of an immutable field or of a withdrawn entry."""

    code = "invalid_state_transition"


class StaleRecomputeError(InvalidStateTransitionError):
    """Recompute lost the race against a withdrawal or a newer write."""

    code = "stale_recompute"


class AlreadyWithdrawnError(InvalidStateTransitionError):
    """Withdrawal requested for an entry that is already withdrawn."""

    code = "already_withdrawn"

    def __init__(self, deposit_id: int) -> None:
        super().__init__(f"Deposit {deposit_id} is already withdrawn")
        self.deposit_id = deposit_id


class PersistenceError(YieldServiceError):
    """Ledger store rejected or failed a read or write."""

    code = "persistence_failure"


# Exception categories based on handling strategy

# Discarded by the sweep, never visible to callers
SWEEP_DISCARD = (
    StaleRecomputeError,
)

# Entry skipped for the current sweep only, retried on the next tick
SWEEP_SKIP = (
    PersistenceError,
    SQLAlchemyError,
    InvalidInputError,
)


def is_sweep_discard(exc: Exception) -> bool:
    """
    Check if a sweep error is a stale write that can be dropped.

    Args:
        exc: Exception to check

    Returns:
        True if the recompute should be discarded silently
    """
    return isinstance(exc, SWEEP_DISCARD)


def is_sweep_skip(exc: Exception) -> bool:
    """
    Check if a sweep error should skip the entry until the next run.

    Args:
        exc: Exception to check

    Returns:
        True if the entry should be skipped and logged
    """
    return isinstance(exc, SWEEP_SKIP)
