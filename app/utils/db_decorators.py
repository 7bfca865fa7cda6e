"""
Database decorators for automatic error handling and rollback.

Provides decorators that locate the SQLAlchemy session of an async
function or method, roll it back on failure and translate driver errors
into PersistenceError.
"""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.utils.exceptions import PersistenceError


T = TypeVar("T")


def _find_session(args: tuple, kwargs: dict) -> AsyncSession | None:
    """
    Locate the session used by the wrapped call.

    Looks at the 'session' keyword, then the first positional argument,
    then a 'session' attribute on the first positional argument (self).
    """
    session = kwargs.get("session")
    if session is not None:
        return session

    if args:
        if isinstance(args[0], AsyncSession):
            return args[0]
        return getattr(args[0], "session", None)

    return None


async def _safe_rollback(session: AsyncSession, func_name: str, exc: Exception) -> None:
    try:
        await session.rollback()
        logger.info(
            f"Rollback performed in {func_name} due to error: {type(exc).__name__}"
        )
    except Exception as rollback_error:
        logger.error(f"Failed to rollback in {func_name}: {rollback_error}")


def with_persistence_errors(func: Callable[..., T]) -> Callable[..., T]:
    """
    Decorator that turns SQLAlchemy failures into PersistenceError.

    The session is rolled back before the error is raised so the caller
    can keep using it. Domain errors pass through untouched.

    Example:
        @with_persistence_errors
        async def find_active(self) -> list[YieldDeposit]:
            ...
    """
    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as e:
            session = _find_session(args, kwargs)
            if session is not None:
                await _safe_rollback(session, func.__name__, e)
            raise PersistenceError(f"{func.__name__} failed: {e}") from e

    return wrapper


def with_auto_commit(func: Callable[..., T]) -> Callable[..., T]:
    """
    Decorator that commits the session on success and rolls back on error.

    Usage:
        @with_auto_commit
        async def deposit(self, ...):
            # No need to call session.commit() - it's automatic
            ...

    SQLAlchemy errors raised by the commit itself are reported as
    PersistenceError; everything else is re-raised as is.
    """
    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        session = _find_session(args, kwargs)

        if session is None:
            logger.warning(
                f"Function {func.__name__} decorated with @with_auto_commit "
                f"but no session argument found. Commit/rollback will not be performed."
            )
            return await func(*args, **kwargs)

        try:
            result = await func(*args, **kwargs)
            await session.commit()
            logger.debug(f"Auto-commit performed in {func.__name__}")
            return result
        except SQLAlchemyError as e:
            await _safe_rollback(session, func.__name__, e)
            raise PersistenceError(f"{func.__name__} failed: {e}") from e
        except Exception as e:
            await _safe_rollback(session, func.__name__, e)
            raise

    return wrapper
