"""
API application factory.

Builds the aiohttp application serving the deposit lifecycle routes.
"""

from aiohttp import web
from loguru import logger

from app.api.handlers import (
    deposit_handler,
    error_middleware,
    run_accrual_handler,
    status_handler,
    user_summary_handler,
    withdraw_handler,
)
from app.api.keys import SERVICE_FACTORY_KEY, SWEEPER_KEY, ServiceFactory
from app.services.accrual.sweeper import AccrualSweeper


def create_app(
    service_factory: ServiceFactory,
    sweeper: AccrualSweeper | None = None,
) -> web.Application:
    """
    Create the API application.

    Args:
        service_factory: Returns an async context manager yielding a
            YieldDepositService bound to a fresh session
        sweeper: Sweeper behind POST /api/accrual/run

    Returns:
        Configured aiohttp application
    """
    app = web.Application(middlewares=[error_middleware])
    app[SERVICE_FACTORY_KEY] = service_factory
    if sweeper is not None:
        app[SWEEPER_KEY] = sweeper

    app.router.add_post("/api/deposit", deposit_handler)
    app.router.add_post("/api/withdraw", withdraw_handler)
    app.router.add_get("/api/deposits/{deposit_id}", status_handler)
    app.router.add_get("/api/user/{address}", user_summary_handler)
    app.router.add_post("/api/accrual/run", run_accrual_handler)

    logger.debug("API routes registered")
    return app
