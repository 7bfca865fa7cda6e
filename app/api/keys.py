"""Typed application keys shared by the API and the job runner."""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from aiohttp import web

from app.services.accrual.service import YieldDepositService


ServiceFactory = Callable[[], AbstractAsyncContextManager[YieldDepositService]]

SERVICE_FACTORY_KEY = web.AppKey("service_factory", ServiceFactory)

# AccrualSweeper, or a test double with run_sweep()
SWEEPER_KEY = web.AppKey("sweeper", Any)

# AccrualScheduler, read by the health handlers
SCHEDULER_KEY = web.AppKey("scheduler", Any)
