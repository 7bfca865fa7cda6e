"""
Yield service entry point.

Starts the HTTP API and the hourly accrual scheduler in one event loop
and tears both down on SIGINT/SIGTERM.
"""

import asyncio
import signal
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from aiohttp import web
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.app import create_app
from app.api.keys import SCHEDULER_KEY, ServiceFactory
from app.config.logging import setup_logging
from app.config.settings import Settings
from app.services.accrual.calculator import YieldCalculator
from app.services.accrual.rate_source import FixedRateSource, RateSource
from app.services.accrual.service import YieldDepositService
from app.services.accrual.sweeper import AccrualSweeper
from app.utils.distributed_lock import DistributedLock
from app.utils.redis_utils import get_redis_client
from jobs.health import register_health_routes
from jobs.scheduler import AccrualScheduler


def build_rate_source(settings: Settings) -> RateSource | FixedRateSource:
    """
    Create the rate source described by settings.

    Args:
        settings: Application settings

    Returns:
        RateSource for a configured feed, FixedRateSource otherwise
    """
    if not settings.rate_feed_url:
        logger.info(f"No rate feed configured, using fixed {settings.fallback_rate_bps} bps")
        return FixedRateSource(settings.fallback_rate_bps)

    return RateSource(
        feed_url_template=settings.rate_feed_url,
        timeout_seconds=settings.rate_feed_timeout_seconds,
        fallback_rate_bps=settings.fallback_rate_bps,
        cache_ttl_seconds=settings.rate_cache_ttl_seconds,
    )


def build_service_factory(
    session_maker: async_sessionmaker[AsyncSession],
    rate_source: RateSource | FixedRateSource,
    calculator: YieldCalculator,
    settings: Settings,
) -> ServiceFactory:
    """
    Create a factory yielding a YieldDepositService per request.

    Args:
        session_maker: Factory for database sessions
        rate_source: Rate source pinned on deposit
        calculator: Yield calculator
        settings: Application settings

    Returns:
        Callable returning an async context manager
    """
    @asynccontextmanager
    async def service_factory() -> AsyncIterator[YieldDepositService]:
        async with session_maker() as session:
            yield YieldDepositService(
                session,
                rate_source,
                calculator,
                strategy_label=settings.strategy_label,
                platform_fee_bps=settings.platform_fee_bps,
            )

    return service_factory


async def _stop_runner(runner: web.AppRunner, timeout: int = 5) -> None:
    logger.info("Stopping HTTP server...")
    try:
        await asyncio.wait_for(runner.cleanup(), timeout=timeout)
        logger.info("HTTP server stopped successfully")
    except TimeoutError:
        logger.warning(f"HTTP server cleanup timed out after {timeout}s")


async def run_service(settings: Settings) -> None:
    """
    Run API and scheduler until a stop signal arrives.

    Args:
        settings: Application settings
    """
    from app.config.database import async_engine, async_session_maker

    calculator = YieldCalculator()
    rate_source = build_rate_source(settings)
    redis_client = get_redis_client(settings) if settings.use_redis_lock else None

    sweeper = AccrualSweeper(
        async_session_maker,
        calculator,
        DistributedLock(redis_client=redis_client),
        lock_timeout=settings.sweep_lock_timeout_seconds,
    )
    scheduler = AccrualScheduler(sweeper, settings.accrual_interval_minutes)

    app = create_app(
        build_service_factory(async_session_maker, rate_source, calculator, settings),
        sweeper,
    )
    app[SCHEDULER_KEY] = scheduler
    register_health_routes(app)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.api_host, settings.api_port)
    await site.start()
    logger.info(f"HTTP API listening on {settings.api_host}:{settings.api_port}")

    scheduler.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            logger.warning(f"Signal handler for {sig.name} not supported on this platform")

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down yield service...")
        scheduler.shutdown()
        await _stop_runner(runner)
        await rate_source.close()
        if redis_client:
            await redis_client.aclose()
        await async_engine.dispose()
        logger.info("Yield service stopped")


def main() -> None:
    """Console entry point."""
    from app.config.settings import settings

    setup_logging(settings.log_level, settings.log_file)
    try:
        asyncio.run(run_service(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
