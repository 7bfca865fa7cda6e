"""
Health check handlers for scheduler monitoring.

Mounted on the API application; the scheduler is read from
app[SCHEDULER_KEY].
"""

from aiohttp import web
from loguru import logger

from app.api.keys import SCHEDULER_KEY


async def health_handler(request: web.Request) -> web.Response:
    """
    Health check endpoint.

    Returns:
        JSON response with scheduler status
    """
    scheduler = request.app.get(SCHEDULER_KEY)
    if scheduler is None:
        return web.json_response(
            {
                "status": "unhealthy",
                "error": "Scheduler not initialized",
            },
            status=503,
        )

    try:
        is_running = scheduler.running
        jobs = scheduler.get_jobs()
        job_info = [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in jobs
        ]

        return web.json_response(
            {
                "status": "healthy" if is_running else "stopped",
                "scheduler_running": is_running,
                "jobs_count": len(jobs),
                "jobs": job_info,
            }
        )
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return web.json_response(
            {
                "status": "unhealthy",
                "error": str(e),
            },
            status=503,
        )


async def readiness_handler(request: web.Request) -> web.Response:
    """
    Readiness check endpoint.

    Returns:
        JSON response indicating if scheduler is ready to accept traffic
    """
    scheduler = request.app.get(SCHEDULER_KEY)
    if scheduler is None or not scheduler.running:
        return web.json_response(
            {
                "status": "not_ready",
                "ready": False,
            },
            status=503,
        )

    return web.json_response(
        {
            "status": "ready",
            "ready": True,
        }
    )


def register_health_routes(app: web.Application) -> None:
    """
    Add /health and /ready to an application.

    Args:
        app: aiohttp application
    """
    app.router.add_get("/health", health_handler)
    app.router.add_get("/ready", readiness_handler)
