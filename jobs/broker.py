"""
Dramatiq broker configuration.

Redis-based message broker for manually triggered sweeps.
"""

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.middleware import CurrentMessage
from loguru import logger

from app.config.settings import settings
from app.utils.redis_utils import get_redis_url_masked

# Initialize Redis broker
redis_broker = RedisBroker(
    host=settings.redis_host,
    port=settings.redis_port,
    password=settings.redis_password if settings.redis_password else None,
    db=settings.redis_db,
)

# CurrentMessage: Provides access to current message in actors
redis_broker.add_middleware(CurrentMessage())

# Set as default broker
dramatiq.set_broker(redis_broker)

# Export broker
broker = redis_broker

logger.info(f"Dramatiq broker initialized: {get_redis_url_masked(settings)}")
