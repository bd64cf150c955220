import logging
import os

import redis

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

_redis_client = None


def get_redis() -> redis.Redis:
    """Return the shared Redis connection, reconnecting when the cached one went away."""
    global _redis_client
    if _redis_client:
        try:
            _redis_client.ping()
            return _redis_client
        except redis.exceptions.ConnectionError:
            logger.warning("Redis connection lost. Reconnecting...")
            _redis_client = None

    _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
    _redis_client.ping()
    logger.info("Redis connection established")
    return _redis_client
