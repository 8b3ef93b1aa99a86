"""
Redis client configuration
"""

import logging

import redis
from app.infrastructure.settings import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# Create Redis connection pool
redis_pool = redis.ConnectionPool.from_url(settings.REDIS_URL, decode_responses=True)
redis_client = redis.Redis(connection_pool=redis_pool)


def get_redis() -> redis.Redis:
    """Get Redis client instance"""
    return redis_client


def ping_redis(client: redis.Redis = None) -> bool:
    """Ping Redis to check connectivity"""
    try:
        return bool((client or redis_client).ping())
    except redis.RedisError as e:
        logger.warning("Redis ping failed", extra={"error": str(e)})
        return False


def get_queue_redis() -> redis.Redis:
    """
    Redis client for RQ.

    RQ stores pickled job payloads and needs raw bytes responses, so it cannot
    share the decode_responses pool.
    """
    return redis.Redis.from_url(settings.REDIS_URL)
