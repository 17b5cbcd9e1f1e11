"""
Redis client configuration
"""

import redis
from emailpay.infrastructure.settings import get_settings

settings = get_settings()

# Text client for health checks and general use
redis_pool = redis.ConnectionPool.from_url(settings.REDIS_URL, decode_responses=True)
redis_client = redis.Redis(connection_pool=redis_pool)


def get_redis() -> redis.Redis:
    """Get Redis client instance"""
    return redis_client


def get_queue_connection() -> redis.Redis:
    """
    Get a Redis connection for RQ.

    RQ stores pickled job payloads, so this connection must not decode responses.
    """
    return redis.Redis.from_url(settings.REDIS_URL)


def ping_redis() -> bool:
    """Ping Redis to check connectivity"""
    try:
        return redis_client.ping()
    except redis.RedisError:
        return False
