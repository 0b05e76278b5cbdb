import logging
from functools import lru_cache

import redis.asyncio as redis

from ..config import settings

logger = logging.getLogger(__name__)


@lru_cache()
def get_redis_config() -> dict:
    """
    Connection parameters for the event bus, taken from the ``REDIS_*`` settings

    Returns:
        dict: Keyword arguments for ``redis.ConnectionPool``
    """
    conf = {
        'host': settings.redis_host,
        'port': settings.redis_port,
        'db': settings.redis_db,
        'username': settings.redis_username,
        'password': settings.redis_password,
        'decode_responses': True,
    }
    if settings.redis_ssl:
        conf['connection_class'] = redis.SSLConnection
    return conf


# Shared by every client created in this process
_connection_pool = None


async def get_redis_connection() -> redis.Redis:
    """
    Get an async Redis client backed by the process-wide connection pool

    Raises:
        Exception: If Redis can't be reached; the pool is rebuilt on the next call
    """
    global _connection_pool

    try:
        if _connection_pool is None:
            _connection_pool = redis.ConnectionPool(**get_redis_config())
            logger.info("Created new Redis connection pool")

        redis_client = redis.Redis(connection_pool=_connection_pool)
        await redis_client.ping()
        return redis_client
    except Exception as e:
        logger.error(f"Redis connection error: {str(e)}")
        _connection_pool = None
        raise
