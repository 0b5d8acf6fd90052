from __future__ import annotations

import logging

import redis
from redis.exceptions import RedisError

from searchpulse.core.config import get_settings

logger = logging.getLogger("searchpulse.cache")


def get_redis_client() -> redis.Redis | None:
    """Return a connected client, or None when caching is unavailable.

    The dashboard cache is optional, so an unreachable Redis degrades to
    uncached reads instead of failing the request.
    """
    settings = get_settings()
    if settings.app_env.lower() == "test" or settings.dashboard_cache_ttl_seconds <= 0:
        return None
    client = redis.Redis.from_url(settings.redis_url)
    try:
        client.ping()
    except RedisError as exc:
        logger.warning("Redis unavailable at %s: %s", settings.redis_url, exc)
        return None
    return client
