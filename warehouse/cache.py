"""
Redis caching utilities for the Warehouse service.

Caches read-heavy analytics (delivery performance, stock reports). Any Redis
failure is logged and treated as a cache miss.
"""
import json
import logging
from typing import Optional, Any
import redis
from functools import wraps

from .config import REDIS_URL, CACHE_ENABLED

logger = logging.getLogger(__name__)

# Connections are opened lazily, so importing this module never touches Redis
redis_client = redis.from_url(REDIS_URL, decode_responses=True, socket_connect_timeout=1, socket_timeout=1)

# Cache TTLs (in seconds)
ANALYTICS_CACHE_TTL = 60
REPORT_CACHE_TTL = 120


def get_cache(key: str) -> Optional[Any]:
    """
    Get a value from Redis cache.

    Args:
        key: Cache key

    Returns:
        Cached value or None if not found
    """
    if not CACHE_ENABLED:
        return None
    try:
        value = redis_client.get(key)
        if value:
            return json.loads(value)
        return None
    except (redis.RedisError, ValueError) as e:
        logger.warning(f"Cache get error for {key}: {e}")
        return None


def set_cache(key: str, value: Any, ttl: int = ANALYTICS_CACHE_TTL) -> bool:
    """
    Set a value in Redis cache with TTL.

    Args:
        key: Cache key
        value: Value to cache (will be JSON serialized)
        ttl: Time to live in seconds

    Returns:
        True if successful, False otherwise
    """
    if not CACHE_ENABLED:
        return False
    try:
        redis_client.setex(key, ttl, json.dumps(value, default=str))
        return True
    except (redis.RedisError, TypeError) as e:
        logger.warning(f"Cache set error for {key}: {e}")
        return False


def delete_pattern(pattern: str) -> bool:
    """
    Delete all keys matching a pattern.

    Args:
        pattern: Pattern to match (e.g., "analytics:*")

    Returns:
        True if successful, False otherwise
    """
    if not CACHE_ENABLED:
        return False
    try:
        keys = redis_client.keys(pattern)
        if keys:
            redis_client.delete(*keys)
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache delete pattern error for {pattern}: {e}")
        return False


def cache_result(key_prefix: str, ttl: int = ANALYTICS_CACHE_TTL):
    """
    Decorator to cache function results.

    The first positional argument is assumed to be the database session and is
    left out of the cache key.

    Example:
        @cache_result("analytics:performance", ttl=60)
        def get_performance_metrics(db, start_date, end_date):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(db, *args, **kwargs):
            parts = [str(arg) for arg in args] + [f"{k}={v}" for k, v in sorted(kwargs.items())]
            cache_key = f"{key_prefix}:{':'.join(parts)}"

            cached = get_cache(cache_key)
            if cached is not None:
                return cached

            result = func(db, *args, **kwargs)
            if result is not None:
                set_cache(cache_key, result, ttl)
            return result
        return wrapper
    return decorator
