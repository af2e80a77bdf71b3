"""
Redis cache layer — async Redis client with JSON helpers.

Used to memoise directions-provider responses so repeated route queries
between the same points do not hit the upstream API. Disabled unless
``REDIS_ENABLED`` is set; every helper degrades to a cache miss when Redis
is off or unreachable.

Usage:
    from backend.app.core.cache import cache_get, cache_set, make_cache_key

    key = make_cache_key("directions", origin, destination, "walking")
    await cache_set(key, payload, ttl=120)
    cached = await cache_get(key)
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Optional

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

_redis_client = None


async def _get_redis():
    """Get or create the async Redis client (None when disabled)."""
    global _redis_client
    if not settings.REDIS_ENABLED:
        return None
    if _redis_client is None:
        try:
            import redis.asyncio as aioredis
            _redis_client = aioredis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis connected: %s", settings.REDIS_URL)
        except Exception as e:
            logger.warning("Redis unavailable: %s — caching disabled", e)
            return None
    return _redis_client


async def cache_get(key: str) -> Optional[Any]:
    """Get a cached value by key. Returns None on miss or error."""
    client = await _get_redis()
    if not client:
        return None
    try:
        raw = await client.get(key)
        if raw is not None:
            return json.loads(raw)
    except Exception as e:
        logger.warning("Cache GET error for %s: %s", key, e)
    return None


async def cache_set(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    """Set a cached value with optional TTL (seconds)."""
    client = await _get_redis()
    if not client:
        return False
    try:
        await client.set(
            key, json.dumps(value, default=str),
            ex=ttl or settings.REDIS_CACHE_TTL,
        )
        return True
    except Exception as e:
        logger.warning("Cache SET error for %s: %s", key, e)
        return False


def make_cache_key(prefix: str, *parts: Any) -> str:
    """Deterministic short key from arbitrary JSON-able parts."""
    raw = json.dumps(parts, sort_keys=True, default=str)
    digest = hashlib.md5(raw.encode()).hexdigest()[:16]
    return f"{prefix}:{digest}"


async def ping() -> Optional[bool]:
    """True/False when Redis is enabled, None when caching is off."""
    client = await _get_redis()
    if not client:
        return None
    try:
        return bool(await client.ping())
    except Exception as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
