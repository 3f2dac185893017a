"""Redis cache helper for per-user shelf listings, keyed by a per-user generation."""

from __future__ import annotations

import json
from typing import Any, Optional

import redis.asyncio as redis
import structlog

from app.config import get_settings

logger = structlog.get_logger()

_redis_client: redis.Redis | None = None


def shelf_cache_key(user_id: int, view: str, generation: int = 0) -> str:
    return f"shelf:user:{user_id}:g{generation}:{view}"


def shelf_cache_pattern(user_id: int) -> str:
    return f"shelf:user:{user_id}:*"


def shelf_generation_key(user_id: int) -> str:
    # outside shelf_cache_pattern so invalidation never resets it
    return f"shelf:generation:user:{user_id}"


async def get_redis() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        _redis_client = redis.from_url(settings.redis_dsn, decode_responses=True)
    return _redis_client


async def get_cached(key: str) -> Optional[Any]:
    """Get a cached value by key."""
    if not get_settings().cache_enabled:
        return None
    try:
        r = await get_redis()
        value = await r.get(key)
        if value:
            return json.loads(value)
    except redis.RedisError:
        logger.warning("cache_get_error", key=key)
    return None


async def set_cached(key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
    """Set a cached value; TTL defaults to the shelf listing TTL."""
    settings = get_settings()
    if not settings.cache_enabled:
        return
    try:
        r = await get_redis()
        await r.setex(
            key,
            ttl_seconds or settings.shelf_cache_ttl_seconds,
            json.dumps(value, default=str),
        )
    except redis.RedisError:
        logger.warning("cache_set_error", key=key)


async def invalidate(pattern: str) -> None:
    """Invalidate all cache keys matching a pattern."""
    if not get_settings().cache_enabled:
        return
    try:
        r = await get_redis()
        async for key in r.scan_iter(match=pattern):
            await r.delete(key)
    except redis.RedisError:
        logger.warning("cache_invalidate_error", pattern=pattern)


async def get_generation(user_id: int) -> Optional[int]:
    """
    Current listing generation for a user, or None when the cache is off or
    unreachable. Listings are cached under the generation read before the
    database query, so a write that lands mid-query orphans them.
    """
    if not get_settings().cache_enabled:
        return None
    key = shelf_generation_key(user_id)
    try:
        r = await get_redis()
        value = await r.get(key)
        return int(value or 0)
    except redis.RedisError:
        logger.warning("cache_generation_error", key=key)
    return None


async def invalidate_user_shelves(user_id: int) -> None:
    """Move the user to a new listing generation, then drop the old entries."""
    if not get_settings().cache_enabled:
        return
    key = shelf_generation_key(user_id)
    try:
        r = await get_redis()
        await r.incr(key)
    except redis.RedisError:
        logger.warning("cache_generation_error", key=key)
    await invalidate(shelf_cache_pattern(user_id))


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
