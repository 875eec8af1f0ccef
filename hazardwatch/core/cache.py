"""
Redis-backed snapshot cache.

Values are stored as JSON under a ``hazardwatch:`` prefix. Redis is
optional: when it is unreachable every read is a miss and every write is
a no-op, so weather snapshots are simply fetched fresh.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis

from hazardwatch.core.config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "hazardwatch:"
_CACHE_ERRORS = (aioredis.RedisError, OSError)

_client: Optional[aioredis.Redis] = None


def _key(key: str) -> str:
    return key if key.startswith(KEY_PREFIX) else KEY_PREFIX + key


def _connection() -> Optional[aioredis.Redis]:
    global _client
    if _client is not None:
        return _client
    try:
        _client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    except ValueError as e:
        logger.warning("Invalid REDIS_URL, snapshot cache disabled: %s", e)
        return None
    logger.info("Snapshot cache using %s", settings.REDIS_URL.split("@")[-1])
    return _client


async def cache_get(key: str) -> Optional[Any]:
    """Decoded value for ``key``, or None on a miss or any cache failure."""
    client = _connection()
    if client is None:
        return None
    try:
        raw = await client.get(_key(key))
        return None if raw is None else json.loads(raw)
    except (*_CACHE_ERRORS, ValueError) as e:
        logger.warning("Cache read failed for %s: %s", key, e)
        return None


async def cache_set(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    client = _connection()
    if client is None:
        return False
    try:
        await client.set(
            _key(key),
            json.dumps(value, default=str),
            ex=ttl or settings.REDIS_CACHE_TTL,
        )
    except (*_CACHE_ERRORS, TypeError) as e:
        logger.warning("Cache write failed for %s: %s", key, e)
        return False
    return True


async def ping_redis() -> bool:
    client = _connection()
    if client is None:
        return False
    try:
        return bool(await client.ping())
    except _CACHE_ERRORS as e:
        logger.debug("Redis did not answer PING: %s", e)
        return False


async def close_redis() -> None:
    global _client
    if _client is None:
        return
    client, _client = _client, None
    await client.aclose()
    logger.info("Snapshot cache connection closed")
