"""Redis connection management and the session revocation list."""

from __future__ import annotations

import redis.asyncio as redis

from app.core.config import get_settings

settings = get_settings()

REVOKED_SESSION_KEY_PREFIX = "ep:session:revoked:"

_redis_pool: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Get or create the Redis connection."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.from_url(
            settings.redis_url,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.close()
        _redis_pool = None


async def revoke_session(jti: str, ttl_seconds: int | None = None) -> None:
    """Add a session JWT id to the revocation list until the JWT would expire anyway."""
    conn = await get_redis()
    ttl = ttl_seconds or settings.jwt_expire_minutes * 60
    await conn.setex(f"{REVOKED_SESSION_KEY_PREFIX}{jti}", ttl, "1")


async def is_session_revoked(jti: str) -> bool:
    conn = await get_redis()
    return await conn.exists(f"{REVOKED_SESSION_KEY_PREFIX}{jti}") > 0
