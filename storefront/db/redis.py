"""Redis holds the OTP challenge records.

OTPChallengeStore keeps one JSON record per (scope, purpose, contact) under a
TTL equal to the challenge lifetime, so an expired challenge simply
disappears. RedisClient exposes only the commands the store uses. A Redis
failure surfaces as ConnectivityError (503); a corrupt record reads as a
missing challenge.
"""

import json
from typing import Any

import structlog
from redis.asyncio import Redis
from redis.asyncio import from_url as redis_from_url
from redis.exceptions import RedisError

from storefront.core.config import settings
from storefront.core.exceptions import ConnectivityError

logger = structlog.get_logger(__name__)

_client: Redis = redis_from_url(
    settings.redis_url,
    decode_responses=True,
    encoding="utf-8",
)


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_redis() -> "RedisClient":
    """RedisClient over the process-wide pool, handed to the challenge store."""
    return RedisClient(_client)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

async def close_redis() -> None:
    """Gracefully close the Redis connection pool."""
    logger.info("redis_shutdown")
    await _client.aclose()


# ---------------------------------------------------------------------------
# Helper wrapper
# ---------------------------------------------------------------------------

class RedisClient:
    """Challenge-store view of redis.asyncio.Redis.

    get_json/set_json carry challenge records; delete consumes or discards
    a challenge.
    """

    def __init__(self, client: Redis) -> None:
        self._r = client

    async def get(self, key: str) -> str | None:
        """Raw record text, or None once the challenge has expired."""
        try:
            return await self._r.get(name=key)
        except RedisError as e:
            logger.error("redis_get_failed", key=key, error=str(e))
            raise ConnectivityError() from e

    async def delete(self, key: str) -> int:
        """Remove a challenge record. Returns 1 if it existed, else 0."""
        try:
            return await self._r.delete(key)
        except RedisError as e:
            logger.error("redis_delete_failed", key=key, error=str(e))
            raise ConnectivityError() from e

    async def set_json(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store a challenge record. ttl_seconds is the challenge lifetime."""
        payload = json.dumps(value)
        try:
            if ttl_seconds:
                await self._r.setex(name=key, time=ttl_seconds, value=payload)
            else:
                await self._r.set(name=key, value=payload)
        except RedisError as e:
            logger.error("redis_set_json_failed", key=key, error=str(e))
            raise ConnectivityError() from e

    async def get_json(self, key: str) -> Any | None:
        """Load a challenge record. Missing or undecodable records are None."""
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("redis_json_decode_failed", key=key)
            return None
