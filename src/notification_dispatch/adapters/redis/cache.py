"""Redis implementation of the template cache."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from ...ports.cache import ICacheService

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger("notification_dispatch.redis.cache")


class RedisCacheService(ICacheService):
    """
    Redis implementation of ICacheService.
    Uses generic JSON serialization.

    Every Redis failure is logged and treated as a miss, so a cache outage
    only costs a repository read.
    """

    def __init__(self, redis_client: Redis) -> None:  # type: ignore[type-arg]
        self._redis = redis_client

    async def get(self, key: str, cls: type[Any] | None = None) -> Any | None:
        try:
            val = await self._redis.get(key)
            if not val:
                return None

            if cls and hasattr(cls, "model_validate_json"):
                # Pydantic V2 optimized loading
                return cls.model_validate_json(val)
            return json.loads(val)
        except Exception as e:  # noqa: BLE001
            logger.warning("Redis get failed for key %s: %s", key, e)
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        try:
            if hasattr(value, "model_dump_json"):
                val = value.model_dump_json()
            else:
                val = json.dumps(value, default=str)

            if ttl:
                await self._redis.setex(key, ttl, val)
            else:
                await self._redis.set(key, val)
        except Exception as e:  # noqa: BLE001
            logger.warning("Redis set failed for key %s: %s", key, e)

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except Exception as e:  # noqa: BLE001
            logger.warning("Redis delete failed for key %s: %s", key, e)
