"""Redis idempotency store: one ``SET NX PX`` per reservation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ...ports.idempotency import IIdempotencyStore, Reservation

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger("notification_dispatch.redis.idempotency")


class RedisIdempotencyStore(IIdempotencyStore):
    """
    Reserves dedup keys with ``SET key ref NX PX ttl``.

    Redis executes the command atomically, so across every process sharing
    the server exactly one caller acquires a key per TTL period. Failures
    propagate: accepting a command without a reservation could duplicate it.
    """

    def __init__(
        self,
        redis_client: Redis,  # type: ignore[type-arg]
        prefix: str = "idempotency",
    ) -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def reserve(self, key: str, ref: str, ttl: float) -> Reservation:
        redis_key = self._key(key)
        acquired = await self._redis.set(redis_key, ref, nx=True, px=int(ttl * 1000))
        if acquired:
            return Reservation(acquired=True, existing_ref=ref)

        existing = await self._redis.get(redis_key)
        if isinstance(existing, bytes):
            existing = existing.decode()
        logger.debug("Key %s already reserved by %s", key, existing)
        return Reservation(acquired=False, existing_ref=existing)

    async def release(self, key: str) -> None:
        await self._redis.delete(self._key(key))
