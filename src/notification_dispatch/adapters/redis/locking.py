"""Redis leases: ``SET NX PX`` to acquire, token-checked Lua to extend/release."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from ...ports.locking import ActiveLock
from ...primitives.exceptions import LockAcquisitionError, LockStoreError

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from ...primitives.locking import ResourceIdentifier

logger = logging.getLogger("notification_dispatch.redis.locking")

_RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""

_EXTEND_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("PEXPIRE", KEYS[1], ARGV[2])
end
return 0
"""


def _as_int(result: Any) -> int:
    return int(result) if isinstance(result, str | bytes) else int(result or 0)


class RedisLockStrategy:
    """
    Single-instance Redis lease strategy.

    A lease is a key holding a random token with a TTL. Extend and release
    run as Lua scripts that compare the token first, so a holder whose
    lease expired can never touch its successor's lease.
    """

    def __init__(
        self,
        redis: Redis,  # type: ignore[type-arg]
        prefix: str = "lease",
        retry_interval: float = 0.05,
    ) -> None:
        """
        Initialize RedisLockStrategy.

        Args:
            redis: An initialized redis.asyncio.Redis client.
            prefix: Key prefix for Redis keys.
            retry_interval: Delay between attempts while waiting for a lease.
        """
        self._redis = redis
        self._prefix = prefix
        self._retry_interval = retry_interval

        # Key -> (acquired_at, ttl, token), for monitoring only
        self._held: dict[str, tuple[datetime, float, str]] = {}

    def _lock_key(self, resource: ResourceIdentifier) -> str:
        return (
            f"{self._prefix}:{resource.resource_type}:"
            f"{resource.resource_id}:{resource.lock_mode}"
        )

    def _prune_expired(self) -> None:
        now = datetime.now(timezone.utc)
        expired = [
            k
            for k, (acquired_at, ttl, _) in self._held.items()
            if now > acquired_at + timedelta(seconds=ttl)
        ]
        for k in expired:
            self._held.pop(k, None)

    async def acquire(
        self,
        resource: ResourceIdentifier,
        *,
        timeout: float = 10.0,
        ttl: float = 30.0,
    ) -> str:
        lock_key = self._lock_key(resource)
        token = str(uuid.uuid4())
        ttl_ms = int(ttl * 1000)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                acquired = await self._redis.set(lock_key, token, nx=True, px=ttl_ms)
            except Exception as exc:  # noqa: BLE001
                logger.error("Error acquiring lease %s: %s", lock_key, exc)
                raise LockStoreError(f"Technical failure: {exc}") from exc
            if acquired:
                self._held[lock_key] = (datetime.now(timezone.utc), ttl, token)
                return token
            if loop.time() >= deadline:
                raise LockAcquisitionError(resource, timeout, reason="lease is held")
            await asyncio.sleep(self._retry_interval)

    async def release(self, resource: ResourceIdentifier, token: str) -> None:
        lock_key = self._lock_key(resource)
        try:
            await self._redis.eval(_RELEASE_SCRIPT, 1, lock_key, token)  # type: ignore[misc]
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to release lease %s: %s", lock_key, exc)
            return
        held = self._held.get(lock_key)
        if held is not None and held[2] == token:
            self._held.pop(lock_key, None)

    async def extend(
        self, resource: ResourceIdentifier, token: str, ttl: float
    ) -> bool:
        lock_key = self._lock_key(resource)
        try:
            result = await self._redis.eval(  # type: ignore[misc]
                _EXTEND_SCRIPT, 1, lock_key, token, str(int(ttl * 1000))
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to extend lease %s: %s", lock_key, exc)
            return False
        if _as_int(result) != 1:
            return False
        self._held[lock_key] = (datetime.now(timezone.utc), ttl, token)
        return True

    async def health_check(self) -> bool:
        try:
            await self._redis.ping()
            return True
        except Exception:  # noqa: BLE001
            return False

    async def get_active_locks(self) -> list[ActiveLock]:
        """Leases held by this process."""
        self._prune_expired()
        locks = []
        for lock_key, (acquired_at, ttl, token) in self._held.items():
            # prefix:resource_type:resource_id:lock_mode, resource_id may hold ':'
            _, rest = lock_key.split(":", 1)
            r_type, remainder = rest.split(":", 1)
            r_id = remainder.rsplit(":", 1)[0]
            locks.append(
                ActiveLock(
                    resource_type=r_type,
                    resource_id=r_id,
                    token=token,
                    acquired_at=acquired_at,
                    ttl_seconds=ttl,
                )
            )
        return locks
