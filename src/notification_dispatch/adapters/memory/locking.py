"""InMemoryLockStrategy — single-process leases with real expiry."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import uuid4

from ...ports.locking import ActiveLock, ILockStrategy
from ...primitives.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from collections.abc import Callable

    from ...primitives.locking import ResourceIdentifier

logger = logging.getLogger("notification_dispatch.locking")


@dataclass
class _Lease:
    token: str
    expires_at: float
    acquired_at: datetime
    ttl: float


class InMemoryLockStrategy(ILockStrategy):
    """
    In-memory implementation of ILockStrategy.

    Leases expire after their TTL like their Redis counterparts, which lets
    tests exercise takeover after a crashed holder. The clock is injectable.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        retry_interval: float = 0.01,
    ) -> None:
        self._clock = clock
        self._retry_interval = retry_interval
        self._leases: dict[tuple[str, str], _Lease] = {}

    @staticmethod
    def _key(resource: ResourceIdentifier) -> tuple[str, str]:
        return (resource.resource_type, resource.resource_id)

    def _try_acquire(self, key: tuple[str, str], ttl: float) -> str | None:
        now = self._clock()
        lease = self._leases.get(key)
        if lease is not None and lease.expires_at > now:
            return None
        token = str(uuid4())
        self._leases[key] = _Lease(
            token=token,
            expires_at=now + ttl,
            acquired_at=datetime.now(timezone.utc),
            ttl=ttl,
        )
        return token

    async def acquire(
        self,
        resource: ResourceIdentifier,
        *,
        timeout: float = 10.0,
        ttl: float = 30.0,
    ) -> str:
        key = self._key(resource)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            token = self._try_acquire(key, ttl)
            if token is not None:
                logger.debug("Lease acquired on %s", resource)
                return token
            if loop.time() >= deadline:
                raise LockAcquisitionError(
                    resource, timeout, reason="held by another owner"
                )
            await asyncio.sleep(self._retry_interval)

    async def extend(
        self,
        resource: ResourceIdentifier,
        token: str,
        ttl: float,
    ) -> bool:
        lease = self._leases.get(self._key(resource))
        now = self._clock()
        if lease is None or lease.token != token or lease.expires_at <= now:
            return False
        lease.expires_at = now + ttl
        lease.ttl = ttl
        return True

    async def release(self, resource: ResourceIdentifier, token: str) -> None:
        key = self._key(resource)
        lease = self._leases.get(key)
        if lease is None or lease.token != token:
            logger.debug("Ignoring release of %s with stale token", resource)
            return
        del self._leases[key]

    async def health_check(self) -> bool:
        return True

    async def get_active_locks(self) -> list[ActiveLock]:
        now = self._clock()
        return [
            ActiveLock(
                resource_type=resource_type,
                resource_id=resource_id,
                token=lease.token,
                acquired_at=lease.acquired_at,
                ttl_seconds=lease.ttl,
            )
            for (resource_type, resource_id), lease in self._leases.items()
            if lease.expires_at > now
        ]
