"""ILockStrategy — protocol for time-bounded leases.

Dispatch holds a lease on the delivery key for the whole retry loop and
extends it before every gateway call. The outbox relay claims messages
with short leases. Pick ``ttl`` longer than the slowest expected gateway
call plus one backoff delay; an expired lease lets a second worker in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from ..primitives.locking import ResourceIdentifier


@dataclass
class ActiveLock:
    """Information about an active lease for monitoring and debugging."""

    resource_type: str
    resource_id: str
    token: str
    acquired_at: datetime
    ttl_seconds: float


@runtime_checkable
class ILockStrategy(Protocol):
    """
    Lease strategy protocol.

    Implementations use Redis (``SET NX PX``) or in-process state for tests.
    """

    async def acquire(
        self,
        resource: ResourceIdentifier,
        *,
        timeout: float = 10.0,
        ttl: float = 30.0,
    ) -> str:
        """
        Acquire a lease for the given resource.

        Args:
            resource: The resource to lock.
            timeout: Maximum time to wait for the lease. ``0`` tries once.
            ttl: Lifetime of the lease (seconds). The lease auto-expires so
                a crashed holder cannot block the resource forever.

        Returns:
            A unique token required for extend/release.

        Raises:
            LockAcquisitionError: If the lease cannot be acquired in time.
        """
        ...

    async def extend(
        self,
        resource: ResourceIdentifier,
        token: str,
        ttl: float,
    ) -> bool:
        """
        Extend the TTL of a held lease.

        Returns:
            True if extended, False if the lease expired or belongs to
            someone else.
        """
        ...

    async def release(self, resource: ResourceIdentifier, token: str) -> None:
        """Release the lease. A stale token is ignored."""
        ...

    async def health_check(self) -> bool:
        ...

    async def get_active_locks(self) -> list[ActiveLock]:
        ...
