"""IIdempotencyStore — atomic reservation of deduplication keys."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class Reservation:
    """Outcome of :meth:`IIdempotencyStore.reserve`.

    ``acquired`` is True for exactly one caller per key and TTL period;
    every other caller receives the reference stored by the winner.
    """

    acquired: bool
    existing_ref: str | None = None


@runtime_checkable
class IIdempotencyStore(Protocol):
    async def reserve(self, key: str, ref: str, ttl: float) -> Reservation:
        """Atomically store *ref* under *key* unless the key is taken."""
        ...

    async def release(self, key: str) -> None:
        """Drop a reservation, e.g. after the guarded write failed."""
        ...
