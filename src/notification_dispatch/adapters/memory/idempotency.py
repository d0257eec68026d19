"""InMemoryIdempotencyStore — TTL-bound key reservations."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from ...ports.idempotency import IIdempotencyStore, Reservation

if TYPE_CHECKING:
    from collections.abc import Callable


class InMemoryIdempotencyStore(IIdempotencyStore):
    """Single-process idempotency store.

    ``reserve`` contains no await point, so it is atomic with respect to
    other coroutines on the same event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    async def reserve(self, key: str, ref: str, ttl: float) -> Reservation:
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None and entry[1] > now:
            return Reservation(acquired=False, existing_ref=entry[0])
        self._entries[key] = (ref, now + ttl)
        return Reservation(acquired=True, existing_ref=ref)

    async def release(self, key: str) -> None:
        self._entries.pop(key, None)

    # ── Test helpers ─────────────────────────────────────────────

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(str(key))
        return entry is not None and entry[1] > self._clock()
