"""InMemoryCacheService — dict cache with TTL."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from ...ports.cache import ICacheService

if TYPE_CHECKING:
    from collections.abc import Callable


class InMemoryCacheService(ICacheService):
    """Stores values as-is; ``cls`` is accepted for protocol compatibility."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[Any, float | None]] = {}
        self.hits = 0
        self.misses = 0

    async def get(self, key: str, cls: type[Any] | None = None) -> Any | None:  # noqa: ARG002
        entry = self._data.get(key)
        if entry is None or (entry[1] is not None and entry[1] <= self._clock()):
            self._data.pop(key, None)
            self.misses += 1
            return None
        self.hits += 1
        return entry[0]

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    # ── Test helpers ─────────────────────────────────────────────

    def __contains__(self, key: object) -> bool:
        return key in self._data
