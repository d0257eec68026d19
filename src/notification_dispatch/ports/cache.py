"""ICacheService - Protocol for cache operations."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ICacheService(Protocol):
    """
    Abstract interface for caching services.

    Cache failures must never fail the caller: implementations log and
    behave as a miss.
    """

    async def get(self, key: str, cls: type[Any] | None = None) -> Any | None:
        """
        Retrieve a value by key. Returns None if missing.
        If cls is provided and is a Pydantic model, validation is performed.
        """
        ...

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Set a value with optional TTL (in seconds)."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""
        ...
