"""UnitOfWork — Abstract base class for the Unit of Work pattern."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import TYPE_CHECKING, Any

from typing_extensions import Self

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger("notification_dispatch.uow")


class UnitOfWork(ABC):
    """
    Abstract base class for Unit of Work implementations.

    Aggregate saves and outbox appends made with the same unit of work become
    visible together on commit, or not at all.

    **Commit happens BEFORE hooks are triggered**, so a hook (outbox relay
    trigger, cache invalidation) always observes the committed state.
    """

    def __init__(self) -> None:
        self._on_commit_hooks: deque[Callable[[], Awaitable[Any]]] = deque()

    def on_commit(self, callback: Callable[[], Awaitable[Any]]) -> None:
        """Register an async callback to be executed after a successful commit.

        Args:
            callback: An async function that takes no arguments.
        """
        self._on_commit_hooks.append(callback)

    async def trigger_commit_hooks(self) -> None:
        """Execute all registered on_commit hooks.

        Called automatically by __aexit__ AFTER commit completes.
        """
        while self._on_commit_hooks:
            callback = self._on_commit_hooks.popleft()
            try:
                await callback()
            except Exception as exc:
                logger.error("Error in on_commit hook: %s", exc, exc_info=True)

    @abstractmethod
    async def commit(self) -> None:
        """Commit the transaction. Must be implemented by subclasses."""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """Rollback the transaction. Must be implemented by subclasses."""
        ...

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """
        Exit the context manager.

        CRITICAL ORDER:
        1. If successful (exc_type is None): commit() first
        2. Then trigger_commit_hooks()
        3. If exception: rollback() and skip hooks
        """
        if exc_type is None:
            await self.commit()
            await self.trigger_commit_hooks()
        else:
            self._on_commit_hooks.clear()
            await self.rollback()
