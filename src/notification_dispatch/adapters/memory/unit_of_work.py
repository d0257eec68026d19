"""InMemoryUnitOfWork — staged writes applied atomically on commit."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from ...ports.unit_of_work import UnitOfWork


@dataclass
class _StagedWrite:
    check: Callable[[], None]
    apply: Callable[[], None]


class InMemoryUnitOfWork(UnitOfWork):
    """In-memory implementation of UnitOfWork.

    Repositories and the outbox stage their writes here instead of applying
    them. ``commit`` re-runs every staged version check and then applies all
    writes without yielding to the event loop, so either every write of the
    unit becomes visible or none does.

    Records commit/rollback calls for assertions.
    """

    def __init__(self) -> None:
        super().__init__()
        self._staged: list[_StagedWrite] = []
        self.committed: bool = False
        self.rolled_back: bool = False
        self.commit_count: int = 0
        self.rollback_count: int = 0

    def stage(self, check: Callable[[], None], apply: Callable[[], None]) -> None:
        """Queue a write. *check* raises to veto the whole commit."""
        self._staged.append(_StagedWrite(check, apply))

    async def commit(self) -> None:
        if self.committed or self.rolled_back:
            return
        try:
            for write in self._staged:
                write.check()
        except Exception:
            self._staged.clear()
            self.rolled_back = True
            self.rollback_count += 1
            raise
        for write in self._staged:
            write.apply()
        self._staged.clear()
        self.committed = True
        self.commit_count += 1

    async def rollback(self) -> None:
        if self.committed or self.rolled_back:
            return
        self._staged.clear()
        self.rolled_back = True
        self.rollback_count += 1

    # ── Test helpers ─────────────────────────────────────────────

    @property
    def pending_writes(self) -> int:
        return len(self._staged)


def in_memory_unit_of_work_factory() -> InMemoryUnitOfWork:
    return InMemoryUnitOfWork()
