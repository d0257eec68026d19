"""InMemoryOutboxStorage — list-backed outbox for tests and single-process use."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from ...ports.outbox import IOutboxStorage, OutboxMessage
from .unit_of_work import InMemoryUnitOfWork

if TYPE_CHECKING:
    from ...ports.unit_of_work import UnitOfWork


class InMemoryOutboxStorage(IOutboxStorage):
    """In-memory implementation of ``IOutboxStorage``.

    Messages saved with an ``InMemoryUnitOfWork`` only appear once that
    unit commits.
    """

    def __init__(self) -> None:
        self._messages: list[OutboxMessage] = []

    async def save_messages(
        self,
        messages: list[OutboxMessage],
        uow: UnitOfWork | None = None,
    ) -> None:
        if isinstance(uow, InMemoryUnitOfWork):
            batch = list(messages)
            uow.stage(lambda: None, lambda: self._messages.extend(batch))
        else:
            self._messages.extend(messages)

    async def get_pending(self, limit: int = 100) -> list[OutboxMessage]:
        pending = [m for m in self._messages if m.published_at is None]
        pending.sort(key=lambda m: m.created_at)
        return pending[:limit]

    async def mark_published(self, message_ids: list[str]) -> None:
        now = datetime.now(timezone.utc)
        for msg in self._messages:
            if msg.message_id in message_ids:
                msg.published_at = now

    async def mark_failed(self, message_id: str, error: str) -> None:
        for msg in self._messages:
            if msg.message_id == message_id:
                msg.error = error
                msg.retry_count += 1
                break

    # ── Test helpers ─────────────────────────────────────────────

    @property
    def messages(self) -> list[OutboxMessage]:
        return list(self._messages)

    def event_types(self) -> list[str]:
        return [m.event_type for m in self._messages]

    def clear(self) -> None:
        self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)
