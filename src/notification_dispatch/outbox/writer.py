"""OutboxWriter — turns domain events into outbox rows inside a unit of work."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..correlation import get_causation_id, get_correlation_id
from ..ports.outbox import OutboxMessage

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from ..domain.events import DomainEvent
    from ..ports.outbox import IOutboxStorage
    from ..ports.unit_of_work import UnitOfWork

logger = logging.getLogger("notification_dispatch.outbox")


def to_outbox_message(event: DomainEvent) -> OutboxMessage:
    """Serialise *event* into an outbox row, filling tracing IDs from context."""
    correlation_id = event.correlation_id or get_correlation_id() or ""
    causation_id = event.causation_id or get_causation_id()
    payload = event.model_dump(mode="json")
    payload["event_type"] = event.event_type
    metadata: dict[str, object] = {
        "correlation_id": correlation_id,
        "aggregate_type": event.aggregate_type,
    }
    if causation_id is not None:
        metadata["causation_id"] = causation_id
    return OutboxMessage(
        message_id=event.event_id,
        event_type=event.event_type,
        aggregate_id=event.aggregate_id,
        payload=payload,
        metadata=metadata,
        created_at=event.occurred_at,
        correlation_id=correlation_id,
        causation_id=causation_id,
    )


class OutboxWriter:
    """Appends events to the outbox in the caller's unit of work.

    ``notify`` (usually ``OutboxRelay.trigger``) is scheduled as a post-commit
    hook so the relay wakes up as soon as the rows are visible.
    """

    def __init__(
        self,
        storage: IOutboxStorage,
        *,
        notify: Callable[[], None] | None = None,
    ) -> None:
        self.storage = storage
        self._notify = notify

    def attach(self, notify: Callable[[], None]) -> None:
        self._notify = notify

    async def append(self, events: Sequence[DomainEvent], uow: UnitOfWork) -> None:
        if not events:
            return
        messages = [to_outbox_message(e) for e in events]
        await self.storage.save_messages(messages, uow=uow)
        logger.debug(
            "Staged %d outbox message(s): %s",
            len(messages),
            ", ".join(m.event_type for m in messages),
        )

        notify = self._notify
        if notify is not None:

            async def _wake() -> None:
                notify()

            uow.on_commit(_wake)
