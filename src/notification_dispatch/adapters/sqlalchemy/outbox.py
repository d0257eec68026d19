"""
SQLAlchemy implementation of the transactional outbox storage.
"""

from __future__ import annotations

import contextlib
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import select, update

from ...ports.outbox import IOutboxStorage, OutboxMessage
from ...primitives.exceptions import PersistenceError
from .models import OutboxMessageModel, OutboxStatus
from .uow import SQLAlchemyUnitOfWork

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from ...ports.unit_of_work import UnitOfWork


class SQLAlchemyOutboxStorage(IOutboxStorage):
    """
    Transactional outbox storage implementation using SQLAlchemy.

    ``save_messages`` joins the caller's ``SQLAlchemyUnitOfWork`` so the
    messages commit with the aggregate. The relay-side operations run in
    their own short transactions. A failed publication leaves the message
    PENDING with its error and retry count updated.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory

    @contextlib.asynccontextmanager
    async def _writer(self, uow: UnitOfWork | None) -> AsyncIterator[AsyncSession]:
        if uow is None:
            async with SQLAlchemyUnitOfWork(
                session_factory=self._session_factory
            ) as own:
                yield own.session
        elif isinstance(uow, SQLAlchemyUnitOfWork):
            yield uow.session
        else:
            raise PersistenceError(
                f"SQLAlchemyOutboxStorage requires a SQLAlchemyUnitOfWork, "
                f"got {type(uow).__name__}"
            )

    async def save_messages(
        self,
        messages: list[OutboxMessage],
        uow: UnitOfWork | None = None,
    ) -> None:
        """
        Persist outbox messages in the same transaction as the aggregate changes.
        """
        if not messages:
            return
        async with self._writer(uow) as session:
            for msg in messages:
                session.add(
                    OutboxMessageModel(
                        event_id=msg.message_id,
                        event_type=msg.event_type,
                        aggregate_id=msg.aggregate_id,
                        payload=msg.payload,
                        status=OutboxStatus.PENDING,
                        created_at=msg.created_at,
                        retry_count=msg.retry_count,
                        error=msg.error,
                        event_metadata=msg.metadata,
                        correlation_id=msg.correlation_id,
                        causation_id=msg.causation_id,
                    )
                )
            await session.flush()

    async def get_pending(self, limit: int = 100) -> list[OutboxMessage]:
        """
        Retrieve unpublished messages, ordered by creation time.
        """
        stmt = (
            select(OutboxMessageModel)
            .where(OutboxMessageModel.status == OutboxStatus.PENDING)
            .order_by(OutboxMessageModel.created_at, OutboxMessageModel.id)
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            models = result.scalars().all()

        return [
            OutboxMessage(
                message_id=m.event_id,
                event_type=m.event_type,
                aggregate_id=m.aggregate_id,
                payload=m.payload,
                metadata=m.event_metadata or {},
                created_at=m.created_at,
                published_at=None,
                error=m.error,
                retry_count=m.retry_count,
                correlation_id=m.correlation_id,
                causation_id=m.causation_id,
            )
            for m in models
        ]

    async def mark_published(self, message_ids: list[str]) -> None:
        """
        Mark messages as successfully published.
        """
        if not message_ids:
            return
        stmt = (
            update(OutboxMessageModel)
            .where(OutboxMessageModel.event_id.in_(message_ids))
            .values(
                status=OutboxStatus.PUBLISHED,
                published_at=datetime.now(timezone.utc),
            )
        )
        async with self._writer(None) as session:
            await session.execute(stmt)

    async def mark_failed(self, message_id: str, error: str) -> None:
        """
        Record a publication failure; the message stays pending for retry.
        """
        stmt = (
            update(OutboxMessageModel)
            .where(OutboxMessageModel.event_id == message_id)
            .values(
                error=error,
                retry_count=OutboxMessageModel.retry_count + 1,
            )
        )
        async with self._writer(None) as session:
            await session.execute(stmt)
