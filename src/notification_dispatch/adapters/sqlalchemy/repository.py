"""
SQLAlchemy repositories for the notification aggregates.

Each aggregate is stored as a JSON document beside the columns used for
lookups, uniqueness and the version check. ``save`` is a compare-and-swap:
an insert when ``expected_version`` is ``0``, otherwise an ``UPDATE ...
WHERE version = :expected``. A unique-key clash or a zero rowcount raises
``ConcurrencyConflict``.
"""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from ...domain.delivery_log import DeliveryStatus, SentNotificationLog
from ...domain.preferences import UserNotificationPreferences
from ...domain.request import NotificationRequest
from ...domain.template import NotificationTemplate, TemplateStatus
from ...primitives.exceptions import ConcurrencyConflict, PersistenceError
from .models import (
    DeliveryLogModel,
    NotificationRequestModel,
    NotificationTemplateModel,
    PreferencesModel,
)
from .uow import SQLAlchemyUnitOfWork

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from ...domain.values import Channel
    from ...ports.unit_of_work import UnitOfWork

    AsyncSessionFactory = Callable[[], AsyncSession]

T = TypeVar("T", bound=BaseModel)


class _DocumentRepository(Generic[T]):
    """Shared compare-and-swap persistence for one aggregate type.

    Writes join the caller's ``SQLAlchemyUnitOfWork``; without one the
    repository runs its own. Reads always use a fresh session so they see
    committed state only.
    """

    aggregate_type: ClassVar[str] = "Aggregate"
    entity_cls: ClassVar[type[BaseModel]]
    db_model_cls: ClassVar[type[Any]]
    version_field: ClassVar[str] = "version"
    key_field: ClassVar[str] = "id"

    def __init__(self, session_factory: AsyncSessionFactory) -> None:
        self._session_factory = session_factory

    # -- UoW helpers --------------------------------------------------------

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
                f"{type(self).__name__} requires a SQLAlchemyUnitOfWork, "
                f"got {type(uow).__name__}"
            )

    # -- mapping ------------------------------------------------------------

    def to_row(self, aggregate: T) -> dict[str, Any]:
        """Indexed columns for *aggregate*; ``document`` is added by ``_save``."""
        return {}

    def from_model(self, model: Any) -> T:
        return self.entity_cls.model_validate(model.document)  # type: ignore[return-value]

    # -- CAS ----------------------------------------------------------------

    def _key_column(self) -> Any:
        return getattr(self.db_model_cls, self.key_field)

    def _version_column(self) -> Any:
        return getattr(self.db_model_cls, self.version_field)

    async def _save(
        self, aggregate: T, expected_version: int, uow: UnitOfWork | None
    ) -> T:
        saved = aggregate.model_copy(update={self.version_field: expected_version + 1})
        key = getattr(saved, self.key_field)
        row = {
            **self.to_row(saved),
            self.key_field: key,
            self.version_field: expected_version + 1,
            "document": saved.model_dump(mode="json"),
        }

        async with self._writer(uow) as session:
            if expected_version == 0:
                try:
                    await session.execute(insert(self.db_model_cls).values(**row))
                except IntegrityError as e:
                    # The transaction is unusable now; the caller's unit of
                    # work rolls it back.
                    raise ConcurrencyConflict(
                        self.aggregate_type,
                        key,
                        reason="already stored or unique key taken",
                    ) from e
                return saved

            try:
                result = await session.execute(
                    update(self.db_model_cls)
                    .where(
                        self._key_column() == key,
                        self._version_column() == expected_version,
                    )
                    .values(**row)
                )
            except IntegrityError as e:
                raise ConcurrencyConflict(
                    self.aggregate_type, key, reason="unique constraint violated"
                ) from e
            if result.rowcount == 0:
                actual = await self._current_version(session, key)
                raise ConcurrencyConflict(
                    self.aggregate_type, key, expected_version, actual
                )
        return saved

    async def _current_version(self, session: AsyncSession, key: str) -> int:
        result = await session.execute(
            select(self._version_column()).where(self._key_column() == key)
        )
        return result.scalar_one_or_none() or 0

    # -- reads --------------------------------------------------------------

    async def _get(self, key: str) -> T | None:
        async with self._session_factory() as session:
            model = await session.get(self.db_model_cls, key)
            return self.from_model(model) if model is not None else None

    async def _list(self, stmt: Any) -> list[T]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [self.from_model(m) for m in result.scalars().all()]

    async def _first(self, stmt: Any) -> T | None:
        found = await self._list(stmt.limit(1))
        return found[0] if found else None


class SQLAlchemyRequestRepository(_DocumentRepository[NotificationRequest]):
    aggregate_type = "NotificationRequest"
    entity_cls = NotificationRequest
    db_model_cls = NotificationRequestModel

    def to_row(self, aggregate: NotificationRequest) -> dict[str, Any]:
        return {
            "dedup_key": aggregate.dedup_key,
            "notification_type": aggregate.notification_type,
            "status": aggregate.status.value,
            "updated_at": aggregate.updated_at,
        }

    async def load(self, request_id: str) -> NotificationRequest | None:
        return await self._get(request_id)

    async def find_by_dedup_key(self, dedup_key: str) -> NotificationRequest | None:
        return await self._first(
            select(NotificationRequestModel).where(
                NotificationRequestModel.dedup_key == dedup_key
            )
        )

    async def save(
        self,
        request: NotificationRequest,
        expected_version: int,
        uow: UnitOfWork | None = None,
    ) -> NotificationRequest:
        return await self._save(request, expected_version, uow)


class SQLAlchemyDeliveryLogRepository(_DocumentRepository[SentNotificationLog]):
    aggregate_type = "SentNotificationLog"
    entity_cls = SentNotificationLog
    db_model_cls = DeliveryLogModel

    def to_row(self, aggregate: SentNotificationLog) -> dict[str, Any]:
        return {
            "request_id": aggregate.request_id,
            "recipient_id": aggregate.recipient_id,
            "notification_type": aggregate.notification_type,
            "channel": aggregate.channel.value,
            "recipient_address": aggregate.recipient_address,
            "current_status": aggregate.current_status.value,
            "provider_message_id": aggregate.provider_message_id,
            "first_sent_at": aggregate.first_sent_at,
            "updated_at": aggregate.updated_at,
        }

    async def load(self, log_id: str) -> SentNotificationLog | None:
        return await self._get(log_id)

    async def save(
        self,
        log: SentNotificationLog,
        expected_version: int,
        uow: UnitOfWork | None = None,
    ) -> SentNotificationLog:
        return await self._save(log, expected_version, uow)

    async def list_by_request(self, request_id: str) -> list[SentNotificationLog]:
        logs = await self._list(
            select(DeliveryLogModel).where(DeliveryLogModel.request_id == request_id)
        )
        return sorted(logs, key=lambda log: log.created_at)

    async def list_by_address(self, address: str) -> list[SentNotificationLog]:
        logs = await self._list(
            select(DeliveryLogModel).where(
                DeliveryLogModel.recipient_address == address
            )
        )
        return sorted(logs, key=lambda log: log.created_at)

    async def list_failed_before(self, cutoff: datetime) -> list[SentNotificationLog]:
        logs = await self._list(
            select(DeliveryLogModel).where(
                DeliveryLogModel.current_status == DeliveryStatus.FAILED.value
            )
        )
        # Filtered after parsing: SQLite drops the offset of stored datetimes.
        return sorted(
            (log for log in logs if log.updated_at < cutoff),
            key=lambda log: log.updated_at,
        )

    async def sent_timestamps(
        self, recipient_id: str, notification_type: str, since: datetime
    ) -> list[datetime]:
        logs = await self._list(
            select(DeliveryLogModel).where(
                DeliveryLogModel.recipient_id == recipient_id,
                DeliveryLogModel.notification_type == notification_type,
                DeliveryLogModel.first_sent_at.is_not(None),
            )
        )
        stamps = [log.first_sent_at for log in logs]
        return sorted(s for s in stamps if s is not None and s >= since)

    async def find_by_provider_message_id(
        self, provider_message_id: str
    ) -> SentNotificationLog | None:
        return await self._first(
            select(DeliveryLogModel).where(
                DeliveryLogModel.provider_message_id == provider_message_id
            )
        )


class SQLAlchemyTemplateRepository(_DocumentRepository[NotificationTemplate]):
    aggregate_type = "NotificationTemplate"
    entity_cls = NotificationTemplate
    db_model_cls = NotificationTemplateModel
    version_field = "revision"

    def to_row(self, aggregate: NotificationTemplate) -> dict[str, Any]:
        return {
            "name": aggregate.name,
            "channel": aggregate.channel.value,
            "template_version": aggregate.version,
            "status": aggregate.status.value,
        }

    async def get_active(
        self, name: str, channel: Channel
    ) -> NotificationTemplate | None:
        return await self._first(
            select(NotificationTemplateModel).where(
                NotificationTemplateModel.name == name,
                NotificationTemplateModel.channel == channel.value,
                NotificationTemplateModel.status == TemplateStatus.ACTIVE.value,
            )
        )

    async def get_version(
        self, name: str, channel: Channel, version: int
    ) -> NotificationTemplate | None:
        return await self._first(
            select(NotificationTemplateModel).where(
                NotificationTemplateModel.name == name,
                NotificationTemplateModel.channel == channel.value,
                NotificationTemplateModel.template_version == version,
            )
        )

    async def list_versions(
        self, name: str, channel: Channel
    ) -> list[NotificationTemplate]:
        return await self._list(
            select(NotificationTemplateModel)
            .where(
                NotificationTemplateModel.name == name,
                NotificationTemplateModel.channel == channel.value,
            )
            .order_by(NotificationTemplateModel.template_version)
        )

    async def save(
        self,
        template: NotificationTemplate,
        expected_version: int,
        uow: UnitOfWork | None = None,
    ) -> NotificationTemplate:
        return await self._save(template, expected_version, uow)


class SQLAlchemyPreferencesRepository(
    _DocumentRepository[UserNotificationPreferences]
):
    aggregate_type = "UserNotificationPreferences"
    entity_cls = UserNotificationPreferences
    db_model_cls = PreferencesModel
    key_field = "user_id"

    async def load(self, user_id: str) -> UserNotificationPreferences | None:
        return await self._get(user_id)

    async def save(
        self,
        preferences: UserNotificationPreferences,
        expected_version: int,
        uow: UnitOfWork | None = None,
    ) -> UserNotificationPreferences:
        return await self._save(preferences, expected_version, uow)
