"""In-memory repositories with compare-and-swap saves."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Generic, TypeVar

from pydantic import BaseModel

from ...domain.delivery_log import DeliveryStatus, SentNotificationLog
from ...domain.preferences import UserNotificationPreferences
from ...domain.request import NotificationRequest
from ...domain.template import NotificationTemplate, TemplateStatus
from ...primitives.exceptions import ConcurrencyConflict
from .unit_of_work import InMemoryUnitOfWork

if TYPE_CHECKING:
    from collections.abc import Callable

    from ...domain.values import Channel
    from ...ports.unit_of_work import UnitOfWork

T = TypeVar("T", bound=BaseModel)


class _VersionedStore(Generic[T]):
    """Dict-backed store shared by the in-memory repositories.

    ``unique`` maps a constraint name to a function extracting the unique
    value from an aggregate; saves that would duplicate a value held by a
    different aggregate raise ``ConcurrencyConflict``.
    """

    aggregate_type: str = "Aggregate"
    version_field: str = "version"

    def __init__(self) -> None:
        self._items: dict[str, T] = {}
        self.unique: dict[str, Callable[[T], object]] = {}

    def _id(self, aggregate: T) -> str:
        return str(aggregate.id)  # type: ignore[attr-defined]

    def _version(self, aggregate: T) -> int:
        return int(getattr(aggregate, self.version_field))

    def _check(self, aggregate: T, expected_version: int) -> None:
        key = self._id(aggregate)
        current = self._items.get(key)
        actual = self._version(current) if current is not None else 0
        if actual != expected_version:
            raise ConcurrencyConflict(
                self.aggregate_type, key, expected_version, actual
            )
        for name, extract in self.unique.items():
            value = extract(aggregate)
            for other_id, other in self._items.items():
                if other_id != key and extract(other) == value:
                    raise ConcurrencyConflict(
                        self.aggregate_type,
                        key,
                        reason=f"unique constraint {name} violated by {other_id}",
                    )

    def _store(self, aggregate: T, expected_version: int, uow: UnitOfWork | None) -> T:
        self._check(aggregate, expected_version)
        saved = aggregate.model_copy(update={self.version_field: expected_version + 1})

        def _apply() -> None:
            self._items[self._id(saved)] = saved

        if isinstance(uow, InMemoryUnitOfWork):
            uow.stage(lambda: self._check(aggregate, expected_version), _apply)
        else:
            _apply()
        return saved

    def values(self) -> list[T]:
        return list(self._items.values())

    # ── Test helpers ─────────────────────────────────────────────

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


class InMemoryRequestRepository(_VersionedStore[NotificationRequest]):
    aggregate_type = "NotificationRequest"

    def __init__(self) -> None:
        super().__init__()
        self.unique["dedup_key"] = lambda r: r.dedup_key

    async def load(self, request_id: str) -> NotificationRequest | None:
        return self._items.get(request_id)

    async def find_by_dedup_key(self, dedup_key: str) -> NotificationRequest | None:
        for request in self._items.values():
            if request.dedup_key == dedup_key:
                return request
        return None

    async def save(
        self,
        request: NotificationRequest,
        expected_version: int,
        uow: UnitOfWork | None = None,
    ) -> NotificationRequest:
        return self._store(request, expected_version, uow)


class InMemoryDeliveryLogRepository(_VersionedStore[SentNotificationLog]):
    aggregate_type = "SentNotificationLog"

    async def load(self, log_id: str) -> SentNotificationLog | None:
        return self._items.get(log_id)

    async def save(
        self,
        log: SentNotificationLog,
        expected_version: int,
        uow: UnitOfWork | None = None,
    ) -> SentNotificationLog:
        return self._store(log, expected_version, uow)

    async def list_by_request(self, request_id: str) -> list[SentNotificationLog]:
        logs = [log for log in self._items.values() if log.request_id == request_id]
        return sorted(logs, key=lambda log: log.created_at)

    async def list_by_address(self, address: str) -> list[SentNotificationLog]:
        logs = [
            log for log in self._items.values() if log.recipient_address == address
        ]
        return sorted(logs, key=lambda log: log.created_at)

    async def list_failed_before(self, cutoff: datetime) -> list[SentNotificationLog]:
        logs = [
            log
            for log in self._items.values()
            if log.current_status is DeliveryStatus.FAILED and log.updated_at < cutoff
        ]
        return sorted(logs, key=lambda log: log.updated_at)

    async def sent_timestamps(
        self, recipient_id: str, notification_type: str, since: datetime
    ) -> list[datetime]:
        stamps = []
        for log in self._items.values():
            if (
                log.recipient_id != recipient_id
                or log.notification_type != notification_type
            ):
                continue
            sent_at = log.first_sent_at
            if sent_at is not None and sent_at >= since:
                stamps.append(sent_at)
        return sorted(stamps)

    async def find_by_provider_message_id(
        self, provider_message_id: str
    ) -> SentNotificationLog | None:
        for log in self._items.values():
            if log.provider_message_id == provider_message_id:
                return log
        return None


class InMemoryTemplateRepository(_VersionedStore[NotificationTemplate]):
    aggregate_type = "NotificationTemplate"
    version_field = "revision"

    async def get_active(
        self, name: str, channel: Channel
    ) -> NotificationTemplate | None:
        for template in self._items.values():
            if (
                template.name == name
                and template.channel == channel
                and template.status is TemplateStatus.ACTIVE
            ):
                return template
        return None

    async def get_version(
        self, name: str, channel: Channel, version: int
    ) -> NotificationTemplate | None:
        for template in self._items.values():
            if (
                template.name == name
                and template.channel == channel
                and template.version == version
            ):
                return template
        return None

    async def list_versions(
        self, name: str, channel: Channel
    ) -> list[NotificationTemplate]:
        templates = [
            t for t in self._items.values() if t.name == name and t.channel == channel
        ]
        return sorted(templates, key=lambda t: t.version)

    async def save(
        self,
        template: NotificationTemplate,
        expected_version: int,
        uow: UnitOfWork | None = None,
    ) -> NotificationTemplate:
        return self._store(template, expected_version, uow)


class InMemoryPreferencesRepository(_VersionedStore[UserNotificationPreferences]):
    aggregate_type = "UserNotificationPreferences"

    def _id(self, aggregate: UserNotificationPreferences) -> str:
        return aggregate.user_id

    async def load(self, user_id: str) -> UserNotificationPreferences | None:
        return self._items.get(user_id)

    async def save(
        self,
        preferences: UserNotificationPreferences,
        expected_version: int,
        uow: UnitOfWork | None = None,
    ) -> UserNotificationPreferences:
        return self._store(preferences, expected_version, uow)
