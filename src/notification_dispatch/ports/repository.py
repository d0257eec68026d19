"""Repository ports.

Every ``save`` is a compare-and-swap: it succeeds only when the stored
version equals ``expected_version`` (``0`` meaning "must not exist yet"),
returns the aggregate with its version bumped, and raises
``ConcurrencyConflict`` otherwise.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from ..domain.delivery_log import SentNotificationLog
    from ..domain.preferences import UserNotificationPreferences
    from ..domain.request import NotificationRequest
    from ..domain.template import NotificationTemplate
    from ..domain.values import Channel
    from .unit_of_work import UnitOfWork


@runtime_checkable
class IRequestRepository(Protocol):
    async def load(self, request_id: str) -> NotificationRequest | None: ...

    async def find_by_dedup_key(self, dedup_key: str) -> NotificationRequest | None:
        ...

    async def save(
        self,
        request: NotificationRequest,
        expected_version: int,
        uow: UnitOfWork | None = None,
    ) -> NotificationRequest: ...


@runtime_checkable
class IDeliveryLogRepository(Protocol):
    async def load(self, log_id: str) -> SentNotificationLog | None: ...

    async def save(
        self,
        log: SentNotificationLog,
        expected_version: int,
        uow: UnitOfWork | None = None,
    ) -> SentNotificationLog: ...

    async def list_by_request(self, request_id: str) -> list[SentNotificationLog]:
        ...

    async def list_by_address(self, address: str) -> list[SentNotificationLog]: ...

    async def list_failed_before(
        self, cutoff: datetime
    ) -> list[SentNotificationLog]:
        """FAILED logs whose last change is older than *cutoff*."""
        ...

    async def sent_timestamps(
        self, recipient_id: str, notification_type: str, since: datetime
    ) -> list[datetime]:
        """First successful send time of every log at or after *since*."""
        ...

    async def find_by_provider_message_id(
        self, provider_message_id: str
    ) -> SentNotificationLog | None: ...


@runtime_checkable
class ITemplateRepository(Protocol):
    async def get_active(
        self, name: str, channel: Channel
    ) -> NotificationTemplate | None: ...

    async def get_version(
        self, name: str, channel: Channel, version: int
    ) -> NotificationTemplate | None: ...

    async def list_versions(
        self, name: str, channel: Channel
    ) -> list[NotificationTemplate]:
        """All versions, oldest first."""
        ...

    async def save(
        self,
        template: NotificationTemplate,
        expected_version: int,
        uow: UnitOfWork | None = None,
    ) -> NotificationTemplate:
        """Compare-and-swap on ``template.revision``."""
        ...


@runtime_checkable
class IPreferencesRepository(Protocol):
    async def load(self, user_id: str) -> UserNotificationPreferences | None: ...

    async def save(
        self,
        preferences: UserNotificationPreferences,
        expected_version: int,
        uow: UnitOfWork | None = None,
    ) -> UserNotificationPreferences: ...
