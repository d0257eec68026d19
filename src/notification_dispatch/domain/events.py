"""Domain events emitted by the notification aggregates.

Every event is immutable and carries tracing context. Events are never
published directly: they are appended to the transactional outbox in the
same unit of work as the state change that produced them.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .values import Channel, Urgency


class DomainEvent(BaseModel):
    """Base class for all domain events."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    aggregate_id: str | None = Field(
        default=None, description="ID of the aggregate instance this event belongs to"
    )
    aggregate_type: str | None = Field(
        default=None,
        description="Type identifier of the aggregate (e.g. 'NotificationRequest')",
    )
    metadata: dict[str, object] = Field(default_factory=dict)
    correlation_id: str | None = None
    causation_id: str | None = None

    @property
    def event_type(self) -> str:
        return type(self).__name__


def enrich_event_metadata(
    event: DomainEvent,
    *,
    correlation_id: str | None = None,
    causation_id: str | None = None,
) -> DomainEvent:
    """Return a copy of *event* with tracing IDs injected.

    If the event already carries the requested ID the original value is kept.
    """
    updates: dict[str, Any] = {}
    if correlation_id and not event.correlation_id:
        updates["correlation_id"] = correlation_id
    if causation_id and not event.causation_id:
        updates["causation_id"] = causation_id

    if not updates:
        return event

    return event.model_copy(update=updates)


# ── NotificationRequest events ───────────────────────────────────────


class NotificationRequestedEvent(DomainEvent):
    """A new request was accepted."""

    aggregate_type: str | None = "NotificationRequest"
    notification_type: str
    recipient_ids: list[str]
    channels: list[Channel]
    urgency: Urgency
    dedup_key: str
    scheduled_at: datetime | None = None


class NotificationProcessingStartedEvent(DomainEvent):
    """Policy allowed at least one channel for at least one recipient."""

    aggregate_type: str | None = "NotificationRequest"
    allowed_channels: dict[str, list[Channel]] = Field(default_factory=dict)


class NotificationBlockedEvent(DomainEvent):
    """No channel was allowed for any recipient."""

    aggregate_type: str | None = "NotificationRequest"
    reasons: dict[str, str] = Field(default_factory=dict)


class NotificationDeferredEvent(DomainEvent):
    """All deliverable recipients are inside a do-not-disturb window."""

    aggregate_type: str | None = "NotificationRequest"
    deferred_until: datetime


class NotificationCanceledEvent(DomainEvent):
    """The request was canceled, or cancellation of in-flight retries was asked."""

    aggregate_type: str | None = "NotificationRequest"
    reason: str
    in_flight: bool = False


class NotificationCompletedEvent(DomainEvent):
    """Every recipient reached a terminal outcome and at least one succeeded."""

    aggregate_type: str | None = "NotificationRequest"
    succeeded_recipients: list[str] = Field(default_factory=list)
    failed_recipients: list[str] = Field(default_factory=list)


class NotificationFailedEvent(DomainEvent):
    """Every recipient reached a terminal outcome and none succeeded."""

    aggregate_type: str | None = "NotificationRequest"
    reason: str


# ── SentNotificationLog events ───────────────────────────────────────


class _DeliveryEvent(DomainEvent):
    aggregate_type: str | None = "SentNotificationLog"
    request_id: str
    channel: Channel
    recipient_address: str


class NotificationReadyToDispatchEvent(_DeliveryEvent):
    """A delivery log was opened for (request, channel, address)."""

    recipient_id: str


class NotificationDispatchAttemptedEvent(_DeliveryEvent):
    """A gateway call was made."""

    attempt_number: int
    succeeded: bool


class NotificationSentToChannelEvent(_DeliveryEvent):
    """The provider accepted the message."""

    provider_message_id: str | None = None


class NotificationDeliveredEvent(_DeliveryEvent):
    """The provider confirmed delivery, or the channel has no receipts."""


class NotificationReadEvent(_DeliveryEvent):
    """The recipient opened the message."""


class NotificationDeliveryFailedEvent(_DeliveryEvent):
    """The delivery log reached FAILED."""

    reason: str
    attempt_number: int


# ── Template and preference events ───────────────────────────────────


class NotificationTemplateVersionCreatedEvent(DomainEvent):
    """A new immutable template version was stored."""

    aggregate_type: str | None = "NotificationTemplate"
    name: str
    channel: Channel
    version: int
    status: str


class UserNotificationPreferencesUpdatedEvent(DomainEvent):
    """A user's notification preferences were changed."""

    aggregate_type: str | None = "UserNotificationPreferences"
    user_id: str
    changes: dict[str, Any] = Field(default_factory=dict)
