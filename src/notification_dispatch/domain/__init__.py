from notification_dispatch.domain.commands import CreateNotificationCommand, RecipientContact
from notification_dispatch.domain.delivery_log import (
    DeliveryAttempt,
    DeliveryStatus,
    SentNotificationLog,
    delivery_key,
    log_id_for,
)
from notification_dispatch.domain.events import DomainEvent
from notification_dispatch.domain.preferences import DoNotDisturbWindow, FrequencyLimit, UserNotificationPreferences
from notification_dispatch.domain.request import (
    NotificationRequest,
    Recipient,
    RecipientOutcome,
    RequestStatus,
)
from notification_dispatch.domain.template import NotificationTemplate, TemplateStatus
from notification_dispatch.domain.values import Channel, RenderedMessage, Urgency

__all__ = [
    "Channel",
    "CreateNotificationCommand",
    "DeliveryAttempt",
    "DeliveryStatus",
    "DoNotDisturbWindow",
    "DomainEvent",
    "FrequencyLimit",
    "NotificationRequest",
    "NotificationTemplate",
    "Recipient",
    "RecipientContact",
    "RecipientOutcome",
    "RenderedMessage",
    "RequestStatus",
    "SentNotificationLog",
    "TemplateStatus",
    "Urgency",
    "UserNotificationPreferences",
    "delivery_key",
    "log_id_for",
]
