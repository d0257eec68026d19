"""SQLAlchemy persistence: document tables, repositories, outbox and UoW."""

from .models import (
    Base,
    DeliveryLogModel,
    NotificationRequestModel,
    NotificationTemplateModel,
    OutboxMessageModel,
    OutboxStatus,
    PreferencesModel,
)
from .outbox import SQLAlchemyOutboxStorage
from .repository import (
    SQLAlchemyDeliveryLogRepository,
    SQLAlchemyPreferencesRepository,
    SQLAlchemyRequestRepository,
    SQLAlchemyTemplateRepository,
)
from .uow import SQLAlchemyUnitOfWork

__all__ = [
    "Base",
    "DeliveryLogModel",
    "NotificationRequestModel",
    "NotificationTemplateModel",
    "OutboxMessageModel",
    "OutboxStatus",
    "PreferencesModel",
    "SQLAlchemyDeliveryLogRepository",
    "SQLAlchemyOutboxStorage",
    "SQLAlchemyPreferencesRepository",
    "SQLAlchemyRequestRepository",
    "SQLAlchemyTemplateRepository",
    "SQLAlchemyUnitOfWork",
]
