from .cache import ICacheService
from .gateway import GatewayReceipt, IChannelGateway
from .idempotency import IIdempotencyStore, Reservation
from .locking import ActiveLock, ILockStrategy
from .messaging import IMessagePublisher
from .outbox import IOutboxStorage, OutboxMessage
from .repository import (
    IDeliveryLogRepository,
    IPreferencesRepository,
    IRequestRepository,
    ITemplateRepository,
)
from .unit_of_work import UnitOfWork

__all__ = [
    "ActiveLock",
    "GatewayReceipt",
    "ICacheService",
    "IChannelGateway",
    "IDeliveryLogRepository",
    "IIdempotencyStore",
    "ILockStrategy",
    "IMessagePublisher",
    "IOutboxStorage",
    "IPreferencesRepository",
    "IRequestRepository",
    "ITemplateRepository",
    "OutboxMessage",
    "Reservation",
    "UnitOfWork",
]
