from .cache import InMemoryCacheService
from .idempotency import InMemoryIdempotencyStore
from .locking import InMemoryLockStrategy
from .outbox import InMemoryOutboxStorage
from .publisher import InMemoryPublisher
from .repository import (
    InMemoryDeliveryLogRepository,
    InMemoryPreferencesRepository,
    InMemoryRequestRepository,
    InMemoryTemplateRepository,
)
from .unit_of_work import InMemoryUnitOfWork, in_memory_unit_of_work_factory

__all__ = [
    "InMemoryCacheService",
    "InMemoryDeliveryLogRepository",
    "InMemoryIdempotencyStore",
    "InMemoryLockStrategy",
    "InMemoryOutboxStorage",
    "InMemoryPreferencesRepository",
    "InMemoryPublisher",
    "InMemoryRequestRepository",
    "InMemoryTemplateRepository",
    "InMemoryUnitOfWork",
    "in_memory_unit_of_work_factory",
]
