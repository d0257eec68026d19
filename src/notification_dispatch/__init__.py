"""notification-dispatch — notification lifecycle and dispatch engine.

Idempotent request creation, preference policy, versioned templates,
retrying multi-channel dispatch with a per-delivery ledger, and domain
events through a transactional outbox.
"""

from __future__ import annotations

# ── Adapters ────────────────────────────────────────────────────
from .adapters.memory import (
    InMemoryCacheService,
    InMemoryDeliveryLogRepository,
    InMemoryIdempotencyStore,
    InMemoryLockStrategy,
    InMemoryOutboxStorage,
    InMemoryPreferencesRepository,
    InMemoryPublisher,
    InMemoryRequestRepository,
    InMemoryTemplateRepository,
    InMemoryUnitOfWork,
)

# ── Configuration ───────────────────────────────────────────────
from .config import (
    DeliveryMode,
    DispatchConfig,
    LifecycleConfig,
    OutboxConfig,
    TemplateCacheConfig,
)
from .correlation import (
    generate_correlation_id,
    get_causation_id,
    get_correlation_id,
    set_causation_id,
    set_correlation_id,
)

# ── Services ────────────────────────────────────────────────────
from .dispatch import DispatchOrchestrator, RetryPolicy

# ── Domain ──────────────────────────────────────────────────────
from .domain import (
    Channel,
    CreateNotificationCommand,
    DeliveryStatus,
    NotificationRequest,
    NotificationTemplate,
    RecipientContact,
    RecipientOutcome,
    RenderedMessage,
    RequestStatus,
    SentNotificationLog,
    TemplateStatus,
    Urgency,
    UserNotificationPreferences,
)
from .gateways import GatewayRegistry
from .ledger import DeliveryLedger
from .lifecycle import RequestLifecycleManager
from .outbox import OutboxRelay, OutboxService, OutboxWriter
from .preferences import PreferencesService

# ── Exceptions ──────────────────────────────────────────────────
from .primitives.exceptions import (
    ConcurrencyConflict,
    EntityNotFoundError,
    InvalidStateTransition,
    MissingPlaceholderError,
    NotificationDispatchError,
    PermanentGatewayError,
    TemplateNotFoundError,
    TransientGatewayError,
    ValidationError,
)
from .template import TemplateEngine

__version__ = "0.1.0"

__all__ = [
    "Channel",
    "ConcurrencyConflict",
    "CreateNotificationCommand",
    "DeliveryLedger",
    "DeliveryMode",
    "DeliveryStatus",
    "DispatchConfig",
    "DispatchOrchestrator",
    "EntityNotFoundError",
    "GatewayRegistry",
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
    "InvalidStateTransition",
    "LifecycleConfig",
    "MissingPlaceholderError",
    "NotificationDispatchError",
    "NotificationRequest",
    "NotificationTemplate",
    "OutboxConfig",
    "OutboxRelay",
    "OutboxService",
    "OutboxWriter",
    "PermanentGatewayError",
    "PreferencesService",
    "RecipientContact",
    "RecipientOutcome",
    "RenderedMessage",
    "RequestLifecycleManager",
    "RequestStatus",
    "RetryPolicy",
    "SentNotificationLog",
    "TemplateCacheConfig",
    "TemplateEngine",
    "TemplateNotFoundError",
    "TemplateStatus",
    "TransientGatewayError",
    "Urgency",
    "UserNotificationPreferences",
    "ValidationError",
    "generate_correlation_id",
    "get_causation_id",
    "get_correlation_id",
    "set_causation_id",
    "set_correlation_id",
]
