from .exceptions import (
    ConcurrencyConflict,
    ConcurrencyError,
    DomainError,
    EntityNotFoundError,
    GatewayError,
    InfrastructureError,
    InvalidStateTransition,
    LockAcquisitionError,
    LockStoreError,
    MissingPlaceholderError,
    NotificationDispatchError,
    NotFoundError,
    PermanentGatewayError,
    TemplateError,
    TemplateNotFoundError,
    TransientGatewayError,
    ValidationError,
)
from .locking import ResourceIdentifier

__all__ = [
    "ConcurrencyConflict",
    "ConcurrencyError",
    "DomainError",
    "EntityNotFoundError",
    "GatewayError",
    "InfrastructureError",
    "InvalidStateTransition",
    "LockAcquisitionError",
    "LockStoreError",
    "MissingPlaceholderError",
    "NotFoundError",
    "NotificationDispatchError",
    "PermanentGatewayError",
    "ResourceIdentifier",
    "TemplateError",
    "TemplateNotFoundError",
    "TransientGatewayError",
    "ValidationError",
]
