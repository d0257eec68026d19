"""Domain and infrastructure exceptions for notification-dispatch."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .locking import ResourceIdentifier


class NotificationDispatchError(Exception):
    """Root exception for the entire notification-dispatch service."""


class DomainError(NotificationDispatchError):
    """Base class for all domain-related errors."""


class InfrastructureError(NotificationDispatchError):
    """Base class for all infrastructure-related errors."""


class ConcurrencyError(NotificationDispatchError):
    """Base class for all concurrency-related conflicts.

    Callers catch this to reload and retry."""


class ValidationError(NotificationDispatchError):
    """Raised when command validation fails.

    Carries structured errors: ``{field: [messages]}``.
    """

    def __init__(self, errors: dict[str, list[str]] | str | None = None) -> None:
        if isinstance(errors, str):
            self.errors: dict[str, list[str]] = {"__root__": [errors]}
        elif errors is None:
            self.errors = {}
        else:
            self.errors = errors
        super().__init__(str(self.errors))


class InvalidStateTransition(DomainError):
    """Raised when an aggregate is asked to move to a state its current
    status does not permit."""

    def __init__(self, aggregate_type: str, current: str, target: str) -> None:
        self.aggregate_type = aggregate_type
        self.current = current
        self.target = target
        super().__init__(
            f"{aggregate_type} cannot transition from {current} to {target}"
        )


class NotFoundError(DomainError):
    """Raised when an aggregate or resource is not found."""


class EntityNotFoundError(NotFoundError):
    """Raised when a specific entity cannot be found by ID."""

    def __init__(self, entity_type: str, entity_id: object) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} with id={entity_id!r} not found")


# ── Template Exceptions ──────────────────────────────────────────────


class TemplateError(DomainError):
    """Base class for template resolution and rendering failures."""


class TemplateNotFoundError(TemplateError, NotFoundError):
    """Raised when no template exists for a notification type/channel."""

    def __init__(
        self, name: str, channel: str, version: int | None = None
    ) -> None:
        self.name = name
        self.channel = channel
        self.version = version
        target = f"version {version}" if version is not None else "active version"
        super().__init__(f"No {target} of template {name}/{channel}")


class MissingPlaceholderError(TemplateError):
    """Raised when a template references a key absent from the render data."""

    def __init__(self, placeholder: str, template_name: str | None = None) -> None:
        self.placeholder = placeholder
        self.template_name = template_name
        where = f" in template {template_name}" if template_name else ""
        super().__init__(f"Missing value for placeholder '{placeholder}'{where}")


# ── Concurrency Exceptions ───────────────────────────────────────────


class ConcurrencyConflict(ConcurrencyError):
    """Raised when a save observes a version other than the expected one.

    Usage: repositories raise this from ``save(aggregate, expected_version)``
    and when a unique key (dedup key, delivery key) is already taken.
    """

    def __init__(
        self,
        aggregate_type: str,
        aggregate_id: object,
        expected_version: int | None = None,
        actual_version: int | None = None,
        reason: str | None = None,
    ) -> None:
        self.aggregate_type = aggregate_type
        self.aggregate_id = aggregate_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        self.reason = reason

        msg = f"Concurrent modification of {aggregate_type} {aggregate_id!r}"
        if expected_version is not None:
            msg += f" (expected version {expected_version}, found {actual_version})"
        if reason:
            msg += f" - {reason}"
        super().__init__(msg)


class LockAcquisitionError(ConcurrencyError):
    """Failed to acquire a lease on a resource.

    Provides diagnostic information about which resource failed
    and under what conditions.
    """

    def __init__(
        self,
        resource: ResourceIdentifier,
        timeout: float,
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.timeout = timeout
        self.reason = reason

        msg = (
            f"Failed to acquire {resource.lock_mode} lock on "
            f"{resource.resource_type}:{resource.resource_id} "
            f"within {timeout}s"
        )
        if reason:
            msg += f" - {reason}"

        super().__init__(msg)


class LockStoreError(InfrastructureError):
    """Raised when the lease store itself fails (as opposed to a held lease)."""


# ── Gateway Exceptions ───────────────────────────────────────────────


class GatewayError(InfrastructureError):
    """Base class for provider failures raised by channel gateways."""

    retryable: bool = False

    def __init__(self, channel: str, address: str, reason: str) -> None:
        self.channel = channel
        self.address = address
        self.reason = reason
        super().__init__(f"Failed to deliver via {channel} to {address}: {reason}")


class TransientGatewayError(GatewayError):
    """Network failure, provider 5xx, throttling or timeout. Retried."""

    retryable = True


class PermanentGatewayError(GatewayError):
    """Invalid address, provider rejection or unsupported channel. Not retried."""

    retryable = False


# ── Infrastructure Exceptions ────────────────────────────────────────


class PersistenceError(InfrastructureError):
    """Base class for all persistence-related errors."""


class UnitOfWorkError(PersistenceError):
    """Raised when a transaction cannot be committed or rolled back."""


class SessionManagementError(PersistenceError):
    """Raised when a database session cannot be created or closed."""


class MessagingError(InfrastructureError):
    """Base class for all messaging-related infrastructure errors."""


class MessagingConnectionError(MessagingError):
    """Raised when connectivity to the message broker fails."""


class MessagingSerializationError(MessagingError):
    """Raised when message serialization fails."""
