"""NotificationRequest aggregate and its state machine.

The aggregate is an immutable record. Every operation is a pure function
returning ``(new_request, events)``; the caller persists the new record and
appends the events to the outbox in one unit of work.

Status transitions::

    PENDING    → PROCESSING (start_processing)
    PENDING    → BLOCKED    (block)
    PENDING    → PENDING    (defer)
    PENDING    → CANCELED   (cancel)
    PROCESSING → COMPLETED  (mark_as_completed)
    PROCESSING → FAILED     (mark_as_failed)
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from ..primitives.exceptions import EntityNotFoundError, InvalidStateTransition
from ..utils import utcnow
from .events import (
    NotificationBlockedEvent,
    NotificationCanceledEvent,
    NotificationCompletedEvent,
    NotificationDeferredEvent,
    NotificationFailedEvent,
    NotificationProcessingStartedEvent,
    NotificationRequestedEvent,
)
from .values import Channel, Urgency

if TYPE_CHECKING:
    from .commands import CreateNotificationCommand
    from .events import DomainEvent


class RequestStatus(str, Enum):
    """Lifecycle states for a notification request."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    BLOCKED = "BLOCKED"
    CANCELED = "CANCELED"


TERMINAL_STATUSES = frozenset(
    {
        RequestStatus.COMPLETED,
        RequestStatus.FAILED,
        RequestStatus.BLOCKED,
        RequestStatus.CANCELED,
    }
)

# target -> permitted predecessors
_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PROCESSING: frozenset({RequestStatus.PENDING}),
    RequestStatus.BLOCKED: frozenset({RequestStatus.PENDING}),
    RequestStatus.CANCELED: frozenset({RequestStatus.PENDING}),
    RequestStatus.COMPLETED: frozenset({RequestStatus.PROCESSING}),
    RequestStatus.FAILED: frozenset({RequestStatus.PROCESSING}),
}


class RecipientOutcome(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    BLOCKED = "BLOCKED"


class Recipient(BaseModel):
    """A user targeted by a request, with per-recipient policy results."""

    model_config = ConfigDict(frozen=True)

    id: str
    addresses: dict[Channel, str] = Field(default_factory=dict)
    outcome: RecipientOutcome | None = None
    allowed_channels: tuple[Channel, ...] = ()
    deferred_until: datetime | None = None
    block_reason: str | None = None

    def address_for(self, channel: Channel) -> str | None:
        return self.addresses.get(channel)

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not None

    @property
    def is_deferred(self) -> bool:
        return self.outcome is None and self.deferred_until is not None

    def is_due(self, now: datetime) -> bool:
        """True when the recipient is deferred and its deferral has elapsed."""
        return self.is_deferred and self.deferred_until is not None and (
            self.deferred_until <= now
        )


class NotificationRequest(BaseModel):
    """Aggregate root for one upstream notification request."""

    model_config = ConfigDict(frozen=True)

    id: str
    notification_type: str
    payload: dict[str, Any]
    recipients: tuple[Recipient, ...]
    channel_preferences: tuple[Channel, ...]
    urgency: Urgency = Urgency.MEDIUM
    scheduled_at: datetime | None = None
    correlation_id: str | None = None
    dedup_key: str
    status: RequestStatus = RequestStatus.PENDING
    version: int = 0
    template_versions: dict[Channel, int] = Field(default_factory=dict)
    failure_reason: str | None = None
    deferred_until: datetime | None = None
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def recipient(self, recipient_id: str) -> Recipient:
        for recipient in self.recipients:
            if recipient.id == recipient_id:
                return recipient
        raise EntityNotFoundError("Recipient", recipient_id)

    def with_recipients(
        self, recipients: Iterable[Recipient], *, now: datetime | None = None
    ) -> NotificationRequest:
        """Return a copy with *recipients* replaced by id, keeping the order."""
        by_id = {r.id: r for r in recipients}
        merged = tuple(by_id.get(r.id, r) for r in self.recipients)
        return self.model_copy(
            update={"recipients": merged, "updated_at": now or utcnow()}
        )


# ── helpers ──────────────────────────────────────────────────────────


def _emit(request: NotificationRequest, event: DomainEvent) -> DomainEvent:
    """Populate aggregate context on *event*."""
    update: dict[str, Any] = {}
    if not event.aggregate_id:
        update["aggregate_id"] = request.id
    if not event.correlation_id and request.correlation_id:
        update["correlation_id"] = request.correlation_id
    return event.model_copy(update=update) if update else event


def _check_transition(request: NotificationRequest, target: RequestStatus) -> None:
    if request.status not in _TRANSITIONS[target]:
        raise InvalidStateTransition(
            "NotificationRequest", request.status.value, target.value
        )


# ── operations ───────────────────────────────────────────────────────


def create_request(
    command: CreateNotificationCommand,
    *,
    request_id: str,
    template_versions: dict[Channel, int] | None = None,
    now: datetime | None = None,
) -> tuple[NotificationRequest, list[DomainEvent]]:
    """Build a PENDING request from an accepted command."""
    now = now or utcnow()
    request = NotificationRequest(
        id=request_id,
        notification_type=command.notification_type,
        payload=dict(command.payload),
        recipients=tuple(
            Recipient(id=c.user_id, addresses=dict(c.addresses))
            for c in command.recipients
        ),
        channel_preferences=tuple(command.channel_preferences),
        urgency=command.urgency,
        scheduled_at=command.scheduled_at,
        correlation_id=command.correlation_id,
        dedup_key=command.dedup_key,
        template_versions=dict(template_versions or {}),
        created_at=now,
        updated_at=now,
    )
    event = NotificationRequestedEvent(
        notification_type=request.notification_type,
        recipient_ids=[r.id for r in request.recipients],
        channels=list(request.channel_preferences),
        urgency=request.urgency,
        dedup_key=request.dedup_key,
        scheduled_at=request.scheduled_at,
        occurred_at=now,
    )
    return request, [_emit(request, event)]


def start_processing(
    request: NotificationRequest,
    recipients: Iterable[Recipient],
    *,
    now: datetime | None = None,
) -> tuple[NotificationRequest, list[DomainEvent]]:
    """PENDING → PROCESSING with the evaluated recipients."""
    _check_transition(request, RequestStatus.PROCESSING)
    now = now or utcnow()
    updated = request.with_recipients(recipients, now=now).model_copy(
        update={"status": RequestStatus.PROCESSING, "deferred_until": None}
    )
    event = NotificationProcessingStartedEvent(
        allowed_channels={
            r.id: list(r.allowed_channels)
            for r in updated.recipients
            if r.allowed_channels
        },
        occurred_at=now,
    )
    return updated, [_emit(updated, event)]


def block(
    request: NotificationRequest,
    recipients: Iterable[Recipient],
    *,
    now: datetime | None = None,
) -> tuple[NotificationRequest, list[DomainEvent]]:
    """PENDING → BLOCKED when no channel survived policy for any recipient."""
    _check_transition(request, RequestStatus.BLOCKED)
    now = now or utcnow()
    updated = request.with_recipients(recipients, now=now)
    reasons = {r.id: r.block_reason or "blocked" for r in updated.recipients}
    updated = updated.model_copy(
        update={
            "status": RequestStatus.BLOCKED,
            "failure_reason": "; ".join(f"{k}: {v}" for k, v in reasons.items()),
        }
    )
    event = NotificationBlockedEvent(reasons=reasons, occurred_at=now)
    return updated, [_emit(updated, event)]


def defer(
    request: NotificationRequest,
    recipients: Iterable[Recipient],
    until: datetime,
    *,
    now: datetime | None = None,
) -> tuple[NotificationRequest, list[DomainEvent]]:
    """Keep a PENDING request pending until *until*."""
    if request.status is not RequestStatus.PENDING:
        raise InvalidStateTransition(
            "NotificationRequest", request.status.value, "DEFERRED"
        )
    now = now or utcnow()
    updated = request.with_recipients(recipients, now=now).model_copy(
        update={"deferred_until": until}
    )
    event = NotificationDeferredEvent(deferred_until=until, occurred_at=now)
    return updated, [_emit(updated, event)]


def cancel(
    request: NotificationRequest,
    reason: str = "canceled",
    *,
    now: datetime | None = None,
) -> tuple[NotificationRequest, list[DomainEvent]]:
    """PENDING → CANCELED."""
    _check_transition(request, RequestStatus.CANCELED)
    now = now or utcnow()
    updated = request.model_copy(
        update={
            "status": RequestStatus.CANCELED,
            "failure_reason": reason,
            "cancel_requested": True,
            "updated_at": now,
        }
    )
    event = NotificationCanceledEvent(reason=reason, occurred_at=now)
    return updated, [_emit(updated, event)]


def request_cancellation(
    request: NotificationRequest,
    reason: str = "canceled",
    *,
    now: datetime | None = None,
) -> tuple[NotificationRequest, list[DomainEvent]]:
    """Flag a PROCESSING request so that pending retries stop.

    Attempts already handed to a gateway are not interrupted; the request
    still finishes through reconciliation.
    """
    if request.status is not RequestStatus.PROCESSING:
        raise InvalidStateTransition(
            "NotificationRequest", request.status.value, "CANCEL_REQUESTED"
        )
    if request.cancel_requested:
        return request, []
    now = now or utcnow()
    updated = request.model_copy(
        update={"cancel_requested": True, "updated_at": now}
    )
    event = NotificationCanceledEvent(reason=reason, in_flight=True, occurred_at=now)
    return updated, [_emit(updated, event)]


def mark_as_completed(
    request: NotificationRequest,
    recipients: Iterable[Recipient] = (),
    *,
    now: datetime | None = None,
) -> tuple[NotificationRequest, list[DomainEvent]]:
    """PROCESSING → COMPLETED."""
    _check_transition(request, RequestStatus.COMPLETED)
    now = now or utcnow()
    updated = request.with_recipients(recipients, now=now).model_copy(
        update={"status": RequestStatus.COMPLETED}
    )
    event = NotificationCompletedEvent(
        succeeded_recipients=[
            r.id for r in updated.recipients if r.outcome is RecipientOutcome.SUCCEEDED
        ],
        failed_recipients=[
            r.id
            for r in updated.recipients
            if r.outcome is not RecipientOutcome.SUCCEEDED
        ],
        occurred_at=now,
    )
    return updated, [_emit(updated, event)]


def mark_as_failed(
    request: NotificationRequest,
    reason: str,
    recipients: Iterable[Recipient] = (),
    *,
    now: datetime | None = None,
) -> tuple[NotificationRequest, list[DomainEvent]]:
    """PROCESSING → FAILED."""
    _check_transition(request, RequestStatus.FAILED)
    now = now or utcnow()
    updated = request.with_recipients(recipients, now=now).model_copy(
        update={"status": RequestStatus.FAILED, "failure_reason": reason}
    )
    event = NotificationFailedEvent(reason=reason, occurred_at=now)
    return updated, [_emit(updated, event)]
