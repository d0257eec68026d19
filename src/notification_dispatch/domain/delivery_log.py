"""SentNotificationLog aggregate: the append-only history of one delivery.

There is exactly one log per (request, channel, recipient address). Its id
is derived from that key, so a second log for the same key collides with
the first on insert.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from ..primitives.exceptions import InvalidStateTransition
from ..utils import utcnow
from .events import (
    NotificationDeliveredEvent,
    NotificationDeliveryFailedEvent,
    NotificationDispatchAttemptedEvent,
    NotificationReadEvent,
    NotificationReadyToDispatchEvent,
    NotificationSentToChannelEvent,
)
from .values import Channel

if TYPE_CHECKING:
    from .events import DomainEvent

_LOG_NAMESPACE = uuid.UUID("6f1c3f0e-8f7a-4c55-9d2e-3b1a0c9e5d21")
_TICK = timedelta(microseconds=1)


class DeliveryStatus(str, Enum):
    QUEUED_FOR_DISPATCH = "QUEUED_FOR_DISPATCH"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    READ = "READ"


TERMINAL_DELIVERY_STATUSES = frozenset(
    {DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, DeliveryStatus.READ}
)
SUCCESSFUL_DELIVERY_STATUSES = frozenset(
    {DeliveryStatus.SENT, DeliveryStatus.DELIVERED, DeliveryStatus.READ}
)

# current -> statuses it may move to
_SUCCESSORS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.QUEUED_FOR_DISPATCH: frozenset(
        {DeliveryStatus.SENT, DeliveryStatus.DELIVERED, DeliveryStatus.FAILED}
    ),
    DeliveryStatus.SENT: frozenset(
        {DeliveryStatus.DELIVERED, DeliveryStatus.READ, DeliveryStatus.FAILED}
    ),
    DeliveryStatus.DELIVERED: frozenset({DeliveryStatus.READ}),
    DeliveryStatus.READ: frozenset(),
    DeliveryStatus.FAILED: frozenset(),
}


def delivery_key(request_id: str, channel: Channel, address: str) -> str:
    return f"{request_id}:{channel.value}:{address}"


def log_id_for(request_id: str, channel: Channel, address: str) -> str:
    return str(uuid.uuid5(_LOG_NAMESPACE, delivery_key(request_id, channel, address)))


class DeliveryAttempt(BaseModel):
    """One entry of the delivery history.

    ``attempt_number`` counts gateway calls; receipt entries reuse the
    number of the send they confirm and failures recorded without a gateway
    call carry ``0``.
    """

    model_config = ConfigDict(frozen=True)

    attempt_number: int
    timestamp: datetime
    status: DeliveryStatus
    failure_reason: str | None = None
    retryable: bool = False
    provider_message_id: str | None = None


class SentNotificationLog(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    request_id: str
    recipient_id: str
    notification_type: str
    channel: Channel
    recipient_address: str
    attempts: tuple[DeliveryAttempt, ...] = ()
    current_status: DeliveryStatus = DeliveryStatus.QUEUED_FOR_DISPATCH
    provider_message_id: str | None = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> str:
        return delivery_key(self.request_id, self.channel, self.recipient_address)

    @property
    def is_terminal(self) -> bool:
        return self.current_status in TERMINAL_DELIVERY_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.current_status in SUCCESSFUL_DELIVERY_STATUSES

    @property
    def dispatch_attempts(self) -> int:
        """Number of gateway calls made so far."""
        return max((a.attempt_number for a in self.attempts), default=0)

    @property
    def last_failure_reason(self) -> str | None:
        for attempt in reversed(self.attempts):
            if attempt.failure_reason:
                return attempt.failure_reason
        return None

    @property
    def first_sent_at(self) -> datetime | None:
        for attempt in self.attempts:
            if attempt.status in SUCCESSFUL_DELIVERY_STATUSES:
                return attempt.timestamp
        return None


# ── helpers ──────────────────────────────────────────────────────────


def _emit(log: SentNotificationLog, event: DomainEvent) -> DomainEvent:
    if event.aggregate_id:
        return event
    return event.model_copy(update={"aggregate_id": log.id})


def _next_timestamp(log: SentNotificationLog, now: datetime) -> datetime:
    """Keep attempts strictly ordered even when the clock stalls or steps back."""
    if log.attempts and now <= log.attempts[-1].timestamp:
        return log.attempts[-1].timestamp + _TICK
    return now


def _append(
    log: SentNotificationLog,
    attempt: DeliveryAttempt,
    status: DeliveryStatus,
    **changes: Any,
) -> SentNotificationLog:
    allowed = _SUCCESSORS[log.current_status]
    if status is not log.current_status and status not in allowed:
        raise InvalidStateTransition(
            "SentNotificationLog", log.current_status.value, status.value
        )
    return log.model_copy(
        update={
            "attempts": (*log.attempts, attempt),
            "current_status": status,
            "updated_at": attempt.timestamp,
            **changes,
        }
    )


def _require_queued(log: SentNotificationLog, target: DeliveryStatus) -> None:
    if log.current_status is not DeliveryStatus.QUEUED_FOR_DISPATCH:
        raise InvalidStateTransition(
            "SentNotificationLog", log.current_status.value, target.value
        )


def _common(log: SentNotificationLog) -> dict[str, Any]:
    return {
        "request_id": log.request_id,
        "channel": log.channel,
        "recipient_address": log.recipient_address,
    }


# ── operations ───────────────────────────────────────────────────────


def open_log(
    *,
    request_id: str,
    recipient_id: str,
    notification_type: str,
    channel: Channel,
    address: str,
    now: datetime | None = None,
) -> tuple[SentNotificationLog, list[DomainEvent]]:
    """Create a log in QUEUED_FOR_DISPATCH."""
    now = now or utcnow()
    log = SentNotificationLog(
        id=log_id_for(request_id, channel, address),
        request_id=request_id,
        recipient_id=recipient_id,
        notification_type=notification_type,
        channel=channel,
        recipient_address=address,
        created_at=now,
        updated_at=now,
    )
    event = NotificationReadyToDispatchEvent(
        **_common(log), recipient_id=recipient_id, occurred_at=now
    )
    return log, [_emit(log, event)]


def record_success(
    log: SentNotificationLog,
    *,
    attempt_number: int,
    provider_message_id: str | None = None,
    delivered: bool = False,
    now: datetime | None = None,
) -> tuple[SentNotificationLog, list[DomainEvent]]:
    """Record an accepted gateway call.

    *delivered* is set for channels without delivery receipts: acceptance is
    the strongest signal they will ever give.
    """
    status = DeliveryStatus.DELIVERED if delivered else DeliveryStatus.SENT
    _require_queued(log, status)
    timestamp = _next_timestamp(log, now or utcnow())
    attempt = DeliveryAttempt(
        attempt_number=attempt_number,
        timestamp=timestamp,
        status=status,
        provider_message_id=provider_message_id,
    )
    updated = _append(log, attempt, status, provider_message_id=provider_message_id)
    events: list[DomainEvent] = [
        NotificationDispatchAttemptedEvent(
            **_common(log),
            attempt_number=attempt_number,
            succeeded=True,
            occurred_at=timestamp,
        ),
        NotificationSentToChannelEvent(
            **_common(log),
            provider_message_id=provider_message_id,
            occurred_at=timestamp,
        ),
    ]
    if delivered:
        events.append(NotificationDeliveredEvent(**_common(log), occurred_at=timestamp))
    return updated, [_emit(updated, e) for e in events]


def record_failure(
    log: SentNotificationLog,
    *,
    attempt_number: int,
    reason: str,
    retryable: bool,
    final: bool,
    attempted: bool = True,
    now: datetime | None = None,
) -> tuple[SentNotificationLog, list[DomainEvent]]:
    """Record a failed gateway call, or a failure that prevented one.

    A non-final failure leaves the log QUEUED_FOR_DISPATCH for the next retry.
    """
    _require_queued(log, DeliveryStatus.FAILED)
    timestamp = _next_timestamp(log, now or utcnow())
    status = DeliveryStatus.FAILED if final else log.current_status
    attempt = DeliveryAttempt(
        attempt_number=attempt_number if attempted else 0,
        timestamp=timestamp,
        status=DeliveryStatus.FAILED,
        failure_reason=reason,
        retryable=retryable,
    )
    updated = _append(log, attempt, status)
    events: list[DomainEvent] = []
    if attempted:
        events.append(
            NotificationDispatchAttemptedEvent(
                **_common(log),
                attempt_number=attempt_number,
                succeeded=False,
                occurred_at=timestamp,
            )
        )
    if final:
        events.append(
            NotificationDeliveryFailedEvent(
                **_common(log),
                reason=reason,
                attempt_number=attempt_number,
                occurred_at=timestamp,
            )
        )
    return updated, [_emit(updated, e) for e in events]


def apply_receipt(
    log: SentNotificationLog,
    status: DeliveryStatus,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> tuple[SentNotificationLog, list[DomainEvent]]:
    """Apply an asynchronous provider callback.

    Repeated or stale receipts (DELIVERED after READ, the same status twice)
    leave the log untouched and emit nothing.
    """
    if status is log.current_status or (
        status is DeliveryStatus.DELIVERED and log.current_status is DeliveryStatus.READ
    ):
        return log, []
    if status not in _SUCCESSORS[log.current_status]:
        raise InvalidStateTransition(
            "SentNotificationLog", log.current_status.value, status.value
        )

    timestamp = _next_timestamp(log, now or utcnow())
    attempt = DeliveryAttempt(
        attempt_number=log.dispatch_attempts,
        timestamp=timestamp,
        status=status,
        failure_reason=reason,
        provider_message_id=log.provider_message_id,
    )
    updated = _append(log, attempt, status)

    event: DomainEvent
    if status is DeliveryStatus.READ:
        event = NotificationReadEvent(**_common(log), occurred_at=timestamp)
    elif status is DeliveryStatus.DELIVERED:
        event = NotificationDeliveredEvent(**_common(log), occurred_at=timestamp)
    else:
        event = NotificationDeliveryFailedEvent(
            **_common(log),
            reason=reason or "rejected by provider",
            attempt_number=log.dispatch_attempts,
            occurred_at=timestamp,
        )
    return updated, [_emit(updated, event)]
