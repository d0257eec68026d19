"""Tests for the NotificationRequest state machine."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import T0, make_command

from notification_dispatch.domain import Channel, RecipientOutcome, RequestStatus
from notification_dispatch.domain.events import (
    NotificationBlockedEvent,
    NotificationCanceledEvent,
    NotificationCompletedEvent,
    NotificationDeferredEvent,
    NotificationFailedEvent,
    NotificationProcessingStartedEvent,
    NotificationRequestedEvent,
)
from notification_dispatch.domain.request import (
    block,
    cancel,
    create_request,
    defer,
    mark_as_completed,
    mark_as_failed,
    request_cancellation,
    start_processing,
)
from notification_dispatch.primitives.exceptions import (
    EntityNotFoundError,
    InvalidStateTransition,
)


def _pending():
    request, events = create_request(make_command(), request_id="req-1", now=T0)
    return request, events


def _processing():
    request, _ = _pending()
    allowed = request.recipients[0].model_copy(
        update={"allowed_channels": (Channel.EMAIL,)}
    )
    request, _ = start_processing(request, [allowed], now=T0)
    return request


class TestCreate:
    def test_new_request_is_pending_with_one_event(self) -> None:
        request, events = _pending()

        assert request.status is RequestStatus.PENDING
        assert request.version == 0
        assert request.recipients[0].id == "u1"
        assert request.recipients[0].address_for(Channel.EMAIL) == "a@x.io"
        assert len(events) == 1
        event = events[0]
        assert isinstance(event, NotificationRequestedEvent)
        assert event.aggregate_id == "req-1"
        assert event.correlation_id == "corr-1"
        assert event.dedup_key == "order-42-confirmed"


class TestTransitions:
    def test_start_processing_records_allowed_channels(self) -> None:
        request = _processing()

        assert request.status is RequestStatus.PROCESSING
        assert request.recipients[0].allowed_channels == (Channel.EMAIL,)

    def test_start_processing_emits_one_event(self) -> None:
        request, _ = _pending()
        allowed = request.recipients[0].model_copy(
            update={"allowed_channels": (Channel.EMAIL,)}
        )
        _, events = start_processing(request, [allowed], now=T0)

        assert [type(e) for e in events] == [NotificationProcessingStartedEvent]
        assert events[0].allowed_channels == {"u1": [Channel.EMAIL]}

    def test_block_sets_reason(self) -> None:
        request, _ = _pending()
        blocked = request.recipients[0].model_copy(
            update={"outcome": RecipientOutcome.BLOCKED, "block_reason": "opted out"}
        )
        updated, events = block(request, [blocked], now=T0)

        assert updated.status is RequestStatus.BLOCKED
        assert updated.failure_reason == "u1: opted out"
        assert isinstance(events[0], NotificationBlockedEvent)
        assert events[0].reasons == {"u1": "opted out"}

    def test_defer_keeps_request_pending(self) -> None:
        request, _ = _pending()
        until = T0 + timedelta(hours=8)
        deferred = request.recipients[0].model_copy(update={"deferred_until": until})
        updated, events = defer(request, [deferred], until, now=T0)

        assert updated.status is RequestStatus.PENDING
        assert updated.deferred_until == until
        assert updated.recipients[0].is_deferred
        assert isinstance(events[0], NotificationDeferredEvent)

    def test_completed_lists_recipient_outcomes(self) -> None:
        request = _processing()
        done = request.recipients[0].model_copy(
            update={"outcome": RecipientOutcome.SUCCEEDED}
        )
        updated, events = mark_as_completed(request, [done], now=T0)

        assert updated.status is RequestStatus.COMPLETED
        assert updated.is_terminal
        assert isinstance(events[0], NotificationCompletedEvent)
        assert events[0].succeeded_recipients == ["u1"]
        assert events[0].failed_recipients == []

    def test_failed_carries_reason(self) -> None:
        request = _processing()
        updated, events = mark_as_failed(request, "smtp down", now=T0)

        assert updated.status is RequestStatus.FAILED
        assert updated.failure_reason == "smtp down"
        assert isinstance(events[0], NotificationFailedEvent)

    def test_cancel_pending(self) -> None:
        request, _ = _pending()
        updated, events = cancel(request, "user asked", now=T0)

        assert updated.status is RequestStatus.CANCELED
        assert updated.failure_reason == "user asked"
        assert isinstance(events[0], NotificationCanceledEvent)
        assert events[0].in_flight is False

    def test_request_cancellation_flags_processing_request(self) -> None:
        request = _processing()
        updated, events = request_cancellation(request, now=T0)

        assert updated.status is RequestStatus.PROCESSING
        assert updated.cancel_requested
        assert events[0].in_flight is True

        again, more = request_cancellation(updated, now=T0)
        assert again is updated
        assert more == []


class TestInvalidTransitions:
    def test_cannot_complete_pending_request(self) -> None:
        request, _ = _pending()
        with pytest.raises(InvalidStateTransition) as exc_info:
            mark_as_completed(request, now=T0)
        assert exc_info.value.current == "PENDING"
        assert exc_info.value.target == "COMPLETED"

    def test_cannot_start_processing_twice(self) -> None:
        request = _processing()
        with pytest.raises(InvalidStateTransition):
            start_processing(request, [], now=T0)

    def test_cannot_cancel_processing_request_directly(self) -> None:
        with pytest.raises(InvalidStateTransition):
            cancel(_processing(), now=T0)

    def test_terminal_requests_do_not_move(self) -> None:
        request = _processing()
        failed, _ = mark_as_failed(request, "boom", now=T0)
        with pytest.raises(InvalidStateTransition):
            mark_as_completed(failed, now=T0)
        with pytest.raises(InvalidStateTransition):
            request_cancellation(failed, now=T0)

    def test_defer_requires_pending(self) -> None:
        with pytest.raises(InvalidStateTransition):
            defer(_processing(), [], T0, now=T0)


class TestRecipients:
    def test_unknown_recipient(self) -> None:
        request, _ = _pending()
        with pytest.raises(EntityNotFoundError):
            request.recipient("nobody")

    def test_is_due_after_deferral(self) -> None:
        request, _ = _pending()
        recipient = request.recipients[0].model_copy(
            update={"deferred_until": T0 + timedelta(hours=1)}
        )
        assert not recipient.is_due(T0)
        assert recipient.is_due(T0 + timedelta(hours=1))

    def test_with_recipients_replaces_by_id(self) -> None:
        request, _ = _pending()
        changed = request.recipients[0].model_copy(
            update={"outcome": RecipientOutcome.FAILED}
        )
        updated = request.with_recipients([changed], now=T0)

        assert updated.recipients[0].outcome is RecipientOutcome.FAILED
        assert request.recipients[0].outcome is None
