"""Tests for the SentNotificationLog aggregate."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import T0

from notification_dispatch.domain import Channel, DeliveryStatus, log_id_for
from notification_dispatch.domain.delivery_log import (
    apply_receipt,
    open_log,
    record_failure,
    record_success,
)
from notification_dispatch.primitives.exceptions import InvalidStateTransition


def _open():
    log, _ = open_log(
        request_id="req-1",
        recipient_id="u1",
        notification_type="OrderConfirmed",
        channel=Channel.SMS,
        address="+15550100",
        now=T0,
    )
    return log


def _sent():
    log, _ = record_success(
        _open(), attempt_number=1, provider_message_id="SM1", now=T0
    )
    return log


class TestOpen:
    def test_log_id_is_derived_from_delivery_key(self) -> None:
        log = _open()

        assert log.id == log_id_for("req-1", Channel.SMS, "+15550100")
        assert log.key == "req-1:sms:+15550100"
        assert log.current_status is DeliveryStatus.QUEUED_FOR_DISPATCH
        assert log.attempts == ()

    def test_open_emits_ready_to_dispatch(self) -> None:
        _, events = open_log(
            request_id="req-1",
            recipient_id="u1",
            notification_type="OrderConfirmed",
            channel=Channel.SMS,
            address="+15550100",
            now=T0,
        )
        assert [e.event_type for e in events] == ["NotificationReadyToDispatchEvent"]
        assert events[0].channel is Channel.SMS


class TestAttempts:
    def test_success_with_receipts_is_sent(self) -> None:
        log, events = record_success(
            _open(), attempt_number=1, provider_message_id="SM1", now=T0
        )

        assert log.current_status is DeliveryStatus.SENT
        assert log.provider_message_id == "SM1"
        assert log.first_sent_at == T0
        assert [e.event_type for e in events] == [
            "NotificationDispatchAttemptedEvent",
            "NotificationSentToChannelEvent",
        ]

    def test_success_without_receipts_is_delivered(self) -> None:
        log, events = record_success(
            _open(), attempt_number=1, delivered=True, now=T0
        )

        assert log.current_status is DeliveryStatus.DELIVERED
        assert events[-1].event_type == "NotificationDeliveredEvent"

    def test_non_final_failure_stays_queued(self) -> None:
        log, events = record_failure(
            _open(),
            attempt_number=1,
            reason="503",
            retryable=True,
            final=False,
            now=T0,
        )

        assert log.current_status is DeliveryStatus.QUEUED_FOR_DISPATCH
        assert log.dispatch_attempts == 1
        assert log.last_failure_reason == "503"
        assert [e.event_type for e in events] == ["NotificationDispatchAttemptedEvent"]

    def test_final_failure(self) -> None:
        log, events = record_failure(
            _open(),
            attempt_number=1,
            reason="invalid number",
            retryable=False,
            final=True,
            now=T0,
        )

        assert log.current_status is DeliveryStatus.FAILED
        assert log.is_terminal
        assert events[-1].event_type == "NotificationDeliveryFailedEvent"
        assert events[-1].reason == "invalid number"

    def test_unattempted_failure_emits_no_attempt_event(self) -> None:
        log, events = record_failure(
            _open(),
            attempt_number=0,
            reason="missing placeholder",
            retryable=False,
            final=True,
            attempted=False,
            now=T0,
        )

        assert log.dispatch_attempts == 0
        assert [e.event_type for e in events] == ["NotificationDeliveryFailedEvent"]

    def test_attempts_stay_ordered_when_clock_stalls(self) -> None:
        log, _ = record_failure(
            _open(), attempt_number=1, reason="a", retryable=True, final=False, now=T0
        )
        log, _ = record_failure(
            log, attempt_number=2, reason="b", retryable=True, final=False, now=T0
        )
        log, _ = record_success(log, attempt_number=3, now=T0 - timedelta(seconds=5))

        stamps = [a.timestamp for a in log.attempts]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == 3

    def test_cannot_record_after_terminal(self) -> None:
        log, _ = record_success(_open(), attempt_number=1, delivered=True, now=T0)
        with pytest.raises(InvalidStateTransition):
            record_failure(
                log, attempt_number=2, reason="x", retryable=True, final=True
            )
        with pytest.raises(InvalidStateTransition):
            record_success(log, attempt_number=2)


class TestReceipts:
    def test_delivered_then_read(self) -> None:
        log, events = apply_receipt(_sent(), DeliveryStatus.DELIVERED, now=T0)
        assert log.current_status is DeliveryStatus.DELIVERED
        assert events[0].event_type == "NotificationDeliveredEvent"

        log, events = apply_receipt(log, DeliveryStatus.READ, now=T0)
        assert log.current_status is DeliveryStatus.READ
        assert events[0].event_type == "NotificationReadEvent"

    def test_stale_receipts_are_ignored(self) -> None:
        read, _ = apply_receipt(_sent(), DeliveryStatus.READ, now=T0)

        same, events = apply_receipt(read, DeliveryStatus.DELIVERED, now=T0)
        assert same is read
        assert events == []

        again, events = apply_receipt(read, DeliveryStatus.READ, now=T0)
        assert again is read
        assert events == []

    def test_bounce_after_send_fails_the_log(self) -> None:
        log, events = apply_receipt(
            _sent(), DeliveryStatus.FAILED, reason="undelivered", now=T0
        )

        assert log.current_status is DeliveryStatus.FAILED
        assert events[0].event_type == "NotificationDeliveryFailedEvent"
        assert events[0].reason == "undelivered"

    def test_receipt_cannot_revive_failed_log(self) -> None:
        failed, _ = apply_receipt(_sent(), DeliveryStatus.FAILED, now=T0)
        with pytest.raises(InvalidStateTransition):
            apply_receipt(failed, DeliveryStatus.DELIVERED, now=T0)
