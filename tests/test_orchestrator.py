"""Tests for DispatchOrchestrator: retries, leases, timeouts and fan-out."""

from __future__ import annotations

import asyncio

import pytest
from conftest import build_harness, make_command, store_request

from notification_dispatch.adapters.memory import InMemoryLockStrategy
from notification_dispatch.config import DeliveryMode, DispatchConfig
from notification_dispatch.dispatch import DispatchOrchestrator, RetryPolicy
from notification_dispatch.dispatch.orchestrator import CANCELED_REASON
from notification_dispatch.domain import (
    Channel,
    DeliveryStatus,
    RecipientContact,
    RenderedMessage,
    RequestStatus,
)
from notification_dispatch.domain.request import start_processing
from notification_dispatch.gateways import GatewayRegistry
from notification_dispatch.primitives.exceptions import (
    MissingPlaceholderError,
    PermanentGatewayError,
    TransientGatewayError,
    ValidationError,
)

MESSAGE = RenderedMessage(subject="Hi", body="Your order shipped.")
MULTI = RecipientContact(
    user_id="u1",
    addresses={
        Channel.EMAIL: "a@x.io",
        Channel.SMS: "+15550100",
        Channel.PUSH: "device-1",
    },
)


def _transient(n: int = 1) -> list[TransientGatewayError]:
    return [TransientGatewayError("email", "a@x.io", "421 try later")] * n


async def _processing(h, channels=(Channel.EMAIL,), contact=None):
    """Store a request and move it to PROCESSING with *channels* allowed."""
    command = make_command(
        recipients=[contact] if contact else None, channels=list(channels)
    )
    stored = await store_request(h, command)
    recipients = [
        r.model_copy(update={"allowed_channels": tuple(channels)})
        for r in stored.recipients
    ]
    updated, _ = start_processing(stored, recipients, now=h.clock())
    return await h.requests.save(updated, stored.version)


class TestRetries:
    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, harness) -> None:
        request = await _processing(harness)

        log = await harness.orchestrator.dispatch(
            request, request.recipients[0], Channel.EMAIL, MESSAGE
        )

        assert log.current_status is DeliveryStatus.DELIVERED
        assert log.dispatch_attempts == 1
        assert log.provider_message_id == "email-1"
        assert harness.event_types() == [
            "NotificationReadyToDispatchEvent",
            "NotificationDispatchAttemptedEvent",
            "NotificationSentToChannelEvent",
            "NotificationDeliveredEvent",
        ]

    @pytest.mark.asyncio
    async def test_transient_failures_then_success(self, harness) -> None:
        harness.email.script(*_transient(2))
        request = await _processing(harness)

        log = await harness.orchestrator.dispatch(
            request, request.recipients[0], Channel.EMAIL, MESSAGE
        )

        assert log.current_status is DeliveryStatus.DELIVERED
        assert [a.attempt_number for a in log.attempts] == [1, 2, 3]
        assert [a.status for a in log.attempts] == [
            DeliveryStatus.FAILED,
            DeliveryStatus.FAILED,
            DeliveryStatus.DELIVERED,
        ]
        timestamps = [a.timestamp for a in log.attempts]
        assert timestamps == sorted(timestamps)
        assert len(set(timestamps)) == 3

    @pytest.mark.asyncio
    async def test_transient_failures_exhaust_budget(self, harness) -> None:
        harness.email.fail_always(_transient()[0])
        request = await _processing(harness)

        log = await harness.orchestrator.dispatch(
            request, request.recipients[0], Channel.EMAIL, MESSAGE
        )

        assert log.current_status is DeliveryStatus.FAILED
        assert log.dispatch_attempts == 3
        assert len(harness.email.calls) == 3
        assert harness.event_types().count("NotificationDeliveryFailedEvent") == 1

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self, harness) -> None:
        harness.email.fail_always(
            PermanentGatewayError("email", "a@x.io", "550 mailbox unavailable")
        )
        request = await _processing(harness)

        log = await harness.orchestrator.dispatch(
            request, request.recipients[0], Channel.EMAIL, MESSAGE
        )

        assert log.current_status is DeliveryStatus.FAILED
        assert log.dispatch_attempts == 1
        assert log.last_failure_reason == "550 mailbox unavailable"
        assert log.attempts[-1].retryable is False

    @pytest.mark.asyncio
    async def test_unclassified_error_is_retried(self, harness) -> None:
        harness.email.script(RuntimeError("socket went away"))
        request = await _processing(harness)

        log = await harness.orchestrator.dispatch(
            request, request.recipients[0], Channel.EMAIL, MESSAGE
        )

        assert log.current_status is DeliveryStatus.DELIVERED
        assert log.attempts[0].failure_reason == "unclassified: socket went away"
        assert log.attempts[0].retryable is True

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self) -> None:
        harness = build_harness(
            dispatch_config=DispatchConfig(
                max_attempts=2,
                base_delay=0.0,
                max_delay=0.0,
                jitter=False,
                send_timeout=0.01,
            )
        )
        harness.email.gate = asyncio.Event()
        request = await _processing(harness)

        log = await harness.orchestrator.dispatch(
            request, request.recipients[0], Channel.EMAIL, MESSAGE
        )

        assert log.current_status is DeliveryStatus.FAILED
        assert log.dispatch_attempts == 2
        assert log.last_failure_reason == "timed out after 0.01s"

    @pytest.mark.asyncio
    async def test_sent_when_gateway_reports_receipts_later(self) -> None:
        harness = build_harness(sms_receipts=True)
        contact = RecipientContact(user_id="u1", addresses={Channel.SMS: "+1555"})
        request = await _processing(harness, (Channel.SMS,), contact)

        log = await harness.orchestrator.dispatch(
            request, request.recipients[0], Channel.SMS, MESSAGE
        )

        assert log.current_status is DeliveryStatus.SENT
        assert log.succeeded

    @pytest.mark.asyncio
    async def test_no_gateway_for_channel(self, harness) -> None:
        orchestrator = DispatchOrchestrator(
            GatewayRegistry([harness.email]),
            harness.ledger,
            harness.locks,
            config=harness.orchestrator.config,
        )
        contact = RecipientContact(user_id="u1", addresses={Channel.PUSH: "dev-1"})
        request = await _processing(harness, (Channel.PUSH,), contact)

        log = await orchestrator.dispatch(
            request, request.recipients[0], Channel.PUSH, MESSAGE
        )

        assert log.current_status is DeliveryStatus.FAILED
        assert log.dispatch_attempts == 0
        assert log.last_failure_reason == "no gateway configured for push"

    @pytest.mark.asyncio
    async def test_missing_address_raises(self, harness) -> None:
        request = await _processing(harness)
        with pytest.raises(ValidationError):
            await harness.orchestrator.dispatch(
                request, request.recipients[0], Channel.SMS, MESSAGE
            )


class TestExactlyOnce:
    @pytest.mark.asyncio
    async def test_redispatch_of_finished_delivery_is_noop(self, harness) -> None:
        request = await _processing(harness)
        recipient = request.recipients[0]

        first = await harness.orchestrator.dispatch(
            request, recipient, Channel.EMAIL, MESSAGE
        )
        second = await harness.orchestrator.dispatch(
            request, recipient, Channel.EMAIL, MESSAGE
        )

        assert second == first
        assert len(harness.email.calls) == 1
        assert len(harness.logs) == 1

    @pytest.mark.asyncio
    async def test_concurrent_dispatchers_send_once(self, harness) -> None:
        harness.email.gate = asyncio.Event()
        request = await _processing(harness)
        recipient = request.recipients[0]

        holder = asyncio.create_task(
            harness.orchestrator.dispatch(request, recipient, Channel.EMAIL, MESSAGE)
        )
        await asyncio.sleep(0.01)
        loser = await harness.orchestrator.dispatch(
            request, recipient, Channel.EMAIL, MESSAGE
        )
        assert loser.current_status is DeliveryStatus.QUEUED_FOR_DISPATCH

        harness.email.gate.set()
        winner = await holder

        assert winner.current_status is DeliveryStatus.DELIVERED
        assert winner.id == loser.id
        assert len(harness.email.calls) == 1
        assert len(harness.logs) == 1

    @pytest.mark.asyncio
    async def test_lost_lease_abandons_delivery(self, harness) -> None:
        class ExpiringLocks(InMemoryLockStrategy):
            async def extend(self, resource, token, ttl) -> bool:
                return False

        orchestrator = DispatchOrchestrator(
            harness.gateways,
            harness.ledger,
            ExpiringLocks(),
            config=harness.orchestrator.config,
        )
        harness.email.script(*_transient())
        request = await _processing(harness)

        log = await orchestrator.dispatch(
            request, request.recipients[0], Channel.EMAIL, MESSAGE
        )

        assert log.current_status is DeliveryStatus.QUEUED_FOR_DISPATCH
        assert len(harness.email.calls) == 1

        # The next dispatcher resumes from the recorded attempt count.
        resumed = await harness.orchestrator.dispatch(
            request, request.recipients[0], Channel.EMAIL, MESSAGE
        )
        assert resumed.current_status is DeliveryStatus.DELIVERED
        assert resumed.dispatch_attempts == 2

    def test_lease_must_outlive_send_timeout(self) -> None:
        with pytest.raises(ValueError):
            DispatchConfig(lease_ttl=0.05, send_timeout=1.0)
        with pytest.raises(ValueError):
            DispatchConfig(lease_ttl=1.0, send_timeout=1.0)

    @pytest.mark.asyncio
    async def test_lease_held_through_backoff_longer_than_ttl(self) -> None:
        harness = build_harness(
            dispatch_config=DispatchConfig(
                max_attempts=2,
                base_delay=0.2,
                max_delay=0.2,
                jitter=False,
                send_timeout=0.05,
                lease_ttl=0.1,
            )
        )
        harness.email.script(*_transient())
        request = await _processing(harness)
        recipient = request.recipients[0]

        holder = asyncio.create_task(
            harness.orchestrator.dispatch(request, recipient, Channel.EMAIL, MESSAGE)
        )
        await asyncio.sleep(0.15)
        rival = await harness.orchestrator.dispatch(
            request, recipient, Channel.EMAIL, MESSAGE
        )
        winner = await holder

        assert rival.current_status is DeliveryStatus.QUEUED_FOR_DISPATCH
        assert rival.dispatch_attempts == 1
        assert winner.current_status is DeliveryStatus.DELIVERED
        assert winner.dispatch_attempts == 2
        assert len(harness.email.calls) == 2
        harness.email.assert_sent("a@x.io", count=1)

    @pytest.mark.asyncio
    async def test_backoff_longer_than_ttl_uses_whole_budget(self) -> None:
        harness = build_harness(
            dispatch_config=DispatchConfig(
                max_attempts=3,
                base_delay=0.1,
                max_delay=0.1,
                jitter=False,
                send_timeout=0.01,
                lease_ttl=0.05,
            )
        )
        harness.email.fail_always(_transient()[0])
        request = await _processing(harness)

        log = await harness.orchestrator.dispatch(
            request, request.recipients[0], Channel.EMAIL, MESSAGE
        )

        assert log.current_status is DeliveryStatus.FAILED
        assert log.dispatch_attempts == 3
        assert len(harness.email.calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted_budget_on_resume_fails_without_send(self) -> None:
        harness = build_harness(
            dispatch_config=DispatchConfig(
                max_attempts=1, base_delay=0.0, max_delay=0.0, jitter=False
            )
        )
        request = await _processing(harness)
        recipient = request.recipients[0]
        log = await harness.ledger.open(request, recipient, Channel.EMAIL, "a@x.io")
        await harness.ledger.record_failure(
            log, attempt_number=1, reason="421", retryable=True, final=False
        )

        result = await harness.orchestrator.dispatch(
            request, recipient, Channel.EMAIL, MESSAGE
        )

        assert result.current_status is DeliveryStatus.FAILED
        assert result.last_failure_reason == "retry budget exhausted"
        assert harness.email.calls == []


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_stops_pending_retries(self) -> None:
        class CancelOnRetry(RetryPolicy):
            on_retry = None

            async def wait_before_retry(self, attempt: int, delay=None) -> None:
                await self.on_retry()

        policy = CancelOnRetry(max_attempts=5, base_delay=0, max_delay=0)
        harness = build_harness(retry_policy=policy)
        harness.email.fail_always(_transient()[0])
        request = await _processing(harness)
        policy.on_retry = lambda: harness.lifecycle.cancel(request.id)

        log = await harness.orchestrator.dispatch(
            request, request.recipients[0], Channel.EMAIL, MESSAGE
        )

        assert len(harness.email.calls) == 1
        assert log.current_status is DeliveryStatus.FAILED
        assert log.last_failure_reason == CANCELED_REASON

        settled = await harness.lifecycle.reconcile(request.id)
        assert settled.status is RequestStatus.FAILED
        assert settled.failure_reason == "canceled"


class TestFanOut:
    @pytest.mark.asyncio
    async def test_failing_channel_does_not_affect_others(self, harness) -> None:
        harness.sms.fail_always(PermanentGatewayError("sms", "+15550100", "bad"))
        harness.push.script(RuntimeError("boom"), RuntimeError("boom"))
        channels = (Channel.EMAIL, Channel.SMS, Channel.PUSH)
        request = await _processing(harness, channels, MULTI)

        logs = await harness.orchestrator.dispatch_recipient(
            request,
            request.recipients[0],
            {c: MESSAGE for c in channels},
        )

        statuses = {log.channel: log.current_status for log in logs}
        assert statuses == {
            Channel.EMAIL: DeliveryStatus.DELIVERED,
            Channel.SMS: DeliveryStatus.FAILED,
            Channel.PUSH: DeliveryStatus.DELIVERED,
        }

    @pytest.mark.asyncio
    async def test_render_error_fails_only_its_channel(self, harness) -> None:
        channels = (Channel.EMAIL, Channel.SMS)
        request = await _processing(harness, channels, MULTI)

        logs = await harness.orchestrator.dispatch_recipient(
            request,
            request.recipients[0],
            {
                Channel.EMAIL: MissingPlaceholderError("name", "OrderConfirmed"),
                Channel.SMS: MESSAGE,
            },
        )

        by_channel = {log.channel: log for log in logs}
        assert by_channel[Channel.EMAIL].current_status is DeliveryStatus.FAILED
        assert by_channel[Channel.EMAIL].dispatch_attempts == 0
        assert "'name'" in by_channel[Channel.EMAIL].last_failure_reason
        assert by_channel[Channel.SMS].current_status is DeliveryStatus.DELIVERED
        assert harness.email.calls == []

    @pytest.mark.asyncio
    async def test_dispatch_all_covers_every_recipient(self, harness) -> None:
        command = make_command(
            recipients=[
                RecipientContact(user_id="u1", addresses={Channel.EMAIL: "a@x.io"}),
                RecipientContact(user_id="u2", addresses={Channel.EMAIL: "b@x.io"}),
            ]
        )
        stored = await store_request(harness, command)
        recipients = [
            r.model_copy(update={"allowed_channels": (Channel.EMAIL,)})
            for r in stored.recipients
        ]
        updated, _ = start_processing(stored, recipients, now=harness.clock())
        request = await harness.requests.save(updated, stored.version)

        logs = await harness.orchestrator.dispatch_all(
            request,
            {"u1": {Channel.EMAIL: MESSAGE}, "u2": {Channel.EMAIL: MESSAGE}},
        )

        assert sorted(log.recipient_address for log in logs) == ["a@x.io", "b@x.io"]


class TestFallback:
    def _harness(self):
        return build_harness(
            dispatch_config=DispatchConfig(
                max_attempts=1,
                base_delay=0.0,
                max_delay=0.0,
                jitter=False,
                delivery_mode=DeliveryMode.FALLBACK,
            )
        )

    @pytest.mark.asyncio
    async def test_stops_at_first_success(self) -> None:
        harness = self._harness()
        channels = (Channel.EMAIL, Channel.SMS, Channel.PUSH)
        request = await _processing(harness, channels, MULTI)

        logs = await harness.orchestrator.dispatch_recipient(
            request, request.recipients[0], {c: MESSAGE for c in channels}
        )

        assert [log.channel for log in logs] == [Channel.EMAIL]
        assert harness.sms.calls == []
        assert harness.push.calls == []

    @pytest.mark.asyncio
    async def test_falls_through_failed_channels_in_order(self) -> None:
        harness = self._harness()
        harness.email.fail_always(PermanentGatewayError("email", "a@x.io", "550"))
        harness.sms.fail_always(_transient()[0])
        channels = (Channel.EMAIL, Channel.SMS, Channel.PUSH)
        request = await _processing(harness, channels, MULTI)

        logs = await harness.orchestrator.dispatch_recipient(
            request, request.recipients[0], {c: MESSAGE for c in channels}
        )

        assert [(log.channel, log.current_status) for log in logs] == [
            (Channel.EMAIL, DeliveryStatus.FAILED),
            (Channel.SMS, DeliveryStatus.FAILED),
            (Channel.PUSH, DeliveryStatus.DELIVERED),
        ]
