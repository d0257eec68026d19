"""End-to-end: an order confirmation from command to broker."""

from __future__ import annotations

import pytest
from conftest import make_command, publish_templates

from notification_dispatch.adapters.memory import (
    InMemoryLockStrategy,
    InMemoryPublisher,
)
from notification_dispatch.domain import Channel, DeliveryStatus, RequestStatus
from notification_dispatch.outbox import OutboxRelay


@pytest.mark.asyncio
async def test_order_confirmation_end_to_end(harness) -> None:
    await publish_templates(harness)
    request = await harness.lifecycle.create(make_command())

    done = await harness.lifecycle.process(request.id)

    assert done.status is RequestStatus.COMPLETED
    log = await harness.ledger.find(done.id, Channel.EMAIL, "a@x.io")
    assert log.current_status is DeliveryStatus.DELIVERED
    assert log.dispatch_attempts == 1

    sent = harness.email.sent_messages[0].message
    assert sent.subject == "Order 42 confirmed"
    assert sent.body == "Hi Ada, your order 42 is confirmed."

    assert harness.event_types()[3:] == [
        "NotificationRequestedEvent",
        "NotificationProcessingStartedEvent",
        "NotificationReadyToDispatchEvent",
        "NotificationDispatchAttemptedEvent",
        "NotificationSentToChannelEvent",
        "NotificationDeliveredEvent",
        "NotificationCompletedEvent",
    ]
    completed = harness.events_of("NotificationCompletedEvent")[0]
    assert completed["aggregate_id"] == done.id
    assert completed["correlation_id"] == "corr-1"
    assert completed["succeeded_recipients"] == ["u1"]


@pytest.mark.asyncio
async def test_every_event_reaches_the_broker(harness) -> None:
    publisher = InMemoryPublisher()
    relay = OutboxRelay(harness.outbox_storage, publisher, InMemoryLockStrategy())
    await publish_templates(harness)
    request = await harness.lifecycle.create(make_command())
    await harness.lifecycle.process(request.id)

    published = await relay.drain()

    assert published == len(harness.outbox_storage)
    assert sorted(publisher.topics()) == sorted(harness.event_types())
    assert await harness.outbox_storage.get_pending() == []
    publisher.assert_published("NotificationCompletedEvent")


@pytest.mark.asyncio
async def test_replayed_order_confirmation_is_sent_once(harness) -> None:
    await publish_templates(harness)

    first = await harness.lifecycle.create(make_command())
    await harness.lifecycle.process(first.id)
    replay = await harness.lifecycle.create(make_command())
    await harness.lifecycle.process(replay.id)

    assert replay.id == first.id
    harness.email.assert_sent("a@x.io", count=1)
    assert len(await harness.ledger.logs_for_request(first.id)) == 1
