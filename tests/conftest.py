"""Shared fixtures: a fully wired in-memory notification service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from notification_dispatch.adapters.memory import (
    InMemoryCacheService,
    InMemoryDeliveryLogRepository,
    InMemoryIdempotencyStore,
    InMemoryLockStrategy,
    InMemoryOutboxStorage,
    InMemoryPreferencesRepository,
    InMemoryRequestRepository,
    InMemoryTemplateRepository,
    InMemoryUnitOfWork,
)
from notification_dispatch.config import DispatchConfig, LifecycleConfig
from notification_dispatch.dispatch import DispatchOrchestrator, RetryPolicy
from notification_dispatch.domain import (
    Channel,
    CreateNotificationCommand,
    RecipientContact,
    Urgency,
)
from notification_dispatch.domain.request import NotificationRequest, create_request
from notification_dispatch.gateways import GatewayRegistry, InMemoryGateway
from notification_dispatch.ledger import DeliveryLedger
from notification_dispatch.lifecycle import RequestLifecycleManager
from notification_dispatch.outbox import OutboxWriter
from notification_dispatch.preferences import PreferencesService
from notification_dispatch.template import TemplateEngine

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable wall clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


@dataclass
class Harness:
    clock: FakeClock
    requests: InMemoryRequestRepository
    logs: InMemoryDeliveryLogRepository
    template_repo: InMemoryTemplateRepository
    preference_repo: InMemoryPreferencesRepository
    outbox_storage: InMemoryOutboxStorage
    outbox: OutboxWriter
    idempotency: InMemoryIdempotencyStore
    locks: InMemoryLockStrategy
    cache: InMemoryCacheService
    email: InMemoryGateway
    sms: InMemoryGateway
    push: InMemoryGateway
    gateways: GatewayRegistry
    ledger: DeliveryLedger
    orchestrator: DispatchOrchestrator
    templates: TemplateEngine
    preferences: PreferencesService
    lifecycle: RequestLifecycleManager

    def event_types(self) -> list[str]:
        return self.outbox_storage.event_types()

    def events_of(self, event_type: str) -> list[dict[str, Any]]:
        return [
            m.payload for m in self.outbox_storage.messages if m.event_type == event_type
        ]


def build_harness(
    *,
    dispatch_config: DispatchConfig | None = None,
    lifecycle_config: LifecycleConfig | None = None,
    retry_policy: RetryPolicy | None = None,
    sms_receipts: bool = False,
) -> Harness:
    clock = FakeClock()
    requests = InMemoryRequestRepository()
    logs = InMemoryDeliveryLogRepository()
    template_repo = InMemoryTemplateRepository()
    preference_repo = InMemoryPreferencesRepository()
    outbox_storage = InMemoryOutboxStorage()
    outbox = OutboxWriter(outbox_storage)
    idempotency = InMemoryIdempotencyStore()
    locks = InMemoryLockStrategy()
    cache = InMemoryCacheService()

    email = InMemoryGateway(Channel.EMAIL)
    sms = InMemoryGateway(Channel.SMS, supports_delivery_receipts=sms_receipts)
    push = InMemoryGateway(Channel.PUSH)
    gateways = GatewayRegistry([email, sms, push])

    config = dispatch_config or DispatchConfig(
        max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False, send_timeout=1.0
    )
    ledger = DeliveryLedger(
        logs, outbox=outbox, uow_factory=InMemoryUnitOfWork, clock=clock
    )
    orchestrator = DispatchOrchestrator(
        gateways,
        ledger,
        locks,
        requests=requests,
        config=config,
        retry_policy=retry_policy,
    )
    templates = TemplateEngine(
        template_repo,
        outbox=outbox,
        uow_factory=InMemoryUnitOfWork,
        cache=cache,
        clock=clock,
    )
    preferences = PreferencesService(
        preference_repo, outbox=outbox, uow_factory=InMemoryUnitOfWork, clock=clock
    )
    lifecycle = RequestLifecycleManager(
        requests,
        idempotency=idempotency,
        templates=templates,
        preferences=preference_repo,
        ledger=ledger,
        orchestrator=orchestrator,
        outbox=outbox,
        uow_factory=InMemoryUnitOfWork,
        config=lifecycle_config
        or LifecycleConfig(duplicate_wait=0.2, duplicate_poll_interval=0.01),
        clock=clock,
    )
    return Harness(
        clock=clock,
        requests=requests,
        logs=logs,
        template_repo=template_repo,
        preference_repo=preference_repo,
        outbox_storage=outbox_storage,
        outbox=outbox,
        idempotency=idempotency,
        locks=locks,
        cache=cache,
        email=email,
        sms=sms,
        push=push,
        gateways=gateways,
        ledger=ledger,
        orchestrator=orchestrator,
        templates=templates,
        preferences=preferences,
        lifecycle=lifecycle,
    )


def make_command(
    *,
    notification_type: str = "OrderConfirmed",
    dedup_key: str = "order-42-confirmed",
    payload: dict[str, Any] | None = None,
    recipients: list[RecipientContact] | None = None,
    channels: list[Channel] | None = None,
    urgency: Urgency = Urgency.MEDIUM,
    scheduled_at: datetime | None = None,
) -> CreateNotificationCommand:
    return CreateNotificationCommand(
        notification_type=notification_type,
        payload={"order_id": 42, "name": "Ada"} if payload is None else payload,
        recipients=recipients
        if recipients is not None
        else [RecipientContact(user_id="u1", addresses={Channel.EMAIL: "a@x.io"})],
        channel_preferences=channels if channels is not None else [Channel.EMAIL],
        urgency=urgency,
        scheduled_at=scheduled_at,
        correlation_id="corr-1",
        dedup_key=dedup_key,
    )


async def publish_templates(h: Harness, name: str = "OrderConfirmed") -> None:
    await h.templates.publish(
        name,
        Channel.EMAIL,
        subject="Order {{order_id}} confirmed",
        body="Hi {{name}}, your order {{order_id}} is confirmed.",
    )
    await h.templates.publish(
        name, Channel.SMS, body="Order {{order_id}} confirmed."
    )
    await h.templates.publish(
        name, Channel.PUSH, subject="Order update", body="Order {{order_id}}"
    )


async def store_request(
    h: Harness, command: CreateNotificationCommand | None = None
) -> NotificationRequest:
    """Persist a PENDING request without going through create()."""
    request, _ = create_request(
        command or make_command(), request_id="req-1", now=h.clock()
    )
    return await h.requests.save(request, 0)


@pytest.fixture
def harness() -> Harness:
    return build_harness()
