"""RequestLifecycleManager — drives a NotificationRequest to a terminal state.

Flow for one request::

    create ──► process ──► policy ──► render ──► dispatch ──► reconcile
                  ▲                                              │
                  └──────── deferred recipients become due ◄─────┘

Every status transition is saved with a version check and its event is
appended to the outbox in the same unit of work.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any

from .config import LifecycleConfig
from .domain.delivery_log import DeliveryStatus
from .domain.preferences import UserNotificationPreferences
from .domain.request import (
    NotificationRequest,
    Recipient,
    RecipientOutcome,
    RequestStatus,
    block,
    cancel,
    create_request,
    defer,
    mark_as_completed,
    mark_as_failed,
    request_cancellation,
    start_processing,
)
from .policy.evaluator import Allow, Defer, evaluate, evaluation_time
from .primitives.exceptions import (
    ConcurrencyConflict,
    EntityNotFoundError,
    InvalidStateTransition,
    TemplateError,
    TemplateNotFoundError,
    ValidationError,
)
from .utils import utcnow

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence
    from datetime import datetime

    from .dispatch.orchestrator import DispatchOrchestrator, MessageOutcome
    from .domain.commands import CreateNotificationCommand
    from .domain.delivery_log import SentNotificationLog
    from .domain.events import DomainEvent
    from .domain.values import Channel
    from .ledger import DeliveryLedger
    from .outbox.writer import OutboxWriter
    from .policy.evaluator import PolicyDecision
    from .ports.idempotency import IIdempotencyStore
    from .ports.repository import IPreferencesRepository, IRequestRepository
    from .ports.unit_of_work import UnitOfWork
    from .template.engine import TemplateEngine
    from .utils import Clock

logger = logging.getLogger("notification_dispatch.lifecycle")

DEDUP_KEY_PREFIX = "request"


def validate_command(command: CreateNotificationCommand) -> None:
    """Raise ValidationError listing every problem with *command*."""
    errors: dict[str, list[str]] = {}
    if not command.notification_type:
        errors.setdefault("notification_type", []).append("must not be empty")
    if not command.payload:
        errors.setdefault("payload", []).append("must not be empty")
    if not command.recipients:
        errors.setdefault("recipients", []).append("must not be empty")
    if not command.channel_preferences:
        errors.setdefault("channel_preferences", []).append("must not be empty")
    if not command.dedup_key:
        errors.setdefault("dedup_key", []).append("must not be empty")

    seen_users: set[str] = set()
    for contact in command.recipients:
        if not contact.user_id:
            errors.setdefault("recipients", []).append("recipient without user_id")
        elif contact.user_id in seen_users:
            errors.setdefault("recipients", []).append(
                f"duplicate recipient {contact.user_id}"
            )
        seen_users.add(contact.user_id)

    if len(set(command.channel_preferences)) != len(command.channel_preferences):
        errors.setdefault("channel_preferences", []).append("duplicate channel")

    if errors:
        raise ValidationError(errors)


class RequestLifecycleManager:
    """
    Creates, processes, reconciles and cancels notification requests.

    ``create`` is idempotent on ``dedup_key``: the key is reserved in the
    idempotency store before anything is persisted, and every later call
    with the same key returns the request stored by the first one.

    ``process`` may be called repeatedly (by a scheduler, a queue consumer
    or after a crash); each call moves the request forward from wherever it
    is and never sends a delivery twice.
    """

    def __init__(
        self,
        requests: IRequestRepository,
        *,
        idempotency: IIdempotencyStore,
        templates: TemplateEngine,
        preferences: IPreferencesRepository,
        ledger: DeliveryLedger,
        orchestrator: DispatchOrchestrator,
        outbox: OutboxWriter,
        uow_factory: Callable[[], UnitOfWork],
        config: LifecycleConfig | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._requests = requests
        self._idempotency = idempotency
        self._templates = templates
        self._preferences = preferences
        self._ledger = ledger
        self._orchestrator = orchestrator
        self._outbox = outbox
        self._uow_factory = uow_factory
        self.config = config or LifecycleConfig()
        self._clock = clock

    # ── Persistence helpers ──────────────────────────────────────────

    async def _commit(
        self,
        request: NotificationRequest,
        expected_version: int,
        events: Sequence[DomainEvent],
    ) -> NotificationRequest:
        async with self._uow_factory() as uow:
            saved = await self._requests.save(request, expected_version, uow=uow)
            await self._outbox.append(events, uow)
        return saved

    async def get(self, request_id: str) -> NotificationRequest:
        request = await self._requests.load(request_id)
        if request is None:
            raise EntityNotFoundError("NotificationRequest", request_id)
        return request

    # ── Create ───────────────────────────────────────────────────────

    async def create(self, command: CreateNotificationCommand) -> NotificationRequest:
        """Accept *command*, or return the request already created for its key."""
        validate_command(command)

        key = f"{DEDUP_KEY_PREFIX}:{command.dedup_key}"
        request_id = str(uuid.uuid4())
        reservation = await self._idempotency.reserve(
            key, request_id, self.config.dedup_ttl
        )
        if not reservation.acquired:
            return await self._wait_for_original(
                command.dedup_key, reservation.existing_ref
            )

        try:
            versions = await self._pin_templates(command)
            request, events = create_request(
                command,
                request_id=request_id,
                template_versions=versions,
                now=self._clock(),
            )
            saved = await self._commit(request, 0, events)
        except ConcurrencyConflict:
            # The reservation expired and the key was persisted earlier.
            existing = await self._requests.find_by_dedup_key(command.dedup_key)
            if existing is None:
                await self._idempotency.release(key)
                raise
            logger.info(
                "Request for dedup key %s already stored as %s",
                command.dedup_key,
                existing.id,
            )
            return existing
        except Exception:
            await self._idempotency.release(key)
            raise

        logger.info(
            "Created request %s (%s, %d recipient(s), dedup key %s)",
            saved.id,
            saved.notification_type,
            len(saved.recipients),
            saved.dedup_key,
        )
        return saved

    async def _wait_for_original(
        self, dedup_key: str, ref: str | None
    ) -> NotificationRequest:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.duplicate_wait
        while True:
            existing = await self._requests.load(ref) if ref else None
            if existing is None:
                existing = await self._requests.find_by_dedup_key(dedup_key)
            if existing is not None:
                logger.info(
                    "Duplicate create for dedup key %s returns request %s",
                    dedup_key,
                    existing.id,
                )
                return existing
            if loop.time() >= deadline:
                raise ConcurrencyConflict(
                    "NotificationRequest",
                    ref,
                    reason=f"dedup key {dedup_key!r} is reserved but not yet stored",
                )
            await asyncio.sleep(self.config.duplicate_poll_interval)

    async def _pin_templates(
        self, command: CreateNotificationCommand
    ) -> dict[Channel, int]:
        versions: dict[Channel, int] = {}
        for channel in command.channel_preferences:
            try:
                template = await self._templates.resolve(
                    command.notification_type, channel
                )
            except TemplateNotFoundError:
                logger.debug(
                    "No active %s template for %s at create time",
                    channel.value,
                    command.notification_type,
                )
                continue
            versions[channel] = template.version
        return versions

    # ── Process ──────────────────────────────────────────────────────

    async def process(self, request_id: str) -> NotificationRequest:
        """Move the request forward as far as it can go right now."""
        request = await self.get(request_id)
        if request.is_terminal:
            return request

        now = self._clock()
        if request.scheduled_at is not None and request.scheduled_at > now:
            logger.debug(
                "Request %s scheduled for %s", request.id, request.scheduled_at
            )
            return request

        if request.status is RequestStatus.PENDING:
            if request.deferred_until is not None and request.deferred_until > now:
                logger.debug(
                    "Request %s deferred until %s", request.id, request.deferred_until
                )
                return request
            request = await self._apply_policy(request, now)
            if request.status is not RequestStatus.PROCESSING:
                return request
        elif request.cancel_requested:
            return await self.reconcile(request.id)
        else:
            request = await self._reevaluate_due(request, now)

        ready = [
            r
            for r in request.recipients
            if r.outcome is None and r.allowed_channels and not r.is_deferred
        ]
        if ready:
            plans = await self._render(request, ready)
            await self._orchestrator.dispatch_all(request, plans)
        return await self.reconcile(request.id)

    async def _decide(
        self, request: NotificationRequest, recipient: Recipient, at: datetime
    ) -> PolicyDecision:
        preferences = await self._preferences.load(recipient.id)
        if preferences is None:
            preferences = UserNotificationPreferences(user_id=recipient.id)
        recent: list[datetime] = []
        limit = preferences.frequency_limit_for(request.notification_type)
        if limit is not None:
            recent = await self._ledger.recent_send_times(
                recipient.id, request.notification_type, at - limit.window
            )
        return evaluate(request, recipient, preferences, at=at, recent_sends=recent)

    @staticmethod
    def _apply_decision(recipient: Recipient, decision: PolicyDecision) -> Recipient:
        if isinstance(decision, Allow):
            return recipient.model_copy(
                update={"allowed_channels": decision.channels, "deferred_until": None}
            )
        if isinstance(decision, Defer):
            return recipient.model_copy(
                update={"allowed_channels": (), "deferred_until": decision.until}
            )
        return recipient.model_copy(
            update={
                "outcome": RecipientOutcome.BLOCKED,
                "allowed_channels": (),
                "deferred_until": None,
                "block_reason": decision.reason,
            }
        )

    async def _apply_policy(
        self, request: NotificationRequest, now: datetime
    ) -> NotificationRequest:
        at = evaluation_time(now, request.scheduled_at)
        evaluated: list[Recipient] = []
        for recipient in request.recipients:
            if recipient.is_terminal:
                evaluated.append(recipient)
                continue
            decision = await self._decide(request, recipient, at)
            evaluated.append(self._apply_decision(recipient, decision))

        if any(r.allowed_channels for r in evaluated):
            updated, events = start_processing(request, evaluated, now=now)
        elif any(r.is_deferred for r in evaluated):
            until = min(r.deferred_until for r in evaluated if r.deferred_until)
            updated, events = defer(request, evaluated, until, now=now)
        else:
            updated, events = block(request, evaluated, now=now)

        try:
            saved = await self._commit(updated, request.version, events)
        except ConcurrencyConflict:
            logger.info("Request %s was advanced concurrently, reloading", request.id)
            return await self.get(request.id)

        if saved.status is RequestStatus.PROCESSING:
            logger.info(
                "Request %s processing: %s",
                saved.id,
                {r.id: [c.value for c in r.allowed_channels] for r in saved.recipients},
            )
        elif saved.status is RequestStatus.BLOCKED:
            logger.info("Request %s blocked: %s", saved.id, saved.failure_reason)
        else:
            logger.info("Request %s deferred until %s", saved.id, saved.deferred_until)
        return saved

    async def _reevaluate_due(
        self, request: NotificationRequest, now: datetime
    ) -> NotificationRequest:
        """Evaluate policy again for recipients whose deferral has elapsed."""
        due = [r for r in request.recipients if r.is_due(now)]
        if not due:
            return request
        evaluated = [
            self._apply_decision(r, await self._decide(request, r, now)) for r in due
        ]
        updated = request.with_recipients(evaluated, now=now)
        try:
            saved = await self._commit(updated, request.version, [])
        except ConcurrencyConflict:
            logger.info("Request %s was advanced concurrently, reloading", request.id)
            return await self.get(request.id)
        logger.info(
            "Re-evaluated %d deferred recipient(s) of request %s", len(due), saved.id
        )
        return saved

    async def _render(
        self, request: NotificationRequest, recipients: Iterable[Recipient]
    ) -> dict[str, dict[Channel, MessageOutcome]]:
        """Render every allowed channel of every recipient.

        A template error is kept in place of the message so the orchestrator
        records a failed delivery for that channel only.
        """
        plans: dict[str, dict[Channel, MessageOutcome]] = {}
        for recipient in recipients:
            messages: dict[Channel, MessageOutcome] = {}
            data = self._render_data(request, recipient)
            for channel in recipient.allowed_channels:
                try:
                    template = await self._templates.resolve_version(
                        request.notification_type,
                        channel,
                        request.template_versions.get(channel),
                    )
                    messages[channel] = self._templates.render(template, data)
                except TemplateError as exc:
                    logger.warning(
                        "Cannot render %s/%s for %s: %s",
                        request.notification_type,
                        channel.value,
                        recipient.id,
                        exc,
                    )
                    messages[channel] = exc
            plans[recipient.id] = messages
        return plans

    @staticmethod
    def _render_data(
        request: NotificationRequest, recipient: Recipient
    ) -> dict[str, Any]:
        data = dict(request.payload)
        addresses = {c.value: a for c, a in recipient.addresses.items()}
        data.setdefault("recipient", {"id": recipient.id, **addresses})
        return data

    # ── Reconcile ────────────────────────────────────────────────────

    async def reconcile(self, request_id: str) -> NotificationRequest:
        """Recompute the request's status from its delivery logs.

        Safe to call from every sibling dispatch at once: the write-back is a
        compare-and-swap and a lost race simply re-reads and recomputes.
        """
        for _ in range(self.config.reconcile_attempts):
            request = await self.get(request_id)
            if request.status is not RequestStatus.PROCESSING:
                return request

            logs = await self._ledger.logs_for_request(request_id)
            recipients = [
                self._settle_recipient(request, r, logs) for r in request.recipients
            ]
            updated, events = self._settle(request, recipients, logs)
            if updated is request:
                return request
            try:
                saved = await self._commit(updated, request.version, events)
            except ConcurrencyConflict:
                logger.debug("Reconcile of %s raced a writer, retrying", request_id)
                continue
            if saved.is_terminal:
                logger.info(
                    "Request %s %s%s",
                    saved.id,
                    saved.status.value.lower(),
                    f": {saved.failure_reason}" if saved.failure_reason else "",
                )
            return saved

        raise ConcurrencyConflict(
            "NotificationRequest",
            request_id,
            reason=f"reconcile gave up after {self.config.reconcile_attempts} attempts",
        )

    @staticmethod
    def _settle_recipient(
        request: NotificationRequest,
        recipient: Recipient,
        logs: Sequence[SentNotificationLog],
    ) -> Recipient:
        if recipient.outcome is RecipientOutcome.BLOCKED:
            return recipient
        mine = [log for log in logs if log.recipient_id == recipient.id]
        queued = DeliveryStatus.QUEUED_FOR_DISPATCH
        if any(log.current_status is queued for log in mine):
            return recipient.model_copy(update={"outcome": None})

        outcome: RecipientOutcome | None = None
        if any(log.succeeded for log in mine):
            outcome = RecipientOutcome.SUCCEEDED
        elif recipient.allowed_channels and {log.channel for log in mine} >= set(
            recipient.allowed_channels
        ):
            outcome = RecipientOutcome.FAILED
        elif request.cancel_requested:
            outcome = RecipientOutcome.FAILED
        if outcome is recipient.outcome:
            return recipient
        return recipient.model_copy(update={"outcome": outcome})

    def _settle(
        self,
        request: NotificationRequest,
        recipients: list[Recipient],
        logs: Sequence[SentNotificationLog],
    ) -> tuple[NotificationRequest, list[DomainEvent]]:
        now = self._clock()
        if any(r.outcome is None for r in recipients):
            if tuple(recipients) == request.recipients:
                return request, []
            return request.with_recipients(recipients, now=now), []

        if any(r.outcome is RecipientOutcome.SUCCEEDED for r in recipients):
            return mark_as_completed(request, recipients, now=now)

        if request.cancel_requested:
            reason = "canceled"
        else:
            reasons = [
                f"{log.recipient_id}/{log.channel.value}: {log.last_failure_reason}"
                for log in logs
                if log.last_failure_reason
            ]
            reason = "; ".join(reasons) or "no channel succeeded"
        return mark_as_failed(request, reason, recipients, now=now)

    # ── Cancel & receipts ────────────────────────────────────────────

    async def cancel(
        self, request_id: str, reason: str = "canceled"
    ) -> NotificationRequest:
        """Cancel a PENDING request, or stop the pending retries of a PROCESSING one.

        Gateway calls already in flight are not interrupted.
        """
        for _ in range(self.config.reconcile_attempts):
            request = await self.get(request_id)
            now = self._clock()
            if request.status is RequestStatus.PENDING:
                updated, events = cancel(request, reason, now=now)
            elif request.status is RequestStatus.PROCESSING:
                updated, events = request_cancellation(request, reason, now=now)
            else:
                raise InvalidStateTransition(
                    "NotificationRequest",
                    request.status.value,
                    RequestStatus.CANCELED.value,
                )
            if not events:
                return request
            try:
                saved = await self._commit(updated, request.version, events)
            except ConcurrencyConflict:
                logger.debug("Cancel of %s raced a writer, retrying", request_id)
                continue
            logger.info("Cancel requested for %s (%s)", saved.id, saved.status.value)
            if saved.status is RequestStatus.PROCESSING:
                return await self.reconcile(saved.id)
            return saved

        raise ConcurrencyConflict(
            "NotificationRequest",
            request_id,
            reason=f"cancel gave up after {self.config.reconcile_attempts} attempts",
        )

    async def record_receipt(
        self,
        provider_message_id: str,
        status: DeliveryStatus,
        *,
        reason: str | None = None,
    ) -> SentNotificationLog | None:
        """Apply a provider delivery/read callback and reconcile its request."""
        log = await self._ledger.record_receipt(
            provider_message_id, status, reason=reason
        )
        if log is None:
            return None
        await self.reconcile(log.request_id)
        return log
