"""DeliveryLedger — append-only record of every delivery attempt.

Each write saves the updated ``SentNotificationLog`` with a version check and
appends the resulting events to the outbox in the same unit of work.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from .domain.delivery_log import (
    DeliveryStatus,
    apply_receipt,
    log_id_for,
    open_log,
    record_failure,
    record_success,
)
from .primitives.exceptions import ConcurrencyConflict
from .utils import utcnow

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from .domain.delivery_log import DeliveryAttempt, SentNotificationLog
    from .domain.events import DomainEvent
    from .domain.request import NotificationRequest, Recipient
    from .domain.values import Channel
    from .outbox.writer import OutboxWriter
    from .ports.repository import IDeliveryLogRepository
    from .ports.unit_of_work import UnitOfWork
    from .utils import Clock

logger = logging.getLogger("notification_dispatch.ledger")


class DeliveryLedger:
    def __init__(
        self,
        repository: IDeliveryLogRepository,
        *,
        outbox: OutboxWriter,
        uow_factory: Callable[[], UnitOfWork],
        clock: Clock = utcnow,
        receipt_retries: int = 3,
    ) -> None:
        self._repository = repository
        self._outbox = outbox
        self._uow_factory = uow_factory
        self._clock = clock
        self._receipt_retries = receipt_retries

    async def _commit(
        self,
        log: SentNotificationLog,
        expected_version: int,
        events: list[DomainEvent],
    ) -> SentNotificationLog:
        async with self._uow_factory() as uow:
            saved = await self._repository.save(log, expected_version, uow=uow)
            await self._outbox.append(events, uow)
        return saved

    # ── Writes ───────────────────────────────────────────────────────

    async def open(
        self,
        request: NotificationRequest,
        recipient: Recipient,
        channel: Channel,
        address: str,
    ) -> SentNotificationLog:
        """Return the log for (request, channel, address), creating it once."""
        existing = await self.find(request.id, channel, address)
        if existing is not None:
            return existing

        log, events = open_log(
            request_id=request.id,
            recipient_id=recipient.id,
            notification_type=request.notification_type,
            channel=channel,
            address=address,
            now=self._clock(),
        )
        try:
            saved = await self._commit(log, 0, events)
        except ConcurrencyConflict:
            # Lost an insert race; the winner's log is the log.
            winner = await self.find(request.id, channel, address)
            if winner is None:
                raise
            return winner
        logger.debug("Opened delivery log %s for %s", saved.id, saved.key)
        return saved

    async def record_success(
        self,
        log: SentNotificationLog,
        *,
        attempt_number: int,
        provider_message_id: str | None,
        delivered: bool,
    ) -> SentNotificationLog:
        updated, events = record_success(
            log,
            attempt_number=attempt_number,
            provider_message_id=provider_message_id,
            delivered=delivered,
            now=self._clock(),
        )
        return await self._commit(updated, log.version, events)

    async def record_failure(
        self,
        log: SentNotificationLog,
        *,
        attempt_number: int,
        reason: str,
        retryable: bool,
        final: bool,
        attempted: bool = True,
    ) -> SentNotificationLog:
        updated, events = record_failure(
            log,
            attempt_number=attempt_number,
            reason=reason,
            retryable=retryable,
            final=final,
            attempted=attempted,
            now=self._clock(),
        )
        return await self._commit(updated, log.version, events)

    async def record_receipt(
        self,
        provider_message_id: str,
        status: DeliveryStatus,
        *,
        reason: str | None = None,
    ) -> SentNotificationLog | None:
        """Apply a provider callback. Returns None for unknown message ids."""
        for _ in range(self._receipt_retries):
            log = await self._repository.find_by_provider_message_id(
                provider_message_id
            )
            if log is None:
                logger.warning(
                    "Receipt for unknown provider message %s", provider_message_id
                )
                return None
            updated, events = apply_receipt(
                log, status, reason=reason, now=self._clock()
            )
            if not events:
                return log
            try:
                return await self._commit(updated, log.version, events)
            except ConcurrencyConflict:
                logger.debug("Receipt for %s raced a writer, reloading", log.id)
        raise ConcurrencyConflict(
            "SentNotificationLog",
            provider_message_id,
            reason=f"receipt not applied after {self._receipt_retries} attempts",
        )

    # ── Reads ────────────────────────────────────────────────────────

    async def find(
        self, request_id: str, channel: Channel, address: str
    ) -> SentNotificationLog | None:
        return await self._repository.load(log_id_for(request_id, channel, address))

    async def logs_for_request(self, request_id: str) -> list[SentNotificationLog]:
        return await self._repository.list_by_request(request_id)

    async def attempts_for_request(
        self, request_id: str
    ) -> list[tuple[SentNotificationLog, DeliveryAttempt]]:
        """Every attempt of every log of the request, oldest first."""
        logs = await self._repository.list_by_request(request_id)
        pairs = [(log, attempt) for log in logs for attempt in log.attempts]
        return sorted(pairs, key=lambda pair: pair[1].timestamp)

    async def logs_for_address(self, address: str) -> list[SentNotificationLog]:
        return await self._repository.list_by_address(address)

    async def failed_older_than(self, age: timedelta) -> list[SentNotificationLog]:
        return await self._repository.list_failed_before(self._clock() - age)

    async def recent_send_times(
        self, recipient_id: str, notification_type: str, since: datetime
    ) -> list[datetime]:
        return await self._repository.sent_timestamps(
            recipient_id, notification_type, since
        )

    async def count_recent_sends(
        self, recipient_id: str, notification_type: str, window: timedelta
    ) -> int:
        stamps = await self.recent_send_times(
            recipient_id, notification_type, self._clock() - window
        )
        return len(stamps)

    async def find_by_provider_message_id(
        self, provider_message_id: str
    ) -> SentNotificationLog | None:
        return await self._repository.find_by_provider_message_id(provider_message_id)
