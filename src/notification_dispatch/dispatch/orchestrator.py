"""DispatchOrchestrator — lease-guarded, retrying delivery of rendered messages."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Union

from ..config import DeliveryMode, DispatchConfig
from ..domain.delivery_log import DeliveryStatus, delivery_key
from ..domain.request import RequestStatus
from ..primitives.exceptions import (
    ConcurrencyError,
    GatewayError,
    TransientGatewayError,
    ValidationError,
)
from ..primitives.locking import ResourceIdentifier
from .retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from ..domain.delivery_log import SentNotificationLog
    from ..domain.request import NotificationRequest, Recipient
    from ..domain.values import Channel, RenderedMessage
    from ..gateways.registry import GatewayRegistry
    from ..ledger import DeliveryLedger
    from ..ports.gateway import GatewayReceipt, IChannelGateway
    from ..ports.locking import ILockStrategy
    from ..ports.repository import IRequestRepository

logger = logging.getLogger("notification_dispatch.dispatch")

# A rendered message, or the exception that prevented rendering it.
MessageOutcome = Union["RenderedMessage", Exception]

CANCELED_REASON = "canceled before retry"


def _address_of(recipient: Recipient, channel: Channel) -> str:
    address = recipient.address_for(channel)
    if address is None:
        raise ValidationError(
            {"address": [f"recipient {recipient.id} has no {channel.value} address"]}
        )
    return address


class DispatchOrchestrator:
    """
    Sends one rendered message to one address and records every attempt.

    Guarantees per delivery key (request id, channel, address):

    - exactly one ``SentNotificationLog``; retries append to it;
    - at most one dispatcher at a time, enforced by a lease acquired before
      the first gateway call. ``lease_ttl`` exceeds ``send_timeout``, and
      before a backoff sleep the lease is extended over the delay plus one
      more send. A dispatcher that cannot get the lease returns the existing
      log untouched;
    - every gateway call is bounded by ``send_timeout`` (a timeout is a
      transient failure);
    - transient failures back off exponentially up to ``max_attempts``;
      permanent failures end the log after one attempt;
    - retries stop when the request is canceled.
    """

    def __init__(
        self,
        gateways: GatewayRegistry,
        ledger: DeliveryLedger,
        lock_strategy: ILockStrategy,
        *,
        requests: IRequestRepository | None = None,
        config: DispatchConfig | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._gateways = gateways
        self._ledger = ledger
        self._locks = lock_strategy
        self._requests = requests
        self.config = config or DispatchConfig()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)

    # ── Lease ────────────────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def _lease(self, resource: ResourceIdentifier) -> AsyncIterator[str | None]:
        """Yield a lease token, or None when another dispatcher holds it."""
        try:
            token = await self._locks.acquire(
                resource, timeout=self.config.lease_wait, ttl=self.config.lease_ttl
            )
        except ConcurrencyError:
            yield None
            return
        try:
            yield token
        finally:
            try:
                await self._locks.release(resource, token)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Failed to release lease for %s: %s (will auto-expire)",
                    resource,
                    exc,
                )

    async def _is_canceled(self, request_id: str) -> bool:
        if self._requests is None:
            return False
        current = await self._requests.load(request_id)
        return current is not None and (
            current.cancel_requested or current.status is RequestStatus.CANCELED
        )

    # ── Single delivery ──────────────────────────────────────────────

    async def dispatch(
        self,
        request: NotificationRequest,
        recipient: Recipient,
        channel: Channel,
        message: RenderedMessage,
    ) -> SentNotificationLog:
        """Deliver *message* to the recipient's address on *channel*."""
        address = _address_of(recipient, channel)
        resource = ResourceIdentifier(
            "SentNotificationLog", delivery_key(request.id, channel, address)
        )

        async with self._lease(resource) as token:
            if token is None:
                logger.info(
                    "Delivery %s is leased by another dispatcher", resource.resource_id
                )
                existing = await self._ledger.find(request.id, channel, address)
                if existing is not None:
                    return existing
                return await self._ledger.open(request, recipient, channel, address)

            log = await self._ledger.open(request, recipient, channel, address)
            if log.current_status is not DeliveryStatus.QUEUED_FOR_DISPATCH:
                logger.debug(
                    "Delivery %s already %s", log.key, log.current_status.value
                )
                return log

            gateway = self._gateways.get(channel)
            if gateway is None:
                return await self._ledger.record_failure(
                    log,
                    attempt_number=log.dispatch_attempts,
                    reason=f"no gateway configured for {channel.value}",
                    retryable=False,
                    final=True,
                    attempted=False,
                )
            return await self._send_with_retries(
                request, log, gateway, message, resource, token
            )

    async def _send_with_retries(
        self,
        request: NotificationRequest,
        log: SentNotificationLog,
        gateway: IChannelGateway,
        message: RenderedMessage,
        resource: ResourceIdentifier,
        token: str,
    ) -> SentNotificationLog:
        attempt = log.dispatch_attempts
        if attempt >= self.retry_policy.max_attempts:
            return await self._ledger.record_failure(
                log,
                attempt_number=attempt,
                reason="retry budget exhausted",
                retryable=False,
                final=True,
                attempted=False,
            )

        while True:
            if await self._is_canceled(request.id):
                logger.info("Stopping delivery %s: request canceled", log.key)
                return await self._ledger.record_failure(
                    log,
                    attempt_number=attempt,
                    reason=CANCELED_REASON,
                    retryable=False,
                    final=True,
                    attempted=False,
                )

            attempt += 1
            outcome = await self._call_gateway(gateway, message, log.recipient_address)
            if not isinstance(outcome, GatewayError):
                logger.info(
                    "Delivered %s on attempt %d (provider id %s)",
                    log.key,
                    attempt,
                    outcome.provider_message_id,
                )
                return await self._ledger.record_success(
                    log,
                    attempt_number=attempt,
                    provider_message_id=outcome.provider_message_id,
                    delivered=not gateway.supports_delivery_receipts,
                )

            error = outcome
            final = not error.retryable or not self.retry_policy.should_retry(attempt)
            logger.warning(
                "Attempt %d for %s failed (%s, %s): %s",
                attempt,
                log.key,
                "transient" if error.retryable else "permanent",
                "final" if final else "will retry",
                error.reason,
            )
            log = await self._ledger.record_failure(
                log,
                attempt_number=attempt,
                reason=error.reason,
                retryable=error.retryable,
                final=final,
            )
            if final:
                return log

            # The lease must outlive the sleep and then the next send.
            delay = self.retry_policy.delay_for_attempt(attempt)
            ttl = self.config.lease_ttl
            if not await self._renew(resource, token, delay + ttl, log, attempt + 1):
                return log
            await self.retry_policy.wait_before_retry(attempt, delay)
            if not await self._renew(resource, token, ttl, log, attempt + 1):
                return log

    async def _renew(
        self,
        resource: ResourceIdentifier,
        token: str,
        ttl: float,
        log: SentNotificationLog,
        next_attempt: int,
    ) -> bool:
        if await self._locks.extend(resource, token, ttl):
            return True
        logger.warning(
            "Lease on %s lost before attempt %d; abandoning delivery",
            log.key,
            next_attempt,
        )
        return False

    async def _call_gateway(
        self,
        gateway: IChannelGateway,
        message: RenderedMessage,
        address: str,
    ) -> GatewayReceipt | GatewayError:
        channel = gateway.channel.value
        try:
            return await asyncio.wait_for(
                gateway.send(message, address), timeout=self.config.send_timeout
            )
        except asyncio.TimeoutError:
            return TransientGatewayError(
                channel, address, f"timed out after {self.config.send_timeout}s"
            )
        except GatewayError as exc:
            return exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unclassified error from %s gateway", channel)
            return TransientGatewayError(channel, address, f"unclassified: {exc}")

    async def fail_without_send(
        self,
        request: NotificationRequest,
        recipient: Recipient,
        channel: Channel,
        reason: str,
    ) -> SentNotificationLog:
        """Record a delivery that could not be attempted (e.g. render failure)."""
        address = _address_of(recipient, channel)
        resource = ResourceIdentifier(
            "SentNotificationLog", delivery_key(request.id, channel, address)
        )
        async with self._lease(resource) as token:
            log = await self._ledger.open(request, recipient, channel, address)
            if token is None or log.is_terminal or log.succeeded:
                return log
            logger.warning("Cannot deliver %s: %s", log.key, reason)
            return await self._ledger.record_failure(
                log,
                attempt_number=log.dispatch_attempts,
                reason=reason,
                retryable=False,
                final=True,
                attempted=False,
            )

    # ── Fan-out ──────────────────────────────────────────────────────

    async def _dispatch_one(
        self,
        request: NotificationRequest,
        recipient: Recipient,
        channel: Channel,
        outcome: MessageOutcome,
    ) -> SentNotificationLog:
        if isinstance(outcome, Exception):
            return await self.fail_without_send(
                request, recipient, channel, str(outcome)
            )
        return await self.dispatch(request, recipient, channel, outcome)

    async def dispatch_recipient(
        self,
        request: NotificationRequest,
        recipient: Recipient,
        messages: Mapping[Channel, MessageOutcome],
    ) -> list[SentNotificationLog]:
        """Dispatch one recipient on its allowed channels.

        ``FAN_OUT`` sends on every channel concurrently. ``FALLBACK`` walks
        the channels in order and stops at the first successful delivery.
        A failing channel never aborts the others.
        """
        channels = [
            c
            for c in recipient.allowed_channels
            if c in messages and recipient.address_for(c) is not None
        ]
        if self.config.delivery_mode is DeliveryMode.FALLBACK:
            logs: list[SentNotificationLog] = []
            for channel in channels:
                try:
                    log = await self._dispatch_one(
                        request, recipient, channel, messages[channel]
                    )
                except Exception:
                    logger.exception(
                        "Dispatch of %s/%s to %s crashed",
                        request.id,
                        channel.value,
                        recipient.id,
                    )
                    continue
                logs.append(log)
                if log.succeeded:
                    break
            return logs

        results = await asyncio.gather(
            *(
                self._dispatch_one(request, recipient, c, messages[c])
                for c in channels
            ),
            return_exceptions=True,
        )
        return self._collect(request, results)

    async def dispatch_all(
        self,
        request: NotificationRequest,
        plans: Mapping[str, Mapping[Channel, MessageOutcome]],
    ) -> list[SentNotificationLog]:
        """Dispatch every planned recipient concurrently.

        *plans* maps recipient ids to their per-channel messages.
        """
        recipients = [request.recipient(recipient_id) for recipient_id in plans]
        results = await asyncio.gather(
            *(self.dispatch_recipient(request, r, plans[r.id]) for r in recipients),
            return_exceptions=True,
        )
        logs: list[SentNotificationLog] = []
        for result in results:
            if isinstance(result, BaseException):
                logger.error(
                    "Recipient dispatch for %s crashed: %s",
                    request.id,
                    result,
                    exc_info=result,
                )
                continue
            logs.extend(result)
        return logs

    @staticmethod
    def _collect(
        request: NotificationRequest,
        results: list[SentNotificationLog | BaseException],
    ) -> list[SentNotificationLog]:
        logs: list[SentNotificationLog] = []
        for result in results:
            if isinstance(result, BaseException):
                logger.error(
                    "Dispatch for %s crashed: %s", request.id, result, exc_info=result
                )
                continue
            logs.append(result)
        return logs
