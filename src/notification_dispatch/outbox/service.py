"""OutboxService — claims, publishes and marks outbox rows."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..primitives.exceptions import ConcurrencyError
from ..primitives.locking import ResourceIdentifier

if TYPE_CHECKING:
    from ..ports.locking import ILockStrategy
    from ..ports.messaging import IMessagePublisher
    from ..ports.outbox import IOutboxStorage, OutboxMessage

logger = logging.getLogger("notification_dispatch.outbox")


class OutboxService:
    """
    Processes pending outbox messages in batches with lease-based claiming.

    Lifecycle per batch:
    1. Fetch pending messages from ``IOutboxStorage``.
    2. Claim each via a short lease so concurrent relays skip it.
    3. Publish each via ``IMessagePublisher``.
    4. Mark published only after the broker acknowledged; record failures.

    Delivery is at-least-once: a crash between publish and mark republishes
    the message. Consumers deduplicate on ``event_id``.
    """

    def __init__(
        self,
        storage: IOutboxStorage,
        publisher: IMessagePublisher,
        lock_strategy: ILockStrategy,
        *,
        max_retries: int = 5,
        claim_ttl: float = 30.0,
    ) -> None:
        self.storage = storage
        self.publisher = publisher
        self.lock_strategy = lock_strategy
        self.max_retries = max_retries
        self.claim_ttl = claim_ttl

    async def process_batch(self, batch_size: int = 50) -> int:
        """
        Publish up to *batch_size* pending messages that have not exhausted
        their retries.

        Returns the number of messages successfully published.
        """
        messages = await self.storage.get_pending(batch_size)
        eligible = [m for m in messages if m.retry_count < self.max_retries]
        return await self._publish_claimed(eligible)

    async def retry_failed(self, batch_size: int = 50) -> int:
        """
        Re-attempt publishing only the previously failed messages that
        haven't exceeded ``max_retries``.

        Returns the number of messages successfully retried.
        """
        pending = await self.storage.get_pending(batch_size)
        retryable = [
            m
            for m in pending
            if m.error is not None and m.retry_count < self.max_retries
        ]
        return await self._publish_claimed(retryable)

    async def _claim(
        self, messages: list[OutboxMessage]
    ) -> list[tuple[OutboxMessage, ResourceIdentifier, str]]:
        acquired: list[tuple[OutboxMessage, ResourceIdentifier, str]] = []
        for msg in messages:
            resource = ResourceIdentifier("OutboxMessage", msg.message_id)
            try:
                token = await self.lock_strategy.acquire(
                    resource,
                    timeout=0.01,  # Fail fast if locked
                    ttl=self.claim_ttl,
                )
                acquired.append((msg, resource, token))
            except ConcurrencyError:
                # Another relay has this message - skip it
                continue
        return acquired

    async def _publish_claimed(self, messages: list[OutboxMessage]) -> int:
        if not messages:
            return 0

        acquired = await self._claim(messages)
        if not acquired:
            logger.debug("No messages could be claimed (all leased by other relays)")
            return 0

        logger.debug("Claimed %d/%d messages", len(acquired), len(messages))

        try:
            published_ids: list[str] = []
            for msg, _, _ in acquired:
                try:
                    await self.publisher.publish(
                        topic=msg.event_type,
                        message=msg.payload,
                        correlation_id=msg.correlation_id
                        or msg.metadata.get("correlation_id"),
                        causation_id=msg.causation_id,
                        message_id=msg.message_id,
                    )
                    published_ids.append(msg.message_id)
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        "Failed to publish outbox message %s: %s",
                        msg.message_id,
                        exc,
                    )
                    await self.storage.mark_failed(msg.message_id, str(exc))

            if published_ids:
                await self.storage.mark_published(published_ids)

            return len(published_ids)

        finally:
            # Always release all leases (even if processing failed)
            for _, resource, token in acquired:
                try:
                    await self.lock_strategy.release(resource, token)
                except Exception as exc:  # noqa: BLE001
                    logger.warning(
                        "Failed to release lease for %s: %s (will auto-expire)",
                        resource,
                        exc,
                    )
