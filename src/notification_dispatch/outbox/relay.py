"""OutboxRelay — background worker draining the outbox to the broker."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from ..config import OutboxConfig
from .service import OutboxService

if TYPE_CHECKING:
    from ..ports.locking import ILockStrategy
    from ..ports.messaging import IMessagePublisher
    from ..ports.outbox import IOutboxStorage

logger = logging.getLogger("notification_dispatch.outbox")


class OutboxRelay:
    """
    Debounced background loop that batches and publishes outbox messages.

    Wakes on ``trigger()`` (wired as a post-commit hook by ``OutboxWriter``)
    and falls back to polling every ``poll_interval`` seconds.

    Usage::

        relay = OutboxRelay(storage, broker, lock_strategy)
        writer.attach(relay.trigger)
        await relay.start()
    """

    def __init__(
        self,
        storage: IOutboxStorage,
        broker: IMessagePublisher,
        lock_strategy: ILockStrategy,
        *,
        config: OutboxConfig | None = None,
    ) -> None:
        self.config = config or OutboxConfig()
        self._service = OutboxService(
            storage, broker, lock_strategy, max_retries=self.config.max_retries
        )
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._trigger_event = asyncio.Event()

    @property
    def service(self) -> OutboxService:
        return self._service

    @property
    def running(self) -> bool:
        return self._running

    def trigger(self) -> None:
        """Wake up the background loop to process messages."""
        self._trigger_event.set()

    async def drain(self) -> int:
        """Publish everything currently publishable. Returns the count."""
        total = 0
        while True:
            processed = await self._service.process_batch(self.config.batch_size)
            total += processed
            if processed < self.config.batch_size:
                return total

    # ── Worker Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Start the background processing loop."""
        if self._running:
            return
        self._running = True

        # Initial drain (self-healing after a crash)
        await self._service.process_batch(self.config.batch_size * 2)

        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "OutboxRelay started (batch: %d, wait: %.1fs, fallback: %.1fs)",
            self.config.batch_size,
            self.config.wait_delay,
            self.config.poll_interval,
        )

    async def stop(self) -> None:
        """Stop the background loop gracefully."""
        self._running = False
        self.trigger()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("OutboxRelay stopped")

    # ── Internal loop ────────────────────────────────────────────────

    async def _run_loop(self) -> None:
        while self._running:
            try:
                # 1. Wait for trigger or polling timeout
                triggered = True
                try:
                    await asyncio.wait_for(
                        self._trigger_event.wait(), timeout=self.config.poll_interval
                    )
                except asyncio.TimeoutError:
                    triggered = False

                # 2. Debouncing
                if triggered:
                    await self._debounce()
                    self._trigger_event.clear()

                # 3. Process
                processed = await self._service.process_batch(self.config.batch_size)

                # 4. On a quiet poll, give failed messages another chance
                if not triggered:
                    await self._service.retry_failed(self.config.batch_size)

                # 5. If batch full, check for more
                if processed >= self.config.batch_size:
                    self.trigger()

            except Exception as exc:
                logger.error("OutboxRelay loop error: %s", exc, exc_info=True)
                await asyncio.sleep(1.0)

    async def _debounce(self) -> None:
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        while (loop.time() - start_time) < self.config.max_delay:
            self._trigger_event.clear()
            try:
                await asyncio.wait_for(
                    self._trigger_event.wait(), timeout=self.config.wait_delay
                )
            except asyncio.TimeoutError:
                return
