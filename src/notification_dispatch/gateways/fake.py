"""In-memory gateway for test assertions."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..ports.gateway import GatewayReceipt

if TYPE_CHECKING:
    from ..domain.values import Channel, RenderedMessage

logger = logging.getLogger("notification_dispatch.gateways.fake")


@dataclass
class SentMessage:
    """Record of a gateway call for test assertions."""

    address: str
    message: RenderedMessage
    provider_message_id: str | None


class InMemoryGateway:
    """
    Test double (Fake) that records every call.

    Outcomes are scripted: ``script(err, None, ...)`` queues one outcome per
    call (an exception to raise, or ``None`` for success); ``fail_always``
    raises on every call once the script is exhausted. ``gate`` makes every
    call wait until the event is set, to hold a send in flight.
    """

    def __init__(
        self,
        channel: Channel,
        *,
        supports_delivery_receipts: bool = False,
        supports_read_receipts: bool = False,
    ) -> None:
        self.channel = channel
        self.supports_delivery_receipts = supports_delivery_receipts
        self.supports_read_receipts = supports_read_receipts
        self.calls: list[SentMessage] = []
        self.gate: asyncio.Event | None = None
        self._script: deque[BaseException | None] = deque()
        self._always: BaseException | None = None

    def script(self, *outcomes: BaseException | None) -> InMemoryGateway:
        self._script.extend(outcomes)
        return self

    def fail_always(self, error: BaseException) -> InMemoryGateway:
        self._always = error
        return self

    async def send(self, message: RenderedMessage, address: str) -> GatewayReceipt:
        if self.gate is not None:
            await self.gate.wait()
        outcome = self._script.popleft() if self._script else self._always
        if outcome is not None:
            self.calls.append(SentMessage(address, message, None))
            raise outcome
        provider_id = f"{self.channel.value}-{len(self.calls) + 1}"
        self.calls.append(SentMessage(address, message, provider_id))
        return GatewayReceipt(provider_message_id=provider_id)

    @property
    def sent_messages(self) -> list[SentMessage]:
        """Calls that succeeded."""
        return [c for c in self.calls if c.provider_message_id is not None]

    def assert_sent(self, address: str, count: int = 1) -> None:
        """Helper for test assertions."""
        matches = [m for m in self.sent_messages if m.address == address]
        if len(matches) != count:
            raise AssertionError(
                f"Expected {count} messages to {address} via {self.channel.value}, "
                f"but found {len(matches)}."
            )

    def clear(self) -> None:
        self.calls.clear()
        self._script.clear()
        self._always = None
