"""IChannelGateway — capability contract for channel providers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..domain.values import Channel, RenderedMessage


@dataclass(frozen=True)
class GatewayReceipt:
    """Provider acknowledgment of an accepted message."""

    provider_message_id: str | None = None
    accepted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@runtime_checkable
class IChannelGateway(Protocol):
    """
    Sends a rendered message to one address on one channel.

    ``send`` returns a receipt when the provider accepted the message and
    raises ``TransientGatewayError`` or ``PermanentGatewayError`` otherwise.
    """

    @property
    def channel(self) -> Channel: ...

    @property
    def supports_delivery_receipts(self) -> bool:
        """Whether the provider later confirms delivery through a callback."""
        ...

    @property
    def supports_read_receipts(self) -> bool: ...

    async def send(self, message: RenderedMessage, address: str) -> GatewayReceipt:
        ...
