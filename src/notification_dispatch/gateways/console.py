"""Console gateway for development debugging."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from ..ports.gateway import GatewayReceipt

if TYPE_CHECKING:
    from ..domain.values import Channel, RenderedMessage

logger = logging.getLogger("notification_dispatch.gateways.console")


class ConsoleGateway:
    """
    Development adapter that logs (and optionally prints) every message.
    """

    supports_delivery_receipts = False
    supports_read_receipts = False

    def __init__(self, channel: Channel, output_to_stdout: bool = False) -> None:
        self.channel = channel
        self.output_to_stdout = output_to_stdout

    async def send(self, message: RenderedMessage, address: str) -> GatewayReceipt:
        output = "\n".join(
            [
                "═" * 50,
                f"NOTIFICATION SENT VIA {self.channel.value.upper()}",
                f"To:      {address}",
                f"Subject: {message.subject or '(No Subject)'}",
                f"Body:    {message.body}",
                "═" * 50,
            ]
        )
        logger.info(output)
        if self.output_to_stdout:
            print(output)
        return GatewayReceipt(provider_message_id=f"console-{uuid.uuid4().hex[:12]}")
