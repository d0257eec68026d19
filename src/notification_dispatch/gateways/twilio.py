"""Twilio SMS gateway."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from ..domain.delivery_log import DeliveryStatus
from ..domain.values import Channel
from ..ports.gateway import GatewayReceipt
from ..primitives.exceptions import PermanentGatewayError, TransientGatewayError

if TYPE_CHECKING:
    from ..domain.values import RenderedMessage

logger = logging.getLogger("notification_dispatch.gateways.twilio")

# Twilio message status -> delivery log status; other statuses are interim.
RECEIPT_STATUSES: dict[str, DeliveryStatus] = {
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.READ,
    "undelivered": DeliveryStatus.FAILED,
    "failed": DeliveryStatus.FAILED,
}


def receipt_status(twilio_status: str) -> DeliveryStatus | None:
    """Map a status callback's ``MessageStatus`` to a delivery status."""
    return RECEIPT_STATUSES.get(twilio_status.lower())


class TwilioSmsGateway:
    """
    Twilio SMS gateway.

    The Twilio client is synchronous; calls run in a worker thread. When a
    ``status_callback`` URL is configured Twilio reports delivery through
    it, and an accepted message stays SENT until that receipt arrives.

    HTTP 429 and 5xx answers are transient, every other API error is
    permanent (invalid number, unsubscribed recipient, ...).
    """

    channel = Channel.SMS
    supports_read_receipts = False

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        status_callback: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.status_callback = status_callback
        self._client = client

    @property
    def supports_delivery_receipts(self) -> bool:
        return self.status_callback is not None

    def _get_client(self) -> Any:
        if self._client is None:
            # Lazy import of twilio
            try:
                from twilio.rest import Client as TwilioClient
            except ImportError as e:
                raise ImportError(
                    "twilio is required for TwilioSmsGateway. "
                    "Install with: pip install twilio"
                ) from e
            self._client = TwilioClient(self.account_sid, self.auth_token)
        return self._client

    async def send(self, message: RenderedMessage, address: str) -> GatewayReceipt:
        client = self._get_client()
        from twilio.base.exceptions import TwilioRestException

        params: dict[str, Any] = {
            "to": address,
            "from_": self.from_number,
            "body": message.body,
        }
        if self.status_callback:
            params["status_callback"] = self.status_callback

        channel = self.channel.value
        try:
            sent = await asyncio.to_thread(client.messages.create, **params)
        except TwilioRestException as e:
            reason = f"HTTP {e.status} (code {e.code}): {e.msg}"
            if e.status == 429 or e.status >= 500:
                raise TransientGatewayError(channel, address, reason) from e
            raise PermanentGatewayError(channel, address, reason) from e
        except OSError as e:
            raise TransientGatewayError(channel, address, str(e)) from e

        logger.info("SMS accepted by Twilio for %s (SID: %s)", address, sent.sid)
        return GatewayReceipt(provider_message_id=sent.sid)
