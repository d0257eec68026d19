"""HTTP gateways: signed webhooks and a push relay."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from ..correlation import get_causation_id, get_correlation_id
from ..domain.values import Channel
from ..ports.gateway import GatewayReceipt
from ..primitives.exceptions import PermanentGatewayError, TransientGatewayError

if TYPE_CHECKING:
    from ..domain.values import RenderedMessage

logger = logging.getLogger("notification_dispatch.gateways.http")

SIGNATURE_HEADER = "X-Webhook-Signature"
_TRANSIENT_STATUSES = frozenset({408, 425, 429})


def calculate_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(
        key=secret.encode("utf-8"), msg=body, digestmod=hashlib.sha256
    ).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Check a received webhook. Use this in webhook receivers."""
    return hmac.compare_digest(calculate_signature(body, secret), signature)


class _HttpGateway:
    """POSTs a JSON document and classifies the answer.

    408, 425, 429, 5xx and network errors are transient; other 4xx answers
    and malformed URLs are permanent. ``X-Request-ID`` in the response, when
    present, becomes the provider message id.
    """

    supports_delivery_receipts = False
    supports_read_receipts = False

    def __init__(
        self,
        *,
        secret: str | None = None,
        timeout: float = 10.0,
        user_agent: str = "notification-dispatch/0.1.0",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.secret = secret
        self.timeout = timeout
        self.user_agent = user_agent
        self._client = client

    def _headers(self, body: bytes) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "X-Correlation-ID": get_correlation_id() or "",
            "X-Causation-ID": get_causation_id() or "",
        }
        if self.secret:
            headers[SIGNATURE_HEADER] = calculate_signature(body, self.secret)
        return headers

    async def _post(
        self,
        channel: Channel,
        url: str,
        payload: dict[str, Any],
        address: str,
        extra_headers: dict[str, str] | None = None,
    ) -> GatewayReceipt:
        body = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
        headers = {**self._headers(body), **(extra_headers or {})}
        try:
            if self._client is not None:
                response = await self._client.post(url, content=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, content=body, headers=headers)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise PermanentGatewayError(channel.value, address, str(e)) from e
        except httpx.TransportError as e:
            raise TransientGatewayError(
                channel.value, address, f"{type(e).__name__}: {e}"
            ) from e

        status = response.status_code
        if response.is_success:
            logger.info("%s accepted for %s (HTTP %d)", channel.value, address, status)
            return GatewayReceipt(
                provider_message_id=response.headers.get("X-Request-ID")
            )
        reason = f"HTTP {status}"
        if status >= 500 or status in _TRANSIENT_STATUSES:
            raise TransientGatewayError(channel.value, address, reason)
        raise PermanentGatewayError(channel.value, address, reason)


class WebhookGateway(_HttpGateway):
    """
    Generic HTTP POST webhook with an HMAC-SHA256 signature.

    The recipient address is the webhook URL. The exact bytes that were
    signed are sent, so receivers can verify with :func:`verify_signature`.
    """

    channel = Channel.WEBHOOK

    async def send(self, message: RenderedMessage, address: str) -> GatewayReceipt:
        payload = {
            "subject": message.subject or "",
            "body": message.body,
        }
        return await self._post(self.channel, address, payload, address)


class HttpPushGateway(_HttpGateway):
    """
    Push notifications through an HTTP push relay.

    The recipient address is the device token; every message is POSTed to
    the relay ``endpoint``. 404 and 410 mean the token is no longer
    registered and are permanent like any other 4xx.
    """

    channel = Channel.PUSH

    def __init__(
        self,
        endpoint: str,
        *,
        api_key: str | None = None,
        secret: str | None = None,
        timeout: float = 10.0,
        user_agent: str = "notification-dispatch/0.1.0",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            secret=secret, timeout=timeout, user_agent=user_agent, client=client
        )
        self.endpoint = endpoint
        self.api_key = api_key

    async def send(self, message: RenderedMessage, address: str) -> GatewayReceipt:
        payload = {
            "token": address,
            "title": message.subject or "",
            "body": message.body,
        }
        auth = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        return await self._post(self.channel, self.endpoint, payload, address, auth)
