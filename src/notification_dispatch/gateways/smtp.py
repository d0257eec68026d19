"""SMTP email gateway."""

from __future__ import annotations

import email.message
import email.policy
import email.utils
import logging
from typing import TYPE_CHECKING

from ..domain.values import Channel
from ..ports.gateway import GatewayReceipt
from ..primitives.exceptions import PermanentGatewayError, TransientGatewayError

if TYPE_CHECKING:
    from ..domain.values import RenderedMessage

logger = logging.getLogger("notification_dispatch.gateways.smtp")


class SmtpEmailGateway:
    """
    Async SMTP email gateway using aiosmtplib.

    SMTP gives no delivery confirmation, so an accepted message is final.
    Reply codes 5xx and refused recipients are permanent; 4xx codes,
    connection errors and timeouts are transient.
    """

    channel = Channel.EMAIL
    supports_delivery_receipts = False
    supports_read_receipts = False

    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        from_email: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.from_email = from_email
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def build_message(
        self, message: RenderedMessage, address: str
    ) -> email.message.EmailMessage:
        mail = email.message.EmailMessage(policy=email.policy.default)
        mail["To"] = address
        mail["From"] = self.from_email
        mail["Message-ID"] = email.utils.make_msgid()
        if message.subject:
            mail["Subject"] = message.subject
        mail.set_content(message.body, charset="utf-8")
        return mail

    async def send(self, message: RenderedMessage, address: str) -> GatewayReceipt:
        # Lazy import of aiosmtplib
        try:
            import aiosmtplib
        except ImportError as e:
            raise ImportError(
                "aiosmtplib is required for SmtpEmailGateway. "
                "Install with: pip install aiosmtplib"
            ) from e

        mail = self.build_message(message, address)
        channel = self.channel.value
        try:
            async with aiosmtplib.SMTP(
                hostname=self.host,
                port=self.port,
                timeout=self.timeout,
                start_tls=self.use_tls,
            ) as smtp:
                if self.username and self.password:
                    await smtp.login(self.username, self.password)
                await smtp.send_message(mail)
        except aiosmtplib.SMTPRecipientsRefused as e:
            codes = [r.code for r in e.recipients]
            reason = "; ".join(f"{r.code} {r.message}" for r in e.recipients)
            if all(code >= 500 for code in codes):
                raise PermanentGatewayError(channel, address, reason) from e
            raise TransientGatewayError(channel, address, reason) from e
        except aiosmtplib.SMTPResponseException as e:
            reason = f"{e.code} {e.message}"
            if e.code >= 500:
                raise PermanentGatewayError(channel, address, reason) from e
            raise TransientGatewayError(channel, address, reason) from e
        except (aiosmtplib.SMTPException, OSError) as e:
            raise TransientGatewayError(channel, address, str(e)) from e

        logger.info("Email accepted by %s for %s", self.host, address)
        return GatewayReceipt(provider_message_id=mail["Message-ID"])
