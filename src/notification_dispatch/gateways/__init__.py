from .console import ConsoleGateway
from .fake import InMemoryGateway, SentMessage
from .registry import GatewayRegistry
from .smtp import SmtpEmailGateway
from .twilio import TwilioSmsGateway, receipt_status
from .webhook import HttpPushGateway, WebhookGateway, verify_signature

__all__ = [
    "ConsoleGateway",
    "GatewayRegistry",
    "HttpPushGateway",
    "InMemoryGateway",
    "SentMessage",
    "SmtpEmailGateway",
    "TwilioSmsGateway",
    "WebhookGateway",
    "receipt_status",
    "verify_signature",
]
