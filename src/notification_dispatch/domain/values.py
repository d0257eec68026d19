"""Value objects shared by the notification aggregates."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class Channel(str, Enum):
    """Supported notification channels."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    WEBHOOK = "webhook"


class Urgency(str, Enum):
    """Urgency of a request. HIGH overrides do-not-disturb windows."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class RenderedMessage(BaseModel):
    """Immutable rendered message ready for delivery."""

    model_config = ConfigDict(frozen=True)

    body: str
    subject: str | None = None
