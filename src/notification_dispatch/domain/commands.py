"""Inbound commands."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .values import Channel, Urgency


class RecipientContact(BaseModel):
    """A recipient as named by the upstream caller."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    addresses: dict[Channel, str] = Field(default_factory=dict)


class CreateNotificationCommand(BaseModel):
    """Ask for a notification to be sent.

    ``dedup_key`` makes the command idempotent: replaying it returns the
    request created by the first call.
    """

    model_config = ConfigDict(frozen=True)

    notification_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    recipients: list[RecipientContact] = Field(default_factory=list)
    channel_preferences: list[Channel] = Field(default_factory=list)
    urgency: Urgency = Urgency.MEDIUM
    scheduled_at: datetime | None = None
    correlation_id: str | None = None
    dedup_key: str
