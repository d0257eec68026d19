"""NotificationTemplate aggregate.

A template version is immutable once stored: only its status moves, and only
forward (DRAFT → ACTIVE → DEPRECATED). ``version`` numbers the content;
``revision`` is the optimistic-concurrency counter bumped by every save.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from ..primitives.exceptions import InvalidStateTransition
from ..utils import utcnow
from .events import NotificationTemplateVersionCreatedEvent
from .values import Channel

if TYPE_CHECKING:
    from .events import DomainEvent

_TEMPLATE_NAMESPACE = uuid.UUID("0b7e52a4-1d7c-4b7e-8a43-2f9d6c1e8a10")


class TemplateStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    DEPRECATED = "DEPRECATED"


def template_id_for(name: str, channel: Channel, version: int) -> str:
    return str(uuid.uuid5(_TEMPLATE_NAMESPACE, f"{name}:{channel.value}:{version}"))


class NotificationTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    channel: Channel
    subject_template: str | None = None
    body_template: str
    version: int
    status: TemplateStatus = TemplateStatus.DRAFT
    revision: int = 0
    created_at: datetime = Field(default_factory=utcnow)


def new_version(
    *,
    name: str,
    channel: Channel,
    body_template: str,
    subject_template: str | None,
    version: int,
    status: TemplateStatus = TemplateStatus.ACTIVE,
    now: datetime | None = None,
) -> tuple[NotificationTemplate, list[DomainEvent]]:
    """Create version *version* of (name, channel)."""
    if status is TemplateStatus.DEPRECATED:
        raise InvalidStateTransition("NotificationTemplate", "NEW", status.value)
    now = now or utcnow()
    template = NotificationTemplate(
        id=template_id_for(name, channel, version),
        name=name,
        channel=channel,
        subject_template=subject_template,
        body_template=body_template,
        version=version,
        status=status,
        created_at=now,
    )
    event = NotificationTemplateVersionCreatedEvent(
        aggregate_id=template.id,
        name=name,
        channel=channel,
        version=version,
        status=status.value,
        occurred_at=now,
    )
    return template, [event]


def activate(template: NotificationTemplate) -> NotificationTemplate:
    if template.status is not TemplateStatus.DRAFT:
        raise InvalidStateTransition(
            "NotificationTemplate", template.status.value, TemplateStatus.ACTIVE.value
        )
    return template.model_copy(update={"status": TemplateStatus.ACTIVE})


def deprecate(template: NotificationTemplate) -> NotificationTemplate:
    if template.status is not TemplateStatus.ACTIVE:
        raise InvalidStateTransition(
            "NotificationTemplate",
            template.status.value,
            TemplateStatus.DEPRECATED.value,
        )
    return template.model_copy(update={"status": TemplateStatus.DEPRECATED})
