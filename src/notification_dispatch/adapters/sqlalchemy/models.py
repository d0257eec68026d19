"""Tables for the notification aggregates and the outbox.

Aggregates are stored as JSON documents next to the columns needed for
lookups, uniqueness and the version check.
"""

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import JSON, TypeDecorator


class JSONType(TypeDecorator[dict[str, Any]]):
    """Document column: JSONB on PostgreSQL, JSON elsewhere."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


class Base(DeclarativeBase):
    """Declarative base for all notification-dispatch tables."""


class NotificationRequestModel(Base):
    __tablename__ = "notification_requests"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    dedup_key: Mapped[str] = mapped_column(String, unique=True)
    notification_type: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String, index=True)
    version: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    document: Mapped[dict[str, Any]] = mapped_column(JSONType)


class DeliveryLogModel(Base):
    __tablename__ = "delivery_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    request_id: Mapped[str] = mapped_column(String, index=True)
    recipient_id: Mapped[str] = mapped_column(String)
    notification_type: Mapped[str] = mapped_column(String)
    channel: Mapped[str] = mapped_column(String)
    recipient_address: Mapped[str] = mapped_column(String, index=True)
    current_status: Mapped[str] = mapped_column(String)
    provider_message_id: Mapped[str | None] = mapped_column(
        String, nullable=True, index=True
    )
    first_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    document: Mapped[dict[str, Any]] = mapped_column(JSONType)

    __table_args__ = (
        UniqueConstraint(
            "request_id", "channel", "recipient_address", name="uq_delivery_key"
        ),
        Index("ix_delivery_logs_frequency", "recipient_id", "notification_type"),
        Index("ix_delivery_logs_failed", "current_status", "updated_at"),
    )


class NotificationTemplateModel(Base):
    __tablename__ = "notification_templates"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    channel: Mapped[str] = mapped_column(String)
    template_version: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String)
    revision: Mapped[int] = mapped_column(Integer, default=0)
    document: Mapped[dict[str, Any]] = mapped_column(JSONType)

    __table_args__ = (
        UniqueConstraint(
            "name", "channel", "template_version", name="uq_template_version"
        ),
        Index("ix_templates_lookup", "name", "channel", "status"),
    )


class PreferencesModel(Base):
    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    version: Mapped[int] = mapped_column(Integer, default=0)
    document: Mapped[dict[str, Any]] = mapped_column(JSONType)


class OutboxStatus(str, enum.Enum):
    PENDING = "PENDING"
    PUBLISHED = "PUBLISHED"


class OutboxMessageModel(Base):
    """
    Model for the Outbox pattern.
    Captures domain events to be published asynchronously.
    """

    __tablename__ = "outbox"

    id: Mapped[int] = mapped_column(
        Integer().with_variant(BigInteger, "postgresql"),
        primary_key=True,
        autoincrement=True,
    )
    event_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    event_type: Mapped[str] = mapped_column(String)
    aggregate_id: Mapped[str | None] = mapped_column(String, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType)
    status: Mapped[OutboxStatus] = mapped_column(
        Enum(OutboxStatus), default=OutboxStatus.PENDING
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[str | None] = mapped_column(String, nullable=True)
    event_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True
    )
    correlation_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    causation_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    __table_args__ = (
        Index("ix_outbox_pending_id", "status", "id"),
        Index("ix_outbox_tracing", "correlation_id", "causation_id"),
    )
