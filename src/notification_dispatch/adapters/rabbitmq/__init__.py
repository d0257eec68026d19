"""RabbitMQ transport for outbox events."""

from __future__ import annotations

from .publisher import MessageEnvelope, RabbitMQPublisher, to_envelope

__all__ = [
    "MessageEnvelope",
    "RabbitMQPublisher",
    "to_envelope",
]
