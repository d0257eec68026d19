from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class IMessagePublisher(Protocol):
    """
    Port for publishing messages to a broker (RabbitMQ, in-memory, …).

    Returning normally means the broker acknowledged the message.
    """

    async def publish(self, topic: str, message: Any, **kwargs: Any) -> None:
        """
        Publish *message* to *topic*.

        Args:
            topic: Routing key or topic name.
            message: Payload, usually a dict built from a domain event.
            **kwargs: Transport-specific metadata
                (``correlation_id``, ``causation_id``, headers, …).
        """
        ...
